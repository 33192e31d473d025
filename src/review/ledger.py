"""
Mistake Ledger: deduplicated record of failed practice checks.

Failures are keyed by a fingerprint of item, question kind and a bounded
prefix of the context text. A recurring fingerprint is merged into the
existing record instead of creating a new one. Two failures whose context
only differs past the prefix merge as well.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from loguru import logger

from .models import MistakeRecord

FINGERPRINT_LENGTH = 50
RESOLVE_AT_PROFICIENCY = 2


def fingerprint(mistake: MistakeRecord, length: int = FINGERPRINT_LENGTH) -> str:
    """Derive the key used to detect the same mistake recurring."""
    context = (mistake.context_snippet or "").strip().lower()
    return f"{mistake.item_id}|{mistake.question_kind}|{context[:length]}"


def merge(
    existing: list[MistakeRecord],
    incoming: list[MistakeRecord],
    now: datetime | None = None,
    length: int = FINGERPRINT_LENGTH,
) -> list[MistakeRecord]:
    """
    Merge a run's mistakes into the ledger.

    Args:
        existing: Current ledger (not mutated)
        incoming: Session mistakes to fold in
        now: Time of the recurrence (defaults to now)
        length: Context prefix length for fingerprints

    Returns:
        New ledger list
    """
    now = now or datetime.now()
    ledger = list(existing)
    index = {fingerprint(m, length): i for i, m in enumerate(ledger)}

    for mistake in incoming:
        fp = fingerprint(mistake, length)
        position = index.get(fp)

        if position is not None:
            current = ledger[position]
            ledger[position] = replace(
                current,
                last_seen_at=now,
                failure_count=current.failure_count + 1,
                is_resolved=False,
                proficiency=0,
            )
            logger.debug(f"Mistake recurred: {fp} (x{current.failure_count + 1})")
        else:
            ledger.append(
                replace(mistake, failure_count=1, is_resolved=False, proficiency=0, last_seen_at=now)
            )
            index[fp] = len(ledger) - 1
            logger.debug(f"New mistake recorded: {fp}")

    return ledger


def deduplicate(records: list[MistakeRecord], length: int = FINGERPRINT_LENGTH) -> list[MistakeRecord]:
    """
    Collapse a raw list (e.g. freshly imported) by fingerprint.

    Keeps the latest timestamp, sums failure and review counts, keeps the
    best proficiency, and counts a mistake as resolved if any copy is.
    """
    merged: dict[str, MistakeRecord] = {}

    for record in records:
        fp = fingerprint(record, length)
        current = merged.get(fp)
        if current is None:
            merged[fp] = record
            continue

        merged[fp] = replace(
            current,
            last_seen_at=max(current.last_seen_at, record.last_seen_at),
            failure_count=current.failure_count + record.failure_count,
            review_count=current.review_count + record.review_count,
            proficiency=max(current.proficiency, record.proficiency),
            is_resolved=current.is_resolved or record.is_resolved,
        )

    if len(merged) < len(records):
        logger.info(f"Deduplicated ledger: {len(records)} -> {len(merged)} records")
    return list(merged.values())


def record_review_success(ledger: list[MistakeRecord], mistake_id: str) -> list[MistakeRecord]:
    """Credit a clean review of one mistake; two clean reviews resolve it."""
    updated = list(ledger)
    for i, record in enumerate(updated):
        if record.id != mistake_id:
            continue
        proficiency = record.proficiency + 1
        updated[i] = replace(
            record,
            proficiency=proficiency,
            review_count=record.review_count + 1,
            is_resolved=record.is_resolved or proficiency >= RESOLVE_AT_PROFICIENCY,
        )
        return updated

    logger.warning(f"Review target {mistake_id} not found in ledger")
    return updated


def active_mistakes(ledger: list[MistakeRecord], item_id: str | None = None) -> list[MistakeRecord]:
    """Unresolved mistakes, optionally for a single item."""
    return [
        m for m in ledger
        if not m.is_resolved and (item_id is None or m.item_id == item_id)
    ]
