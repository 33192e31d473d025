"""
JSON state persistence for the review engine.

Stores the mistake ledger, the retention records and the learner profile
(xp, daily streak, last-played date) as one JSON blob per key in
~/.algolingo/review/ (configurable).
"""

from __future__ import annotations

import json
from datetime import date
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from .ledger import FINGERPRINT_LENGTH, deduplicate
from .models import MistakeRecord, RetentionRecord
from .orchestrator import ReviewState

MISTAKES_KEY = "mistakes"
RETENTION_KEY = "retention"
PROFILE_KEY = "profile"


class StateStore:
    """
    Key-value persistence backed by JSON files.

    Missing or corrupt blobs read as empty state so a damaged file
    never blocks a session.
    """

    def __init__(self, state_dir: Optional[Path] = None, fingerprint_length: int = FINGERPRINT_LENGTH):
        if state_dir is None:
            from config import get_settings

            state_dir = get_settings().review_state_dir
        self.state_dir = Path(state_dir)
        self.fingerprint_length = fingerprint_length
        self.state_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.state_dir / f"{key}.json"

    def read(self, key: str, default: Any = None) -> Any:
        """Read a raw blob."""
        filepath = self._path(key)
        if not filepath.exists():
            return default

        try:
            with open(filepath, "r", encoding="utf-8") as f:
                return json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Corrupt state blob {filepath.name}: {e}")
            return default

    def write(self, key: str, value: Any) -> Path:
        """Write a raw blob."""
        filepath = self._path(key)
        with open(filepath, "w", encoding="utf-8") as f:
            json.dump(value, f, indent=2)
        return filepath

    # =========================================================================
    # Mistake Ledger
    # =========================================================================

    def load_mistakes(self) -> list[MistakeRecord]:
        blob = self.read(MISTAKES_KEY, []) or []
        if not isinstance(blob, list):
            logger.warning(f"Ignoring mistakes blob of type {type(blob).__name__}")
            return []

        records = []
        for raw in blob:
            try:
                records.append(MistakeRecord.from_dict(raw))
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping unreadable mistake record: {e}")
        return deduplicate(records, self.fingerprint_length)

    def save_mistakes(self, mistakes: list[MistakeRecord]) -> None:
        self.write(MISTAKES_KEY, [m.to_dict() for m in mistakes])

    # =========================================================================
    # Retention
    # =========================================================================

    def load_retention(self) -> dict[str, RetentionRecord]:
        blob = self.read(RETENTION_KEY, {}) or {}
        if not isinstance(blob, dict):
            logger.warning(f"Ignoring retention blob of type {type(blob).__name__}")
            return {}

        records = {}
        for item_id, raw in blob.items():
            try:
                records[item_id] = RetentionRecord.from_dict(raw)
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping unreadable retention record {item_id}: {e}")
        return records

    def save_retention(self, records: dict[str, RetentionRecord]) -> None:
        self.write(RETENTION_KEY, {item_id: r.to_dict() for item_id, r in records.items()})

    # =========================================================================
    # Profile & Daily Marker
    # =========================================================================

    def _profile(self) -> dict:
        profile = self.read(PROFILE_KEY, {})
        return profile if isinstance(profile, dict) else {}

    def last_played_date(self) -> date | None:
        value = self._profile().get("last_played_date")
        if not value:
            return None
        try:
            return date.fromisoformat(value)
        except ValueError:
            return None

    def mark_played(self, day: date) -> None:
        profile = self._profile()
        profile["last_played_date"] = day.isoformat()
        self.write(PROFILE_KEY, profile)

    # =========================================================================
    # Whole state
    # =========================================================================

    def load_state(self) -> ReviewState:
        profile = self._profile()
        return ReviewState(
            mistakes=self.load_mistakes(),
            retention=self.load_retention(),
            xp=int(profile.get("xp", 0)),
            daily_streak=int(profile.get("daily_streak", 0)),
        )

    def save_state(self, state: ReviewState) -> None:
        self.save_mistakes(state.mistakes)
        self.save_retention(state.retention)
        profile = self._profile()
        profile["xp"] = state.xp
        profile["daily_streak"] = state.daily_streak
        self.write(PROFILE_KEY, profile)
        logger.debug(f"Review state saved to {self.state_dir}")
