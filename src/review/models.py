"""
Data model for the adaptive review engine.

- MistakeRecord: one remembered failure on a practice item
- RetentionRecord: one item's spaced-repetition schedule
- Check / Screen: opaque run content, as declared by the content provider
- RunStats / RunCompletion: what a finished run hands back to its caller
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Any


class Quality(IntEnum):
    """Quality score of an evaluation (>= PASS counts as a pass)."""

    BLACKOUT = 0
    STRUGGLED = 1
    PASS = 2
    PERFECT = 3


def _parse_ts(value: str | datetime | None) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def new_id() -> str:
    return str(uuid.uuid4())


# =============================================================================
# Mistake Ledger
# =============================================================================


@dataclass
class MistakeRecord:
    """A failed interactive check, deduplicated across runs by fingerprint."""

    item_id: str
    question_kind: str
    context_snippet: str
    widget_snapshot: dict | None = None
    id: str = field(default_factory=new_id)
    failure_count: int = 1
    is_resolved: bool = False
    last_seen_at: datetime = field(default_factory=datetime.now)

    # Review-success tracking (resolution after two clean reviews)
    proficiency: int = 0
    review_count: int = 0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["last_seen_at"] = self.last_seen_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "MistakeRecord":
        data = dict(data)
        data["last_seen_at"] = _parse_ts(data.get("last_seen_at")) or datetime.now()
        return cls(**data)


# =============================================================================
# Retention Scheduler
# =============================================================================


@dataclass
class ReviewEntry:
    """A single scored evaluation in a retention history."""

    at: datetime
    quality: int
    time_spent_sec: int = 0

    def to_dict(self) -> dict:
        return {"at": self.at.isoformat(), "quality": self.quality, "time_spent_sec": self.time_spent_sec}

    @classmethod
    def from_dict(cls, data: dict) -> "ReviewEntry":
        return cls(
            at=_parse_ts(data["at"]),
            quality=int(data["quality"]),
            time_spent_sec=int(data.get("time_spent_sec", 0)),
        )


@dataclass
class RetentionRecord:
    """Spaced-repetition state for a single practice item."""

    item_id: str
    last_review: datetime
    next_review: datetime
    interval: int = 0  # Days; always a scheduler bucket value
    streak: int = 0  # Consecutive promotions
    history: list[ReviewEntry] = field(default_factory=list)

    def is_due(self, now: datetime) -> bool:
        return self.next_review <= now

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "last_review": self.last_review.isoformat(),
            "next_review": self.next_review.isoformat(),
            "interval": self.interval,
            "streak": self.streak,
            "history": [entry.to_dict() for entry in self.history],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RetentionRecord":
        return cls(
            item_id=data["item_id"],
            last_review=_parse_ts(data["last_review"]),
            next_review=_parse_ts(data["next_review"]),
            interval=int(data.get("interval", 0)),
            streak=int(data.get("streak", 0)),
            history=[ReviewEntry.from_dict(h) for h in data.get("history", [])],
        )


# =============================================================================
# Run content
# =============================================================================


@dataclass
class Check:
    """
    One check on a screen.

    The engine only looks at `interactive` and `kind`; `expected` and
    `payload` are handed to the validator and the renderer untouched.
    """

    id: str
    kind: str
    interactive: bool = True
    expected: Any = None
    payload: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Check":
        return cls(**data)


@dataclass
class Screen:
    """A single screen of practice content."""

    id: str
    header: str = ""
    check: Check | None = None
    is_retry: bool = False


@dataclass
class RunStats:
    """Aggregate stats of a run, shown on the summary screen."""

    elapsed_seconds: int = 0
    question_count: int = 0
    correct_count: int = 0
    mistake_count: int = 0
    xp: int = 0
    combo: int = 0


@dataclass
class RunCompletion:
    """Terminal payload of a run, handed to the completion callback."""

    item_id: str
    xp: int
    streak_delta: int
    should_persist: bool
    session_mistakes: list[MistakeRecord] = field(default_factory=list)
    stats: RunStats = field(default_factory=RunStats)
    target_mistake_id: str | None = None
