"""
Bucketed Spaced Repetition Scheduler.

Implements:
- Bucket-table interval transitions (1, 3, 7, 15, 30 days)
- Due / early split: only the first evaluation after an item becomes due
  moves the schedule, voluntary early practice only grows the history
- A preview of the same transition for display before commit

Quality Scale:
0 - Blackout, could not solve
1 - Struggled, failed with partial recall
2 - Passed
3 - Passed cleanly
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta

from loguru import logger

from .models import Quality, RetentionRecord, ReviewEntry

# =============================================================================
# Bucket Table
# =============================================================================

PASS_THRESHOLD = Quality.PASS

# (upper bound of band exclusive, interval on pass, interval on fail)
# Bands: new or <=1 day, 3-6 days, 7-29 days, >=30 days
INTERVAL_BUCKETS: list[tuple[float, int, int]] = [
    (3, 3, 1),
    (7, 7, 1),
    (30, 15, 3),
    (float("inf"), 30, 7),
]


@dataclass
class SchedulerConfig:
    """Configuration for the retention scheduler."""

    history_limit: int = 10
    max_interval: int = 30
    buckets: list[tuple[float, int, int]] = field(default_factory=lambda: list(INTERVAL_BUCKETS))


@dataclass
class SchedulePreview:
    """What committing an evaluation would do, for display."""

    item_id: str
    is_due: bool
    current_interval: int
    next_interval: int
    next_review: datetime
    streak: int

    @property
    def changes_schedule(self) -> bool:
        return self.is_due


def next_interval(current_interval: int, quality: int, config: SchedulerConfig | None = None) -> int:
    """Look up the bucket transition for a due evaluation."""
    config = config or SchedulerConfig()
    passed = quality >= PASS_THRESHOLD
    for upper, on_pass, on_fail in config.buckets:
        if current_interval < upper:
            result = on_pass if passed else on_fail
            break
    else:
        result = config.buckets[-1][1 if passed else 2]
    return min(result, config.max_interval)


def quality_from_run(mistake_count: int, question_count: int) -> Quality:
    """
    Convert a finished run into a quality score.

    Args:
        mistake_count: Distinct mistakes recorded during the run
        question_count: Questions shown on the summary

    Returns:
        Quality 0-3
    """
    if mistake_count <= 0:
        return Quality.PERFECT
    if mistake_count == 1:
        return Quality.PASS
    if question_count > 0 and mistake_count / question_count <= 0.5:
        return Quality.STRUGGLED
    return Quality.BLACKOUT


class RetentionScheduler:
    """
    Computes the next retention record from a 0-3 quality score.

    Each item keeps:
    - Interval: one of the bucket values (0 for a brand new item)
    - Streak: consecutive promotions
    - History: the most recent evaluations, capped
    """

    def __init__(self, config: SchedulerConfig | None = None):
        """
        Initialize the scheduler.

        Args:
            config: Custom configuration (uses defaults if None)
        """
        self.config = config or SchedulerConfig()

    @staticmethod
    def is_due(record: RetentionRecord | None, now: datetime) -> bool:
        """A missing record counts as due."""
        return record is None or record.next_review <= now

    def _validate_quality(self, quality: int) -> int:
        if isinstance(quality, bool) or not isinstance(quality, int):
            raise ValueError(f"Quality must be an integer, got {quality!r}")
        if not 0 <= quality <= 3:
            raise ValueError(f"Quality must be within 0..3, got {quality}")
        return int(quality)

    def preview(
        self,
        record: RetentionRecord | None,
        quality: int,
        item_id: str | None = None,
        now: datetime | None = None,
    ) -> SchedulePreview:
        """
        Compute the transition `schedule` would commit, without committing it.

        Uses the same bucket table as `schedule`.
        """
        quality = self._validate_quality(quality)
        now = now or datetime.now()
        current = record.interval if record else 0
        streak = record.streak if record else 0
        item = record.item_id if record else item_id

        if self.is_due(record, now):
            new_interval = next_interval(current, quality, self.config)
            return SchedulePreview(
                item_id=item,
                is_due=True,
                current_interval=current,
                next_interval=new_interval,
                next_review=now + timedelta(days=new_interval),
                streak=streak + 1 if quality >= PASS_THRESHOLD else 0,
            )

        return SchedulePreview(
            item_id=item,
            is_due=False,
            current_interval=current,
            next_interval=current,
            next_review=record.next_review,
            streak=streak,
        )

    def schedule(
        self,
        record: RetentionRecord | None,
        quality: int,
        now: datetime | None = None,
        time_spent_sec: int = 0,
        item_id: str | None = None,
    ) -> RetentionRecord:
        """
        Commit an evaluation and return the updated record.

        Args:
            record: Current record, or None for a new item (needs item_id)
            quality: Quality score 0-3
            now: Evaluation time (defaults to now)
            time_spent_sec: Time spent on the evaluation
            item_id: Item identifier when no record exists yet

        Returns:
            New RetentionRecord; the input record is not mutated
        """
        now = now or datetime.now()
        if record is None and item_id is None:
            raise ValueError("item_id is required to schedule a new item")

        plan = self.preview(record, quality, item_id=item_id, now=now)
        history = list(record.history) if record else []
        history.append(ReviewEntry(at=now, quality=int(quality), time_spent_sec=int(time_spent_sec)))
        history = history[-self.config.history_limit:]

        if record is None:
            record = RetentionRecord(item_id=item_id, last_review=now, next_review=now)

        if plan.is_due:
            logger.info(
                f"Scheduled {record.item_id}: q={quality} interval "
                f"{plan.current_interval}d -> {plan.next_interval}d (streak {plan.streak})"
            )
        else:
            logger.debug(f"Early review of {record.item_id} (q={quality}), schedule unchanged")

        return replace(
            record,
            last_review=now,
            next_review=plan.next_review,
            interval=plan.next_interval,
            streak=plan.streak,
            history=history,
        )
