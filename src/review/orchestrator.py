"""
Queue Orchestrator: sequential multi-item review.

Opens one run per queued item, strictly FIFO, and only opens the next run
after the previous run's completion callback has fired and a short settle
delay has passed. Each persisted completion is folded into the Mistake
Ledger and the Retention Scheduler held in a caller-owned ReviewState.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Protocol

from loguru import logger

from .ledger import FINGERPRINT_LENGTH, active_mistakes, merge, record_review_success
from .models import Check, MistakeRecord, RetentionRecord, RunCompletion, Screen
from .runner import DailyMarker, RunConfig, RunSession, Validator
from .scheduler import RetentionScheduler, SchedulerConfig, quality_from_run

Deferrer = Callable[[float, Callable[[], None]], None]


class QueueBusyError(RuntimeError):
    """Raised when a queue is started while another run is still active."""
    pass


class ContentProvider(Protocol):
    """External collaborator that produces the screens of a run."""

    def screens_for(self, item_id: str, prior_mistakes: list[MistakeRecord]) -> list[Screen]:
        ...


def timer_defer(delay: float, callback: Callable[[], None]) -> None:
    """Run `callback` once after `delay` seconds (not cancellable)."""
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    timer.start()


@dataclass
class ReviewState:
    """Ledger and schedules owned by the caller, mutated only by the orchestrator."""

    mistakes: list[MistakeRecord] = field(default_factory=list)
    retention: dict[str, RetentionRecord] = field(default_factory=dict)
    xp: int = 0
    daily_streak: int = 0


# =============================================================================
# Due Queue
# =============================================================================


def build_due_queue(
    records: dict[str, RetentionRecord],
    candidate_ids: list[str] | None = None,
    now: datetime | None = None,
) -> list[str]:
    """
    Build the review queue for a sitting.

    Items are bucketed by interval (daily <= 1.5d, weekly <= 7.5d, monthly
    beyond). Due items come first, most overdue first, daily before weekly
    before monthly; not-yet-due daily items are appended as a buffer.
    Items without a record are due immediately.

    Args:
        records: Retention records by item id
        candidate_ids: Extra item ids that belong in the system (e.g. mastered)
        now: Reference time (defaults to now)

    Returns:
        Unique item ids in queue order
    """
    now = now or datetime.now()
    daily: list[tuple[datetime, str, bool]] = []
    weekly: list[tuple[datetime, str, bool]] = []
    monthly: list[tuple[datetime, str, bool]] = []

    item_ids = list(dict.fromkeys([*records.keys(), *(candidate_ids or [])]))
    for item_id in item_ids:
        record = records.get(item_id)
        interval = record.interval if record else 0
        next_review = record.next_review if record else now
        entry = (next_review, item_id, next_review <= now)

        if interval <= 1.5:
            daily.append(entry)
        elif interval <= 7.5:
            weekly.append(entry)
        else:
            monthly.append(entry)

    for column in (daily, weekly, monthly):
        column.sort(key=lambda e: e[0])

    ordered = [
        *(i for _, i, due in daily if due),
        *(i for _, i, due in weekly if due),
        *(i for _, i, due in monthly if due),
        *(i for _, i, due in daily if not due),
    ]
    return list(dict.fromkeys(ordered))


# =============================================================================
# Orchestrator
# =============================================================================


class QueueOrchestrator:
    """
    Runs queued items one at a time.

    Handles:
    - Opening each run with the item's unresolved mistakes as context
    - Folding completions into the ledger and retention schedules
    - Regeneration ("redo") by reopening the same item
    """

    def __init__(
        self,
        state: ReviewState,
        content: ContentProvider,
        validator: Validator,
        scheduler: RetentionScheduler | None = None,
        run_config: RunConfig | None = None,
        marker: DailyMarker | None = None,
        delay_seconds: float = 0.5,
        defer: Deferrer = timer_defer,
        on_run_started: Callable[[RunSession], None] | None = None,
        clock: Callable[[], datetime] = datetime.now,
        fingerprint_length: int = FINGERPRINT_LENGTH,
    ):
        self.state = state
        self.content = content
        self.validator = validator
        self.scheduler = scheduler or RetentionScheduler()
        self.run_config = run_config or RunConfig()
        self.marker = marker
        self.delay_seconds = delay_seconds
        self.defer = defer
        self.on_run_started = on_run_started
        self._clock = clock
        self.fingerprint_length = fingerprint_length

        self.queue: list[str] = []
        self.active_run: RunSession | None = None
        self.started: list[str] = []
        self._generation = 0

    @classmethod
    def from_settings(
        cls,
        state: ReviewState,
        content: ContentProvider,
        validator: Validator,
        marker: DailyMarker | None = None,
        settings=None,
        **kwargs,
    ) -> "QueueOrchestrator":
        """Build an orchestrator configured from application settings."""
        if settings is None:
            from config import get_settings

            settings = get_settings()

        return cls(
            state=state,
            content=content,
            validator=validator,
            scheduler=RetentionScheduler(SchedulerConfig(**settings.get_scheduler_config())),
            run_config=RunConfig(**settings.get_run_config()),
            marker=marker,
            delay_seconds=settings.review_queue_delay_seconds,
            fingerprint_length=settings.review_fingerprint_length,
            **kwargs,
        )

    @property
    def is_busy(self) -> bool:
        return bool(self.queue) or (self.active_run is not None and not self.active_run.is_done)

    def start_queue(self, item_ids: list[str]) -> None:
        """Start a sequential review of `item_ids`, in order."""
        if self.is_busy:
            raise QueueBusyError("A review run is already in progress")
        if not item_ids:
            logger.info("Nothing to review")
            return

        self._generation += 1
        self.queue = list(item_ids)
        logger.info(f"Review queue started: {len(self.queue)} items")
        self._open(self.queue[0], generation=self._generation)

    def start_mistake_review(self, mistake_id: str) -> None:
        """Retry a single ledger mistake in review mode."""
        if self.is_busy:
            raise QueueBusyError("A review run is already in progress")

        mistake = next((m for m in self.state.mistakes if m.id == mistake_id), None)
        if mistake is None:
            raise KeyError(f"Mistake not found: {mistake_id}")

        self._generation += 1
        self.queue = [mistake.item_id]
        self._open(mistake.item_id, target=mistake, generation=self._generation)

    def shutdown(self) -> None:
        """Tear down; pending deferred runs and late completions are dropped."""
        self._generation += 1
        self.queue = []
        self.active_run = None

    def _screens_for_target(self, mistake: MistakeRecord) -> list[Screen]:
        check = Check.from_dict(mistake.widget_snapshot) if mistake.widget_snapshot else None
        return [Screen(id="retry", header="Retry", check=check, is_retry=True)]

    def _open(self, item_id: str, target: MistakeRecord | None = None, generation: int = 0) -> None:
        if generation != self._generation:
            logger.debug(f"Stale open of {item_id} dropped")
            return

        if target is not None:
            screens = self._screens_for_target(target)
            config = RunConfig(
                xp_per_correct=self.run_config.xp_per_correct,
                mistake_limit=None,
                review_mode=True,
            )
        else:
            prior = active_mistakes(self.state.mistakes, item_id)
            screens = self.content.screens_for(item_id, prior)
            config = self.run_config

        run = RunSession(
            item_id=item_id,
            screens=screens,
            validator=self.validator,
            on_complete=lambda completion: self._on_run_complete(completion, generation),
            config=config,
            marker=self.marker,
            on_regenerate=lambda: self._open(item_id, target, generation),
            daily_streak=self.state.daily_streak,
            target_mistake_id=target.id if target else None,
        )
        self.active_run = run
        self.started.append(item_id)
        logger.debug(f"Opened run for {item_id} ({len(screens)} screens)")

        if self.on_run_started is not None:
            self.on_run_started(run)

    def _on_run_complete(self, completion: RunCompletion, generation: int) -> None:
        if generation != self._generation:
            logger.debug(f"Completion of torn-down run {completion.item_id} ignored")
            return

        self._fold(completion)

        if len(self.queue) > 1:
            self.queue.pop(0)
            next_id = self.queue[0]
            logger.info(f"Next review: {next_id} ({len(self.queue)} left)")
            self.defer(self.delay_seconds, lambda: self._open(next_id, generation=generation))
        else:
            self.queue = []
            logger.info("Review queue finished")

    def _fold(self, completion: RunCompletion) -> None:
        """Feed a completed run into the ledger and the scheduler."""
        if not completion.should_persist:
            logger.info(f"Run {completion.item_id} not persisted, schedule untouched")
            return

        state = self.state
        now = self._clock()
        state.xp += completion.xp
        state.daily_streak += completion.streak_delta

        if completion.target_mistake_id and not completion.session_mistakes:
            state.mistakes = record_review_success(state.mistakes, completion.target_mistake_id)
        if completion.session_mistakes:
            state.mistakes = merge(
                state.mistakes, completion.session_mistakes, now=now, length=self.fingerprint_length
            )

        quality = quality_from_run(
            len(completion.session_mistakes), completion.stats.question_count
        )
        state.retention[completion.item_id] = self.scheduler.schedule(
            state.retention.get(completion.item_id),
            quality,
            now=now,
            time_spent_sec=completion.stats.elapsed_seconds,
            item_id=completion.item_id,
        )
