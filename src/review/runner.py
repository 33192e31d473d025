"""
Run State Machine: drives a single practice run to completion.

Phases:
    active -> (repairIntro -> repairLoop ->) summary -> (celebration ->) done

- active: content screens are checked one by one, failures are collected
- repairIntro: confirmation showing how many corrections are pending
- repairLoop: only the failed checks, one per screen
- summary: aggregate stats, learner picks "redo" or "continue"
- celebration: first completed run of the calendar day only

The run exits through exactly one RunCompletion handed to `on_complete`,
either at the end of the flow or through an explicit abort.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from datetime import date
from enum import Enum
from typing import Any, Callable, Protocol

from loguru import logger

from .models import Check, MistakeRecord, RunCompletion, RunStats, Screen

# Checks that are shown but always graded correct
AUTO_PASS_KINDS = {
    "terminal",
    "code-walkthrough",
    "mini-editor",
    "arch-canvas",
    "mermaid",
    "visual-quiz",
    "comparison-table",
}

# Narrative-only content; never worth repairing
NARRATIVE_KINDS = {"dialogue", "callout"}

Validator = Callable[[Check, Any], bool]
CompletionCallback = Callable[[RunCompletion], None]


class RunPhase(str, Enum):
    """Phases of a practice run."""

    ACTIVE = "active"
    REPAIR_INTRO = "repairIntro"
    REPAIR_LOOP = "repairLoop"
    SUMMARY = "summary"
    CELEBRATION = "celebration"
    DONE = "done"


class CheckStatus(str, Enum):
    IDLE = "idle"
    CORRECT = "correct"
    WRONG = "wrong"


_TRANSITIONS: dict[RunPhase, set[RunPhase]] = {
    RunPhase.ACTIVE: {RunPhase.REPAIR_INTRO, RunPhase.SUMMARY, RunPhase.DONE},
    RunPhase.REPAIR_INTRO: {RunPhase.REPAIR_LOOP, RunPhase.SUMMARY, RunPhase.DONE},
    RunPhase.REPAIR_LOOP: {RunPhase.SUMMARY, RunPhase.DONE},
    RunPhase.SUMMARY: {RunPhase.CELEBRATION, RunPhase.DONE},
    RunPhase.CELEBRATION: {RunPhase.DONE},
    RunPhase.DONE: set(),
}


class InvalidTransitionError(ValueError):
    """Raised when an event is not valid in the run's current phase."""
    pass


class DailyMarker(Protocol):
    """Persisted last-played date, used to decide on the celebration."""

    def last_played_date(self) -> date | None:
        ...

    def mark_played(self, day: date) -> None:
        ...


@dataclass
class RunConfig:
    """Configuration for a single run."""

    xp_per_correct: int = 10
    mistake_limit: int | None = None  # Lives for skip/exam runs
    review_mode: bool = False  # Review runs never enter the repair loop


class RunSession:
    """
    One practice run over a list of screens.

    The caller drives it with events (`check`, `advance`, `start_repair`,
    `finish`, `acknowledge_celebration`, `abort`) and renders whatever
    `phase` and `current_screen` say.
    """

    def __init__(
        self,
        item_id: str,
        screens: list[Screen],
        validator: Validator,
        on_complete: CompletionCallback,
        config: RunConfig | None = None,
        marker: DailyMarker | None = None,
        on_regenerate: Callable[[], None] | None = None,
        daily_streak: int = 0,
        target_mistake_id: str | None = None,
        clock: Callable[[], float] = time.monotonic,
        today: Callable[[], date] = date.today,
    ):
        self.item_id = item_id
        self.validator = validator
        self.on_complete = on_complete
        self.config = config or RunConfig()
        self.marker = marker
        self.on_regenerate = on_regenerate
        self.daily_streak = daily_streak
        self.target_mistake_id = target_mistake_id
        self._clock = clock
        self._today = today

        self.phase = RunPhase.ACTIVE
        self.status = CheckStatus.IDLE
        self.screens: list[Screen] = list(screens)
        self.content_screen_count = len(self.screens)
        self.current_index = 0
        self.session_mistakes: list[MistakeRecord] = []

        # Gamification
        self.xp = 0
        self.combo = 0

        # Lives
        self.is_failed = False
        self.limit_disabled = False

        self.has_repaired = False
        self.completion: RunCompletion | None = None
        self._started = self._clock()
        self._elapsed: float | None = None

    # =========================================================================
    # State
    # =========================================================================

    @property
    def current_screen(self) -> Screen | None:
        if self.phase not in (RunPhase.ACTIVE, RunPhase.REPAIR_LOOP):
            return None
        if self.current_index >= len(self.screens):
            return None
        return self.screens[self.current_index]

    @property
    def is_done(self) -> bool:
        return self.phase == RunPhase.DONE

    @property
    def pending_repairs(self) -> int:
        return len(self.session_mistakes)

    @property
    def celebration_streak(self) -> int:
        return self.daily_streak + 1

    @property
    def elapsed_seconds(self) -> int:
        if self._elapsed is not None:
            return int(self._elapsed)
        return int(self._clock() - self._started)

    @property
    def stats(self) -> RunStats:
        """
        Summary stats.

        The correct count is approximated as questions minus mistakes; the
        run does not keep a per-question right/wrong history.
        """
        mistakes = len(self.session_mistakes)
        questions = self.content_screen_count + (mistakes if self.has_repaired else 0)
        return RunStats(
            elapsed_seconds=self.elapsed_seconds,
            question_count=questions,
            correct_count=max(0, questions - mistakes),
            mistake_count=mistakes,
            xp=self.xp,
            combo=self.combo,
        )

    def _transition(self, to_phase: RunPhase) -> None:
        if to_phase not in _TRANSITIONS[self.phase]:
            raise InvalidTransitionError(
                f"Invalid transition: {self.phase.value} -> {to_phase.value}"
            )
        logger.debug(f"Run {self.item_id}: {self.phase.value} -> {to_phase.value}")
        self.phase = to_phase
        if to_phase == RunPhase.SUMMARY:
            self._elapsed = self._clock() - self._started

    def _require(self, *phases: RunPhase) -> None:
        if self.phase not in phases:
            expected = ", ".join(p.value for p in phases)
            raise InvalidTransitionError(
                f"Event not allowed in phase {self.phase.value} (expected {expected})"
            )

    # =========================================================================
    # Screen events
    # =========================================================================

    def check(self, answer: Any) -> bool | None:
        """
        Grade the current screen's check against the learner's answer.

        Returns:
            True/False for a graded check, None when the screen had nothing
            to grade and was passively advanced instead
        """
        self._require(RunPhase.ACTIVE, RunPhase.REPAIR_LOOP)
        if self.is_failed:
            return False

        screen = self.current_screen
        check = screen.check if screen else None
        if check is None or not check.interactive:
            self.advance()
            return None

        if check.kind in AUTO_PASS_KINDS:
            correct = True
        else:
            try:
                correct = bool(self.validator(check, answer))
            except Exception as e:
                logger.warning(f"Validator failed on {check.kind} check {check.id}: {e}")
                self.advance()
                return None

        self._grade(screen, correct)
        return correct

    def _grade(self, screen: Screen, correct: bool) -> None:
        if correct:
            self.status = CheckStatus.CORRECT
            self.combo += 1
            self.xp += self.config.xp_per_correct
            return

        self.status = CheckStatus.WRONG
        self.combo = 0

        if self.phase == RunPhase.REPAIR_LOOP:
            # Must be answered correctly eventually
            self.screens.append(replace(screen, id=f"{screen.id}_retry_{len(self.screens)}"))
            return

        limit = self.config.mistake_limit
        if limit is not None and not self.limit_disabled and len(self.session_mistakes) >= limit:
            self._record_mistake(screen)
            self.is_failed = True
            logger.info(f"Run {self.item_id} failed: mistake limit {limit} reached")
            return

        self._record_mistake(screen)

    def _record_mistake(self, screen: Screen) -> None:
        check = screen.check
        last = self.session_mistakes[-1] if self.session_mistakes else None
        if last and last.widget_snapshot and last.widget_snapshot.get("id") == check.id:
            return

        self.session_mistakes.append(
            MistakeRecord(
                item_id=self.item_id,
                question_kind=check.kind,
                context_snippet=screen.header or "Practice",
                widget_snapshot=check.to_dict(),
            )
        )

    def retry(self) -> None:
        """Reset feedback so the learner can answer the same screen again."""
        self._require(RunPhase.ACTIVE, RunPhase.REPAIR_LOOP)
        self.status = CheckStatus.IDLE

    def advance(self) -> bool:
        """
        Move to the next screen, or finish the current screen list.

        Returns:
            False if advancing is blocked by a failed run
        """
        self._require(RunPhase.ACTIVE, RunPhase.REPAIR_LOOP)
        if self.is_failed:
            return False

        self.status = CheckStatus.IDLE
        if self.current_index < len(self.screens) - 1:
            self.current_index += 1
            return True

        self._finish_screens()
        return True

    def _finish_screens(self) -> None:
        if self.phase == RunPhase.ACTIVE and self.session_mistakes and not self.config.review_mode:
            self._transition(RunPhase.REPAIR_INTRO)
        else:
            self._transition(RunPhase.SUMMARY)

    def continue_as_practice(self) -> None:
        """Lift the mistake limit after a failure and keep going."""
        self._require(RunPhase.ACTIVE)
        if not self.is_failed:
            raise InvalidTransitionError("Run has not failed")
        self.is_failed = False
        self.limit_disabled = True

    # =========================================================================
    # Repair
    # =========================================================================

    def start_repair(self) -> None:
        """Confirm the repair intro and enter the repair loop."""
        self._require(RunPhase.REPAIR_INTRO)

        repairable = [
            m for m in self.session_mistakes
            if m.widget_snapshot and m.question_kind not in NARRATIVE_KINDS
        ]
        if not repairable:
            logger.warning(f"Run {self.item_id}: no repairable checks, repairing all mistakes")
            repairable = list(self.session_mistakes)
        if not repairable:
            self._transition(RunPhase.SUMMARY)
            return

        self.screens = [
            Screen(
                id=f"repair_{m.id}",
                header="Mistake Repair",
                check=Check.from_dict(m.widget_snapshot) if m.widget_snapshot else None,
                is_retry=True,
            )
            for m in repairable
        ]
        self.current_index = 0
        self.status = CheckStatus.IDLE
        self.is_failed = False
        self.has_repaired = True
        self._transition(RunPhase.REPAIR_LOOP)

    # =========================================================================
    # Completion
    # =========================================================================

    def _is_first_run_today(self) -> bool:
        if self.marker is None:
            return False
        return self.marker.last_played_date() != self._today()

    def finish(self, satisfied: bool) -> None:
        """
        Leave the summary.

        Args:
            satisfied: False means "redo": the caller regenerates content and
                restarts the run
        """
        self._require(RunPhase.SUMMARY)

        if not satisfied and self.on_regenerate is not None:
            logger.info(f"Run {self.item_id}: redo requested, discarding run")
            self._transition(RunPhase.DONE)
            self.on_regenerate()
            return

        if satisfied and self._is_first_run_today():
            self._transition(RunPhase.CELEBRATION)
            return

        self._complete(should_persist=True, streak_delta=0)

    def acknowledge_celebration(self) -> None:
        self._require(RunPhase.CELEBRATION)
        self.marker.mark_played(self._today())
        self._complete(should_persist=True, streak_delta=1)

    def abort(self) -> None:
        """Learner quit: discard everything, nothing is persisted."""
        if self.is_done:
            raise InvalidTransitionError("Run already finished")
        logger.info(f"Run {self.item_id} aborted in phase {self.phase.value}")
        self.session_mistakes = []
        self.xp = 0
        self.completion = RunCompletion(
            item_id=self.item_id,
            xp=0,
            streak_delta=0,
            should_persist=False,
            stats=RunStats(elapsed_seconds=self.elapsed_seconds),
            target_mistake_id=self.target_mistake_id,
        )
        self._transition(RunPhase.DONE)
        self.on_complete(self.completion)

    def _complete(self, should_persist: bool, streak_delta: int) -> None:
        self.completion = RunCompletion(
            item_id=self.item_id,
            xp=self.xp,
            streak_delta=streak_delta,
            should_persist=should_persist,
            session_mistakes=list(self.session_mistakes),
            stats=self.stats,
            target_mistake_id=self.target_mistake_id,
        )
        self._transition(RunPhase.DONE)
        logger.info(
            f"Run {self.item_id} complete: {self.xp} xp, "
            f"{len(self.session_mistakes)} mistakes, streak +{streak_delta}"
        )
        self.on_complete(self.completion)
