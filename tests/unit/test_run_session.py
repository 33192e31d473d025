"""
Unit tests for the run state machine.

Walks runs through active, repair, summary and celebration phases with
an injected validator, clock and daily marker.
"""

from datetime import date

import pytest

from src.review.models import Check, Screen
from src.review.runner import (
    CheckStatus,
    InvalidTransitionError,
    RunConfig,
    RunPhase,
    RunSession,
)
from tests.conftest import FakeMarker, expected_validator, make_screens

TODAY = date(2024, 5, 1)


class Clock:
    def __init__(self):
        self.t = 1000.0

    def __call__(self):
        return self.t


@pytest.fixture
def completions():
    return []


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def make_run(completions, clock):
    def factory(screens=None, **kwargs):
        kwargs.setdefault("marker", FakeMarker(last=TODAY))
        return RunSession(
            item_id="two-sum",
            screens=make_screens() if screens is None else screens,
            validator=kwargs.pop("validator", expected_validator),
            on_complete=completions.append,
            clock=clock,
            today=lambda: TODAY,
            **kwargs,
        )

    return factory


def answer_all(run, answers):
    for answer in answers:
        run.check(answer)
        run.advance()


class TestActivePhase:
    def test_starts_active(self, make_run):
        run = make_run()
        assert run.phase == RunPhase.ACTIVE
        assert run.current_screen.id == "two-sum-s0"

    def test_clean_run_goes_straight_to_summary(self, make_run):
        run = make_run()
        visited = []

        for _ in range(3):
            run.check("ok")
            visited.append(run.phase)
            run.advance()
            visited.append(run.phase)

        assert run.phase == RunPhase.SUMMARY
        assert RunPhase.REPAIR_INTRO not in visited
        assert RunPhase.REPAIR_LOOP not in visited
        assert run.xp == 30
        assert run.combo == 3

    def test_wrong_answer_records_mistake(self, make_run):
        run = make_run()
        assert run.check("nope") is False

        assert run.status == CheckStatus.WRONG
        assert run.combo == 0
        assert len(run.session_mistakes) == 1
        recorded = run.session_mistakes[0]
        assert recorded.item_id == "two-sum"
        assert recorded.question_kind == "quiz"
        assert recorded.context_snippet == "two-sum question 0"
        assert recorded.widget_snapshot["id"] == "two-sum-c0"

    def test_retrying_same_check_records_once(self, make_run):
        run = make_run()
        run.check("nope")
        run.retry()
        run.check("still wrong")

        assert len(run.session_mistakes) == 1

    def test_non_interactive_screen_passively_advances(self, make_run):
        screens = [
            Screen(id="intro", header="Intro", check=Check(id="d", kind="dialogue", interactive=False)),
            *make_screens(1),
        ]
        run = make_run(screens)

        assert run.check(None) is None
        assert run.current_screen.id == "two-sum-s0"
        assert run.session_mistakes == []

    def test_screen_without_check_passively_advances(self, make_run):
        run = make_run([Screen(id="text", header="Read"), *make_screens(1)])

        assert run.check("anything") is None
        assert run.current_index == 1

    def test_validator_error_treated_as_no_check(self, make_run):
        def broken(check, answer):
            raise KeyError("expected")

        run = make_run(validator=broken)
        assert run.check("ok") is None
        assert run.current_index == 1
        assert run.session_mistakes == []

    def test_auto_pass_kind_always_correct(self, make_run):
        run = make_run([Screen(id="t", check=Check(id="t", kind="terminal", expected="ls"))])
        assert run.check("rm -rf") is True

    def test_events_rejected_outside_phase(self, make_run):
        run = make_run()
        with pytest.raises(InvalidTransitionError):
            run.start_repair()
        with pytest.raises(InvalidTransitionError):
            run.finish(True)


class TestRepairLoop:
    def test_mistakes_lead_to_repair_intro(self, make_run):
        run = make_run()
        answer_all(run, ["ok", "bad", "ok"])

        assert run.phase == RunPhase.REPAIR_INTRO
        assert run.pending_repairs == 1

    def test_repair_presents_only_failed_checks(self, make_run):
        run = make_run()
        answer_all(run, ["bad", "ok", "bad"])
        run.start_repair()

        assert run.phase == RunPhase.REPAIR_LOOP
        assert [s.check.id for s in run.screens] == ["two-sum-c0", "two-sum-c2"]
        assert all(s.is_retry for s in run.screens)

    def test_wrong_in_repair_requeues_without_new_mistake(self, make_run):
        run = make_run(make_screens(1))
        answer_all(run, ["bad"])
        run.start_repair()

        run.check("bad again")
        assert len(run.screens) == 2
        assert len(run.session_mistakes) == 1

        run.advance()
        run.check("ok")
        run.advance()
        assert run.phase == RunPhase.SUMMARY

    def test_narrative_only_mistakes_fall_back_to_all(self, make_run):
        screens = [Screen(id="c", header="Callout", check=Check(id="c1", kind="callout", expected="x"))]
        run = make_run(screens)
        answer_all(run, ["y"])
        run.start_repair()

        assert run.phase == RunPhase.REPAIR_LOOP
        assert len(run.screens) == 1

    def test_review_mode_skips_repair(self, make_run):
        run = make_run(config=RunConfig(review_mode=True))
        answer_all(run, ["bad", "ok", "ok"])

        assert run.phase == RunPhase.SUMMARY


class TestSummary:
    def test_stats_without_repair(self, make_run, clock):
        run = make_run()
        clock.t += 42
        answer_all(run, ["ok", "ok", "ok"])
        clock.t += 100

        stats = run.stats
        assert stats.question_count == 3
        assert stats.correct_count == 3
        assert stats.elapsed_seconds == 42

    def test_stats_after_repair_count_repaired_questions(self, make_run):
        run = make_run()
        answer_all(run, ["bad", "bad", "ok"])
        run.start_repair()
        answer_all(run, ["ok", "ok"])

        stats = run.stats
        assert stats.question_count == 5
        assert stats.correct_count == 3
        assert stats.mistake_count == 2


class TestCompletion:
    def test_continue_completes_once(self, make_run, completions):
        run = make_run()
        answer_all(run, ["ok", "bad", "ok"])
        run.start_repair()
        answer_all(run, ["ok"])
        run.finish(satisfied=True)

        assert run.is_done
        assert len(completions) == 1
        completion = completions[0]
        assert completion.should_persist is True
        assert completion.streak_delta == 0
        assert completion.xp == 30
        assert len(completion.session_mistakes) == 1

    def test_first_run_of_day_celebrates(self, make_run, completions):
        marker = FakeMarker(last=date(2024, 4, 30))
        run = make_run(marker=marker, daily_streak=4)
        answer_all(run, ["ok", "ok", "ok"])
        run.finish(satisfied=True)

        assert run.phase == RunPhase.CELEBRATION
        assert run.celebration_streak == 5
        assert marker.last == date(2024, 4, 30)
        assert completions == []

        run.acknowledge_celebration()
        assert marker.last == TODAY
        assert completions[0].streak_delta == 1

    def test_abort_from_celebration_leaves_marker(self, make_run, completions):
        marker = FakeMarker(last=date(2024, 4, 30))
        run = make_run(marker=marker)
        answer_all(run, ["ok", "ok", "ok"])
        run.finish(satisfied=True)
        assert run.phase == RunPhase.CELEBRATION

        run.abort()

        assert completions[0].should_persist is False
        assert completions[0].streak_delta == 0
        assert marker.last == date(2024, 4, 30)

        # the next run today still celebrates
        again = make_run(marker=marker)
        answer_all(again, ["ok", "ok", "ok"])
        again.finish(satisfied=True)
        assert again.phase == RunPhase.CELEBRATION

    def test_redo_calls_regenerate_without_completion(self, make_run, completions):
        regenerated = []
        run = make_run(on_regenerate=lambda: regenerated.append(True))
        answer_all(run, ["ok", "ok", "ok"])
        run.finish(satisfied=False)

        assert regenerated == [True]
        assert completions == []
        assert run.is_done

    def test_redo_without_regenerate_completes_without_celebration(self, make_run, completions):
        run = make_run(marker=FakeMarker(last=None))
        answer_all(run, ["ok", "ok", "ok"])
        run.finish(satisfied=False)

        assert completions[0].should_persist is True
        assert completions[0].streak_delta == 0

    def test_abort_discards_session(self, make_run, completions):
        run = make_run()
        run.check("bad")
        run.abort()

        assert run.is_done
        completion = completions[0]
        assert completion.should_persist is False
        assert completion.session_mistakes == []
        assert completion.xp == 0

        with pytest.raises(InvalidTransitionError):
            run.abort()


class TestMistakeLimit:
    def test_exceeding_limit_fails_run(self, make_run):
        run = make_run(make_screens(4), config=RunConfig(mistake_limit=2))
        answer_all(run, ["bad", "bad"])
        run.check("bad")

        assert run.is_failed
        assert run.advance() is False
        assert len(run.session_mistakes) == 3

    def test_continue_as_practice_lifts_limit(self, make_run):
        run = make_run(make_screens(4), config=RunConfig(mistake_limit=1))
        answer_all(run, ["bad"])
        run.check("bad")
        run.continue_as_practice()

        assert run.advance() is True
        run.check("bad")
        assert not run.is_failed
