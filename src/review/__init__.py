"""
Adaptive review engine for AlgoLingo practice.

Components:
- RetentionScheduler: bucketed spaced-repetition intervals
- Mistake ledger: fingerprinted, idempotent mistake merging
- RunSession: practice run state machine with a mistake-repair loop
- QueueOrchestrator: sequential multi-item review
- StateStore: JSON persistence of the caller-owned state
"""

from .ledger import active_mistakes, deduplicate, fingerprint, merge, record_review_success
from .models import (
    Check,
    MistakeRecord,
    Quality,
    RetentionRecord,
    ReviewEntry,
    RunCompletion,
    RunStats,
    Screen,
)
from .orchestrator import QueueBusyError, QueueOrchestrator, ReviewState, build_due_queue
from .runner import InvalidTransitionError, RunConfig, RunPhase, RunSession
from .scheduler import RetentionScheduler, SchedulerConfig, SchedulePreview, quality_from_run
from .store import StateStore

__all__ = [
    # Data model
    "Check",
    "MistakeRecord",
    "Quality",
    "RetentionRecord",
    "ReviewEntry",
    "RunCompletion",
    "RunStats",
    "Screen",
    # Scheduling
    "RetentionScheduler",
    "SchedulerConfig",
    "SchedulePreview",
    "quality_from_run",
    # Ledger
    "fingerprint",
    "merge",
    "deduplicate",
    "record_review_success",
    "active_mistakes",
    # Runs
    "RunSession",
    "RunConfig",
    "RunPhase",
    "InvalidTransitionError",
    # Queue
    "QueueOrchestrator",
    "QueueBusyError",
    "ReviewState",
    "build_due_queue",
    # Persistence
    "StateStore",
]
