"""
AlgoLingo Review: inspection CLI for the persisted review state.

Commands:
- algolingo-review due       - Show the review queue for today
- algolingo-review mistakes  - Show the mistake ledger
- algolingo-review preview   - Show what a score would do to an item's schedule
- algolingo-review record    - Commit a scored evaluation
- algolingo-review dedupe    - Collapse duplicate ledger entries
"""
from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from config import get_settings

from .ledger import active_mistakes
from .orchestrator import build_due_queue
from .scheduler import RetentionScheduler, SchedulerConfig
from .store import StateStore

app = typer.Typer(
    name="algolingo-review",
    help="AlgoLingo adaptive review engine",
    no_args_is_help=True,
)
console = Console()

_state: dict = {"state_dir": None}


def _store() -> StateStore:
    return StateStore(_state["state_dir"], get_settings().review_fingerprint_length)


def _scheduler() -> RetentionScheduler:
    return RetentionScheduler(SchedulerConfig(**get_settings().get_scheduler_config()))


def _fmt(ts: datetime) -> str:
    return ts.strftime("%Y-%m-%d %H:%M")


@app.callback()
def callback(
    state_dir: Optional[Path] = typer.Option(None, "--state-dir", help="Override the state directory"),
) -> None:
    _state["state_dir"] = state_dir


@app.command()
def due(limit: int = typer.Option(20, "--limit", "-n", help="Maximum items to show")) -> None:
    """Show the review queue for today."""
    store = _store()
    records = store.load_retention()
    now = datetime.now()
    queue = build_due_queue(records, now=now)[:limit]

    if not queue:
        console.print("[green]No reviews due.[/green]")
        return

    table = Table(title="Review Queue")
    table.add_column("Item")
    table.add_column("Interval", justify="right")
    table.add_column("Streak", justify="right")
    table.add_column("Next Review")
    table.add_column("Status")

    for item_id in queue:
        record = records.get(item_id)
        status = "[yellow]due[/yellow]" if RetentionScheduler.is_due(record, now) else "[dim]buffer[/dim]"
        table.add_row(
            item_id,
            f"{record.interval}d" if record else "new",
            str(record.streak) if record else "0",
            _fmt(record.next_review) if record else "-",
            status,
        )

    console.print(table)


@app.command()
def mistakes(
    item: Optional[str] = typer.Option(None, "--item", help="Only this item"),
    show_all: bool = typer.Option(False, "--all", help="Include resolved mistakes"),
) -> None:
    """Show the mistake ledger."""
    ledger = _store().load_mistakes()
    if show_all:
        rows = [m for m in ledger if item is None or m.item_id == item]
    else:
        rows = active_mistakes(ledger, item)

    if not rows:
        console.print("[green]No mistakes recorded.[/green]")
        return

    table = Table(title="Mistake Ledger")
    table.add_column("ID")
    table.add_column("Item")
    table.add_column("Kind")
    table.add_column("Context")
    table.add_column("Failures", justify="right")
    table.add_column("Last Seen")
    table.add_column("Resolved")

    for m in sorted(rows, key=lambda r: r.last_seen_at, reverse=True):
        table.add_row(
            m.id[:8],
            m.item_id,
            m.question_kind,
            m.context_snippet[:40],
            str(m.failure_count),
            _fmt(m.last_seen_at),
            "[green]yes[/green]" if m.is_resolved else "[red]no[/red]",
        )

    console.print(table)


@app.command()
def preview(
    item: str = typer.Argument(..., help="Practice item id"),
    quality: int = typer.Argument(..., min=0, max=3, help="Quality score 0-3"),
) -> None:
    """Show what scoring an item would do, without saving."""
    records = _store().load_retention()
    plan = _scheduler().preview(records.get(item), quality, item_id=item)

    if plan.is_due:
        console.print(
            f"[bold cyan]{item}[/bold cyan]: next review in [bold]{plan.next_interval}[/bold] days "
            f"({_fmt(plan.next_review)}), streak {plan.streak}"
        )
    else:
        console.print(
            f"[bold cyan]{item}[/bold cyan] is not due yet; practice will not move the schedule "
            f"(next review {_fmt(plan.next_review)})"
        )


@app.command()
def record(
    item: str = typer.Argument(..., help="Practice item id"),
    quality: int = typer.Argument(..., min=0, max=3, help="Quality score 0-3"),
    time_spent: int = typer.Option(0, "--time", help="Seconds spent"),
) -> None:
    """Commit a scored evaluation for an item."""
    store = _store()
    records = store.load_retention()
    updated = _scheduler().schedule(records.get(item), quality, time_spent_sec=time_spent, item_id=item)
    records[item] = updated
    store.save_retention(records)
    console.print(
        f"[green]Recorded[/green] {item}: interval {updated.interval}d, "
        f"next review {_fmt(updated.next_review)}"
    )


@app.command()
def dedupe() -> None:
    """Collapse duplicate ledger entries and save the result."""
    store = _store()
    raw_count = len(store.read("mistakes", []) or [])
    ledger = store.load_mistakes()
    store.save_mistakes(ledger)
    console.print(f"Ledger: {raw_count} -> {len(ledger)} records")


# =============================================================================
# Entry Point
# =============================================================================

def main() -> None:
    """CLI entry point."""
    settings = get_settings()
    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.log_level,
        format="<level>{message}</level>",
    )
    if settings.log_file:
        logger.add(settings.log_file, level=settings.log_level, rotation="10 MB")

    app()


if __name__ == "__main__":
    main()
