"""
Typer CLI for the practice engine.

Commands:
    practice db init                    - Initialize database tables
    practice items import FILE          - Import item metadata from a JSON file
    practice start LEARNER              - Start (or resume) a practice session
    practice answer SESSION ITEM ANSWER - Submit an answer
    practice state SESSION              - Show live session state
    practice end SESSION                - End a session and show the summary
    practice mastery LEARNER            - Show per-skill mastery
    practice streaks LEARNER            - Show streak statistics
    practice mistakes LEARNER           - Show latest wrong answers
    practice reset LEARNER              - Reset spaced-repetition history
    practice goal show LEARNER          - Show daily goal progress
    practice goal set LEARNER TARGET    - Set daily question target (1-100)

Usage:
    practice db init
    practice items import items.json
    practice start alice --category math --domain algebra
    practice answer 3f2c... q-17 B --time-ms 42000
"""

from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import NoReturn

import typer
from loguru import logger
from pydantic import BaseModel, Field, TypeAdapter, ValidationError
from rich import print as rprint
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from practice_engine.config import configure_logging, get_settings
from practice_engine.core.errors import PracticeEngineError
from practice_engine.core.mastery import MasteryLevel
from practice_engine.db.database import get_session_factory, init_db, session_scope
from practice_engine.db.repository import SqlItemCatalog
from practice_engine.learning.items import PracticeItem
from practice_engine.study.session_coordinator import SessionCoordinator

app = typer.Typer(
    help="practice-engine CLI: adaptive practice scheduling (SM-2 + skill mastery)",
    no_args_is_help=True,
)

console = Console()


@app.callback()
def main_callback() -> None:
    """Adaptive practice scheduler."""
    configure_logging(get_settings())


def _coordinator() -> SessionCoordinator:
    return SessionCoordinator(session_factory=get_session_factory())


def _fail(error: PracticeEngineError) -> NoReturn:
    rprint(f"[red]✗[/red] {escape(str(error))}")
    if error.retryable:
        rprint("[dim]  The operation was rolled back and can be retried.[/dim]")
    raise typer.Exit(code=1)


def _level_text(level: MasteryLevel) -> str:
    return f"[{level.color}]{level.display_name}[/{level.color}]"


# ========================================
# DATABASE / CONTENT COMMANDS
# ========================================

db_app = typer.Typer(help="Database management")
app.add_typer(db_app, name="db")


@db_app.command("init")
def db_init() -> None:
    """
    Initialize database tables from SQLAlchemy models.

    Safe to run multiple times (idempotent).
    """
    logger.info("Initializing database tables...")
    init_db()
    rprint("[green]✓[/green] Database initialized!")


items_app = typer.Typer(help="Content pool item metadata")
app.add_typer(items_app, name="items")


class ItemImport(BaseModel):
    """One item as provided by the content pool export."""

    id: str = Field(..., min_length=1)
    category: str
    domain: str
    skill: str
    difficulty: float = Field(..., ge=1, le=3)
    correct_answer: str

    def to_item(self) -> PracticeItem:
        return PracticeItem(**self.model_dump())


@items_app.command("import")
def items_import(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON array of items"),
) -> None:
    """Import (or refresh) item metadata: id, category, domain, skill, difficulty, correct_answer."""
    try:
        records = TypeAdapter(list[ItemImport]).validate_json(path.read_bytes())
    except ValidationError as e:
        rprint(f"[red]✗[/red] Invalid item file {path}:\n{escape(str(e))}")
        raise typer.Exit(code=1)

    with session_scope(get_session_factory()) as db:
        count = SqlItemCatalog(db).upsert_items(r.to_item() for r in records)

    logger.info(f"Imported {count} items from {path}")
    rprint(f"[green]✓[/green] Imported {count} items")


# ========================================
# SESSION COMMANDS
# ========================================


@app.command("start")
def start(
    learner_id: str = typer.Argument(..., help="Learner identifier"),
    category: str | None = typer.Option(None, "--category", "-c", help="Restrict to a category"),
    domain: str | None = typer.Option(None, "--domain", "-d", help="Restrict to a domain"),
) -> None:
    """Start a practice session, or resume the active one."""
    try:
        result = _coordinator().start_session(learner_id, category=category, domain=domain)
    except PracticeEngineError as e:
        _fail(e)

    verb = "Resumed" if result.is_resumed else "Started"
    rprint(f"[green]✓[/green] {verb} session [bold]{result.session_id}[/bold]")
    if result.first_item_id is None:
        rprint("[yellow]⚠[/yellow] No items match this scope")
    else:
        rprint(f"  Current item: [cyan]{result.first_item_id}[/cyan]")


@app.command("answer")
def answer(
    session_id: str = typer.Argument(..., help="Session identifier"),
    item_id: str = typer.Argument(..., help="Item being answered"),
    selected_answer: str = typer.Argument(..., help="Selected answer"),
    time_ms: int = typer.Option(0, "--time-ms", min=0, help="Time spent on the item"),
    token: str | None = typer.Option(None, "--token", help="Idempotency token"),
) -> None:
    """Submit an answer and show the next item."""
    try:
        result = _coordinator().submit_answer(
            session_id, item_id, selected_answer, time_ms, submission_token=token
        )
    except PracticeEngineError as e:
        _fail(e)

    if result.is_correct:
        rprint("[green]✓ Correct![/green]")
    else:
        rprint(f"[red]✗ Incorrect[/red] (answer: [bold]{result.correct_answer}[/bold])")

    rprint(
        f"  Mastery: {_level_text(result.mastery_level)} "
        f"{result.mastery_points} pts ({result.point_change:+d})"
    )
    rprint(
        f"  Streak: {result.current_streak} "
        f"[dim](session {result.session_streak}, best {result.best_streak})[/dim]"
    )
    if result.next_item_id is None:
        rprint("[yellow]⚠[/yellow] No further items in scope")
    else:
        rprint(f"  Next item: [cyan]{result.next_item_id}[/cyan]")


@app.command("state")
def state(session_id: str = typer.Argument(..., help="Session identifier")) -> None:
    """Show live session state."""
    try:
        view = _coordinator().get_session_state(session_id)
    except PracticeEngineError as e:
        _fail(e)

    table = Table(title=f"Session {view.session_id}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Status", view.status)
    table.add_row("Answered", str(view.questions_answered))
    table.add_row("Correct", str(view.correct_answers))
    table.add_row("Accuracy", f"{view.accuracy}%")
    table.add_row("Current streak", str(view.current_streak))
    table.add_row("Session streak", str(view.session_streak))
    table.add_row("Best streak", str(view.best_streak))
    table.add_row("Current item", view.current_item_id or "-")
    console.print(table)


@app.command("end")
def end(session_id: str = typer.Argument(..., help="Session identifier")) -> None:
    """End a session and show the final tallies."""
    try:
        summary = _coordinator().end_session(session_id)
    except PracticeEngineError as e:
        _fail(e)

    rprint("[green]✓[/green] Session ended")
    rprint(
        f"  {summary.correct_answers}/{summary.questions_answered} correct "
        f"({summary.accuracy:.0%}), session streak {summary.session_streak}, "
        f"best streak {summary.best_streak}"
    )


# ========================================
# PROGRESS COMMANDS
# ========================================


@app.command("mastery")
def mastery(learner_id: str = typer.Argument(..., help="Learner identifier")) -> None:
    """Show per-skill mastery."""
    entries = _coordinator().get_mastery_overview(learner_id)
    if not entries:
        rprint(f"[yellow]⚠[/yellow] No practice recorded for {learner_id}")
        return

    table = Table(title=f"Skill Mastery: {learner_id}")
    table.add_column("Category", style="dim")
    table.add_column("Domain")
    table.add_column("Skill", style="cyan")
    table.add_column("Level")
    table.add_column("Points", justify="right")
    table.add_column("Accuracy", justify="right")
    for entry in entries:
        accuracy = (
            f"{entry.correct_answers / entry.total_questions:.0%}" if entry.total_questions else "-"
        )
        table.add_row(
            entry.category,
            entry.domain,
            entry.skill,
            _level_text(entry.mastery_level),
            str(entry.mastery_points),
            accuracy,
        )
    console.print(table)


@app.command("streaks")
def streaks(learner_id: str = typer.Argument(..., help="Learner identifier")) -> None:
    """Show streak statistics."""
    stats = _coordinator().get_streak_stats(learner_id)
    rprint(
        f"Current streak: [bold]{stats.current_streak}[/bold]  "
        f"Best: [bold]{stats.best_streak}[/bold]  "
        f"Sessions: {stats.total_sessions}"
    )


@app.command("mistakes")
def mistakes(
    learner_id: str = typer.Argument(..., help="Learner identifier"),
    category: str | None = typer.Option(None, "--category", "-c"),
    domain: str | None = typer.Option(None, "--domain", "-d"),
    limit: int = typer.Option(20, "--limit", "-n", min=1),
) -> None:
    """Show the latest wrong answer per item."""
    page = _coordinator().get_wrong_answers(learner_id, category, domain, limit=limit)
    if not page.wrong_answers:
        rprint("[green]✓[/green] No wrong answers to review")
        return

    table = Table(title=f"Wrong answers ({page.total})")
    table.add_column("Item", style="cyan")
    table.add_column("Skill")
    table.add_column("Yours", style="red")
    table.add_column("Correct", style="green")
    table.add_column("Improved")
    for entry in page.wrong_answers:
        table.add_row(
            entry.item_id,
            entry.skill,
            entry.selected_answer,
            entry.correct_answer,
            "yes" if entry.has_improved else "no",
        )
    console.print(table)


@app.command("reset")
def reset(
    learner_id: str = typer.Argument(..., help="Learner identifier"),
    item_id: str | None = typer.Option(None, "--item", help="Reset only this item"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Reset spaced-repetition history (mastery is kept)."""
    scope = f"item {item_id}" if item_id else "all items"
    if not yes and not typer.confirm(f"Reset review history for {learner_id} ({scope})?"):
        raise typer.Abort()

    try:
        deleted = _coordinator().reset_review_history(learner_id, item_id)
    except PracticeEngineError as e:
        _fail(e)
    rprint(f"[green]✓[/green] Removed {deleted} review records")


# ========================================
# DAILY GOAL COMMANDS
# ========================================

goal_app = typer.Typer(help="Daily question goals")
app.add_typer(goal_app, name="goal")


@goal_app.command("show")
def goal_show(
    learner_id: str = typer.Argument(..., help="Learner identifier"),
    on: str | None = typer.Option(None, "--date", help="Day as YYYY-MM-DD (default: today, UTC)"),
) -> None:
    """Show progress towards the daily goal."""
    try:
        goal_date = date.fromisoformat(on) if on else None
    except ValueError:
        rprint(f"[red]✗[/red] Invalid date {escape(str(on))}, expected YYYY-MM-DD")
        raise typer.Exit(code=1)

    progress = _coordinator().get_daily_goal_progress(learner_id, goal_date)

    status = "[green]met[/green]" if progress.met else "[yellow]in progress[/yellow]"
    rprint(
        f"{progress.goal_date}: {progress.answered}/{progress.target} "
        f"({progress.progress}%) {status}"
    )
    rprint(f"  Accuracy: {progress.accuracy}% ({progress.correct_answers} correct)")


@goal_app.command("set")
def goal_set(
    learner_id: str = typer.Argument(..., help="Learner identifier"),
    target: int = typer.Argument(..., help="Questions per day (clamped to 1-100)"),
) -> None:
    """Set the daily question target."""
    try:
        stored = _coordinator().set_daily_goal_target(learner_id, target)
    except PracticeEngineError as e:
        _fail(e)

    note = f" [dim](clamped from {target})[/dim]" if stored != target else ""
    rprint(f"[green]✓[/green] Daily target set to {stored}{note}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
