"""
CLI entry point for recallkit.
"""

# Standard library imports
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

# Third-party imports
import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

# Local application imports
from recallkit.cli.review_ui import start_review_flow
from recallkit.config import get_settings
from recallkit.context import StudyContext
from recallkit.exceptions import (
    CardNotFoundError,
    DeckLoadError,
    DuplicateCardError,
    StorageError,
)
from recallkit.ingestion import format_parse_report
from recallkit.migration import MigrationReport
from recallkit.models import DailyStats, PromptKind


console = Console()

app = typer.Typer(
    name="recallkit",
    help="Recallkit: spaced repetition for plain-text flashcard decks.",
    add_completion=False,
    rich_markup_mode="markdown",
)


# ---------------------------------------------------------------------------
# Common options and the study context
# ---------------------------------------------------------------------------

_db_option = typer.Option(  # noqa: B008
    None,
    "--db",
    help="Path to the DuckDB database file. "
    "Falls back to RECALLKIT_DB_PATH env var.",
    envvar="RECALLKIT_DB_PATH",
)

_backend_option = typer.Option(  # noqa: B008
    None,
    "--backend",
    help="Storage backend: `duckdb` or `file`. "
    "Falls back to RECALLKIT_BACKEND env var.",
    envvar="RECALLKIT_BACKEND",
)

_deck_option = typer.Option(  # noqa: B008
    None,
    "--deck",
    help="Deck file to load before running the command.",
)


@contextmanager
def _study_context(
    db: Optional[Path],
    backend: Optional[str],
    deck: Optional[Path] = None,
) -> Iterator[StudyContext]:
    """
    Build, open and finally close a StudyContext from CLI options.

    Opening the store is the only fatal startup step: any failure exits with
    code 1. On the database backend the legacy JSON files are imported first
    unless testing mode is on.
    """
    try:
        settings = get_settings(db_path=db, backend=backend)
    except ValidationError as e:
        console.print(f"[bold red]Invalid configuration:[/bold red] {e}")
        raise typer.Exit(code=1) from e

    ctx = StudyContext(settings)
    migrate = settings.backend == "duckdb" and not settings.testing_mode
    try:
        ctx.open(migrate=migrate)
    except StorageError as e:
        ctx.close()
        console.print(f"[bold red]Could not open the store:[/bold red] {e}")
        raise typer.Exit(code=1) from e

    try:
        if deck is not None:
            _load_deck(ctx, deck, quiet=True)
        yield ctx
    finally:
        ctx.close()


def _load_deck(ctx: StudyContext, deck: Path, quiet: bool = False):
    try:
        result = ctx.ingestor.load(deck)
    except DeckLoadError as e:
        console.print(f"[bold red]Error loading deck:[/bold red] {e}")
        raise typer.Exit(code=1) from e
    if not quiet or result.has_issues:
        console.print(format_parse_report(result), markup=False, end="")
    return result


# ---------------------------------------------------------------------------
# Card commands
# ---------------------------------------------------------------------------


@app.command()
def load(
    deck: Path = typer.Argument(..., help="Deck file, one `question >> answer` per line."),  # noqa: B008
    db: Optional[Path] = _db_option,
    backend: Optional[str] = _backend_option,
):
    """Parse a deck file and store every card that is not stored yet."""
    try:
        with _study_context(db, backend) as ctx:
            console.print(f"Loading deck from [cyan]{deck}[/cyan]...")
            result = _load_deck(ctx, deck)
            console.print("[bold green]Load complete![/bold green]")
            console.print(f"- [green]{result.stored_cards}[/green] new cards stored.")
            console.print(
                f"- [yellow]{result.duplicate_cards}[/yellow] cards were already stored."
            )
    except StorageError as e:
        console.print(f"[bold red]Database Error:[/bold red] {e}")
        raise typer.Exit(code=1) from e


@app.command()
def add(
    question: str = typer.Option(..., "--question", "-q", help="Question text."),
    answer: str = typer.Option(..., "--answer", "-a", help="Answer text."),
    context: str = typer.Option("", "--context", help="Where the card comes from."),
    kind: PromptKind = typer.Option(  # noqa: B008
        PromptKind.FACTUAL, "--kind", help="Kind of knowledge the card prompts for."
    ),
    tags: str = typer.Option("", "--tags", help="Comma-separated tags."),
    db: Optional[Path] = _db_option,
    backend: Optional[str] = _backend_option,
    deck: Optional[Path] = _deck_option,
):
    """Add a single card by hand."""
    try:
        with _study_context(db, backend, deck) as ctx:
            card = ctx.ingestor.add_card(
                question, answer, source_context=context, prompt_kind=kind, tags=tags
            )
            card_label = card.card_id if card.card_id is not None else card.location_key
            console.print(f"[bold green]Added card {card_label}.[/bold green]")
    except ValueError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1) from e
    except DuplicateCardError as e:
        console.print(f"[yellow]{e}[/yellow]")
        raise typer.Exit(code=1) from e
    except StorageError as e:
        console.print(f"[bold red]Database Error:[/bold red] {e}")
        raise typer.Exit(code=1) from e


@app.command()
def edit(
    card_id: int = typer.Argument(..., help="Id of the card to edit."),
    question: str = typer.Option(..., "--question", "-q", help="New question text."),
    answer: str = typer.Option(..., "--answer", "-a", help="New answer text."),
    db: Optional[Path] = _db_option,
):
    """Replace the question and answer of a stored card."""
    try:
        with _study_context(db, "duckdb") as ctx:
            card = ctx.ingestor.update_card(card_id, question, answer)
            console.print(f"[bold green]Updated card {card.card_id}.[/bold green]")
    except ValueError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1) from e
    except CardNotFoundError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1) from e
    except StorageError as e:
        console.print(f"[bold red]Database Error:[/bold red] {e}")
        raise typer.Exit(code=1) from e


@app.command()
def delete(
    card_id: int = typer.Argument(..., help="Id of the card to delete."),
    db: Optional[Path] = _db_option,
    yes: bool = typer.Option(
        False, "--yes", "-y", help="Bypass confirmation prompt."
    ),
):
    """Delete a card together with its review history."""
    try:
        with _study_context(db, "duckdb") as ctx:
            card = ctx.storage.get_card(card_id)
            if card is None:
                console.print(f"[bold red]Error: Card {card_id} not found.[/bold red]")
                raise typer.Exit(code=1)
            if not yes:
                question = card.question
                if len(question) > 100:
                    question = question[:97] + "..."
                confirmed = typer.confirm(
                    f"Delete card {card_id} ({question})? "
                    "This also removes its review data"
                )
                if not confirmed:
                    console.print("Delete cancelled.")
                    raise typer.Exit()
            ctx.ingestor.delete_card(card_id)
            console.print(f"[bold green]Deleted card {card_id}.[/bold green]")
    except StorageError as e:
        console.print(f"[bold red]Database Error:[/bold red] {e}")
        raise typer.Exit(code=1) from e


@app.command("list")
def list_cards(
    db: Optional[Path] = _db_option,
    backend: Optional[str] = _backend_option,
    deck: Optional[Path] = _deck_option,
):
    """List stored cards with their review status."""
    try:
        with _study_context(db, backend, deck) as ctx:
            cards = ctx.ingestor.get_cards()
            if not cards:
                console.print("[yellow]No cards found.[/yellow]")
                return

            table = Table(title=f"Cards ({len(cards)})")
            table.add_column("ID", style="dim")
            table.add_column("Question", style="cyan")
            table.add_column("Answer", style="magenta")
            table.add_column("Source")
            table.add_column("Reviews", justify="right")
            table.add_column("Due", style="yellow")
            for card in cards:
                state = ctx.review_manager.get_state(card)
                due = "now" if ctx.review_manager.is_due(card) else (
                    state.due.astimezone().strftime("%Y-%m-%d %H:%M")
                )
                table.add_row(
                    "" if card.card_id is None else str(card.card_id),
                    card.question,
                    card.answer,
                    card.location_key,
                    str(state.review_count),
                    due,
                )
            console.print(table)
    except StorageError as e:
        console.print(f"[bold red]Database Error:[/bold red] {e}")
        raise typer.Exit(code=1) from e


# ---------------------------------------------------------------------------
# Review command
# ---------------------------------------------------------------------------


@app.command()
def review(
    db: Optional[Path] = _db_option,
    backend: Optional[str] = _backend_option,
    deck: Optional[Path] = _deck_option,
):
    """Review every due card. The session is saved when the review ends."""
    try:
        with _study_context(db, backend, deck) as ctx:
            ctx.install_signal_handlers()
            start_review_flow(ctx)
            if ctx.stats_manager.has_active_session:
                today = ctx.stats_manager.end_session()
                _display_day(today)
    except StorageError as e:
        console.print(f"[bold red]Database Error:[/bold red] {e}")
        raise typer.Exit(code=1) from e


# ---------------------------------------------------------------------------
# Stats helpers & command
# ---------------------------------------------------------------------------


def _display_day(day: DailyStats):
    console.print(
        f"Today: [green]{day.cards_reviewed}[/green] cards "
        f"([cyan]{day.new_cards}[/cyan] new, {day.reviewed_cards} reviews) "
        f"in {day.session_minutes} min over {day.session_count} sessions."
    )


def _display_progress(ctx: StudyContext):
    progress = ctx.review_manager.get_progress(ctx.ingestor.get_cards())
    table = Table(title="Cards", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="magenta")
    table.add_row("Total Cards", str(progress.total))
    table.add_row("Due Now", str(progress.due))
    table.add_row("Reviewed At Least Once", str(progress.reviewed))
    console.print(table)


def _display_recent(days: List[DailyStats], title: str):
    table = Table(title=title)
    table.add_column("Date", style="cyan")
    table.add_column("Cards", justify="right")
    table.add_column("New", justify="right")
    table.add_column("Minutes", justify="right")
    table.add_column("Sessions", justify="right")
    for day in days:
        table.add_row(
            day.study_date.isoformat(),
            str(day.cards_reviewed),
            str(day.new_cards),
            str(day.session_minutes),
            str(day.session_count),
        )
    console.print(table)


def _display_totals(ctx: StudyContext):
    totals = ctx.stats_manager.get_all_time_stats()
    streak = ctx.stats_manager.get_learning_streak()
    table = Table(title="All Time", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="magenta")
    table.add_row("Cards Reviewed", str(totals.cards_reviewed))
    table.add_row("New Cards", str(totals.new_cards))
    table.add_row("Study Time (min)", str(totals.session_minutes))
    table.add_row("Sessions", str(totals.session_count))
    table.add_row("Current Streak", f"{streak.current_streak} days")
    table.add_row("Longest Streak", f"{streak.longest_streak} days")
    console.print(table)


@app.command()
def stats(
    db: Optional[Path] = _db_option,
    backend: Optional[str] = _backend_option,
    deck: Optional[Path] = _deck_option,
    month: bool = typer.Option(False, "--month", help="Show the last 30 days instead of 7."),
):
    """Display card progress and study statistics."""
    try:
        with _study_context(db, backend, deck) as ctx:
            _display_progress(ctx)
            _display_day(ctx.stats_manager.get_today_stats())
            if month:
                _display_recent(ctx.stats_manager.get_monthly_stats(), "Last 30 Days")
            else:
                _display_recent(ctx.stats_manager.get_weekly_stats(), "Last 7 Days")
            _display_totals(ctx)
    except StorageError as e:
        console.print(f"[bold red]A database error occurred: {e}[/bold red]")
        raise typer.Exit(code=1) from e


@app.command()
def export(
    output: Path = typer.Argument(..., help="CSV file to write."),  # noqa: B008
    db: Optional[Path] = _db_option,
    backend: Optional[str] = _backend_option,
):
    """Export the daily statistics to a CSV file."""
    try:
        with _study_context(db, backend) as ctx:
            count = ctx.stats_manager.export_to_csv(output)
            console.print(
                f"[bold green]Exported {count} days of statistics to {output}[/bold green]"
            )
    except StorageError as e:
        console.print(f"[bold]An error occurred during export: {e}[/bold]")
        raise typer.Exit(code=1) from e


# ---------------------------------------------------------------------------
# Maintenance commands
# ---------------------------------------------------------------------------


def _report_migration(report: MigrationReport):
    for backup in report.backups:
        console.print(f"Backed up to: [dim]{backup}[/dim]")
    console.print("[bold green]Migration complete![/bold green]")
    console.print(
        f"- Review states: [green]{report.states_migrated}[/green] migrated, "
        f"[yellow]{report.states_skipped}[/yellow] skipped."
    )
    console.print(
        f"- Daily stats: [green]{report.days_migrated}[/green] migrated, "
        f"[yellow]{report.days_skipped}[/yellow] skipped."
    )
    if report.streak_copied:
        console.print("- Learning streak copied.")
    for warning in report.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")


@app.command()
def migrate(
    db: Optional[Path] = _db_option,
    deck: Optional[List[Path]] = typer.Option(  # noqa: B008
        None,
        "--deck",
        help="Deck files whose cards the legacy state refers to. Repeatable.",
    ),
    state_file: Optional[Path] = typer.Option(None, "--state-file", help="Legacy state file."),
    stats_file: Optional[Path] = typer.Option(None, "--stats-file", help="Legacy stats file."),
):
    """Import the legacy JSON state and stats files into the database."""
    try:
        settings = get_settings(
            db_path=db,
            backend="duckdb",
            state_file=state_file,
            stats_file=stats_file,
        )
        with StudyContext(settings) as ctx:
            for path in deck or []:
                _load_deck(ctx, path, quiet=True)
            _report_migration(ctx.migrate_legacy())
    except StorageError as e:
        console.print(f"[bold red]Database Error:[/bold red] {e}")
        raise typer.Exit(code=1) from e


@app.command()
def reset(
    db: Optional[Path] = _db_option,
    backend: Optional[str] = _backend_option,
    yes: bool = typer.Option(
        False, "--yes", "-y", help="Bypass confirmation prompt."
    ),
):
    """Delete all sessions, daily statistics and the streak. Cards are kept."""
    if not yes:
        confirmed = typer.confirm(
            "Are you sure you want to delete all study statistics?"
        )
        if not confirmed:
            console.print("Reset cancelled.")
            raise typer.Exit()
    try:
        with _study_context(db, backend) as ctx:
            ctx.stats_manager.reset_statistics()
            console.print("[bold green]All statistics were reset.[/bold green]")
    except StorageError as e:
        console.print(f"[bold red]Database Error:[/bold red] {e}")
        raise typer.Exit(code=1) from e


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """
    Run the CLI application.

    If an unexpected exception occurs, print a bold red error message to the console and exit the process with status code 1.
    """
    try:
        app()
    except Exception as e:
        console.print(f"[bold red]UNEXPECTED ERROR: {e}[/bold red]")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
