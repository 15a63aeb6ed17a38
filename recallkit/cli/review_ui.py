"""
Command-line interface for reviewing flashcards.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from rich.console import Console
from rich.panel import Panel

from recallkit.context import StudyContext
from recallkit.exceptions import StorageError
from recallkit.models import Card, Rating
from recallkit.review_manager import ReviewQueue

logger = logging.getLogger(__name__)
console = Console()

QUIT_KEYS = ("q", "quit")


def _get_user_rating() -> Optional[Rating]:
    """
    Prompt until the user enters a rating from 1 to 4, or 'q' to stop.

    Returns:
        The chosen Rating, or None when the user quits.
    """
    while True:
        answer = console.input(
            "[bold]Rating (1:Again, 2:Hard, 3:Good, 4:Easy, q:Quit): [/bold]"
        ).strip().lower()
        if answer in QUIT_KEYS:
            return None
        try:
            rating = int(answer)
        except ValueError:
            console.print("[bold red]Invalid input. Please enter a number.[/bold red]")
            continue
        if 1 <= rating <= 4:
            return Rating(rating)
        console.print(
            "[bold red]Invalid rating. Please enter a number between 1 and 4.[/bold red]"
        )


def _display_card(card: Card) -> None:
    """Show the question, wait for Enter, then reveal the answer."""
    subtitle = card.source_context or None
    console.print(Panel(card.question, title="Question", subtitle=subtitle, border_style="green"))
    console.input("[italic]Press Enter to see the answer...[/italic]")
    console.print(Panel(card.answer, title="Answer", border_style="blue"))


def _describe_due(due: datetime) -> str:
    delta = due - datetime.now(timezone.utc)
    minutes = int(delta.total_seconds() // 60)
    if minutes < 60:
        return f"in {max(minutes, 1)} min"
    if minutes < 24 * 60:
        return f"in {minutes // 60} h"
    days = round(delta.total_seconds() / 86400)
    return f"in {days} days on {due.astimezone().strftime('%Y-%m-%d')}"


def start_review_flow(ctx: StudyContext) -> int:
    """
    Review due cards until none are left or the user quits.

    The due set is recomputed after every rating. The session is ended by
    the caller when the context closes.

    Returns:
        The number of cards rated.
    """
    queue = ReviewQueue(ctx.review_manager, ctx.ingestor.get_cards)
    if not queue.initial_due_count:
        console.print("[bold yellow]No cards are due for review.[/bold yellow]")
        console.print("[bold cyan]Review session finished.[/bold cyan]")
        return 0

    console.print(
        f"[bold cyan]Starting review session: {queue.initial_due_count} cards due.[/bold cyan]"
    )
    rated = 0
    while (card := queue.next_card()) is not None:
        console.rule(f"[bold]Card {rated + 1} • {len(queue)} due[/bold]")
        _display_card(card)
        rating = _get_user_rating()
        if rating is None:
            break

        try:
            is_new = ctx.review_manager.is_new_card(card)
            state = ctx.review_manager.apply_rating(card, rating)
        except StorageError as e:
            logger.error(f"Failed to record review for {card.location_key}: {e}")
            console.print(
                "[bold red]Error saving review. Card will be reviewed again later.[/bold red]"
            )
            queue.refresh()
            continue

        try:
            ctx.stats_manager.record_review(is_new)
        except StorageError as e:
            logger.error(f"Failed to update session statistics for {card.location_key}: {e}")
            console.print(
                "[bold yellow]Review saved, but session statistics could not be updated.[/bold yellow]"
            )

        rated += 1
        console.print(f"[green]Reviewed.[/green] Next due {_describe_due(state.due)}.")
        console.print("")
        queue.refresh()

    console.print(f"[bold cyan]Review session finished. {rated} cards reviewed.[/bold cyan]")
    return rated
