"""
Card ingestion: loading decks into the active store and managing cards by hand.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional, Union

from .constants import REPORT_LINE_WIDTH, REPORT_MAX_ISSUES
from .exceptions import CardNotFoundError, DuplicateCardError, StorageError
from .models import Card, ParseIssue, ParseResult, PromptKind
from .parser import iter_deck
from .storage.base import StorageBackend

if TYPE_CHECKING:
    from .review_manager import ReviewStateManager

logger = logging.getLogger(__name__)

MANUAL_SOURCE = "manual"


class CardIngestor:
    """
    Turns deck files into stored cards and owns card CRUD.

    Cards are only ever added by a load or by add_card; a card accepted into
    the store is never rolled back because a later line failed.
    """

    def __init__(
        self,
        storage: StorageBackend,
        review_manager: Optional["ReviewStateManager"] = None,
    ):
        self.storage = storage
        self.review_manager = review_manager
        self.current_source: Optional[str] = None

    def load(self, source: Union[str, Path]) -> ParseResult:
        """
        Parse `source` line by line and store every new question/answer pair.

        Returns:
            The ParseResult for this load. Rejected lines and storage failures
            are recorded as issues; only an unreadable source raises.

        Raises:
            DeckLoadError: If the source cannot be opened or read.
        """
        source_name = str(source)
        result = ParseResult(source=source_name)
        logger.info(f"Loading deck from {source_name}")

        for parsed in iter_deck(source):
            result.total_lines += 1
            if parsed.is_rejected:
                result.issues.append(ParseIssue(parsed.line_number, parsed.line, parsed.reason))
                result.skipped_lines += 1
                logger.warning(f"{source_name}:{parsed.line_number} rejected: {parsed.reason}")
                continue
            if not parsed.is_card:
                continue

            card = Card(
                question=parsed.question,
                answer=parsed.answer,
                source_file=source_name,
                source_line=parsed.line_number,
            )
            result.cards.append(card)
            result.valid_cards += 1
            self._store_parsed_card(card, parsed.line, result)

        self.current_source = source_name
        logger.info(
            f"Loaded {source_name}: {result.valid_cards} valid, {result.stored_cards} new, "
            f"{result.duplicate_cards} already stored, {result.skipped_lines} skipped"
        )
        return result

    def _store_parsed_card(self, card: Card, line: str, result: ParseResult) -> None:
        try:
            exists = self.storage.card_exists(card.question, card.answer)
        except StorageError as e:
            result.issues.append(
                ParseIssue(card.source_line, line, f"Failed to check card existence: {e}")
            )
            return
        if exists:
            result.duplicate_cards += 1
            logger.debug(f"Skipping already stored card from {card.location_key}")
            return
        try:
            self.storage.add_card(card)
            result.stored_cards += 1
        except DuplicateCardError:
            result.duplicate_cards += 1
        except StorageError as e:
            result.issues.append(ParseIssue(card.source_line, line, f"Database import failed: {e}"))

    def add_card(
        self,
        question: str,
        answer: str,
        source_context: str = "",
        prompt_kind: PromptKind = PromptKind.FACTUAL,
        tags: Union[str, List[str]] = "",
    ) -> Card:
        """
        Add a single card entered by hand.

        Raises:
            ValueError: If question or answer is empty.
            DuplicateCardError: If the pair is already stored.
        """
        question, answer = question.strip(), answer.strip()
        if not question or not answer:
            raise ValueError("Question and answer cannot be empty.")
        if self.storage.card_exists(question, answer):
            raise DuplicateCardError("A card with this question and answer already exists.")

        source_file = self.current_source or MANUAL_SOURCE
        card = Card(
            question=question,
            answer=answer,
            source_file=source_file,
            source_line=self._next_free_line(source_file),
            source_context=source_context,
            prompt_kind=prompt_kind,
            tags=tags,
        )
        card = self.storage.add_card(card)
        logger.info(f"Added card {card.location_key}")
        return card

    def _next_free_line(self, source_file: str) -> int:
        lines = [c.source_line for c in self.storage.get_all_cards() if c.source_file == source_file]
        return max(lines, default=0) + 1

    def update_card(self, card_id: int, question: str, answer: str) -> Card:
        """
        Replace the text of a stored card.

        Raises:
            ValueError: If question or answer is empty.
            CardNotFoundError: If no card has this id.
        """
        if not question.strip() or not answer.strip():
            raise ValueError("Question and answer cannot be empty.")
        card = self.storage.get_card(card_id)
        if card is None:
            raise CardNotFoundError(f"Card {card_id} not found.")
        card.question = question
        card.answer = answer
        card.updated_at = datetime.now(timezone.utc)
        return self.storage.update_card(card)

    def delete_card(self, card_id: int) -> bool:
        """
        Delete a card and its review state. Returns False if the card did
        not exist.
        """
        if self.review_manager is not None:
            self.review_manager.delete_state(card_id)
        deleted = self.storage.delete_card(card_id)
        if not deleted:
            logger.info(f"Card {card_id} was already absent.")
        return deleted

    def get_cards(self) -> List[Card]:
        return self.storage.get_all_cards()


def format_parse_report(result: Optional[ParseResult], max_issues: int = REPORT_MAX_ISSUES) -> str:
    """Render a plain-text summary of a load, listing at most `max_issues` issues."""
    if result is None:
        return "No file has been parsed yet."

    lines = [
        "Parse Summary:",
        f"- Total lines processed: {result.total_lines}",
        f"- Valid cards created: {result.valid_cards}",
        f"- Lines skipped: {result.skipped_lines}",
    ]
    if result.issues:
        lines.append("")
        lines.append(f"Parsing Issues ({len(result.issues)}):")
        for issue in result.issues[:max_issues]:
            lines.append(
                f"  Line {issue.line_number}: {issue.display_line(REPORT_LINE_WIDTH)} - {issue.reason}"
            )
        if len(result.issues) > max_issues:
            lines.append(f"... and {len(result.issues) - max_issues} more errors")
    return "\n".join(lines) + "\n"
