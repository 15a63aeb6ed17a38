"""
Line-oriented deck parsing.

A deck is a UTF-8 text file with one card per line, question and answer split
by the first separator found from CARD_SEPARATORS. Blank lines and lines
starting with '#' are ignored. Each line is judged on its own, so one bad line
never prevents the rest of the file from loading.
"""

import logging
from pathlib import Path
from typing import Iterator, NamedTuple, Optional, Tuple, Union

from .constants import CARD_SEPARATORS, COMMENT_PREFIX, MAX_FIELD_LENGTH
from .exceptions import DeckLoadError

logger = logging.getLogger(__name__)

REASON_INVALID_UTF8 = "Invalid UTF-8 encoding"
REASON_NO_SEPARATOR = (
    f"No valid separator found. Expected one of: {', '.join(CARD_SEPARATORS)}"
)
REASON_EMPTY_QUESTION = "Empty question part"
REASON_EMPTY_ANSWER = "Empty answer part"
REASON_TOO_LONG = (
    f"Question or answer exceeds {MAX_FIELD_LENGTH} characters - possible parsing error"
)


class CardLineError(ValueError):
    """A deck line that cannot become a card. The message is the reason."""


class ParsedLine(NamedTuple):
    """
    One physical line of a deck.

    Exactly one of these holds: the line is ignorable (question is None and
    reason is None), the line was rejected (reason is set), or it produced a
    card (question and answer are set).
    """

    line_number: int
    line: str
    question: Optional[str] = None
    answer: Optional[str] = None
    reason: Optional[str] = None

    @property
    def is_card(self) -> bool:
        return self.question is not None

    @property
    def is_rejected(self) -> bool:
        return self.reason is not None


def split_card_line(line: str) -> Tuple[str, str]:
    """
    Splits a trimmed, non-comment line into (question, answer).

    Raises:
        CardLineError: With the rejection reason as its message.
    """
    parts = None
    for separator in CARD_SEPARATORS:
        if separator in line:
            parts = line.split(separator)
            break

    if parts is None or len(parts) != 2:
        raise CardLineError(REASON_NO_SEPARATOR)

    question, answer = parts[0].strip(), parts[1].strip()
    if not question:
        raise CardLineError(REASON_EMPTY_QUESTION)
    if not answer:
        raise CardLineError(REASON_EMPTY_ANSWER)
    if len(question) > MAX_FIELD_LENGTH or len(answer) > MAX_FIELD_LENGTH:
        raise CardLineError(REASON_TOO_LONG)
    return question, answer


def parse_line(line_number: int, raw: bytes) -> ParsedLine:
    """Classify one raw line (without its line terminator)."""
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError:
        return ParsedLine(
            line_number,
            raw.decode("utf-8", errors="replace"),
            reason=REASON_INVALID_UTF8,
        )

    line = text.strip()
    if not line or line.startswith(COMMENT_PREFIX):
        return ParsedLine(line_number, line)

    try:
        question, answer = split_card_line(line)
    except CardLineError as e:
        return ParsedLine(line_number, line, reason=str(e))
    return ParsedLine(line_number, line, question=question, answer=answer)


def iter_deck(source: Union[str, Path]) -> Iterator[ParsedLine]:
    """
    Yields a ParsedLine for every physical line of `source`, in order.

    Raises:
        DeckLoadError: If the file cannot be opened or read.
    """
    path = Path(source)
    try:
        with open(path, "rb") as f:
            for line_number, raw in enumerate(f, start=1):
                yield parse_line(line_number, raw.rstrip(b"\r\n"))
    except FileNotFoundError:
        raise DeckLoadError(str(source), "File not found.") from None
    except OSError as e:
        raise DeckLoadError(str(source), f"Could not read file: {e}") from e
