"""Seed dump parser: one whitespace-separated line per peer."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from nodeindexer.dump.record import NodeRecord

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger(__name__)

# address good lastSuccess 2h 8h 1d 7d 30d blocks svcs version "agent"
FIELD_COUNT = 12

_COMMENT_TOKEN = "#"
_NON_NUMERIC_RE = re.compile(r"[^0-9.]+")
_USER_AGENT_TRIM = "\"/"


class RecordParseError(ValueError):
    """Raised when a well-shaped dump line carries unparseable numbers."""


@dataclass
class ParseResult:
    """Outcome of parsing a whole dump."""

    records: list[NodeRecord] = field(default_factory=list)
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.records


def _clean_number(token: str) -> str:
    """Drop everything except digits and dots (``"99.5%"`` -> ``"99.5"``)."""
    return _NON_NUMERIC_RE.sub("", token)


def _parse_percent(token: str, name: str) -> float:
    try:
        return float(_clean_number(token))
    except ValueError:
        msg = f"invalid {name} value {token!r}"
        raise RecordParseError(msg) from None


def _parse_int(token: str, name: str) -> int:
    # int() also takes "1_000" and non-ASCII digits; the dump format does not.
    if not token.isascii() or "_" in token:
        msg = f"invalid {name} value {token!r}"
        raise RecordParseError(msg)
    try:
        return int(token, 10)
    except ValueError:
        msg = f"invalid {name} value {token!r}"
        raise RecordParseError(msg) from None


def _parse_epoch(token: str) -> datetime:
    seconds = _parse_int(token, "lastSuccess")
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        msg = f"lastSuccess out of range {token!r}"
        raise RecordParseError(msg) from None


def split_line(line: str) -> list[str] | None:
    """Return the tokens of a record line, or ``None`` if it is not one.

    Blank lines, comments (first token ``#``) and lines that do not carry
    exactly :data:`FIELD_COUNT` tokens are not records.
    """
    tokens = line.split()
    if not tokens or tokens[0] == _COMMENT_TOKEN:
        return None
    if len(tokens) != FIELD_COUNT:
        return None
    return tokens


def parse_line(line: str) -> NodeRecord | None:
    """Parse a single dump line.

    Returns ``None`` for lines that are not records (see :func:`split_line`).

    Raises
    ------
    RecordParseError
        If the line has the right shape but a numeric field is malformed.
    """
    tokens = split_line(line)
    if tokens is None:
        return None

    user_agent = tokens[11].strip(_USER_AGENT_TRIM)
    return NodeRecord(
        address=tokens[0],
        good=tokens[1] == "1",
        last_success=_parse_epoch(tokens[2]),
        percent_2h=_parse_percent(tokens[3], "percent2h"),
        percent_8h=_parse_percent(tokens[4], "percent8h"),
        percent_1d=_parse_percent(tokens[5], "percent1d"),
        percent_7d=_parse_percent(tokens[6], "percent7d"),
        percent_30d=_parse_percent(tokens[7], "percent30d"),
        blocks=_parse_int(tokens[8], "blocks"),
        services=tokens[9],
        version=tokens[10],
        user_agent=user_agent,
        user_agent_version=_clean_number(user_agent),
    )


def parse_dump(text: str) -> ParseResult:
    """Parse the full dump text, skipping non-record and malformed lines.

    A malformed line is logged and recorded in :attr:`ParseResult.errors`;
    it never stops the remaining lines from being parsed.
    """
    result = ParseResult()
    for lineno, line in enumerate(text.splitlines(), start=1):
        logger.debug("Working on line %d: %s", lineno, line)
        try:
            record = parse_line(line)
        except RecordParseError as exc:
            logger.warning("Skipping line %d: %s", lineno, exc)
            result.errors.append(f"line {lineno}: {exc}")
            continue
        if record is None:
            result.skipped += 1
            continue
        result.records.append(record)
    return result


def iter_records(text: str) -> Iterator[NodeRecord]:
    """Lazily yield the well-formed records of *text*."""
    for lineno, line in enumerate(text.splitlines(), start=1):
        try:
            record = parse_line(line)
        except RecordParseError as exc:
            logger.warning("Skipping line %d: %s", lineno, exc)
            continue
        if record is not None:
            yield record
