"""Dump domain: peer records and the seed-file line parser."""

from nodeindexer.dump.parser import (
    ParseResult,
    RecordParseError,
    iter_records,
    parse_dump,
    parse_line,
)
from nodeindexer.dump.record import NodeRecord

__all__ = [
    "NodeRecord",
    "ParseResult",
    "RecordParseError",
    "iter_records",
    "parse_dump",
    "parse_line",
]
