"""Reconcile a freshly parsed batch against the recently indexed node set."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from nodeindexer.dump.record import format_timestamp, parse_timestamp, truncate_to_seconds
from nodeindexer.index.client import IndexNotFoundError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from nodeindexer.dump.record import NodeRecord
    from nodeindexer.index.client import IndexClient

logger = logging.getLogger(__name__)

RECENCY_WINDOW = timedelta(hours=24)

# Single bounded read; no pagination beyond this many documents.
KNOWN_SET_LIMIT = 10_000


class Action(enum.Enum):
    """What the index writer does with one document."""

    INSERT = "insert"
    UPDATE = "update"
    STALE = "stale"


@dataclass(frozen=True)
class Instruction:
    """One upsert addressed by ``_id = address``."""

    action: Action
    address: str
    document: dict[str, Any]


@dataclass
class ReconcilePlan:
    """Ordered upsert instructions for one cycle."""

    instructions: list[Instruction] = field(default_factory=list)
    duplicates: int = 0

    def _addresses(self, action: Action) -> list[str]:
        return [i.address for i in self.instructions if i.action is action]

    @property
    def inserts(self) -> list[str]:
        return self._addresses(Action.INSERT)

    @property
    def updates(self) -> list[str]:
        return self._addresses(Action.UPDATE)

    @property
    def stale(self) -> list[str]:
        return self._addresses(Action.STALE)

    @property
    def is_empty(self) -> bool:
        return not self.instructions


@dataclass(frozen=True)
class KnownSet:
    """Documents the index holds whose ``lastSeen`` falls in the recency window."""

    documents: dict[str, dict[str, Any]]
    total: int = 0

    @property
    def truncated(self) -> bool:
        """True when the index matched more documents than were returned."""
        return self.total > len(self.documents)


def recency_cutoff(now: datetime) -> datetime:
    return truncate_to_seconds(now) - RECENCY_WINDOW


def known_set_query(now: datetime) -> dict[str, Any]:
    """Search body for documents seen strictly after ``now - 24h``."""
    return {
        "size": KNOWN_SET_LIMIT,
        "query": {"range": {"lastSeen": {"gt": format_timestamp(recency_cutoff(now))}}},
    }


def _total_hits(hits: Mapping[str, Any]) -> int:
    total = hits.get("total", 0)
    if isinstance(total, dict):
        total = total.get("value", 0)
    try:
        return int(total)
    except (TypeError, ValueError):
        return 0


def fetch_known(client: IndexClient, index: str, now: datetime) -> KnownSet:
    """Read the known set with a single bounded search.

    A missing index is an empty known set; every other read failure
    propagates so the cycle aborts instead of treating all nodes as new.
    """
    try:
        data = client.search(index, known_set_query(now))
    except IndexNotFoundError:
        logger.info("Index %s does not exist yet; treating every node as new", index)
        return KnownSet(documents={})

    hits = data.get("hits") or {}
    documents: dict[str, dict[str, Any]] = {}
    for hit in hits.get("hits") or []:
        source = hit.get("_source") or {}
        address = source.get("address") or hit.get("_id")
        if not isinstance(address, str) or not address:
            logger.debug("Ignoring known hit without address: %s", hit.get("_id"))
            continue
        documents[address] = dict(source)

    known = KnownSet(documents=documents, total=max(_total_hits(hits), len(documents)))
    logger.info("Found %d known nodes", known.total)
    if known.truncated:
        logger.warning(
            "Known set capped at %d of %d documents; staleness may be incomplete",
            len(documents),
            known.total,
        )
    return known


def dedupe(batch: Iterable[NodeRecord]) -> tuple[dict[str, NodeRecord], int]:
    """Collapse repeated addresses; the last occurrence wins.

    Output keeps the position of each address's first occurrence.
    Returns ``(records_by_address, duplicate_count)``.
    """
    unique: dict[str, NodeRecord] = {}
    duplicates = 0
    for record in batch:
        if record.address in unique:
            duplicates += 1
            logger.debug("Duplicate address %s; keeping later line", record.address)
        unique[record.address] = record
    return unique, duplicates


def _seen_at(now: datetime, known_doc: Mapping[str, Any] | None) -> datetime:
    """Cycle time, unless the index already holds a later ``lastSeen``."""
    if known_doc is None:
        return now
    indexed = parse_timestamp(known_doc.get("lastSeen"))
    if indexed is not None and indexed > now:
        return indexed
    return now


def reconcile(
    batch: Iterable[NodeRecord],
    known: Mapping[str, Mapping[str, Any]],
    now: datetime,
) -> ReconcilePlan:
    """Compute insert, update and staleness instructions for one cycle.

    Parameters
    ----------
    batch:
        Freshly parsed records in dump order.
    known:
        Indexed documents within the recency window, keyed by address.
    now:
        Cycle time; truncated to whole seconds in UTC.
    """
    now = truncate_to_seconds(now)
    records, duplicates = dedupe(batch)
    plan = ReconcilePlan(duplicates=duplicates)

    for address, record in records.items():
        known_doc = known.get(address)
        observed = record.observed(_seen_at(now, known_doc))
        action = Action.INSERT if known_doc is None else Action.UPDATE
        plan.instructions.append(Instruction(action, address, observed.to_document()))

    for address in known:
        if address not in records:
            plan.instructions.append(Instruction(Action.STALE, address, {"stale": True}))

    return plan
