"""Index domain: HTTP client, reconciliation and bulk writer."""

from nodeindexer.index.client import (
    IndexClient,
    IndexClientError,
    IndexNotFoundError,
    IndexReadError,
    IndexTransportError,
)
from nodeindexer.index.reconcile import (
    KNOWN_SET_LIMIT,
    RECENCY_WINDOW,
    Action,
    Instruction,
    KnownSet,
    ReconcilePlan,
    fetch_known,
    reconcile,
)
from nodeindexer.index.writer import BulkResult, IndexWriter

__all__ = [
    "KNOWN_SET_LIMIT",
    "RECENCY_WINDOW",
    "Action",
    "BulkResult",
    "IndexClient",
    "IndexClientError",
    "IndexNotFoundError",
    "IndexReadError",
    "IndexTransportError",
    "IndexWriter",
    "Instruction",
    "KnownSet",
    "ReconcilePlan",
    "fetch_known",
    "reconcile",
]
