"""Apply a reconcile plan to the index as one bulk request."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from nodeindexer.index.reconcile import Action

if TYPE_CHECKING:
    from nodeindexer.index.client import IndexClient
    from nodeindexer.index.reconcile import Instruction, ReconcilePlan

logger = logging.getLogger(__name__)

# How many item-level failures to spell out in the log.
_MAX_LOGGED_FAILURES = 5

NODE_MAPPING: dict[str, Any] = {
    "mappings": {
        "properties": {
            "address": {"type": "keyword"},
            "good": {"type": "boolean"},
            "lastSuccess": {"type": "date"},
            "lastSeen": {"type": "date"},
            "percent2h": {"type": "float"},
            "percent8h": {"type": "float"},
            "percent1d": {"type": "float"},
            "percent7d": {"type": "float"},
            "percent30d": {"type": "float"},
            "blocks": {"type": "long"},
            "services": {"type": "keyword"},
            "version": {"type": "keyword"},
            "userAgent": {"type": "keyword"},
            "userAgentVersion": {"type": "keyword"},
            "stale": {"type": "boolean"},
        }
    }
}


@dataclass
class BulkResult:
    """Summary of one bulk call."""

    sent: int = 0
    failed: list[tuple[str, str]] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return self.sent - len(self.failed)

    @property
    def has_errors(self) -> bool:
        return bool(self.failed)


def bulk_lines(index: str, instructions: list[Instruction]) -> list[dict[str, Any]]:
    """Translate instructions into alternating action/source bulk lines."""
    lines: list[dict[str, Any]] = []
    for instruction in instructions:
        meta = {"_index": index, "_id": instruction.address}
        if instruction.action is Action.INSERT:
            logger.debug("Inserting node %s", instruction.address)
            lines.append({"index": meta})
            lines.append(instruction.document)
        else:
            logger.debug("Updating node %s (%s)", instruction.address, instruction.action.value)
            lines.append({"update": meta})
            lines.append({"doc": instruction.document})
    return lines


def _item_failures(response: dict[str, Any]) -> list[tuple[str, str]]:
    failures: list[tuple[str, str]] = []
    for item in response.get("items") or []:
        for op_result in item.values():
            error = op_result.get("error")
            if not error:
                continue
            if isinstance(error, dict):
                reason = error.get("reason") or error.get("type")
            else:
                reason = error
            failures.append((str(op_result.get("_id", "")), str(reason)))
    return failures


class IndexWriter:
    """Writes reconciled node documents into one index."""

    def __init__(self, client: IndexClient, index: str) -> None:
        self.client = client
        self.index = index

    def ensure_index(self) -> bool:
        """Create the index with the node mapping if it is missing.

        Returns ``True`` when the index was created.
        """
        if self.client.index_exists(self.index):
            return False
        logger.info("Creating index %s", self.index)
        self.client.create_index(self.index, NODE_MAPPING)
        return True

    def write(self, plan: ReconcilePlan) -> BulkResult:
        """Send every instruction in *plan* as a single bulk request.

        Item-level failures are logged and returned, not raised; transport
        failures raise :class:`~nodeindexer.index.client.IndexTransportError`.
        """
        if plan.is_empty:
            return BulkResult()

        response = self.client.bulk(self.index, bulk_lines(self.index, plan.instructions))
        result = BulkResult(sent=len(plan.instructions))
        if response.get("errors"):
            result.failed = _item_failures(response)
            logger.warning(
                "Bulk write to %s had %d failed item(s)", self.index, len(result.failed)
            )
            for doc_id, reason in result.failed[:_MAX_LOGGED_FAILURES]:
                logger.warning("  %s: %s", doc_id, reason)
        return result
