"""Cycle orchestrator: parse the dump, reconcile, and bulk-write."""

from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from nodeindexer.dump.parser import parse_dump
from nodeindexer.index.client import IndexClientError
from nodeindexer.index.reconcile import fetch_known, reconcile

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from nodeindexer.index.writer import IndexWriter

logger = logging.getLogger(__name__)


class CycleStatus(enum.Enum):
    INDEXED = "indexed"
    NOTHING_TO_DO = "nothing-to-do"
    NO_FILE = "no-file"
    FAILED = "failed"


@dataclass
class CycleResult:
    """Summary of one parse/reconcile/write cycle."""

    status: CycleStatus
    parsed: int = 0
    skipped: int = 0
    bad_lines: int = 0
    duplicates: int = 0
    inserted: int = 0
    updated: int = 0
    marked_stale: int = 0
    failed_items: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status is not CycleStatus.FAILED


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class CyclePipeline:
    """Runs cycles for one seed file against one index.

    Cycles are serialized: a second caller blocks until the running cycle
    has finished.
    """

    def __init__(
        self,
        seed_file: Path,
        writer: IndexWriter,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.seed_file = seed_file
        self.writer = writer
        self._clock = clock
        self._lock = threading.Lock()

    def run_cycle(self) -> CycleResult:
        with self._lock:
            return self._run()

    def _run(self) -> CycleResult:
        logger.info("Parsing file: %s", self.seed_file)
        try:
            text = self.seed_file.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            logger.warning("Failed to locate dump %s: %s", self.seed_file, exc)
            return CycleResult(status=CycleStatus.NO_FILE, errors=[str(exc)])

        parsed = parse_dump(text)
        result = CycleResult(
            status=CycleStatus.NOTHING_TO_DO,
            parsed=len(parsed.records),
            skipped=parsed.skipped,
            bad_lines=len(parsed.errors),
            errors=list(parsed.errors),
        )
        if parsed.is_empty:
            logger.info("Didn't find any nodes in %s", self.seed_file)
            return result

        logger.info("Found %d nodes", result.parsed)
        now = self._clock()
        index = self.writer.index
        try:
            known = fetch_known(self.writer.client, index, now)
        except IndexClientError as exc:
            logger.error("Reading known nodes from %s failed: %s", index, exc)
            result.status = CycleStatus.FAILED
            result.errors.append(str(exc))
            return result

        plan = reconcile(parsed.records, known.documents, now)
        result.duplicates = plan.duplicates
        try:
            bulk = self.writer.write(plan)
        except IndexClientError as exc:
            logger.error("Bulk write to %s failed: %s", index, exc)
            result.status = CycleStatus.FAILED
            result.errors.append(str(exc))
            return result

        result.status = CycleStatus.INDEXED
        result.inserted = len(plan.inserts)
        result.updated = len(plan.updates)
        result.marked_stale = len(plan.stale)
        result.failed_items = len(bulk.failed)
        result.errors.extend(f"{doc_id}: {reason}" for doc_id, reason in bulk.failed)
        logger.info(
            "Indexed %d new, %d updated, %d stale (%d failed)",
            result.inserted,
            result.updated,
            result.marked_stale,
            result.failed_items,
        )
        return result
