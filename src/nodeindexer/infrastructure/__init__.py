"""Infrastructure domain: cycle orchestrator and seed-file watch supervisor."""

from nodeindexer.infrastructure.pipeline import CyclePipeline, CycleResult, CycleStatus
from nodeindexer.infrastructure.watcher import (
    WatchError,
    WatchEvent,
    WatchEventKind,
    WatchState,
    WatchSupervisor,
)

__all__ = [
    "CyclePipeline",
    "CycleResult",
    "CycleStatus",
    "WatchError",
    "WatchEvent",
    "WatchEventKind",
    "WatchState",
    "WatchSupervisor",
]
