"""Seed-file watcher: run a cycle on every rewrite of the dump.

The dump is usually replaced atomically rather than appended to, so the
watched inode disappears on every rewrite.  The supervisor treats that as a
normal transition and re-attaches once the path exists again::

    AWAITING_FILE --exists--> WATCHING --rename/remove--> REACQUIRING
                                 ^                             |
                                 +----------exists-------------+
"""

from __future__ import annotations

import contextlib
import enum
import logging
import os
import queue
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from watchfiles import Change
from watchfiles import watch as fs_watch

from nodeindexer.config import DEFAULT_DEBOUNCE_MS, DEFAULT_POLL_INTERVAL

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator
    from pathlib import Path

logger = logging.getLogger(__name__)


class WatchError(Exception):
    """Raised when the file-event subsystem fails; fatal to the process."""


class WatchState(enum.Enum):
    AWAITING_FILE = "awaiting-file"
    WATCHING = "watching"
    REACQUIRING = "reacquiring"


class WatchEventKind(enum.Enum):
    WRITE = "write"
    CREATE = "create"
    RENAME = "rename"
    REMOVE = "remove"
    ERROR = "error"


# Removal events end a watch handle, so they sort after content events.
_EVENT_ORDER = {
    WatchEventKind.WRITE: 0,
    WatchEventKind.CREATE: 0,
    WatchEventKind.RENAME: 1,
    WatchEventKind.REMOVE: 1,
    WatchEventKind.ERROR: 2,
}


@dataclass(frozen=True)
class WatchEvent:
    """A single typed event consumed by the supervisor's control loop."""

    kind: WatchEventKind
    path: str
    error: Exception | None = None

    @property
    def ends_watch(self) -> bool:
        return self.kind in (WatchEventKind.RENAME, WatchEventKind.REMOVE)


def _path_exists(path: Path) -> bool:
    """Existence check that only treats "not found" as absence."""
    try:
        os.stat(path)
    except FileNotFoundError:
        return False
    except OSError as exc:
        msg = f"Cannot stat {path}: {exc}"
        raise WatchError(msg) from exc
    return True


def classify_change(change: Change, path: Path) -> WatchEventKind:
    """Map a ``watchfiles`` change on *path* to a :class:`WatchEventKind`.

    A deletion while the path still exists means the file was replaced
    (renamed over); otherwise it was removed.
    """
    if change == Change.modified:
        return WatchEventKind.WRITE
    if change == Change.added:
        return WatchEventKind.CREATE
    return WatchEventKind.RENAME if _path_exists(path) else WatchEventKind.REMOVE


def to_events(batch: Iterable[tuple[Change, str]], path: Path) -> list[WatchEvent]:
    """Turn one ``watchfiles`` batch into ordered :class:`WatchEvent` objects."""
    events = [WatchEvent(classify_change(change, path), changed) for change, changed in batch]
    return sorted(events, key=lambda e: _EVENT_ORDER[e.kind])


class WatchSupervisor:
    """Owns the seed path and its watch handle for the process lifetime.

    Parameters
    ----------
    path:
        The dump file to watch.
    run_cycle:
        Called once per trigger; runs synchronously on the control loop.
    poll_interval:
        Seconds between existence checks while the path is missing.
    debounce_ms:
        ``watchfiles`` debounce window.
    stop_event:
        Set it to make :meth:`run` return.
    on_state:
        Called with every state the supervisor enters.
    watch_fn:
        Replacement for :func:`watchfiles.watch` (tests).
    """

    def __init__(
        self,
        path: Path,
        run_cycle: Callable[[], object],
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        stop_event: threading.Event | None = None,
        on_state: Callable[[WatchState], None] | None = None,
        watch_fn: Callable[..., Iterator[set[tuple[Change, str]]]] | None = None,
    ) -> None:
        self.path = path
        self._run_cycle = run_cycle
        self.poll_interval = poll_interval
        self.debounce_ms = debounce_ms
        self.stop_event = stop_event or threading.Event()
        self._on_state = on_state
        self._watch_fn = watch_fn or fs_watch
        self._events: queue.Queue[WatchEvent] = queue.Queue()
        self._producer: threading.Thread | None = None
        self.state: WatchState | None = None

    # -- public ------------------------------------------------------------

    def run(self) -> None:
        """Block until stopped; raise :class:`WatchError` on a fatal error.

        Every cycle that follows an attach runs only once the new watch is
        live, so a write that lands while the cycle reads the file still
        produces an event.
        """
        try:
            if _path_exists(self.path):
                reason = "initial load"
            else:
                self._enter(WatchState.AWAITING_FILE)
                logger.info("Waiting for %s to appear", self.path)
                if not self._wait_for_path():
                    return
                reason = "file appeared"
            self._attach()
            self._cycle(reason)

            while not self.stop_event.is_set():
                try:
                    event = self._events.get(timeout=self.poll_interval)
                except queue.Empty:
                    continue
                self._handle(event)
        finally:
            self.stop()

    def stop(self) -> None:
        self.stop_event.set()
        if self._producer is not None and self._producer is not threading.current_thread():
            self._producer.join(timeout=5.0)

    # -- control loop ------------------------------------------------------

    def _enter(self, state: WatchState) -> None:
        if state is self.state:
            return
        logger.debug("Watch state: %s -> %s", self.state, state)
        self.state = state
        if self._on_state is not None:
            self._on_state(state)

    def _cycle(self, reason: str) -> None:
        if self.stop_event.is_set():
            return
        if not _path_exists(self.path):
            # Unlinking emits an attribute change before the removal.
            logger.debug("Skipping %s cycle: %s is gone", reason, self.path)
            return
        logger.info("Running cycle (%s)", reason)
        self._run_cycle()

    def _handle(self, event: WatchEvent) -> None:
        kind = event.kind
        if kind is WatchEventKind.ERROR:
            msg = f"Watching {self.path} failed: {event.error}"
            raise WatchError(msg) from event.error
        logger.info("%s: %s", kind.value.capitalize(), event.path)
        if kind is WatchEventKind.WRITE:
            self._cycle("write")
        elif kind is WatchEventKind.RENAME:
            self._cycle("rename")
            self._reacquire()
        elif kind is WatchEventKind.REMOVE:
            self._reacquire()

    def _wait_for_path(self) -> bool:
        """Poll until the path exists; ``False`` if stopped first."""
        while not _path_exists(self.path):
            if self.stop_event.wait(self.poll_interval):
                return False
        return True

    def _reacquire(self) -> None:
        self._enter(WatchState.REACQUIRING)
        if self._producer is not None:
            self._producer.join()
            self._producer = None
        if not self._wait_for_path():
            return
        self._attach()
        self._cycle("re-attached")

    def _attach(self) -> None:
        """Start the producer and block until its watch is registered."""
        ready = threading.Event()
        self._producer = threading.Thread(
            target=self._produce,
            args=(ready,),
            name="seed-watcher",
            daemon=True,
        )
        self._producer.start()
        while not ready.wait(self.poll_interval):
            if self.stop_event.is_set():
                break
        self._enter(WatchState.WATCHING)

    # -- producer thread ---------------------------------------------------

    def _watch_iter(self) -> Iterator[set[tuple[Change, str]]]:
        # yield_on_timeout makes the first (possibly empty) batch arrive once
        # the notifier exists, which is the readiness signal for _attach.
        kwargs: dict[str, Any] = {
            "debounce": self.debounce_ms,
            "stop_event": self.stop_event,
            "watch_filter": None,
            "raise_interrupt": False,
            "rust_timeout": max(1, int(self.poll_interval * 1000)),
            "yield_on_timeout": True,
        }
        return self._watch_fn(self.path, **kwargs)

    def _produce(self, ready: threading.Event) -> None:
        """Forward ``watchfiles`` batches until the watched file goes away."""
        try:
            with contextlib.closing(self._watch_iter()) as batches:
                for batch in batches:
                    ready.set()
                    for event in to_events(batch, self.path):
                        self._events.put(event)
                        if event.ends_watch:
                            return
        except FileNotFoundError:
            # Vanished between the existence check and the attach.
            self._events.put(WatchEvent(WatchEventKind.REMOVE, str(self.path)))
        except Exception as exc:  # noqa: BLE001
            self._events.put(WatchEvent(WatchEventKind.ERROR, str(self.path), error=exc))
        finally:
            ready.set()
