"""Debounced change aggregation on top of watchdog observers."""

import asyncio
import logging
import os
from collections.abc import Iterable
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from watchmon_core.errors import WatchSetupError
from watchmon_core.events import EventEmitter
from watchmon_core.filters import PathFilter, display_path
from watchmon_core.models import ChangeKind, WatchTarget
from watchmon_core.watchers import ChangeCallback

logger = logging.getLogger(__name__)

_EVENT_KINDS = {
    "created": ChangeKind.RENAME,
    "deleted": ChangeKind.RENAME,
    "moved": ChangeKind.RENAME,
    "modified": ChangeKind.CHANGE,
}


class _ForwardingHandler(FileSystemEventHandler):
    """Forward watchdog events from observer threads to the event loop."""

    def __init__(self, aggregator: "ChangeAggregator", loop: asyncio.AbstractEventLoop):
        super().__init__()
        self.aggregator: ChangeAggregator | None = aggregator
        self.loop = loop

    def detach(self) -> None:
        self.aggregator = None

    def on_any_event(self, event: FileSystemEvent) -> None:
        aggregator = self.aggregator
        if aggregator is None or event.is_directory:
            return

        kind = _EVENT_KINDS.get(event.event_type)
        if kind is None:
            return

        paths = [event.src_path]
        if event.event_type == "moved":
            paths.append(event.dest_path)

        for path in paths:
            try:
                self.loop.call_soon_threadsafe(aggregator.handle, kind, os.fsdecode(path))
            except RuntimeError:
                # Loop already closed
                logger.debug(f"Dropped event for {path}: event loop closed")
                return


class ChangeAggregator:
    """Filter raw filesystem events and debounce them into change batches.

    All state is touched on the event loop thread only; watchdog threads
    hand events over with call_soon_threadsafe.

    Example:
        aggregator = ChangeAggregator(cwd=Path("/project"))
        aggregator.on_change(lambda paths, kind: print(paths))
        aggregator.start(config.targets(), config.path_filter(), debounce_ms=100)
        ...
        aggregator.close()
    """

    def __init__(self, cwd: Path | None = None, loop: asyncio.AbstractEventLoop | None = None):
        """Initialize aggregator.

        Args:
            cwd: Directory batch paths are reported relative to
            loop: Event loop for timers (default: the running loop at start())
        """
        self.cwd = Path(cwd or Path.cwd()).resolve()
        self._loop = loop
        self._emitter = EventEmitter()
        self._observers: list[Observer] = []
        self._handler: _ForwardingHandler | None = None
        self._filter = PathFilter()
        self._debounce_ms = 256
        self._pending: dict[str, None] = {}
        self._last_kind: ChangeKind | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._targets: frozenset[WatchTarget] = frozenset()
        self._started = False
        self._closed = False

    @property
    def targets(self) -> frozenset[WatchTarget]:
        return self._targets

    @property
    def pending(self) -> tuple[str, ...]:
        """Paths accumulated since the last emitted batch."""
        return tuple(self._pending)

    @property
    def is_active(self) -> bool:
        return self._started and not self._closed

    def start(
        self,
        targets: Iterable[WatchTarget],
        path_filter: PathFilter,
        debounce_ms: int = 256,
    ) -> "ChangeAggregator":
        """Open one recursive watch per target.

        Args:
            targets: Directories to watch
            path_filter: Filter applied to every raw event
            debounce_ms: Quiet period in milliseconds; 0 emits every event

        Returns:
            self, as the watch handle

        Raises:
            WatchSetupError: If any target cannot be watched; no watch is left open
            RuntimeError: If already started
        """
        if self._started:
            raise RuntimeError("Change aggregator already started")

        loop = self._loop or asyncio.get_running_loop()
        self._loop = loop
        self._filter = path_filter
        self._debounce_ms = debounce_ms
        self._targets = frozenset(targets)

        handler = _ForwardingHandler(self, loop)
        observers: list[Observer] = []
        try:
            for target in sorted(self._targets, key=str):
                if not target.path.is_dir():
                    reason = "not a directory" if target.path.exists() else "no such directory"
                    raise WatchSetupError(target.path, reason)
                observer = Observer()
                observer.schedule(handler, str(target.path), recursive=True)
                observer.start()
                observers.append(observer)
                logger.debug(f"Watching {target.path}")
        except WatchSetupError:
            handler.detach()
            self._stop_observers(observers)
            raise
        except OSError as e:
            handler.detach()
            self._stop_observers(observers)
            raise WatchSetupError(target.path, e.strerror or str(e)) from e

        self._handler = handler
        self._observers = observers
        self._started = True
        logger.info(f"Started {len(observers)} watcher(s) (debounce: {debounce_ms}ms)")
        return self

    def on_change(self, callback: ChangeCallback) -> None:
        """Register a batch-change listener: callback(paths, kind)."""
        self._emitter.on("change", callback)

    def close(self) -> None:
        """Release all watches and drop any pending batch. Idempotent."""
        if self._closed:
            return
        self._closed = True

        if self._handler:
            self._handler.detach()
            self._handler = None
        if self._timer:
            self._timer.cancel()
            self._timer = None
        self._pending.clear()

        self._stop_observers(self._observers)
        self._observers = []
        logger.debug("Change aggregator closed")

    def handle(self, kind: ChangeKind, path: str) -> None:
        """Process one raw event on the loop thread."""
        if not self.is_active:
            return

        display = display_path(path, self.cwd)
        if not self._filter.is_watched(display):
            return

        logger.debug(f"Change detected ({kind.value}): {display}")
        if not self._debounce_ms:
            self._emitter.emit("change", [display], kind)
            return

        self._pending[display] = None
        self._last_kind = kind
        if self._timer:
            self._timer.cancel()
        self._timer = self._loop.call_later(self._debounce_ms / 1000.0, self._flush)

    def _flush(self) -> None:
        self._timer = None
        if not self._pending:
            return
        paths = list(self._pending)
        self._pending.clear()
        logger.debug(f"Emitting batch of {len(paths)} change(s)")
        self._emitter.emit("change", paths, self._last_kind)

    @staticmethod
    def _stop_observers(observers: list[Observer]) -> None:
        for observer in observers:
            observer.unschedule_all()
            observer.stop()
        for observer in observers:
            if observer.is_alive():
                observer.join(timeout=2.0)
