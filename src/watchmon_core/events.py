"""Observer registration with synchronous fan-out."""

import asyncio
import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)


class EventEmitter:
    """Named-event observer registry.

    Every listener registered for an event is invoked per emit, in
    registration order, synchronously. Coroutine listeners are scheduled as
    tasks on the running loop. A failing listener is logged and does not
    stop the fan-out.
    """

    def __init__(self):
        self._listeners: dict[str, list[Callable]] = {}
        self._tasks: set[asyncio.Task] = set()

    def on(self, event: str, callback: Callable) -> Callable:
        """Register callback for event. Returns callback for later off()."""
        self._listeners.setdefault(event, []).append(callback)
        return callback

    def once(self, event: str, callback: Callable) -> Callable:
        """Register callback to be invoked on the next emit only."""

        def wrapper(*args):
            self.off(event, wrapper)
            return callback(*args)

        wrapper.__wrapped__ = callback
        return self.on(event, wrapper)

    def off(self, event: str, callback: Callable) -> None:
        """Remove a previously registered callback; unknown callbacks are ignored."""
        listeners = self._listeners.get(event, [])
        for registered in listeners:
            if registered == callback or getattr(registered, "__wrapped__", None) == callback:
                listeners.remove(registered)
                return

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    def emit(self, event: str, *args) -> bool:
        """Invoke all listeners of event.

        Returns:
            True if at least one listener was registered
        """
        listeners = list(self._listeners.get(event, []))
        for callback in listeners:
            try:
                if asyncio.iscoroutinefunction(callback):
                    task = asyncio.get_running_loop().create_task(callback(*args))
                    self._tasks.add(task)
                    task.add_done_callback(self._tasks.discard)
                else:
                    callback(*args)
            except Exception as e:
                logger.exception(f"Error in '{event}' listener {callback!r}: {e}")
        return bool(listeners)
