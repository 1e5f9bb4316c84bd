"""Composition root wiring the change aggregator into the supervisor. Primary embed point."""

import asyncio
import logging
import signal as signal_module
import threading
from collections.abc import Callable
from signal import Signals
from typing import Any

from watchmon_core.config import WatchmonConfig
from watchmon_core.models import ChangeKind, LaunchMode, SupervisorState
from watchmon_core.notifier import NoOpNotifier, WatchmonNotifier

from watchmon.aggregator import ChangeAggregator
from watchmon.process import ManagedProcess
from watchmon.supervisor import ProcessSupervisor

logger = logging.getLogger(__name__)

TERMINATION_SIGNALS = (Signals.SIGINT, Signals.SIGTERM)


class SupervisorService:
    """Watch files and keep one child process running, restarting on change.

    Usage (embedded):
        service = SupervisorService(WatchmonConfig(mode="spawn", command="./serve"))
        service.on("error", lambda err, proc: print(err))
        await service.start()  # settles only after close()
    """

    def __init__(
        self,
        config: WatchmonConfig | None = None,
        notifier: WatchmonNotifier | None = None,
    ):
        """Initialize service.

        Args:
            config: Full configuration (defaults to WatchmonConfig())
            notifier: Optional notification handler (defaults to NoOpNotifier - silent)
        """
        self.config = config or WatchmonConfig()
        self.notifier = notifier or NoOpNotifier()
        self.aggregator: ChangeAggregator | None = None
        self.supervisor = ProcessSupervisor(self.config)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._installed_signals: dict[Signals, Any] = {}
        self._started = False

        self.supervisor.on("spawn", self._report_spawn)
        self.supervisor.on("error", self._report_error)

    @property
    def state(self) -> SupervisorState:
        return self.supervisor.state

    @property
    def process(self) -> ManagedProcess | None:
        return self.supervisor.process

    def on(self, event: str, callback: Callable) -> Callable:
        """Register an observer on the supervisor's events."""
        return self.supervisor.on(event, callback)

    def once(self, event: str, callback: Callable) -> Callable:
        return self.supervisor.once(event, callback)

    def off(self, event: str, callback: Callable) -> None:
        self.supervisor.off(event, callback)

    def start(self) -> asyncio.Future:
        """Start watching and spawn the child.

        Idempotent: later calls return the same completion future.

        Returns:
            Future settled once the service has fully stopped

        Raises:
            WatchSetupError: If a watch root cannot be watched
            UnsupportedModeError: If the configured launch mode is unknown
        """
        completion = self.supervisor.completion
        if self._started or self.supervisor.closed:
            return completion

        LaunchMode.parse(self.config.mode)
        self._loop = asyncio.get_running_loop()

        if self.config.watch and self.aggregator is None:
            aggregator = ChangeAggregator(cwd=self.config.cwd, loop=self._loop)
            aggregator.start(self.config.targets(), self.config.path_filter(), self.config.debounce_ms)
            aggregator.on_change(self._on_change)
            self.aggregator = aggregator
            self.supervisor.aggregator = aggregator
            watched = ", ".join(str(t) for t in sorted(aggregator.targets, key=str))
            self.notifier.info(f"Watching {watched}")

        self._install_signal_handlers()
        completion.add_done_callback(lambda _: self._remove_signal_handlers())
        self._started = True

        self.supervisor.schedule(self.supervisor.spawn())
        return completion

    async def close(self, signal: Signals | None = None) -> None:
        """Stop watching and terminate the child. Safe to call repeatedly."""
        try:
            await self.supervisor.close(signal=signal)
        finally:
            self._remove_signal_handlers()

    async def restart(self) -> None:
        await self.supervisor.restart()

    async def wait_closed(self) -> None:
        """Wait until the service has fully stopped."""
        await self.supervisor.completion

    def _on_change(self, paths: list[str], kind: ChangeKind) -> None:
        summary = paths[0] if len(paths) == 1 else f"{len(paths)} files"
        if self.config.restart_on_change:
            self.notifier.info(f"Restarting due to changes in {summary}")
        else:
            self.notifier.info(f"Change detected in {summary}")
        self.supervisor.trigger(paths, kind)

    def _on_signal(self, sig: Signals) -> None:
        logger.info(f"Received {sig.name}, shutting down")
        self.supervisor.schedule(self.close(signal=sig))

    def _report_spawn(self, managed: ManagedProcess) -> None:
        self.notifier.info(f"Started: {managed.command_line} (pid {managed.pid})")

    def _report_error(self, error: BaseException, *args) -> None:
        self.notifier.error(str(error))

    def _install_signal_handlers(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            self.notifier.warning("Not on the main thread; termination signals are not handled")
            return

        for sig in TERMINATION_SIGNALS:
            if sig in self._installed_signals:
                continue
            try:
                self._loop.add_signal_handler(sig, self._on_signal, sig)
                self._installed_signals[sig] = None
            except (NotImplementedError, RuntimeError):
                # No loop signal support (Windows); fall back to a plain handler
                previous = signal_module.signal(
                    sig, lambda signum, frame: self._loop.call_soon_threadsafe(self._on_signal, Signals(signum))
                )
                self._installed_signals[sig] = previous

    def _remove_signal_handlers(self) -> None:
        for sig, previous in list(self._installed_signals.items()):
            if previous is None:
                if self._loop and not self._loop.is_closed():
                    self._loop.remove_signal_handler(sig)
            else:
                signal_module.signal(sig, previous)
            del self._installed_signals[sig]


def watchmon(config: WatchmonConfig | None = None, notifier: WatchmonNotifier | None = None, **options: Any) -> SupervisorService:
    """Create a SupervisorService, starting it when config.autostart is set.

    Args:
        config: Base configuration (defaults to WatchmonConfig())
        notifier: Optional notification handler
        options: WatchmonConfig fields overriding config

    Returns:
        The service; with autostart it is already watching and spawning
    """
    config = config or WatchmonConfig()
    if options:
        config = config.with_overrides(**options)
    service = SupervisorService(config, notifier=notifier)
    if config.autostart:
        service.start()
    return service
