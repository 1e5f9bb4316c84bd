"""Child process supervisor: spawn, signal, restart and shut down."""

import asyncio
import logging
from collections.abc import Coroutine
from signal import Signals

from watchmon_core.config import WatchmonConfig
from watchmon_core.errors import ProcessExitError, SignalDeliveryError, WatchmonError
from watchmon_core.events import EventEmitter
from watchmon_core.models import ChangeKind, LaunchMode, SupervisorState
from watchmon_core.watchers import ChangeSource

from watchmon.process import ManagedProcess

logger = logging.getLogger(__name__)


def _log_error(error: BaseException, *args) -> None:
    logger.debug(f"Supervisor error event: {error}")


class ProcessSupervisor(EventEmitter):
    """Owns the lifecycle of one child process at a time.

    Events:
        spawn(process), exit(process), close(process): lifecycle of each child
        error(exception, process): recoverable runtime failures
        change(paths, kind): forwarded change batches
        done(): full shutdown, emitted exactly once

    The completion future settles exactly once, on full shutdown, however
    many restarts happened before.
    """

    def __init__(self, config: WatchmonConfig | None = None, aggregator: ChangeSource | None = None):
        """Initialize supervisor.

        Args:
            config: Launch configuration (defaults to WatchmonConfig())
            aggregator: Change source torn down on close
        """
        super().__init__()
        self.config = config or WatchmonConfig()
        self.aggregator = aggregator
        self.state = SupervisorState.IDLE
        self.process: ManagedProcess | None = None
        self._running = False
        self._completion: asyncio.Future | None = None
        self._done = False
        self._tasks: set[asyncio.Task] = set()

        # Error events must never go unobserved
        self.on("error", _log_error)

    @property
    def running(self) -> bool:
        return self._running

    @property
    def completion(self) -> asyncio.Future:
        """Future settled on full shutdown."""
        if self._completion is None:
            self._completion = asyncio.get_running_loop().create_future()
        return self._completion

    @property
    def closed(self) -> bool:
        return self.state in (SupervisorState.CLOSING, SupervisorState.CLOSED)

    async def spawn(self) -> ManagedProcess | None:
        """Launch a new child unless one is already running.

        Launch failures are reported as error events, never raised.

        Raises:
            UnsupportedModeError: If the configured mode is unknown
        """
        if self._running:
            logger.debug("Spawn skipped: process already running")
            return self.process
        if self.closed:
            logger.debug("Spawn skipped: supervisor is closing")
            return None

        LaunchMode.parse(self.config.mode)
        managed = ManagedProcess(self.config)
        managed.on("spawn", self._on_spawn)
        managed.on("exit", self._on_exit)
        managed.on("close", self._on_close)
        managed.on("error", self._on_error)

        self.process = managed
        self._running = True
        self.state = SupervisorState.RUNNING

        if not await managed.launch():
            if managed is self.process:
                self._running = False
                if self.state is SupervisorState.RUNNING:
                    self.state = SupervisorState.IDLE
        return managed

    async def restart(self) -> None:
        """Stop the current child (if any), then spawn a fresh one."""
        if self.closed:
            return
        logger.debug("Restarting process")
        self.state = SupervisorState.RESTARTING
        try:
            await self.kill()
        finally:
            # A concurrent restart or close may already have moved the state on
            if self.state is SupervisorState.RESTARTING:
                self.state = SupervisorState.RUNNING if self._running else SupervisorState.IDLE
        if self.closed:
            return
        await self.spawn()

    async def kill(self, signal: Signals | None = None, exit: bool = False) -> None:
        """Signal the running child and wait until it has fully closed.

        Args:
            signal: Signal to send instead of the configured one
            exit: Also tear down the change source and settle the completion

        Raises:
            SignalDeliveryError: If the signal could not be delivered
        """
        sig = Signals(signal or self.config.signal)
        if exit:
            self.state = SupervisorState.CLOSING
            self._close_aggregator()

        managed = self.process
        if self._running and managed is not None:
            await managed.wait_started()
            if managed.running:
                try:
                    managed.send_signal(sig)
                except SignalDeliveryError as e:
                    if exit:
                        self._finish(e)
                    raise
                await managed.wait_closed()

        if exit:
            self._finish()

    async def close(self, signal: Signals | None = None) -> None:
        """Full shutdown. Repeated calls are no-ops and never raise."""
        if self.state is SupervisorState.CLOSED:
            return
        if self.state is SupervisorState.CLOSING:
            await asyncio.wait([self.completion])
            return
        await self.kill(signal=signal, exit=True)

    def trigger(self, paths: list[str], kind: ChangeKind) -> None:
        """Forward a change batch and restart if configured to."""
        if self.closed:
            return
        self.emit("change", paths, kind)
        if self.config.restart_on_change:
            self.schedule(self.restart())

    def schedule(self, coro: Coroutine) -> asyncio.Task:
        """Run a supervisor coroutine in the background, errors as events."""
        task = asyncio.get_running_loop().create_task(self._guard(coro))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _guard(self, coro: Coroutine) -> None:
        try:
            await coro
        except WatchmonError as e:
            self.emit("error", e, self.process)

    def _close_aggregator(self) -> None:
        if self.aggregator is not None:
            try:
                self.aggregator.close()
            except Exception as e:
                logger.error(f"Error stopping file watcher: {e}")

    def _finish(self, error: BaseException | None = None) -> None:
        if self._done:
            return
        self._done = True
        self.state = SupervisorState.CLOSED
        completion = self.completion
        if not completion.done():
            if error is None:
                completion.set_result(None)
            else:
                completion.set_exception(error)
        logger.debug("Supervisor closed")
        self.emit("done")

    # Lifecycle observers, registered in this order on every ManagedProcess

    def _on_spawn(self, managed: ManagedProcess) -> None:
        self.emit("spawn", managed)

    def _on_exit(self, managed: ManagedProcess) -> None:
        if (
            managed.mode is LaunchMode.FORK
            and managed.returncode != 0
            and managed.stderr_buffered
            and managed.error is None
            and not managed.killed_by_signal
        ):
            managed.capture_stderr()
        self.emit("exit", managed)

    def _on_close(self, managed: ManagedProcess) -> None:
        if managed is self.process:
            self._running = False
            if self.state is SupervisorState.RUNNING:
                self.state = SupervisorState.IDLE

        if managed.returncode != 0 and not managed.killed_by_signal:
            self.emit("error", ProcessExitError(managed.returncode, managed.captured_stderr), managed)
        self.emit("close", managed)

        exited_on_own = managed.signal_sent is None
        if exited_on_own and not self.config.restart_on_exit and not self.closed:
            logger.debug("Process exited and restart_on_exit is off; closing")
            self.schedule(self.close())

    def _on_error(self, error: BaseException, managed: ManagedProcess) -> None:
        self.emit("error", error, managed)
