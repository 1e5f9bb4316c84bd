"""Managed child process with explicit exit/close phases."""

import asyncio
import io
import logging
import os
import shlex
import sys
from pathlib import Path
from signal import Signals
from typing import Any

from watchmon_core.config import WatchmonConfig
from watchmon_core.errors import ProcessLaunchError, SignalDeliveryError, UnsupportedModeError
from watchmon_core.events import EventEmitter
from watchmon_core.models import LaunchMode, ProcessPhase

logger = logging.getLogger(__name__)

CHUNK_SIZE = 65536

# Upper bound for stderr kept in memory when no sink is configured
STDERR_BUFFER_LIMIT = 1024 * 1024


def write_to_sink(sink: Any, data: bytes) -> None:
    """Write bytes to a binary or text sink."""
    if not data:
        return
    if isinstance(sink, io.TextIOBase):
        sink.write(data.decode("utf-8", errors="replace"))
    else:
        sink.write(data)
    flush = getattr(sink, "flush", None)
    if flush:
        flush()


def fork_argv(config: WatchmonConfig) -> list[str]:
    """Interpreter command line running config.command as script or module."""
    interpreter = config.exec_path or sys.executable
    command = config.command
    script = Path(command)
    if not script.is_absolute():
        script = config.cwd / script
    if command.endswith(".py") or script.is_file():
        target = [command]
    else:
        target = ["-m", command]
    return [interpreter, *config.exec_args, *target, *config.args]


def shell_command(config: WatchmonConfig) -> str:
    """Command line for shell-interpreted launches; args are quoted."""
    return " ".join([config.command, *(shlex.quote(arg) for arg in config.args)])


class ManagedProcess(EventEmitter):
    """One launched OS process.

    Emits, in order: "spawn", "exit" (process stopped, stdio may still be
    draining), "close" (all stdio drained). A launch failure emits a single
    "error" carrying ProcessLaunchError and moves straight to CLOSED.
    """

    def __init__(self, config: WatchmonConfig):
        super().__init__()
        self.config = config
        self.mode = LaunchMode.parse(config.mode)
        self.phase = ProcessPhase.PENDING
        self.proc: asyncio.subprocess.Process | None = None
        self.returncode: int | None = None
        self.signal_sent: Signals | None = None
        self.error: BaseException | None = None
        self.stdout_data: bytes | None = None
        self.stderr_data: bytes | None = None
        self._stderr_buffer = bytearray()
        self._capture_stderr = False
        self._pumps: list[asyncio.Task] = []
        self._stdin_task: asyncio.Task | None = None
        self._monitor: asyncio.Task | None = None
        self._started = asyncio.Event()
        self._closed = asyncio.Event()

    @property
    def pid(self) -> int | None:
        return self.proc.pid if self.proc else None

    @property
    def running(self) -> bool:
        """True from launch until the close notification."""
        return self.phase in (ProcessPhase.PENDING, ProcessPhase.RUNNING, ProcessPhase.EXITED)

    @property
    def killed_by_signal(self) -> bool:
        """Whether the process ended from the signal this wrapper sent."""
        return (
            self.signal_sent is not None
            and self.returncode is not None
            and self.returncode == -int(self.signal_sent)
        )

    @property
    def captured_stderr(self) -> str | None:
        """Standard-error text attached to a failure, if any was captured."""
        if self.mode is LaunchMode.EXEC:
            if self.stderr_data and self.config.stderr is None:
                return self.stderr_data.decode("utf-8", errors="replace")
            return None
        if self._capture_stderr and self._stderr_buffer:
            return self._stderr_buffer.decode("utf-8", errors="replace")
        return None

    def capture_stderr(self) -> None:
        """Attach buffered stderr to the failure reported on close."""
        self._capture_stderr = True

    @property
    def stderr_buffered(self) -> bool:
        """Whether stderr is buffered in memory instead of streamed."""
        return self.config.stderr is None

    @property
    def command_line(self) -> str:
        if self.mode is LaunchMode.FORK:
            return shlex.join(fork_argv(self.config))
        if self.mode is LaunchMode.SPAWN and not self.config.shell:
            return shlex.join([self.config.command, *self.config.args])
        return shell_command(self.config)

    async def launch(self) -> bool:
        """Start the OS process and the lifecycle monitor.

        Returns:
            True if the process was created; False after emitting a
            ProcessLaunchError error event
        """
        try:
            self.proc = await self._create()
        except OSError as e:
            self.error = ProcessLaunchError(self.command_line, e.strerror or str(e), e.errno)
            logger.debug(f"Launch failed: {self.error}")
            self.phase = ProcessPhase.CLOSED
            self._started.set()
            self._closed.set()
            self.emit("error", self.error, self)
            return False

        self.phase = ProcessPhase.RUNNING
        self._started.set()
        logger.debug(f"Spawned pid {self.proc.pid}: {self.command_line}")
        self.emit("spawn", self)

        if self.mode is not LaunchMode.EXEC:
            self._start_pumps()
        self._monitor = asyncio.get_running_loop().create_task(self._watch())
        return True

    async def _create(self) -> asyncio.subprocess.Process:
        config = self.config
        kwargs: dict[str, Any] = {"cwd": str(config.cwd), "env": self._environment()}
        if config.uid is not None:
            kwargs["user"] = config.uid
        if config.gid is not None:
            kwargs["group"] = config.gid

        if self.mode is LaunchMode.EXEC:
            if config.stdin is not None:
                logger.warning("stdin is not supported in exec mode and is ignored")
            if isinstance(config.shell, str):
                kwargs["executable"] = config.shell
            return await asyncio.create_subprocess_shell(
                shell_command(config),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                **kwargs,
            )

        stdio = {
            "stdin": asyncio.subprocess.PIPE if config.stdin is not None else asyncio.subprocess.DEVNULL,
            "stdout": asyncio.subprocess.PIPE if config.stdout is not None else asyncio.subprocess.DEVNULL,
            "stderr": asyncio.subprocess.PIPE,
        }

        if self.mode is LaunchMode.FORK:
            return await asyncio.create_subprocess_exec(*fork_argv(config), **stdio, **kwargs)

        if self.mode is LaunchMode.SPAWN:
            if config.shell:
                if isinstance(config.shell, str):
                    kwargs["executable"] = config.shell
                return await asyncio.create_subprocess_shell(shell_command(config), **stdio, **kwargs)
            return await asyncio.create_subprocess_exec(config.command, *config.args, **stdio, **kwargs)

        raise UnsupportedModeError(self.mode)

    def _environment(self) -> dict[str, str]:
        env = os.environ.copy()
        if self.config.env:
            env.update(self.config.env)
        return env

    def _start_pumps(self) -> None:
        loop = asyncio.get_running_loop()
        config = self.config
        if self.proc.stdin is not None:
            self._stdin_task = loop.create_task(self._feed_stdin(config.stdin))
        if self.proc.stdout is not None:
            self._pumps.append(loop.create_task(self._pump(self.proc.stdout, config.stdout)))
        if self.proc.stderr is not None:
            self._pumps.append(loop.create_task(self._pump(self.proc.stderr, config.stderr)))

    async def _feed_stdin(self, source: Any) -> None:
        writer = self.proc.stdin
        try:
            if isinstance(source, (bytes, bytearray)):
                writer.write(source)
                await writer.drain()
            else:
                while chunk := await source.read(CHUNK_SIZE):
                    writer.write(chunk)
                    await writer.drain()
        except (BrokenPipeError, ConnectionResetError):
            logger.debug("Child closed stdin early")
        finally:
            writer.close()

    async def _pump(self, stream: asyncio.StreamReader, sink: Any) -> None:
        while chunk := await stream.read(CHUNK_SIZE):
            if sink is None:
                self._stderr_buffer.extend(chunk)
                overflow = len(self._stderr_buffer) - STDERR_BUFFER_LIMIT
                if overflow > 0:
                    del self._stderr_buffer[:overflow]
            else:
                try:
                    write_to_sink(sink, chunk)
                except (OSError, ValueError) as e:
                    logger.warning(f"Failed to write child output: {e}")

    async def _watch(self) -> None:
        if self.mode is LaunchMode.EXEC:
            self.stdout_data, self.stderr_data = await self.proc.communicate()
            self.returncode = self.proc.returncode
            self.phase = ProcessPhase.EXITED
            self.emit("exit", self)
        else:
            self.returncode = await self.proc.wait()
            self.phase = ProcessPhase.EXITED
            self.emit("exit", self)
            # stdin feeding is abandoned once the child is gone
            if self._stdin_task and not self._stdin_task.done():
                self._stdin_task.cancel()
            results = await asyncio.gather(*self._pumps, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.debug(f"Stdio pump ended with error: {result!r}")

        if self.mode is LaunchMode.EXEC:
            self._deliver_buffered_output()

        self.phase = ProcessPhase.CLOSED
        self._closed.set()
        logger.debug(f"Process {self.pid} closed with code {self.returncode}")
        self.emit("close", self)

    def _deliver_buffered_output(self) -> None:
        # exec output is not streamed; sinks receive it in one write after exit
        for data, sink in ((self.stdout_data, self.config.stdout), (self.stderr_data, self.config.stderr)):
            if data and sink is not None:
                try:
                    write_to_sink(sink, data)
                except (OSError, ValueError) as e:
                    logger.warning(f"Failed to write child output: {e}")

    def send_signal(self, sig: Signals) -> None:
        """Deliver sig to the process.

        Signalling a process that already exited but is still draining is a
        no-op.

        Raises:
            SignalDeliveryError: If there is no live process or the OS refuses
        """
        if self.phase is ProcessPhase.EXITED:
            return
        if self.proc is None or self.phase is not ProcessPhase.RUNNING:
            raise SignalDeliveryError(sig, "process is not running")
        try:
            self.proc.send_signal(sig)
        except (OSError, ValueError) as e:
            raise SignalDeliveryError(sig, str(e)) from e
        self.signal_sent = sig
        logger.debug(f"Sent {sig.name} to pid {self.proc.pid}")

    async def wait_started(self) -> None:
        """Wait until the launch attempt has finished."""
        await self._started.wait()

    async def wait_closed(self) -> int | None:
        """Wait for the close notification; returns the return code."""
        await self._closed.wait()
        return self.returncode
