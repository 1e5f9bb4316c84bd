"""Exception taxonomy for watchmon."""

from pathlib import Path


class WatchmonError(Exception):
    """Base exception for all watchmon errors."""

    pass


class ConfigError(WatchmonError, ValueError):
    """Configuration value or file is invalid."""

    pass


class WatchSetupError(WatchmonError):
    """A watch target could not be opened."""

    def __init__(self, path: Path | str, reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Cannot watch {self.path}: {reason}")


class UnsupportedModeError(ConfigError):
    """Process launch mode is not one of fork, spawn or exec."""

    def __init__(self, mode: object):
        self.mode = mode
        super().__init__(f"Launch mode not supported: {mode!r}")


class ProcessLaunchError(WatchmonError):
    """The OS refused to create the child process."""

    def __init__(self, command: str, reason: str, errno: int | None = None):
        self.command = command
        self.errno = errno
        super().__init__(f"Failed to launch {command!r}: {reason}")


class ProcessExitError(WatchmonError):
    """Child process closed with a non-zero return code."""

    def __init__(self, code: int | None, stderr: str | None = None):
        self.code = code
        self.stderr = stderr
        message = f"Process exited with non-zero exit code: {code}"
        if stderr:
            message = f"{message}\n{stderr.rstrip()}"
        super().__init__(message)


class SignalDeliveryError(WatchmonError):
    """Termination signal could not be delivered."""

    def __init__(self, signal: int, reason: str):
        self.signal = signal
        super().__init__(f"Failed to send signal {signal}: {reason}")
