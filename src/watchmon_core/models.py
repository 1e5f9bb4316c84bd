"""Shared data models for watchmon."""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from watchmon_core.errors import UnsupportedModeError


class ChangeKind(str, Enum):
    """Kind of a raw filesystem change."""

    RENAME = "rename"
    """Creation, deletion or move."""

    CHANGE = "change"
    """Content or metadata modification."""


class LaunchMode(str, Enum):
    """How the managed child process is launched."""

    FORK = "fork"
    """Python module or script under the current interpreter, piped stdio."""

    SPAWN = "spawn"
    """Arbitrary command, piped stdio, optional shell."""

    EXEC = "exec"
    """Shell command with fully buffered output."""

    @classmethod
    def parse(cls, value: "LaunchMode | str") -> "LaunchMode":
        """Convert a configured value to a LaunchMode.

        Raises:
            UnsupportedModeError: If value names no known mode.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise UnsupportedModeError(value) from None


class SupervisorState(Enum):
    """Lifecycle state of a ProcessSupervisor."""

    IDLE = "idle"
    RUNNING = "running"
    RESTARTING = "restarting"
    CLOSING = "closing"
    CLOSED = "closed"


class ProcessPhase(Enum):
    """Two-phase termination state of a managed process.

    EXITED means the process stopped executing while its stdio may still be
    draining; CLOSED means every pipe is drained and the handle released.
    """

    PENDING = "pending"
    RUNNING = "running"
    EXITED = "exited"
    CLOSED = "closed"


@dataclass(frozen=True)
class WatchTarget:
    """A resolved directory that is the subject of a recursive watch."""

    path: Path

    def __post_init__(self):
        if not self.path.is_absolute():
            raise ValueError(f"path must be absolute: {self.path}")

    @classmethod
    def resolve(cls, base: str | Path, cwd: Path) -> "WatchTarget":
        """Create a target from a possibly relative base directory."""
        path = Path(base).expanduser()
        if not path.is_absolute():
            path = cwd / path
        return cls(path.resolve())

    def __str__(self) -> str:
        return str(self.path)
