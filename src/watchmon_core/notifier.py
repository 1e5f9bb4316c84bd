"""Pluggable notification protocol for watchmon.

SupervisorService reports user-facing lifecycle messages (watch roots,
spawned commands, restarts, failures) through a notifier instead of printing.
Embedders pass their own implementation; tests pass a recorder.
"""

import logging
from typing import Protocol


class WatchmonNotifier(Protocol):
    """Protocol for notifications - host can provide custom implementation."""

    def info(self, message: str) -> None:
        """Lifecycle message (watching, started, restarting)."""
        ...

    def warning(self, message: str) -> None:
        """Degraded but running."""
        ...

    def error(self, message: str) -> None:
        """Launch or exit failure of the child."""
        ...


class NoOpNotifier:
    """Silent notifier, the default when watchmon is embedded."""

    def info(self, msg: str) -> None:
        pass

    def warning(self, msg: str) -> None:
        pass

    def error(self, msg: str) -> None:
        pass


class LoggingNotifier:
    """Forward notifications to a stdlib logger - used by the CLI.

    Error messages carrying captured child stderr (see ProcessExitError) are
    split so every stderr line is its own record, indented under the summary.
    """

    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or logging.getLogger("watchmon")

    def info(self, msg: str) -> None:
        self.logger.info(msg)

    def warning(self, msg: str) -> None:
        self.logger.warning(msg)

    def error(self, msg: str) -> None:
        summary, _, stderr = msg.partition("\n")
        self.logger.error(summary)
        for line in stderr.splitlines():
            self.logger.error(f"  | {line}")
