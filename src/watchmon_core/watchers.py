"""Abstract change-source protocol for file watching implementations."""

from collections.abc import Callable, Iterable
from typing import Protocol

from watchmon_core.filters import PathFilter
from watchmon_core.models import ChangeKind, WatchTarget

ChangeCallback = Callable[[list[str], ChangeKind], None]


class ChangeSource(Protocol):
    """Protocol for change aggregators consumed by the supervisor."""

    def start(
        self,
        targets: Iterable[WatchTarget],
        path_filter: PathFilter,
        debounce_ms: int = 256,
    ) -> "ChangeSource":
        """Open watches on all targets."""
        ...

    def on_change(self, callback: ChangeCallback) -> None:
        """Register a batch-change listener."""
        ...

    def close(self) -> None:
        """Release every watch and pending timer."""
        ...
