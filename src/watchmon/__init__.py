"""watchmon: Restart a supervised process whenever watched files change."""

__version__ = "0.1.0"

# Public API
from watchmon.aggregator import ChangeAggregator
from watchmon.process import ManagedProcess
from watchmon.service import SupervisorService, watchmon
from watchmon.supervisor import ProcessSupervisor

__all__ = [
    "__version__",
    # Primary components
    "SupervisorService",
    "watchmon",
    "ProcessSupervisor",
    "ChangeAggregator",
    "ManagedProcess",
]
