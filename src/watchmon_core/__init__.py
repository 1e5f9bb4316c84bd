"""watchmon-core: Shared models, filters and configuration for watchmon."""

__version__ = "0.1.0"

# Config
from watchmon_core.config import DEFAULT_IGNORE, WatchmonConfig, load_config

# Errors
from watchmon_core.errors import (
    ConfigError,
    ProcessExitError,
    ProcessLaunchError,
    SignalDeliveryError,
    UnsupportedModeError,
    WatchmonError,
    WatchSetupError,
)

# Filters
from watchmon_core.filters import PathFilter, compile_glob, scan_glob

# Models
from watchmon_core.models import (
    ChangeKind,
    LaunchMode,
    ProcessPhase,
    SupervisorState,
    WatchTarget,
)

# Notifications
from watchmon_core.notifier import LoggingNotifier, NoOpNotifier, WatchmonNotifier

__all__ = [
    "__version__",
    # Models
    "ChangeKind",
    "LaunchMode",
    "ProcessPhase",
    "SupervisorState",
    "WatchTarget",
    # Filters
    "PathFilter",
    "compile_glob",
    "scan_glob",
    # Config
    "DEFAULT_IGNORE",
    "WatchmonConfig",
    "load_config",
    # Errors
    "WatchmonError",
    "ConfigError",
    "WatchSetupError",
    "UnsupportedModeError",
    "ProcessLaunchError",
    "ProcessExitError",
    "SignalDeliveryError",
    # Notifications
    "WatchmonNotifier",
    "NoOpNotifier",
    "LoggingNotifier",
]
