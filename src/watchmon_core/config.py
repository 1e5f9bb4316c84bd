"""Configuration struct and TOML loading for watchmon."""

import dataclasses
import logging
import sys
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from signal import Signals
from typing import Any

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # type: ignore

from watchmon_core.errors import ConfigError
from watchmon_core.filters import PathFilter, resolve_targets
from watchmon_core.models import LaunchMode, WatchTarget

logger = logging.getLogger(__name__)

DEFAULT_IGNORE = ("**/(.git|node_modules|__pycache__)/**",)

# Keys accepted from configuration files; the rest are runtime-only objects
FILE_KEYS = frozenset(
    {
        "roots",
        "ignore",
        "extensions",
        "cwd",
        "case_sensitive",
        "dot",
        "debounce_ms",
        "mode",
        "command",
        "args",
        "env",
        "uid",
        "gid",
        "shell",
        "exec_path",
        "exec_args",
        "signal",
        "watch",
        "autostart",
        "restart_on_exit",
        "restart_on_change",
    }
)


def _as_tuple(value: Any, split_commas: bool = False) -> tuple[str, ...]:
    if isinstance(value, str):
        if split_commas:
            return tuple(part.strip() for part in value.split(",") if part.strip())
        return (value,)
    return tuple(str(v) for v in value)


def parse_signal(value: Signals | int | str) -> Signals:
    """Convert a signal name ('SIGINT', 'int') or number to Signals.

    Raises:
        ConfigError: If the value names no signal on this platform
    """
    if isinstance(value, Signals):
        return value
    try:
        if isinstance(value, int):
            return Signals(value)
        name = str(value).upper()
        if not name.startswith("SIG"):
            name = f"SIG{name}"
        return Signals[name]
    except (KeyError, ValueError):
        raise ConfigError(f"Unknown signal: {value!r}") from None


def _stdout() -> Any:
    return sys.stdout


def _stderr() -> Any:
    return sys.stderr


@dataclass(frozen=True)
class WatchmonConfig:
    """Complete watchmon configuration.

    Every field has a default; values are normalised and validated on
    construction and never mutated afterwards. Use with_overrides() to derive
    a changed copy.
    """

    roots: tuple[str, ...] = (".",)
    """Directories or globs to watch, relative to cwd."""

    ignore: tuple[str, ...] | None = DEFAULT_IGNORE
    """Glob(s) of paths whose changes are ignored."""

    extensions: tuple[str, ...] | None = None
    """Extension allowlist (without or with leading dot)."""

    include: Callable[[str], bool] | None = None
    """Explicit include predicate, replaces glob roots."""

    exclude: Callable[[str], bool] | None = None
    """Explicit exclude predicate, replaces ignore globs."""

    cwd: Path = field(default_factory=Path.cwd)
    """Working directory for path resolution and the child process."""

    case_sensitive: bool = True
    dot: bool = True

    debounce_ms: int = 256
    """Quiet period before a change batch is emitted; 0 disables batching."""

    mode: LaunchMode = LaunchMode.FORK
    command: str = "main"
    args: tuple[str, ...] = ()
    env: Mapping[str, str] | None = None
    """Extra environment, merged over the supervisor's environment."""

    uid: int | None = None
    gid: int | None = None
    shell: bool | str | None = None
    exec_path: str | None = None
    """Interpreter for fork mode (default: the running interpreter)."""

    exec_args: tuple[str, ...] = ()
    """Interpreter arguments for fork mode."""

    signal: Signals = Signals.SIGTERM
    """Signal used to stop the child."""

    stdin: Any = None
    """bytes or asyncio.StreamReader fed into the child."""

    stdout: Any = field(default_factory=_stdout)
    stderr: Any = field(default_factory=_stderr)

    watch: bool = True
    autostart: bool = True
    restart_on_exit: bool = True
    """Keep watching after the child exits on its own."""

    restart_on_change: bool = True

    def __post_init__(self):
        set_ = object.__setattr__

        roots = _as_tuple(self.roots)
        if not roots:
            raise ConfigError("At least one watch root is required")
        set_(self, "roots", roots)

        if self.ignore is not None:
            set_(self, "ignore", _as_tuple(self.ignore) or None)
        if self.extensions is not None:
            set_(self, "extensions", _as_tuple(self.extensions, split_commas=True) or None)

        set_(self, "cwd", Path(self.cwd).expanduser().resolve())

        if isinstance(self.debounce_ms, bool) or not isinstance(self.debounce_ms, int) or self.debounce_ms < 0:
            raise ConfigError(f"debounce_ms must be a non-negative integer, got {self.debounce_ms!r}")

        set_(self, "mode", LaunchMode.parse(self.mode))

        if not self.command or not str(self.command).strip():
            raise ConfigError("command must not be empty")
        set_(self, "args", _as_tuple(self.args))
        set_(self, "exec_args", _as_tuple(self.exec_args))
        if self.env is not None:
            set_(self, "env", {str(k): str(v) for k, v in self.env.items()})

        set_(self, "signal", parse_signal(self.signal))

    def with_overrides(self, **overrides: Any) -> "WatchmonConfig":
        """Return a validated copy with the given fields replaced."""
        unknown = set(overrides) - {f.name for f in dataclasses.fields(self)}
        if unknown:
            raise ConfigError(f"Unknown option(s): {', '.join(sorted(unknown))}")
        return dataclasses.replace(self, **overrides)

    def targets(self) -> set[WatchTarget]:
        """Resolved directories to watch."""
        return resolve_targets(self.roots, self.cwd)

    def path_filter(self) -> PathFilter:
        """PathFilter built from roots, ignore globs and extensions."""
        return PathFilter.from_options(
            roots=self.roots,
            ignore=self.ignore,
            extensions=self.extensions,
            include=self.include,
            exclude=self.exclude,
            case_sensitive=self.case_sensitive,
            dot=self.dot,
            cwd=self.cwd,
        )


def config_from_mapping(raw: Mapping[str, Any], base_dir: Path | None = None, **overrides: Any) -> WatchmonConfig:
    """Build a WatchmonConfig from a parsed mapping.

    Args:
        raw: Mapping of file keys
        base_dir: Directory relative cwd values are resolved against
        overrides: Field values taking precedence over raw

    Raises:
        ConfigError: On unknown keys or invalid values
    """
    unknown = set(raw) - FILE_KEYS
    if unknown:
        raise ConfigError(f"Unknown config key(s): {', '.join(sorted(unknown))}")

    values = dict(raw)
    if base_dir is not None:
        cwd = Path(values.get("cwd", "."))
        values["cwd"] = cwd if cwd.is_absolute() else base_dir / cwd
    values.update(overrides)

    try:
        return WatchmonConfig(**values)
    except TypeError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def load_config(path: str | Path, **overrides: Any) -> WatchmonConfig:
    """Load configuration from a TOML file.

    Settings are read from a [watchmon] table, a [tool.watchmon] table
    (pyproject.toml), or the top level of the document.

    Args:
        path: Path to TOML config file
        overrides: Field values taking precedence over the file

    Returns:
        Validated WatchmonConfig
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(
            f"Config file not found: {path}\nRun 'watchmon --init' to create a default config."
        )

    try:
        with open(path, "rb") as f:
            raw = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Failed to parse config file {path}: {e}") from e

    if "watchmon" in raw:
        section = raw["watchmon"]
    elif "watchmon" in raw.get("tool", {}):
        section = raw["tool"]["watchmon"]
    else:
        section = raw

    logger.debug(f"Loaded config from {path}")
    return config_from_mapping(section, base_dir=path.resolve().parent, **overrides)
