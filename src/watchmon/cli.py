"""CLI entry point for watchmon: watch files and restart a command on change."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any

from watchmon_core.config import WatchmonConfig, load_config
from watchmon_core.errors import WatchmonError
from watchmon_core.notifier import LoggingNotifier

from watchmon import __version__
from watchmon.service import SupervisorService

DEFAULT_CONFIG_PATH = "watchmon.toml"

# Default config template for a Python edit/run loop
DEFAULT_CONFIG_TEMPLATE = """\
# Auto-generated watchmon.toml

[watchmon]
# Directories or globs to watch, relative to this file
roots = ["."]
ignore = ["**/(.git|node_modules|__pycache__|.venv)/**"]
extensions = ["py", "toml"]
debounce_ms = 256

# fork: run a Python module/script, spawn: run a command, exec: run through a shell
mode = "fork"
command = "main"
args = []

signal = "SIGTERM"
restart_on_change = true
restart_on_exit = true
"""


def create_default_config(config_path: Path) -> bool:
    """
    Write the default watchmon settings to config_path.

    An existing pyproject.toml gets the settings appended as a [tool.watchmon]
    table; any other existing file is left alone.

    Args:
        config_path: watchmon.toml-style file or a project's pyproject.toml

    Returns:
        True if settings were written, False if they already exist

    Raises:
        PermissionError: If unable to write to the directory
        OSError: If other file system errors occur
    """
    if config_path.name == "pyproject.toml" and config_path.exists():
        existing = config_path.read_text()
        if "[tool.watchmon]" in existing:
            return False
        table = DEFAULT_CONFIG_TEMPLATE.split("\n\n", 1)[1].replace("[watchmon]", "[tool.watchmon]", 1)
        config_path.write_text(f"{existing.rstrip()}\n\n{table}")
        return True

    if config_path.exists():
        return False

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(DEFAULT_CONFIG_TEMPLATE)
    return True


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        prog="watchmon",
        description="Watch files and restart a process whenever they change.",
        epilog="Examples:\n"
        "  watchmon app                          # python -m app, restart on change\n"
        "  watchmon -m spawn -e py -- ./serve.sh  # restart a command on .py changes\n"
        "  watchmon -c watchmon.toml             # use a config file\n"
        "  watchmon --init                       # create watchmon.toml",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument("-c", "--config", help="Path to TOML config file")
    parser.add_argument("--init", action="store_true", help=f"Create {DEFAULT_CONFIG_PATH} and exit")
    parser.add_argument("-w", "--watch", action="append", dest="roots", metavar="ROOT", help="Directory or glob to watch (repeatable)")
    parser.add_argument("-i", "--ignore", action="append", metavar="GLOB", help="Glob of paths to ignore (repeatable)")
    parser.add_argument("-e", "--ext", dest="extensions", metavar="EXTS", help="Comma-separated extension allowlist")
    parser.add_argument("-d", "--debounce", dest="debounce_ms", type=int, metavar="MS", help="Debounce interval in milliseconds")
    parser.add_argument("-m", "--mode", help="Launch mode: fork, spawn or exec")
    parser.add_argument("--shell", action="store_true", default=None, help="Run the command through a shell (spawn mode)")
    parser.add_argument("--signal", help="Signal used to stop the process (default: SIGTERM)")
    parser.add_argument("--no-restart", dest="restart_on_change", action="store_false", default=None, help="Report changes without restarting")
    parser.add_argument("--exit-on-crash", dest="restart_on_exit", action="store_false", default=None, help="Stop watching when the process exits on its own")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("command", nargs="?", help="Module, script or command to run")
    parser.add_argument("args", nargs=argparse.REMAINDER, help="Arguments passed to the command")

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> WatchmonConfig:
    """Merge config file values and command-line flags into a WatchmonConfig."""
    overrides: dict[str, Any] = {}
    for key in ("roots", "ignore", "extensions", "debounce_ms", "mode", "shell", "signal", "restart_on_change", "restart_on_exit", "command"):
        value = getattr(args, key)
        if value is not None:
            overrides[key] = value
    if args.args:
        overrides["args"] = args.args[1:] if args.args[0] == "--" else args.args

    if args.config:
        return load_config(args.config, **overrides)
    return WatchmonConfig(**overrides)


async def run(config: WatchmonConfig) -> None:
    """Run a service until it shuts down."""
    service = SupervisorService(config, notifier=LoggingNotifier())
    await service.start()


def main(argv: list[str] | None = None) -> None:
    """
    Main entry point for the watchmon CLI.

    Handles:
    - Argument parsing
    - Creation of a default config with --init
    - Running the service until SIGINT/SIGTERM
    - Error handling and exit codes
    """
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        if args.init:
            config_path = Path(args.config or DEFAULT_CONFIG_PATH).resolve()
            if create_default_config(config_path):
                print(f"Created default config at: {config_path}")
            else:
                print(f"Config already exists: {config_path}")
            return

        config = build_config(args)
        asyncio.run(run(config))

    except KeyboardInterrupt:
        sys.exit(130)
    except (WatchmonError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
