"""Pytest configuration and fixtures."""

import io
import sys
from pathlib import Path

import pytest

# Add src directory to Python path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from watchmon_core.config import WatchmonConfig  # noqa: E402

PYTHON = sys.executable

# Child that stays alive until signalled
SLEEPER = "import time\nwhile True:\n    time.sleep(0.1)"


class FakeAggregator:
    """Stand-in change source recording close() calls."""

    def __init__(self):
        self.callbacks = []
        self.close_calls = 0

    def start(self, targets, path_filter, debounce_ms=256):
        return self

    def on_change(self, callback):
        self.callbacks.append(callback)

    def close(self):
        self.close_calls += 1

    def fire(self, paths, kind):
        for callback in self.callbacks:
            callback(paths, kind)


@pytest.fixture
def fake_aggregator():
    return FakeAggregator()


@pytest.fixture
def make_config(tmp_path):
    """Factory for spawn-mode configs running the current interpreter."""

    def factory(code: str | None = None, **overrides) -> WatchmonConfig:
        values = {
            "cwd": tmp_path,
            "mode": "spawn",
            "command": PYTHON,
            "args": ["-c", code] if code is not None else [],
            "stdout": io.BytesIO(),
            "stderr": io.BytesIO(),
            "watch": False,
            "debounce_ms": 50,
        }
        values.update(overrides)
        return WatchmonConfig(**values)

    return factory
