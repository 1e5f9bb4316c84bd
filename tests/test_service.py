"""Tests for SupervisorService wiring and the watchmon() factory."""

import asyncio
import logging
import signal
import threading

import pytest

from conftest import SLEEPER
from watchmon.service import SupervisorService, watchmon
from watchmon_core.errors import UnsupportedModeError, WatchSetupError
from watchmon_core.models import ChangeKind, SupervisorState
from watchmon_core.notifier import LoggingNotifier


class RecordingNotifier:
    """Notifier collecting messages per level."""

    def __init__(self):
        self.messages = []

    def info(self, msg):
        self.messages.append(("info", msg))

    def warning(self, msg):
        self.messages.append(("warning", msg))

    def error(self, msg):
        self.messages.append(("error", msg))


@pytest.fixture
def project(tmp_path):
    (tmp_path / "src").mkdir()
    return tmp_path


async def wait_until(predicate, timeout=10):
    async def poll():
        while not predicate():
            await asyncio.sleep(0.02)

    await asyncio.wait_for(poll(), timeout=timeout)


class TestStart:
    """Tests for start() and close()."""

    @pytest.mark.asyncio
    async def test_start_spawns_and_close_settles(self, make_config):
        """start() returns the completion future, which close() settles."""
        notifier = RecordingNotifier()
        service = SupervisorService(make_config(SLEEPER), notifier=notifier)

        completion = service.start()
        assert isinstance(completion, asyncio.Future)
        assert not completion.done()
        await wait_until(lambda: service.process is not None and service.state is SupervisorState.RUNNING)

        await asyncio.wait_for(service.close(), timeout=10)

        assert completion.done()
        assert service.state is SupervisorState.CLOSED
        assert not service.process.running
        assert any(level == "info" and msg.startswith("Started:") for level, msg in notifier.messages)

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, make_config):
        service = SupervisorService(make_config(SLEEPER))
        first = service.start()
        second = service.start()
        assert first is second
        await wait_until(lambda: service.process is not None)
        await asyncio.wait_for(service.close(), timeout=10)

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, make_config):
        service = SupervisorService(make_config(SLEEPER))
        service.start()
        await wait_until(lambda: service.process is not None)
        await asyncio.wait_for(service.close(), timeout=10)
        await asyncio.wait_for(service.close(), timeout=1)
        await asyncio.wait_for(service.wait_closed(), timeout=1)

    @pytest.mark.asyncio
    async def test_missing_root_raises(self, make_config):
        """Watch setup failures surface from start() itself."""
        service = SupervisorService(make_config("pass", watch=True, roots=["missing"]))
        with pytest.raises(WatchSetupError):
            service.start()
        assert service.process is None
        assert service._installed_signals == {}

    @pytest.mark.asyncio
    async def test_unsupported_mode_raises(self, make_config):
        config = make_config("pass")
        object.__setattr__(config, "mode", "cluster")
        with pytest.raises(UnsupportedModeError):
            SupervisorService(config).start()

    @pytest.mark.asyncio
    async def test_errors_reach_notifier(self, make_config):
        notifier = RecordingNotifier()
        service = SupervisorService(make_config("raise SystemExit(5)"), notifier=notifier)
        service.start()
        await wait_until(lambda: any(level == "error" for level, _ in notifier.messages))
        assert ("error", "Process exited with non-zero exit code: 5") in notifier.messages
        await asyncio.wait_for(service.close(), timeout=10)


class TestWatching:
    """Tests for change forwarding through the aggregator."""

    @pytest.mark.asyncio
    async def test_change_forwarded_without_restart(self, make_config, project):
        notifier = RecordingNotifier()
        config = make_config(SLEEPER, watch=True, roots=["src"], debounce_ms=0, restart_on_change=False)
        service = SupervisorService(config, notifier=notifier)
        changes = []
        service.on("change", lambda paths, kind: changes.append((paths, kind)))

        service.start()
        await wait_until(lambda: service.process is not None)
        first = service.process
        assert ("info", f"Watching {config.cwd / 'src'}") in notifier.messages

        service.aggregator.handle(ChangeKind.CHANGE, str(config.cwd / "src" / "a.py"))
        await asyncio.sleep(0.1)

        assert changes == [(["src/a.py"], ChangeKind.CHANGE)]
        assert ("info", "Change detected in src/a.py") in notifier.messages
        assert service.process is first
        await asyncio.wait_for(service.close(), timeout=10)
        assert not service.aggregator.is_active

    @pytest.mark.asyncio
    async def test_change_restarts_process(self, make_config, project):
        config = make_config(SLEEPER, watch=True, roots=["src"], debounce_ms=0)
        service = SupervisorService(config)
        service.start()
        await wait_until(lambda: service.process is not None and service.state is SupervisorState.RUNNING)
        first = service.process

        service.aggregator.handle(ChangeKind.RENAME, str(config.cwd / "src" / "new.py"))
        await wait_until(lambda: service.process is not first and service.state is SupervisorState.RUNNING)

        assert first.killed_by_signal
        assert service.process.running
        await asyncio.wait_for(service.close(), timeout=10)


class TestSignals:
    """Tests for termination signal handling."""

    @pytest.mark.asyncio
    async def test_handlers_installed_and_removed(self, make_config):
        service = SupervisorService(make_config(SLEEPER))
        service.start()
        assert set(service._installed_signals) == {signal.SIGINT, signal.SIGTERM}

        await wait_until(lambda: service.process is not None)
        await asyncio.wait_for(service.close(), timeout=10)

        assert service._installed_signals == {}
        assert not asyncio.get_running_loop().remove_signal_handler(signal.SIGTERM)

    @pytest.mark.asyncio
    async def test_signal_closes_service(self, make_config):
        service = SupervisorService(make_config(SLEEPER))
        completion = service.start()
        await wait_until(lambda: service.process is not None and service.state is SupervisorState.RUNNING)
        managed = service.process

        service._on_signal(signal.SIGINT)
        await asyncio.wait_for(completion, timeout=10)

        assert managed.signal_sent is signal.SIGINT
        assert service.state is SupervisorState.CLOSED


class TestFactory:
    """Tests for the watchmon() convenience factory."""

    @pytest.mark.asyncio
    async def test_autostart(self, make_config):
        service = watchmon(make_config(SLEEPER))
        await wait_until(lambda: service.process is not None)
        assert service.supervisor.running
        await asyncio.wait_for(service.close(), timeout=10)

    @pytest.mark.asyncio
    async def test_without_autostart(self, make_config):
        service = watchmon(make_config(SLEEPER), autostart=False)
        await asyncio.sleep(0.05)
        assert service.process is None
        assert service.state is SupervisorState.IDLE
        await service.close()


def test_off_main_thread_skips_signal_handlers(make_config):
    """Services running on a worker thread's loop warn instead of installing handlers."""
    notifier = RecordingNotifier()
    service = SupervisorService(make_config(SLEEPER), notifier=notifier)

    async def run():
        service.start()
        await wait_until(lambda: service.process is not None)
        await asyncio.wait_for(service.close(), timeout=10)

    thread = threading.Thread(target=asyncio.run, args=(run(),))
    thread.start()
    thread.join(timeout=30)

    assert not thread.is_alive()
    assert ("warning", "Not on the main thread; termination signals are not handled") in notifier.messages
    assert service.state is SupervisorState.CLOSED


def test_logging_notifier(caplog):
    notifier = LoggingNotifier()
    with caplog.at_level(logging.INFO, logger="watchmon"):
        notifier.info("Watching /project/src")
        notifier.error("Process exited with non-zero exit code: 1")
    assert [r.levelname for r in caplog.records] == ["INFO", "ERROR"]
    assert caplog.records[0].getMessage() == "Watching /project/src"


def test_logging_notifier_splits_child_stderr(caplog):
    notifier = LoggingNotifier()
    with caplog.at_level(logging.INFO, logger="watchmon"):
        notifier.error("Process exited with non-zero exit code: 3\nTraceback (most recent call last):\nValueError: x")
    messages = [r.getMessage() for r in caplog.records]
    assert messages == [
        "Process exited with non-zero exit code: 3",
        "  | Traceback (most recent call last):",
        "  | ValueError: x",
    ]
    assert all(r.levelname == "ERROR" for r in caplog.records)
