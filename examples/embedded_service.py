#!/usr/bin/env python3
"""
Example: Embedded Supervisor
Shows how to run watchmon inside another asyncio application.

This example demonstrates:
- Building a WatchmonConfig in code instead of a TOML file
- Observing spawn/change/error events
- Shutting the service down from the host application
"""

import asyncio
import sys
from pathlib import Path

from watchmon import SupervisorService
from watchmon_core import LoggingNotifier, WatchmonConfig


class DevServer:
    """
    Keep a development server running while its sources change.

    Use case: test harnesses, editor plugins, custom dev dashboards.
    """

    def __init__(self, project: Path):
        config = WatchmonConfig(
            cwd=project,
            roots=["src"],
            extensions=["py"],
            debounce_ms=200,
            mode="spawn",
            command=sys.executable,
            args=["-m", "http.server", "8000"],
        )
        self.service = SupervisorService(config, notifier=LoggingNotifier())
        self.restarts = 0

        self.service.on("spawn", self._on_spawn)
        self.service.on("change", self._on_change)
        self.service.on("error", self._on_error)

    def _on_spawn(self, process):
        print(f"▶ pid {process.pid}: {process.command_line}")

    def _on_change(self, paths, kind):
        self.restarts += 1
        print(f"↻ {kind.value}: {', '.join(paths)}")

    def _on_error(self, error, process):
        print(f"✗ {error}")

    async def run_for(self, seconds: float) -> None:
        """Run the server, then stop it and wait for shutdown."""
        completion = self.service.start()
        try:
            await asyncio.wait_for(asyncio.shield(completion), timeout=seconds)
        except asyncio.TimeoutError:
            await self.service.close()
        print(f"Stopped after {self.restarts} restart(s)")


async def main():
    project = Path.cwd()
    (project / "src").mkdir(exist_ok=True)
    await DevServer(project).run_for(30)


if __name__ == "__main__":
    asyncio.run(main())
