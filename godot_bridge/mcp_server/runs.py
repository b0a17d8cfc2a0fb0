"""Launches game processes and keeps track of them.

Each run gets a BridgeClient on its stdio. Plain console output is collected
per run; bridge frames never show up in it. The handshake is attempted a
moment after launch; a game without the addon simply stays unconnected.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from loguru import logger

from godot_bridge.mcp_server.client import BridgeClient, connect_process
from godot_bridge.mcp_server.config import BridgeSettings
from godot_bridge.protocol import ACTIVATION_FLAG

# Seconds the stdout reader gets to drain after the process exits.
EXIT_GRACE = 0.5

BRIDGE_NOT_CONNECTED_MSG = (
    "MCP Bridge addon not connected. Ensure the addon is installed in your Godot "
    "project and the project was launched via run_project."
)


@dataclass
class ProjectRun:
    id: str
    project_path: str
    process: asyncio.subprocess.Process
    args: list[str] = field(default_factory=list)
    status: str = "running"
    exit_code: int | None = None
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    stdout: list[str] = field(default_factory=list)
    stderr: list[str] = field(default_factory=list)
    events: list[dict[str, Any]] = field(default_factory=list)
    bridge: BridgeClient | None = None
    bridge_connected: bool = False
    handshake_task: asyncio.Task[None] | None = field(default=None, repr=False)
    tasks: list[asyncio.Task[Any]] = field(default_factory=list, repr=False)

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "projectPath": self.project_path,
            "status": self.status,
            "startTime": self.start_time.isoformat(),
            "exitCode": self.exit_code,
            "args": self.args,
            "bridgeConnected": self.bridge_connected,
            "capabilities": self.bridge.capabilities if self.bridge else [],
        }


class RunRegistry:
    """All game processes started by this server, keyed by run id.

    ``command`` replaces the engine binary, e.g. ``[python, "-m",
    "godot_bridge.addon"]`` to launch the demo game instead of Godot.
    """

    def __init__(self, settings: BridgeSettings | None = None, command: list[str] | None = None) -> None:
        self.settings = settings or BridgeSettings()
        self.command = command or [self.settings.godot_path]
        self._runs: dict[str, ProjectRun] = {}

    def get(self, run_id: str) -> ProjectRun | None:
        return self._runs.get(run_id)

    def list_runs(self) -> list[ProjectRun]:
        return list(self._runs.values())

    async def launch(self, project_path: str | None = None, args: list[str] | None = None) -> ProjectRun:
        project = project_path or self.settings.project_path
        if not project:
            raise ValueError("Project path is not defined")

        argv = [*self.command, "--path", project, ACTIVATION_FLAG, *(args or [])]
        logger.info("Launching {}", " ".join(argv))
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

        run = ProjectRun(id=str(uuid.uuid4()), project_path=project, process=process, args=list(args or []))
        run.bridge = connect_process(
            process,
            on_output=run.stdout.append,
            on_event=lambda msg: run.events.append({"command": msg.command, "payload": msg.payload}),
            on_disconnect=lambda _reason: setattr(run, "bridge_connected", False),
        )
        self._runs[run.id] = run

        loop = asyncio.get_running_loop()
        run.tasks.append(loop.create_task(self._capture_stderr(run)))
        run.tasks.append(loop.create_task(self._watch_exit(run)))
        run.handshake_task = loop.create_task(self._delayed_handshake(run))
        run.tasks.append(run.handshake_task)
        return run

    async def _capture_stderr(self, run: ProjectRun) -> None:
        stream = run.process.stderr
        if stream is None:
            return
        while True:
            chunk = await stream.read(65536)
            if not chunk:
                break
            run.stderr.append(chunk.decode("utf-8", errors="replace"))

    async def _watch_exit(self, run: ProjectRun) -> None:
        code = await run.process.wait()
        run.status = "exited"
        run.exit_code = code
        run.bridge_connected = False
        logger.info("Run {} exited with code {}", run.id, code)
        # stdout may stay open in a grandchild, so EOF alone is not enough.
        if run.bridge is not None:
            await run.bridge.close("Process exited", grace=EXIT_GRACE)

    async def _delayed_handshake(self, run: ProjectRun) -> None:
        await asyncio.sleep(self.settings.handshake_delay)
        if run.bridge is None or run.status == "exited":
            return
        connected = await run.bridge.handshake(self.settings.handshake_timeout)
        run.bridge_connected = connected
        if connected:
            logger.info(
                "Connected to addon v{}, capabilities: {}",
                run.bridge.version,
                ", ".join(run.bridge.capabilities),
            )
        else:
            logger.info("Run {}: no bridge addon answered the handshake", run.id)

    async def wait_for_bridge(self, run_id: str, timeout: float = 10.0) -> bool:
        """Wait until the launch handshake has finished. Returns whether it connected."""
        run = self._runs.get(run_id)
        if run is None:
            return False
        if run.handshake_task is None:
            return run.bridge_connected
        try:
            await asyncio.wait_for(asyncio.shield(run.handshake_task), timeout)
        except asyncio.TimeoutError:
            return False
        return run.bridge_connected

    def bridge_for(self, run_id: str, capability: str) -> tuple[BridgeClient | None, str | None]:
        """Pre-flight a bridge call. Returns ``(bridge, None)`` or ``(None, message)``."""
        run = self._runs.get(run_id)
        if run is None:
            return None, f"No project found with run ID: {run_id}"
        if run.status == "exited":
            return None, f"Project {run_id} has exited"
        if run.bridge is None or not run.bridge_connected or not run.bridge.connected:
            return None, BRIDGE_NOT_CONNECTED_MSG
        if not run.bridge.has_capability(capability):
            return None, f"Bridge does not support {capability} capability"
        return run.bridge, None

    async def stop(self, run_id: str, timeout: float = 5.0) -> str:
        run = self._runs.get(run_id)
        if run is None:
            return f"No project found with run ID: {run_id}"
        if run.status == "exited":
            return f"Project with run ID {run_id} has already exited"
        try:
            run.process.terminate()
        except ProcessLookupError:
            pass
        try:
            await asyncio.wait_for(run.process.wait(), timeout)
        except asyncio.TimeoutError:
            run.process.kill()
            await run.process.wait()
        return f"Stopped project with run ID: {run_id}"

    async def shutdown(self) -> None:
        for run in self._runs.values():
            if run.status != "exited":
                await self.stop(run.id)
            if run.bridge is not None:
                await run.bridge.close()
            for task in run.tasks:
                task.cancel()
            await asyncio.gather(*run.tasks, return_exceptions=True)
