from __future__ import annotations

import asyncio
import json
import logging
import os
from collections import deque
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Set

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from ..config import AppConfig
from ..logging_config import configure_logging
from ..sim.core.engine import SimulationEngine
from ..sim.core.errors import CompileError
from ..sim.core.scheduler import AsyncioScheduler
from ..sim.model.types import Model, Parameter, Visualization
from ..sim.types.snapshot import Snapshot

logger = logging.getLogger(__name__)

MAX_QUEUED_SNAPSHOTS = 256


@dataclass(frozen=True)
class QueuedSnapshot:
    tick: int
    payload: str


class SimulationController:
    """Owns one engine and fans its snapshots out to WebSocket clients.

    Snapshots stay queued until a client acknowledges their tick, so a client
    that reconnects picks up where it left off.
    """

    def __init__(self, config: AppConfig):
        self.config = config
        self.engine = SimulationEngine(config.engine, AsyncioScheduler(config.engine.frame_interval))
        self.broadcast_interval = max(1, config.broadcast_interval)
        self.last_error: Optional[Dict[str, Any]] = None
        self.clients: Set[WebSocket] = set()
        self._client_last_sent: Dict[WebSocket, int] = {}
        self._snapshot_queue: deque[QueuedSnapshot] = deque(maxlen=MAX_QUEUED_SNAPSHOTS)
        self._queue_lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()
        self.engine.on_snapshot = self._on_snapshot

    def load_model(self, raw: dict) -> bool:
        self.last_error = None
        model = Model.from_dict(raw)
        loaded = self.engine.initialize(model, on_error=self._on_error)
        if loaded:
            for client in self._client_last_sent:
                self._client_last_sent[client] = -1
        elif self.last_error is None:
            self.last_error = {"type": "configuration", "message": "model has no agent types or populations"}
        return loaded

    def status(self) -> Dict[str, Any]:
        metrics = self.engine.metrics
        return {
            "status": self.engine.status.value,
            "running": self.engine.is_running,
            "initialized": self.engine.initialized,
            "tick": self.engine.tick,
            "population": self.engine.agent_count,
            "ticksPerFrame": self.engine.ticks_per_frame,
            "metrics": asdict(metrics) if metrics is not None else None,
            "error": self.last_error,
        }

    async def reset(self) -> None:
        async with self._queue_lock:
            self._snapshot_queue.clear()
        for client in self._client_last_sent:
            self._client_last_sent[client] = -1
        self.engine.reset()

    async def acknowledge(self, tick: int) -> None:
        async with self._queue_lock:
            while self._snapshot_queue and self._snapshot_queue[0].tick <= tick:
                self._snapshot_queue.popleft()

    def _on_error(self, error: Exception) -> None:
        if isinstance(error, CompileError):
            self.last_error = error.to_dict()
        else:
            self.last_error = {"type": "error", "message": str(error)}
        logger.warning("Model rejected: %s", error)

    def _on_snapshot(self, snapshot: Snapshot) -> None:
        if self.engine.is_running and snapshot.tick % self.broadcast_interval != 0:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self._broadcast_snapshot(snapshot))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _serialize_snapshot(self, snapshot: Snapshot) -> QueuedSnapshot:
        payload = {
            "type": "snapshot",
            "tick": snapshot.tick,
            "payload": {
                "tick": snapshot.tick,
                "status": snapshot.status,
                "metrics": asdict(snapshot.metrics),
                "agents": [asdict(agent) for agent in snapshot.agents],
                "world": asdict(snapshot.world),
                "series": snapshot.series,
            },
        }
        return QueuedSnapshot(tick=snapshot.tick, payload=json.dumps(payload))

    async def _send_pending_snapshots(self, client: WebSocket) -> None:
        last_sent = self._client_last_sent.get(client, -1)
        async with self._queue_lock:
            pending = [item for item in self._snapshot_queue if item.tick > last_sent]
        for item in pending:
            await client.send_text(item.payload)
            last_sent = item.tick
        self._client_last_sent[client] = last_sent

    async def _broadcast_snapshot(self, snapshot: Snapshot | None = None) -> None:
        snapshot = snapshot or self.engine.snapshot()
        if snapshot is None:
            return
        queued = self._serialize_snapshot(snapshot)
        async with self._queue_lock:
            self._snapshot_queue.append(queued)
        stale: Set[WebSocket] = set()
        for client in list(self.clients):
            try:
                await self._send_pending_snapshots(client)
            except WebSocketDisconnect:
                stale.add(client)
        for client in stale:
            self.clients.discard(client)
            self._client_last_sent.pop(client, None)


app = FastAPI(title="ABM Studio Simulation")
_config_path = os.getenv("ABMSTUDIO_CONFIG")
controller = SimulationController(AppConfig.from_yaml(_config_path) if _config_path else AppConfig())


@app.on_event("shutdown")
async def _shutdown() -> None:
    controller.engine.cleanup()


@app.get("/api/status")
async def status() -> JSONResponse:
    return JSONResponse(controller.status())


@app.post("/api/model")
async def load_model(payload: dict) -> JSONResponse:
    try:
        loaded = controller.load_model(payload)
    except (KeyError, TypeError, ValueError) as exc:
        return JSONResponse({"error": {"type": "invalid-model", "message": str(exc)}}, status_code=400)
    if not loaded:
        return JSONResponse({"error": controller.last_error}, status_code=422)
    return JSONResponse(controller.status())


@app.post("/api/control/play")
async def play() -> JSONResponse:
    controller.engine.play()
    return JSONResponse(controller.status())


@app.post("/api/control/pause")
async def pause() -> JSONResponse:
    controller.engine.pause()
    return JSONResponse(controller.status())


@app.post("/api/control/step")
async def step() -> JSONResponse:
    controller.engine.step()
    return JSONResponse(controller.status())


@app.post("/api/control/reset")
async def reset() -> JSONResponse:
    await controller.reset()
    return JSONResponse(controller.status())


@app.post("/api/control/speed")
async def set_speed(payload: dict) -> JSONResponse:
    controller.engine.set_speed(int(payload.get("ticksPerFrame", payload.get("ticks_per_frame", 1))))
    return JSONResponse({"ticksPerFrame": controller.engine.ticks_per_frame})


@app.post("/api/parameters")
async def update_parameters(payload: dict) -> JSONResponse:
    if "parameters" in payload:
        controller.engine.sync_parameters(Parameter.from_dict(item) for item in payload["parameters"])
    else:
        controller.engine.update_parameter(payload["name"], payload.get("value"))
    environment = controller.engine.environment
    return JSONResponse({"parameters": environment.parameters.as_dict() if environment else {}})


@app.post("/api/visualizations")
async def update_visualizations(payload: dict) -> JSONResponse:
    controller.engine.update_visualizations(
        Visualization.from_dict(item) for item in payload.get("visualizations", [])
    )
    return JSONResponse({"series": controller.engine.chart_series_values()})


@app.get("/api/charts/{viz_id}/{series_id}")
async def chart_series(viz_id: str, series_id: str) -> JSONResponse:
    return JSONResponse(
        {
            "value": controller.engine.get_chart_series_value(viz_id, series_id),
            "history": controller.engine.get_chart_series_history(viz_id, series_id),
        }
    )


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    await websocket.accept()
    controller.clients.add(websocket)
    controller._client_last_sent[websocket] = -1
    await controller._send_pending_snapshots(websocket)
    try:
        while True:
            message = await websocket.receive_text()
            try:
                payload = json.loads(message)
            except json.JSONDecodeError:
                continue
            if payload.get("type") == "ack":
                tick = payload.get("tick")
                if isinstance(tick, int):
                    await controller.acknowledge(tick)
    except WebSocketDisconnect:
        controller.clients.discard(websocket)
        controller._client_last_sent.pop(websocket, None)


def main() -> None:
    configure_logging()
    port = int(os.getenv("ABMSTUDIO_PORT", "8000"))
    uvicorn.run(app, host="0.0.0.0", port=port, log_level="info")


__all__ = ["app", "controller", "main"]
