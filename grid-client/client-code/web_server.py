"""FastAPI web server with WebSocket support for the grid monitor.

Embedded in the monitor process. Exposes the latest reconciled view model to
a browser dashboard and forwards operator commands to the poll scheduler.
Every published view is pushed to WebSocket clients as it is produced.
"""

import asyncio
import json
import time
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

import db
from grid_client import GridClientError


# --- WebSocket Manager ---

class ConnectionManager:
    """Manages WebSocket connections and broadcasts."""

    def __init__(self):
        self.active_connections: list[WebSocket] = []

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.append(websocket)

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)

    async def broadcast(self, message: dict):
        """Send JSON message to all connected WebSocket clients."""
        if not self.active_connections:
            return
        data = json.dumps(message)
        disconnected = []
        for conn in self.active_connections:
            try:
                await conn.send_text(data)
            except Exception:
                disconnected.append(conn)
        for conn in disconnected:
            if conn in self.active_connections:
                self.active_connections.remove(conn)


# --- FastAPI App ---

app = FastAPI(title="Grid Monitor")
manager = ConnectionManager()

# Reference to the poll scheduler (set by monitor.py at startup)
_scheduler = None
_history_enabled = False

# Fire-and-forget tasks stay referenced here until they finish
_background_tasks: set[asyncio.Task] = set()


def spawn(coro) -> asyncio.Task:
    """Schedule a coroutine on the running loop and hold it until done."""
    task = asyncio.get_running_loop().create_task(coro)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


def set_scheduler(scheduler, history: bool = False):
    """Called by monitor.py to inject the PollScheduler and subscribe to its views."""
    global _scheduler, _history_enabled
    if _scheduler is not None:
        _scheduler.remove_listener(publish_view)
    _scheduler = scheduler
    _history_enabled = history
    if scheduler is not None:
        scheduler.add_listener(publish_view)


@app.get("/")
async def index():
    """API info."""
    return {
        "message": "Grid Monitor API",
        "docs": "/docs",
        "endpoints": {
            "state": "GET /api/state",
            "history": "GET /api/history?node_id=&minutes=30",
            "events": "GET /api/events?node_id=&limit=100",
            "command": "POST /api/command",
            "verify": "POST /api/verify",
            "voltage": "POST /api/voltage",
            "configure": "POST /api/configure",
            "websocket": "ws://<host>/ws",
        },
    }


# --- WebSocket Endpoint ---

@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await manager.connect(websocket)
    try:
        # Send initial state on connect (always, even if no poll has finished)
        await websocket.send_text(json.dumps({
            "type": "state",
            "data": _build_state()
        }))
        # Listen for commands from the browser
        while True:
            data = await websocket.receive_text()
            try:
                msg = json.loads(data)
            except ValueError:
                continue
            if not isinstance(msg, dict) or not _scheduler:
                continue
            if msg.get("type") == "command":
                spawn(_run_command(_scheduler.request_action(
                    str(msg.get("command", "")))))
            elif msg.get("type") == "verify":
                spawn(_run_command(_scheduler.request_verification(
                    str(msg.get("node_id", "")))))
    except WebSocketDisconnect:
        manager.disconnect(websocket)
    except Exception:
        manager.disconnect(websocket)


async def _run_command(coro) -> dict:
    """Await a scheduler command; turn a refusal into an error dict."""
    try:
        result = await coro
    except GridClientError as e:
        if _scheduler:
            _scheduler.client.log(f"[WEB] command failed: {e}", style="bold red")
        await broadcast_state_change("command_failed", {"error": str(e)})
        return {"error": str(e)}
    if isinstance(result, dict):
        return {"status": result.get("status", "ok")}
    return {"status": getattr(result, "value", str(result))}


# --- REST API ---

@app.get("/api/state")
async def get_state():
    """Return the latest reconciled view."""
    return _build_state()


@app.get("/api/history")
async def get_history(node_id: Optional[str] = None, minutes: int = 30, limit: int = 500):
    """Return historical classified readings."""
    return db.get_history(node_id=node_id, minutes=minutes, limit=limit)


@app.get("/api/events")
async def get_events(node_id: Optional[str] = None, limit: int = 100):
    """Return recorded trigger events, newest first."""
    return db.get_events(node_id=node_id, limit=limit)


class CommandRequest(BaseModel):
    command: str


class VerifyRequest(BaseModel):
    node_id: str


class VoltageRequest(BaseModel):
    voltage: float


class ConfigureRequest(BaseModel):
    node_id: str
    region: str = "Unknown"


@app.post("/api/command")
async def post_command(req: CommandRequest):
    """Fire a generic action (connect, disconnect, reconnect, ...)."""
    if not _scheduler:
        return {"error": "Monitor not running"}
    result = await _run_command(_scheduler.request_action(req.command))
    if "error" in result:
        return result
    return {"status": "sent", "command": req.command}


@app.post("/api/verify")
async def post_verify(req: VerifyRequest):
    """Ask the server to re-check a node."""
    if not _scheduler:
        return {"error": "Monitor not running"}
    result = await _run_command(_scheduler.request_verification(req.node_id))
    if "error" in result:
        return result
    return {"status": result["status"], "node_id": req.node_id}


@app.post("/api/voltage")
async def post_voltage(req: VoltageRequest):
    """Manual voltage override on the simulated device."""
    if not _scheduler:
        return {"error": "Monitor not running"}
    return await _run_command(_scheduler.set_voltage(req.voltage))


@app.post("/api/configure")
async def post_configure(req: ConfigureRequest):
    """Assign the device identity and connect."""
    if not _scheduler:
        return {"error": "Monitor not running"}
    return await _run_command(_scheduler.configure(req.node_id, req.region))


# --- State Builder ---

def _build_state() -> dict:
    """Build the state dict from the scheduler's latest view."""
    if not _scheduler:
        return {"error": "Monitor not initialized"}
    view = _scheduler.view
    if view is None:
        return {
            "timestamp": time.time(),
            "mode": _scheduler.mode,
            "online": False,
            "error": "No data yet",
            "stats": None,
            "counts": {"total": 0, "online": 0, "offline": 0, "outage": 0},
            "nodes": [],
            "events": [],
        }
    return view.to_dict()


# --- Broadcast Helpers (called from scheduler listeners / client log) ---

def publish_view(view):
    """Scheduler listener: record history and push the view to browsers."""
    if _history_enabled:
        try:
            db.insert_view(view)
        except Exception as e:
            if _scheduler:
                _scheduler.client.log(f"[WEB] history write failed: {e!r}", _debug=True)
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return
    spawn(broadcast_view(view))


async def broadcast_view(view):
    await manager.broadcast({
        "type": "view",
        "data": view.to_dict(),
        "timestamp": time.time(),
    })
    for ev in view.events:
        await manager.broadcast({
            "type": "trigger",
            "node_id": ev.node_id,
            "text": ev.text,
            "index": ev.index,
            "timestamp": time.time(),
        })


async def broadcast_state_change(event: str, details: dict = None):
    """Called on command failures and other one-off events."""
    await manager.broadcast({
        "type": "event",
        "event": event,
        "data": details or {},
        "timestamp": time.time(),
    })


async def broadcast_log(text: str):
    """Called on every client log message for console streaming."""
    await manager.broadcast({
        "type": "log",
        "text": text,
        "timestamp": time.time(),
    })
