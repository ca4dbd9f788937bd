import asyncio
import time

import pytest
from fastapi.testclient import TestClient

import db
import web_server
from node_snapshot import NodeSnapshot, PowerState, VerificationStatus
from poll_scheduler import PollScheduler


@pytest.fixture
def scheduler(grid_server, tmp_path, monkeypatch):
    monkeypatch.setattr(db, "DB_PATH", tmp_path / "history.db")
    db.init_db()
    sched = PollScheduler(grid_server.client(), mode="multi")
    web_server.set_scheduler(sched)
    yield sched
    web_server.set_scheduler(None)


def sagging_node():
    return NodeSnapshot("A", connected=True, voltage=150.0, power_state=PowerState.LOW,
                        region="Addis", verification_status=VerificationStatus.NONE)


def test_state_without_monitor():
    web_server.set_scheduler(None)
    with TestClient(web_server.app) as tc:
        assert tc.get("/api/state").json() == {"error": "Monitor not initialized"}
        assert tc.post("/api/command", json={"command": "connect"}).json() == \
            {"error": "Monitor not running"}


def test_state_before_first_poll(scheduler):
    with TestClient(web_server.app) as tc:
        body = tc.get("/api/state").json()
    assert body["online"] is False
    assert body["error"] == "No data yet"
    assert body["nodes"] == []


def test_state_after_reconcile(scheduler):
    scheduler.reconcile([sagging_node()])
    with TestClient(web_server.app) as tc:
        body = tc.get("/api/state").json()
    assert body["online"] is True
    assert body["counts"]["total"] == 1
    node = body["nodes"][0]
    assert node["id"] == "A"
    assert node["label"] == "VERY_LOW"
    assert node["verifyAvailable"] is True


def test_verify_then_duplicate(scheduler, grid_server):
    grid_server.nodes = [{"id": "A", "status": "ONLINE", "power": "LOW",
                          "transformer": "150.0V | Addis", "verificationStatus": "NONE"}]
    scheduler.reconcile([sagging_node()])
    with TestClient(web_server.app) as tc:
        first = tc.post("/api/verify", json={"node_id": "A"}).json()
        second = tc.post("/api/verify", json={"node_id": "A"}).json()
    assert first == {"status": "PENDING", "node_id": "A"}
    assert "already pending" in second["error"]
    assert grid_server.paths().count("/api/verify") == 1


def test_command_errors_are_reported(scheduler, grid_server):
    with TestClient(web_server.app) as tc:
        bad = tc.post("/api/command", json={"command": "explode"}).json()
        good = tc.post("/api/command", json={"command": "connect"}).json()
    assert "unknown action" in bad["error"]
    assert good == {"status": "sent", "command": "connect"}
    assert grid_server.paths()[0] == "/api/action"


def test_history_recorded_when_enabled(scheduler):
    web_server.set_scheduler(scheduler, history=True)
    scheduler.reconcile([sagging_node()])
    with TestClient(web_server.app) as tc:
        rows = tc.get("/api/history", params={"node_id": "A"}).json()
    assert len(rows) == 1
    assert rows[0]["label"] == "VERY_LOW"


def test_websocket_sends_initial_state(scheduler):
    scheduler.reconcile([sagging_node()])
    with TestClient(web_server.app) as tc:
        with tc.websocket_connect("/ws") as ws:
            msg = ws.receive_json()
    assert msg["type"] == "state"
    assert msg["data"]["nodes"][0]["id"] == "A"


def test_spawned_tasks_are_held_until_done():
    async def scenario():
        gate = asyncio.Event()

        async def job():
            await gate.wait()
            return "done"

        task = web_server.spawn(job())
        held = task in web_server._background_tasks
        gate.set()
        result = await task
        await asyncio.sleep(0)
        return held, result, task in web_server._background_tasks

    held, result, still_held = asyncio.run(scenario())
    assert held
    assert result == "done"
    assert not still_held


def test_websocket_command_runs_to_completion(scheduler, grid_server):
    with TestClient(web_server.app) as tc:
        with tc.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"type": "command", "command": "connect"})
            deadline = time.time() + 2.0
            while "/api/action" not in grid_server.paths() and time.time() < deadline:
                time.sleep(0.01)
    assert "/api/action" in grid_server.paths()
    assert grid_server.requests[grid_server.paths().index("/api/action")] \
        .url.params["action"] == "connect"
