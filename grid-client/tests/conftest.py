import os
import sys

import httpx
import pytest

CODE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "client-code"))
if CODE_DIR not in sys.path:
    sys.path.insert(0, CODE_DIR)

from grid_client import GridClient  # noqa: E402


class FakeGridServer:
    """In-memory HQ / district endpoint served through httpx.MockTransport."""

    def __init__(self):
        self.nodes = []
        self.status = {
            "connected": True,
            "nodeId": "addis_001",
            "region": "West Addis Ababa",
            "voltage": 220.0,
            "powerState": "NORMAL",
            "logs": [],
        }
        self.stats = {"serverId": "1", "isLeader": True}
        self.verify_reply = {"status": "sent"}
        self.configure_reply = {"status": "configured"}
        self.down = False
        self.http_status = None
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.down:
            raise httpx.ConnectError("connection refused", request=request)
        if self.http_status is not None:
            return httpx.Response(self.http_status, text="boom")

        path = request.url.path
        params = request.url.params
        if path == "/api/nodes":
            return httpx.Response(200, json=self.nodes)
        if path == "/api/status":
            return httpx.Response(200, json=self.status)
        if path == "/api/stats":
            return httpx.Response(200, json=self.stats)
        if path == "/api/action":
            if request.method != "POST":
                return httpx.Response(405, text="Method Not Allowed")
            if params.get("action") not in ("connect", "disconnect", "reconnect",
                                             "outage_start", "outage_end", "low_voltage"):
                return httpx.Response(400, text="Unknown Action")
            return httpx.Response(200, json={"status": "ok"})
        if path == "/api/configure":
            return httpx.Response(200, json=self.configure_reply)
        if path == "/api/set_voltage":
            try:
                v = float(params.get("v"))
            except (TypeError, ValueError):
                return httpx.Response(400, json={"error": "Invalid Voltage"})
            self.status["voltage"] = v
            return httpx.Response(200, json={"status": "ok"})
        if path == "/api/verify":
            if self.verify_reply.get("status") in ("sent", "queued_web"):
                for node in self.nodes:
                    if node.get("id") == params.get("id"):
                        node["verificationStatus"] = "PENDING"
            return httpx.Response(200, json=self.verify_reply)
        return httpx.Response(404, text="Not Found")

    def client(self, **kwargs) -> GridClient:
        return GridClient("http://grid.test",
                          transport=httpx.MockTransport(self.handler), **kwargs)

    def paths(self) -> list:
        return [r.url.path for r in self.requests]


@pytest.fixture
def grid_server():
    return FakeGridServer()
