"""HTTP client for the grid telemetry/control endpoint.

Wraps an httpx.AsyncClient: status fetches for the poll loop, the command
endpoints (action, configure, set_voltage, verify), and the log sink every
other module writes its diagnostics through.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import httpx

from constants import (
    ACTION_PATH,
    ACTION_VERBS,
    API_PREFIX,
    CONFIGURE_PATH,
    DEFAULT_BASE_URL,
    NODES_PATH,
    SET_VOLTAGE_PATH,
    STATS_PATH,
    STATUS_PATH,
    VERIFY_PATH,
)
from node_snapshot import (
    NodeSnapshot,
    ServerStats,
    from_status_payload,
    parse_nodes_payload,
    parse_stats_payload,
)

# Check for textual availability (needed for log routing)
_HAS_TEXTUAL = False
try:
    from textual.app import App  # noqa: F401
    _HAS_TEXTUAL = True
except ImportError:
    pass


class GridClientError(Exception):
    """Base class for everything the client raises."""


class TransportError(GridClientError):
    """Network failure, non-2xx response, or a payload we could not parse."""


class CommandRejected(GridClientError):
    """The server (or a local check) refused a command. Never retried."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class GridClient:
    def __init__(self, base_url: str = DEFAULT_BASE_URL, timeout: float = 5.0,
                 api_prefix: str = API_PREFIX,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.api_prefix = "/" + api_prefix.strip("/") if api_prefix.strip("/") else ""
        self.http = httpx.AsyncClient(
            base_url=self.base_url, timeout=timeout, transport=transport)
        self.app = None  # Reference to TUI app (set by GridMonitorApp)
        self.verbose = False  # CLI: show debug lines
        self._web_enabled = False  # Set True by monitor.py when --web is used

    def log(self, text: str, style: str = "", _debug: bool = False):
        """Post a log message to the TUI, or print() if no TUI.

        Args:
            _debug: If True, only show when debug mode is on (F2 / 'debug'
                    in the TUI, --verbose on the command line).
        """
        if _debug:
            if self.app and _HAS_TEXTUAL:
                if not getattr(self.app, 'debug_mode', False):
                    return
            elif not self.verbose:
                return
        if self.app and _HAS_TEXTUAL:
            try:
                self.app.post_message(self.app.LogMsg(text, style))
            except Exception as e:
                print(f"  {text}  [log error: {e}]")
        else:
            print(f"  {text}")

        # Web console streaming (skip debug messages to reduce noise)
        if self._web_enabled and not _debug:
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                return  # No running loop (called from sync code)
            import web_server
            web_server.spawn(web_server.broadcast_log(text))

    def _url(self, path: str) -> str:
        return f"{self.api_prefix}{path}"

    # ---- Fetches (used by the poll loop) ----

    async def _get_json(self, path: str, params: Optional[dict] = None) -> Any:
        try:
            resp = await self.http.get(self._url(path), params=params)
        except httpx.HTTPError as e:
            raise TransportError(f"GET {path} failed: {e!r}") from e
        if resp.is_error:
            raise TransportError(f"GET {path} returned HTTP {resp.status_code}")
        try:
            return resp.json()
        except ValueError as e:
            raise TransportError(f"GET {path} returned malformed JSON") from e

    async def fetch_status(self) -> NodeSnapshot:
        """Single-device snapshot from GET /status."""
        payload = await self._get_json(STATUS_PATH)
        try:
            return from_status_payload(payload)
        except ValueError as e:
            raise TransportError(f"malformed status payload: {e}") from e

    async def fetch_nodes(self) -> list[NodeSnapshot]:
        """Multi-node snapshot set from GET /nodes."""
        payload = await self._get_json(NODES_PATH)
        try:
            return parse_nodes_payload(payload)
        except ValueError as e:
            raise TransportError(f"malformed nodes payload: {e}") from e

    async def fetch_stats(self) -> ServerStats:
        """Leader/follower info from GET /stats."""
        payload = await self._get_json(STATS_PATH)
        try:
            return parse_stats_payload(payload)
        except ValueError as e:
            raise TransportError(f"malformed stats payload: {e}") from e

    # ---- Commands ----

    async def _command(self, method: str, path: str, params: dict) -> dict:
        """Send a command; return its JSON body or raise CommandRejected."""
        try:
            resp = await self.http.request(method, self._url(path), params=params)
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {path} failed: {e!r}") from e

        try:
            body = resp.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            body = {"raw": resp.text.strip()} if resp.text.strip() else {}

        if resp.is_error:
            reason = body.get("error") or body.get("raw") or f"HTTP {resp.status_code}"
            raise CommandRejected(f"{path.strip('/')}: {reason}")
        return body

    async def request_action(self, verb: str) -> dict:
        """POST /action?action=<verb> (connect, disconnect, reconnect, ...)."""
        verb = verb.strip().lower()
        if verb not in ACTION_VERBS:
            raise CommandRejected(f"unknown action '{verb}'")
        body = await self._command("POST", ACTION_PATH, {"action": verb})
        if "error" in body:
            raise CommandRejected(f"action {verb}: {body['error']}")
        self.log(f"[CMD] action {verb} -> {body.get('status', 'ok')}")
        return body

    async def configure(self, node_id: str, region: str) -> dict:
        """Assign the device identity, then connect immediately."""
        node_id = node_id.strip()
        if not node_id:
            raise CommandRejected("configure needs a node id")
        body = await self._command("GET", CONFIGURE_PATH,
                                   {"id": node_id, "region": region.strip()})
        if body.get("status") != "configured":
            raise CommandRejected(
                f"configure: {body.get('error') or body.get('status') or 'no status'}")
        self.log(f"[CMD] configured as {node_id} ({region})")
        await self.request_action("connect")
        return body

    async def set_voltage(self, voltage) -> dict:
        """Manual voltage override for the simulated device."""
        try:
            v = float(voltage)
        except (TypeError, ValueError):
            raise CommandRejected(f"invalid voltage: {voltage!r}")
        body = await self._command("GET", SET_VOLTAGE_PATH, {"v": v})
        if "error" in body:
            raise CommandRejected(f"set_voltage: {body['error']}")
        self.log(f"[CMD] voltage override {v:.1f}V")
        return body

    async def request_verification(self, node_id: str) -> dict:
        """GET /verify?id=. Returns the body; the tracker judges the status."""
        return await self._command("GET", VERIFY_PATH, {"id": node_id})

    async def aclose(self):
        await self.http.aclose()
