"""Data classes for one polling cycle's view of a node, plus payload ingestion.

Both endpoint shapes are normalised here, once, so nothing downstream has to
re-parse strings:

  single-device  GET /status -> {connected, nodeId, region, voltage, powerState, logs}
  multi-node     GET /nodes  -> [{id, status, power, transformer, lastSeen,
                                  verificationStatus, load}, ...]

Missing or garbled fields fall back to the most alarming reading (voltage 0.0,
power OUTAGE) so an unknown node is never shown as healthy.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from constants import LEADING_NUMBER_RE, UNKNOWN_REGION


class PowerState(str, Enum):
    NORMAL = "NORMAL"
    LOW = "LOW"
    OFF = "OFF"
    OUTAGE = "OUTAGE"


class VerificationStatus(str, Enum):
    NONE = "NONE"
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"


@dataclass
class NodeSnapshot:
    """One node as reported by the server in a single poll cycle."""
    node_id: str
    connected: bool = False
    voltage: float = 0.0                 # V
    power_state: PowerState = PowerState.OUTAGE
    region: str = UNKNOWN_REGION
    last_seen: Optional[str] = None      # Display only
    verification_status: Optional[VerificationStatus] = None  # None = not reported
    logs: list[str] = field(default_factory=list)
    load: Optional[int] = None           # Load % (multi-node endpoint only)


@dataclass
class ServerStats:
    """Leader/follower badge info from GET /stats."""
    server_id: str
    is_leader: bool


# ---- Field normalisers ----

def parse_voltage(value: Any) -> float:
    """Parse a voltage the way the dashboard's parseFloat did.

    "230.5V" -> 230.5, 231 -> 231.0, None/""/"abc" -> 0.0. Non-finite
    values also collapse to 0.0.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        v = float(value)
    else:
        m = LEADING_NUMBER_RE.match(str(value))
        if not m:
            return 0.0
        try:
            v = float(m.group(1))
        except ValueError:
            return 0.0
    if not math.isfinite(v):
        return 0.0
    return v


def normalize_power_state(value: Any) -> PowerState:
    """Case-insensitive power state; unknown or missing means OUTAGE."""
    if value is None:
        return PowerState.OUTAGE
    try:
        return PowerState(str(value).strip().upper())
    except ValueError:
        return PowerState.OUTAGE


def normalize_verification(value: Any) -> Optional[VerificationStatus]:
    """Server verification status; None when the field is absent.

    An empty or unrecognised value is read as NONE (the server has a record
    but no request is open).
    """
    if value is None:
        return None
    try:
        return VerificationStatus(str(value).strip().upper())
    except ValueError:
        return VerificationStatus.NONE


def _parse_connected(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in ("1", "true", "yes", "online", "connected")


def _parse_logs(value: Any) -> list[str]:
    if not value:
        return []
    if not isinstance(value, (list, tuple)):
        raise ValueError(f"logs must be a list, got {type(value).__name__}")
    return [str(entry) for entry in value]


def _parse_load(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _clean_region(value: Any) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


# ---- Payload ingestion ----

def from_status_payload(payload: Any) -> NodeSnapshot:
    """Build a snapshot from the single-device GET /status body."""
    if not isinstance(payload, dict):
        raise ValueError(f"status payload must be an object, got {type(payload).__name__}")
    if "error" in payload and "nodeId" not in payload:
        raise ValueError(f"status endpoint error: {payload['error']}")

    node_id = str(payload.get("nodeId") or payload.get("id") or "").strip()
    if not node_id:
        raise ValueError("status payload has no nodeId")

    return NodeSnapshot(
        node_id=node_id,
        connected=_parse_connected(payload.get("connected")),
        voltage=parse_voltage(payload.get("voltage")),
        power_state=normalize_power_state(payload.get("powerState", payload.get("power"))),
        region=_clean_region(payload.get("region")) or UNKNOWN_REGION,
        last_seen=payload.get("lastSeen"),
        verification_status=normalize_verification(payload.get("verificationStatus")),
        logs=_parse_logs(payload.get("logs")),
    )


def from_node_payload(item: Any) -> NodeSnapshot:
    """Build a snapshot from one entry of the multi-node GET /nodes list.

    Voltage and region may come as dedicated fields or packed into the
    "transformer" string ("230.0V | Addis"); dedicated fields win. A
    transformer region of "Unknown" is treated as not given.
    """
    if not isinstance(item, dict):
        raise ValueError(f"node entry must be an object, got {type(item).__name__}")

    node_id = str(item.get("id") or item.get("nodeId") or "").strip()
    if not node_id:
        raise ValueError("node entry has no id")

    t_voltage = None
    t_region = None
    transformer = item.get("transformer")
    if transformer:
        parts = str(transformer).split("|")
        t_voltage = parts[0].strip()
        if len(parts) > 1 and parts[1].strip() != UNKNOWN_REGION:
            t_region = _clean_region(parts[1])

    voltage_raw = item["voltage"] if item.get("voltage") is not None else t_voltage
    region = _clean_region(item.get("region")) or t_region or UNKNOWN_REGION

    if "status" in item:
        connected = _parse_connected(item.get("status"))
    else:
        connected = _parse_connected(item.get("connected"))

    return NodeSnapshot(
        node_id=node_id,
        connected=connected,
        voltage=parse_voltage(voltage_raw),
        power_state=normalize_power_state(item.get("power", item.get("powerState"))),
        region=region,
        last_seen=item.get("lastSeen"),
        verification_status=normalize_verification(item.get("verificationStatus")),
        logs=_parse_logs(item.get("logs")),
        load=_parse_load(item.get("load")),
    )


def parse_nodes_payload(payload: Any) -> list[NodeSnapshot]:
    """Build snapshots from the GET /nodes body (a JSON list)."""
    if isinstance(payload, dict) and "error" in payload:
        raise ValueError(f"nodes endpoint error: {payload['error']}")
    if not isinstance(payload, list):
        raise ValueError(f"nodes payload must be a list, got {type(payload).__name__}")
    snapshots = [from_node_payload(item) for item in payload]
    seen = set()
    for s in snapshots:
        if s.node_id in seen:
            raise ValueError(f"duplicate node id in snapshot: {s.node_id}")
        seen.add(s.node_id)
    return snapshots


def parse_stats_payload(payload: Any) -> ServerStats:
    """Build ServerStats from the GET /stats body."""
    if not isinstance(payload, dict) or "serverId" not in payload:
        raise ValueError("stats payload must be an object with serverId")
    return ServerStats(
        server_id=str(payload["serverId"]),
        is_leader=bool(payload.get("isLeader", False)),
    )
