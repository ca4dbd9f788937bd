"""Read-only view model published to the presentation layer once per cycle."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Optional

from classifier import Classification, Label, needs_verification
from log_watcher import TriggerEvent
from node_snapshot import NodeSnapshot, ServerStats, VerificationStatus


@dataclass(frozen=True)
class NodeView:
    node_id: str
    region: str
    voltage: float
    power_state: str
    connected: bool
    last_seen: Optional[str]
    load: Optional[int]
    label: Label
    severity: int
    verification: VerificationStatus
    verify_available: bool
    logs: tuple[str, ...] = ()

    @classmethod
    def build(cls, snapshot: NodeSnapshot, result: Classification,
              verification: VerificationStatus) -> "NodeView":
        return cls(
            node_id=snapshot.node_id,
            region=snapshot.region,
            voltage=snapshot.voltage,
            power_state=snapshot.power_state.value,
            connected=snapshot.connected,
            last_seen=snapshot.last_seen,
            load=snapshot.load,
            label=result.label,
            severity=result.severity,
            verification=verification,
            verify_available=needs_verification(snapshot, result, verification),
            logs=tuple(snapshot.logs),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.node_id,
            "region": self.region,
            "voltage": self.voltage,
            "powerState": self.power_state,
            "connected": self.connected,
            "lastSeen": self.last_seen,
            "load": self.load,
            "label": self.label.value,
            "severity": self.severity,
            "verification": self.verification.value,
            "verifyAvailable": self.verify_available,
            "logs": list(self.logs),
        }


@dataclass(frozen=True)
class ViewModel:
    """Merged state of one poll cycle.

    `online` is the system indicator: False when the last fetch failed, in
    which case `nodes` still holds the last known state and `events` is empty.
    """
    mode: str
    online: bool
    nodes: tuple[NodeView, ...] = ()
    events: tuple[TriggerEvent, ...] = ()
    stats: Optional[ServerStats] = None
    error: Optional[str] = None
    cycle: int = 0
    timestamp: float = field(default_factory=time.time)

    def node(self, node_id: str) -> Optional[NodeView]:
        for nv in self.nodes:
            if nv.node_id == node_id:
                return nv
        return None

    def counts(self) -> dict[str, int]:
        """Header counters: total / online / offline / outage."""
        online = sum(1 for nv in self.nodes if nv.connected)
        return {
            "total": len(self.nodes),
            "online": online,
            "offline": len(self.nodes) - online,
            "outage": sum(1 for nv in self.nodes if nv.label is Label.OUTAGE),
        }

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "cycle": self.cycle,
            "mode": self.mode,
            "online": self.online,
            "error": self.error,
            "stats": None if self.stats is None else {
                "serverId": self.stats.server_id,
                "isLeader": self.stats.is_leader,
            },
            "counts": self.counts(),
            "nodes": [nv.to_dict() for nv in self.nodes],
            "events": [
                {"nodeId": ev.node_id, "text": ev.text, "index": ev.index}
                for ev in self.events
            ],
        }
