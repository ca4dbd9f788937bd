"""Voltage/power classifier.

Maps one node's voltage, power state and connectivity to a display label
and a severity rank. Rules, highest priority first:

  1. power state OFF or OUTAGE        -> OUTAGE   (even when disconnected)
  2. voltage bands                    -> OUTAGE / VERY_LOW / LOW / NORMAL
  3. disconnected and not yet OUTAGE  -> OFFLINE  (overrides the voltage band)

An outage is always shown as an outage; a dead link only hides a healthy or
degraded voltage reading.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from constants import LOW_MIN_V, NORMAL_MIN_V, OUTAGE_MAX_V, SEVERITY
from node_snapshot import (
    NodeSnapshot,
    PowerState,
    VerificationStatus,
    normalize_power_state,
    parse_voltage,
)


class Label(str, Enum):
    NORMAL = "NORMAL"
    LOW = "LOW"
    VERY_LOW = "VERY_LOW"
    OUTAGE = "OUTAGE"
    OFFLINE = "OFFLINE"


@dataclass(frozen=True)
class Classification:
    label: Label
    severity: int


def _result(label: Label) -> Classification:
    return Classification(label=label, severity=SEVERITY[label.value])


def voltage_band(voltage: float) -> Label:
    """Label for a voltage reading alone."""
    if voltage <= OUTAGE_MAX_V:
        return Label.OUTAGE
    if voltage < LOW_MIN_V:
        return Label.VERY_LOW
    if voltage < NORMAL_MIN_V:
        return Label.LOW
    return Label.NORMAL


def classify(voltage, power_state: Union[PowerState, str, None],
             connected: bool) -> Classification:
    """Classify a single reading. Pure and deterministic.

    `voltage` may be anything parse_voltage accepts; missing or garbled
    readings count as 0.0 and therefore as OUTAGE.
    """
    v = parse_voltage(voltage)
    if not isinstance(power_state, PowerState):
        power_state = normalize_power_state(power_state)

    if power_state in (PowerState.OFF, PowerState.OUTAGE):
        return _result(Label.OUTAGE)

    label = voltage_band(v)
    if not connected and label is not Label.OUTAGE:
        label = Label.OFFLINE
    return _result(label)


def classify_snapshot(snapshot: NodeSnapshot) -> Classification:
    return classify(snapshot.voltage, snapshot.power_state, snapshot.connected)


def needs_verification(snapshot: NodeSnapshot, result: Classification,
                       state: Optional[VerificationStatus]) -> bool:
    """True when the operator should be offered a "check again" request.

    The node must look anomalous (power state, label or link) and have no
    open or confirmed verification.
    """
    anomalous = (
        snapshot.power_state is not PowerState.NORMAL
        or result.label is not Label.NORMAL
        or not snapshot.connected
    )
    if not anomalous:
        return False
    return state not in (VerificationStatus.PENDING, VerificationStatus.CONFIRMED)
