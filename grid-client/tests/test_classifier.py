import pytest

from classifier import Label, classify, classify_snapshot, needs_verification, voltage_band
from node_snapshot import NodeSnapshot, PowerState, VerificationStatus


@pytest.mark.parametrize("voltage,expected", [
    (0.0, Label.OUTAGE),
    (10.0, Label.OUTAGE),
    (10.001, Label.VERY_LOW),
    (10.01, Label.VERY_LOW),
    (169.99, Label.VERY_LOW),
    (169.999, Label.VERY_LOW),
    (170.0, Label.LOW),
    (199.99, Label.LOW),
    (200.0, Label.NORMAL),
    (245.0, Label.NORMAL),
])
def test_voltage_band_boundaries(voltage, expected):
    assert voltage_band(voltage) is expected
    assert classify(voltage, "NORMAL", True).label is expected


def test_power_state_outage_wins_over_healthy_voltage():
    assert classify(230.0, PowerState.OUTAGE, True).label is Label.OUTAGE
    assert classify(250.0, "OFF", True).label is Label.OUTAGE
    assert classify(230.0, "off", True).label is Label.OUTAGE


def test_outage_stays_outage_when_disconnected():
    result = classify(230.0, "OUTAGE", False)
    assert result.label is Label.OUTAGE
    assert result.severity == 4
    assert classify(0.0, "NORMAL", False).label is Label.OUTAGE


def test_disconnected_hides_voltage_band():
    assert classify(230.0, "NORMAL", False).label is Label.OFFLINE
    assert classify(150.0, "LOW", False).label is Label.OFFLINE


def test_missing_or_garbled_voltage_is_outage():
    assert classify(None, "NORMAL", True).label is Label.OUTAGE
    assert classify("n/a", "NORMAL", True).label is Label.OUTAGE
    assert classify("230.0V", "NORMAL", True).label is Label.NORMAL


def test_unknown_power_state_is_outage():
    assert classify(230.0, "BROWNOUT", True).label is Label.OUTAGE
    assert classify(230.0, None, True).label is Label.OUTAGE


def test_severity_ranks():
    assert classify(230.0, "NORMAL", True).severity == 0
    assert classify(180.0, "LOW", True).severity == 2
    assert classify(150.0, "LOW", True).severity == 3
    assert classify(230.0, "NORMAL", False).severity == 2


def test_classify_is_deterministic():
    results = {classify(185.5, "LOW", True) for _ in range(5)}
    assert len(results) == 1


def test_needs_verification():
    healthy = NodeSnapshot("a", connected=True, voltage=230.0, power_state=PowerState.NORMAL)
    sagging = NodeSnapshot("b", connected=True, voltage=150.0, power_state=PowerState.LOW)

    assert not needs_verification(healthy, classify_snapshot(healthy), VerificationStatus.NONE)

    result = classify_snapshot(sagging)
    assert needs_verification(sagging, result, VerificationStatus.NONE)
    assert needs_verification(sagging, result, None)
    assert not needs_verification(sagging, result, VerificationStatus.PENDING)
    assert not needs_verification(sagging, result, VerificationStatus.CONFIRMED)
