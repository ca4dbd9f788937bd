import math

import pytest

from node_snapshot import (
    PowerState,
    VerificationStatus,
    from_node_payload,
    from_status_payload,
    parse_nodes_payload,
    parse_stats_payload,
    parse_voltage,
)


@pytest.mark.parametrize("raw,expected", [
    (231, 231.0),
    ("230.5V", 230.5),
    ("  198.2 V | Addis", 198.2),
    ("", 0.0),
    ("abc", 0.0),
    (None, 0.0),
    (True, 0.0),
    (math.inf, 0.0),
    (float("nan"), 0.0),
])
def test_parse_voltage(raw, expected):
    assert parse_voltage(raw) == expected


def test_status_payload():
    snap = from_status_payload({
        "connected": True,
        "nodeId": "addis_001",
        "region": "West Addis Ababa",
        "voltage": 165.0,
        "powerState": "low",
        "logs": ["Connected", "HQ is inquiring if the problem is solved..."],
    })
    assert snap.node_id == "addis_001"
    assert snap.connected is True
    assert snap.voltage == 165.0
    assert snap.power_state is PowerState.LOW
    assert snap.region == "West Addis Ababa"
    assert snap.verification_status is None
    assert len(snap.logs) == 2


def test_status_payload_defaults_are_alarming():
    snap = from_status_payload({"nodeId": "x"})
    assert snap.connected is False
    assert snap.voltage == 0.0
    assert snap.power_state is PowerState.OUTAGE
    assert snap.region == "Unknown"
    assert snap.logs == []


def test_status_payload_without_id_is_rejected():
    with pytest.raises(ValueError):
        from_status_payload({"connected": True})
    with pytest.raises(ValueError):
        from_status_payload(["not", "an", "object"])


def test_node_payload_unpacks_transformer():
    snap = from_node_payload({
        "id": "addis_002",
        "status": "ONLINE",
        "power": "NORMAL",
        "transformer": "221.4V | East Addis",
        "lastSeen": "12:00:01",
        "verificationStatus": "PENDING",
        "load": 42,
    })
    assert snap.voltage == 221.4
    assert snap.region == "East Addis"
    assert snap.connected is True
    assert snap.verification_status is VerificationStatus.PENDING
    assert snap.load == 42


def test_node_payload_unknown_transformer_region_falls_back():
    snap = from_node_payload({"id": "n", "status": "OFFLINE", "transformer": "0.0V | Unknown"})
    assert snap.region == "Unknown"
    assert snap.connected is False
    assert snap.voltage == 0.0


def test_node_payload_dedicated_fields_win():
    snap = from_node_payload({
        "id": "n",
        "status": "ONLINE",
        "voltage": 180.0,
        "region": "North",
        "transformer": "230.0V | South",
    })
    assert snap.voltage == 180.0
    assert snap.region == "North"


def test_node_payload_unrecognised_verification_is_none():
    snap = from_node_payload({"id": "n", "verificationStatus": "WHATEVER"})
    assert snap.verification_status is VerificationStatus.NONE


def test_nodes_payload_rejects_errors_and_duplicates():
    with pytest.raises(ValueError):
        parse_nodes_payload({"error": "Database unavailable"})
    with pytest.raises(ValueError):
        parse_nodes_payload({"id": "a"})
    with pytest.raises(ValueError):
        parse_nodes_payload([{"id": "a"}, {"id": "a"}])
    assert parse_nodes_payload([]) == []


def test_stats_payload():
    stats = parse_stats_payload({"serverId": 2, "isLeader": False})
    assert stats.server_id == "2"
    assert stats.is_leader is False
    with pytest.raises(ValueError):
        parse_stats_payload({"isLeader": True})
