import pytest

from grid_client import CommandRejected
from node_snapshot import VerificationStatus
from verification import VerificationRejected, VerificationTracker


def test_acknowledged_request_becomes_pending():
    t = VerificationTracker()
    t.begin("a")
    assert not t.can_request("a")
    assert t.acknowledge("a", "sent") is VerificationStatus.PENDING
    assert t.state("a") is VerificationStatus.PENDING


@pytest.mark.parametrize("status", ["queued", "queued_web", "SENT"])
def test_other_accepted_acknowledgements(status):
    t = VerificationTracker()
    t.begin("a")
    assert t.acknowledge("a", status) is VerificationStatus.PENDING


def test_duplicate_request_while_pending_is_rejected():
    t = VerificationTracker()
    t.begin("a")
    t.acknowledge("a", "sent")
    with pytest.raises(VerificationRejected):
        t.begin("a")
    assert t.state("a") is VerificationStatus.PENDING


def test_duplicate_request_while_in_flight_is_rejected():
    t = VerificationTracker()
    t.begin("a")
    with pytest.raises(VerificationRejected):
        t.begin("a")
    t.abandon("a")
    t.begin("a")


def test_refused_acknowledgement_keeps_state():
    t = VerificationTracker()
    t.begin("a")
    with pytest.raises(VerificationRejected) as exc:
        t.acknowledge("a", None, "Node not connected")
    assert isinstance(exc.value, CommandRejected)
    assert exc.value.reason == "Node not connected"
    assert t.state("a") is VerificationStatus.NONE
    assert t.can_request("a")


def test_server_status_overwrites_local():
    t = VerificationTracker()
    t.begin("a")
    t.acknowledge("a", "sent")
    assert t.apply_server("a", VerificationStatus.CONFIRMED) is VerificationStatus.CONFIRMED
    # A confirmed node can be asked again
    assert t.can_request("a")
    assert t.apply_server("a", VerificationStatus.NONE) is VerificationStatus.NONE


def test_absent_server_status_leaves_local_state():
    t = VerificationTracker()
    t.begin("a")
    t.acknowledge("a", "queued_web")
    assert t.apply_server("a", None) is VerificationStatus.PENDING


def test_forget():
    t = VerificationTracker()
    t.apply_server("a", VerificationStatus.PENDING)
    assert t.known_nodes() == ["a"]
    t.forget("a")
    assert t.known_nodes() == []
    assert t.state("a") is VerificationStatus.NONE


def test_preview_does_not_store():
    t = VerificationTracker()
    assert t.preview("a", VerificationStatus.CONFIRMED) is VerificationStatus.CONFIRMED
    assert t.preview("a", None) is VerificationStatus.NONE
    assert t.known_nodes() == []
