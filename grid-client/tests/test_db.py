import time

import pytest

import db
from classifier import classify_snapshot
from log_watcher import TriggerEvent
from node_snapshot import NodeSnapshot, PowerState, VerificationStatus
from view_model import NodeView, ViewModel


@pytest.fixture(autouse=True)
def tmp_db(tmp_path, monkeypatch):
    monkeypatch.setattr(db, "DB_PATH", tmp_path / "history.db")
    db.init_db()


def make_view(online=True, events=(), timestamp=None):
    snap = NodeSnapshot("A", connected=True, voltage=150.0, power_state=PowerState.LOW)
    nv = NodeView.build(snap, classify_snapshot(snap), VerificationStatus.PENDING)
    kwargs = {} if timestamp is None else {"timestamp": timestamp}
    return ViewModel(mode="multi", online=online, nodes=(nv,), events=events, **kwargs)


def test_insert_and_read_history():
    db.insert_view(make_view())
    rows = db.get_history()
    assert len(rows) == 1
    assert rows[0]["node_id"] == "A"
    assert rows[0]["label"] == "VERY_LOW"
    assert rows[0]["verification"] == "PENDING"
    assert rows[0]["connected"] == 1
    assert db.get_history(node_id="B") == []


def test_offline_views_are_not_recorded():
    db.insert_view(make_view(online=False))
    assert db.get_history() == []


def test_trigger_events_newest_first():
    db.insert_view(make_view(events=(TriggerEvent("A", "HQ is inquiring", 3),)))
    db.insert_view(make_view(events=(TriggerEvent("A", "hq inquiry again", 4),)))
    events = db.get_events(node_id="A")
    assert [e["log_index"] for e in events] == [4, 3]
    assert db.get_events(limit=1)[0]["text"] == "hq inquiry again"


def test_purge_old_readings():
    db.insert_view(make_view(timestamp=time.time() - 10 * 86400,
                             events=(TriggerEvent("A", "HQ is inquiring", 0),)))
    db.insert_view(make_view())
    db.purge_old_readings(days=7)
    conn = db.get_connection()
    readings = conn.execute("SELECT COUNT(*) FROM readings").fetchone()[0]
    events = conn.execute("SELECT COUNT(*) FROM trigger_events").fetchone()[0]
    conn.close()
    assert readings == 1
    assert events == 0
