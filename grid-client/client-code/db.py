"""SQLite history of classified readings and trigger events.

Uses WAL mode for concurrent reads from the web server while the poll loop
writes. All functions are synchronous; the history recorder calls them once
per published view.
"""

import sqlite3
import time
from pathlib import Path

DB_PATH = Path(__file__).parent / "grid_history.db"


def get_connection() -> sqlite3.Connection:
    """Get a database connection with WAL mode and row factory."""
    conn = sqlite3.connect(str(DB_PATH), check_same_thread=False)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA synchronous=NORMAL")
    conn.row_factory = sqlite3.Row
    return conn


def init_db():
    """Create tables if they don't exist."""
    conn = get_connection()
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS readings (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            timestamp REAL NOT NULL,
            node_id TEXT NOT NULL,
            voltage REAL,
            power_state TEXT,
            connected INTEGER,
            label TEXT,
            severity INTEGER,
            verification TEXT
        );
        CREATE INDEX IF NOT EXISTS idx_readings_node_time
            ON readings(node_id, timestamp);

        CREATE TABLE IF NOT EXISTS trigger_events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            timestamp REAL NOT NULL,
            node_id TEXT NOT NULL,
            log_index INTEGER,
            text TEXT
        );
    """)
    conn.commit()
    conn.close()


def insert_view(view):
    """Record every node of a successful cycle plus its new trigger events.

    Offline views are skipped: their nodes are stale copies of the last
    successful cycle.
    """
    if not view.online:
        return
    conn = get_connection()
    conn.executemany(
        "INSERT INTO readings "
        "(timestamp, node_id, voltage, power_state, connected, label, severity, verification) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
        [
            (view.timestamp, nv.node_id, nv.voltage, nv.power_state,
             int(nv.connected), nv.label.value, nv.severity, nv.verification.value)
            for nv in view.nodes
        ],
    )
    conn.executemany(
        "INSERT INTO trigger_events (timestamp, node_id, log_index, text) "
        "VALUES (?, ?, ?, ?)",
        [(view.timestamp, ev.node_id, ev.index, ev.text) for ev in view.events],
    )
    conn.commit()
    conn.close()


def get_history(node_id: str = None, minutes: int = 30,
                limit: int = 500) -> list[dict]:
    """Get historical readings, optionally filtered by node and time window."""
    conn = get_connection()
    since = time.time() - (minutes * 60)
    if node_id:
        rows = conn.execute(
            "SELECT * FROM readings "
            "WHERE node_id = ? AND timestamp > ? "
            "ORDER BY timestamp DESC, id DESC LIMIT ?",
            (node_id, since, limit)
        ).fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM readings "
            "WHERE timestamp > ? "
            "ORDER BY timestamp DESC, id DESC LIMIT ?",
            (since, limit)
        ).fetchall()
    conn.close()
    return [dict(r) for r in rows]


def get_events(node_id: str = None, limit: int = 100) -> list[dict]:
    """Most recent trigger events, newest first."""
    conn = get_connection()
    if node_id:
        rows = conn.execute(
            "SELECT * FROM trigger_events WHERE node_id = ? "
            "ORDER BY timestamp DESC, id DESC LIMIT ?",
            (node_id, limit)
        ).fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM trigger_events ORDER BY timestamp DESC, id DESC LIMIT ?",
            (limit,)
        ).fetchall()
    conn.close()
    return [dict(r) for r in rows]


def purge_old_readings(days: int = 7):
    """Delete readings and events older than N days."""
    conn = get_connection()
    cutoff = time.time() - (days * 86400)
    conn.execute("DELETE FROM readings WHERE timestamp < ?", (cutoff,))
    conn.execute("DELETE FROM trigger_events WHERE timestamp < ?", (cutoff,))
    conn.commit()
    conn.close()
