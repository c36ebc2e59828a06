from __future__ import annotations

import logging
import os
import sqlite3
from typing import Any

from .runtime import utc_now
from .settings import settings

LOG = logging.getLogger(__name__)

NORMAL = "Normal"
WARNING = "Warning"


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    ``KCR_DB_PATH`` may name a directory (e.g. a mounted volume); the DB file
    then goes inside it. Missing parent directories are created.
    """
    p = os.path.abspath(settings.db_path)
    if os.path.isdir(p):
        p = os.path.join(p, "kcr.db")
    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)
    return p


def connect() -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path(), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    """Create tables if they do not exist."""
    with connect() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              severity TEXT NOT NULL, -- Normal|Warning
              subject TEXT NOT NULL,  -- namespace/name of the channel or secret
              reason TEXT NOT NULL,
              message TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            CREATE INDEX IF NOT EXISTS idx_events_subject ON events(subject);
            """
        )


def record_event(subject: str, severity: str, reason: str, message: str) -> None:
    """Record a human-readable event about ``subject``; also logged."""
    reason = getattr(reason, "value", reason)
    level = logging.WARNING if severity == WARNING else logging.INFO
    LOG.log(level, "%s %s: %s", subject, reason, message)
    try:
        with connect() as conn:
            conn.execute(
                "INSERT INTO events (ts, severity, subject, reason, message) VALUES (?, ?, ?, ?, ?)",
                (utc_now(), severity, subject, reason, message),
            )
    except sqlite3.Error as e:
        # best effort: a lost row never fails a reconciliation
        LOG.error("failed to store event for %s: %s", subject, e)


def latest_events(limit: int = 100, subject: str | None = None) -> list[dict[str, Any]]:
    with connect() as conn:
        if subject:
            rows = conn.execute(
                "SELECT * FROM events WHERE subject=? ORDER BY id DESC LIMIT ?", (subject, limit)
            ).fetchall()
        else:
            rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]
