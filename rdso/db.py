from __future__ import annotations

import os
import sqlite3
import threading
from datetime import datetime, timezone
from typing import Any

from .settings import settings

_lock = threading.Lock()
_path: str | None = None
_initialized: set[str] = set()


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _resolve_db_path(path: str) -> str:
    """Return a file path usable by sqlite.

    When the configured path is a directory (e.g. a volume mounted where a
    file was expected) the journal file is placed inside it.
    """
    p = os.path.abspath(path)
    if os.path.isdir(p):
        p = os.path.join(p, "rdso.db")
    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)
    return p


def configure(path: str) -> None:
    """Point the journal at ``path`` and make sure its tables exist."""
    global _path
    with _lock:
        _path = _resolve_db_path(path)
    init_db()


def connect() -> sqlite3.Connection:
    with _lock:
        path = _path or _resolve_db_path(settings.db_path)
    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    if path not in _initialized:
        _create_tables(conn)
        _initialized.add(path)
    return conn


def _create_tables(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS events (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          ts TEXT NOT NULL,
          level TEXT NOT NULL,
          namespace TEXT,
          instance TEXT,
          reason TEXT,
          message TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS passes (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          ts TEXT NOT NULL,
          namespace TEXT NOT NULL,
          instance TEXT NOT NULL,
          outcome TEXT NOT NULL, -- succeeded|degraded|retry|fatal|deleted
          created INTEGER NOT NULL DEFAULT 0,
          updated INTEGER NOT NULL DEFAULT 0,
          deleted INTEGER NOT NULL DEFAULT 0,
          restarted INTEGER NOT NULL DEFAULT 0,
          duration_ms REAL,
          message TEXT
        );

        CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
        CREATE INDEX IF NOT EXISTS idx_passes_instance ON passes(namespace, instance);
        """
    )


def init_db() -> None:
    """Create tables if they do not exist."""
    with connect() as conn:
        _create_tables(conn)


def log_event(
    level: str,
    message: str,
    namespace: str | None = None,
    instance: str | None = None,
    reason: str | None = None,
) -> None:
    with connect() as conn:
        conn.execute(
            "INSERT INTO events (ts, level, namespace, instance, reason, message) VALUES (?, ?, ?, ?, ?, ?)",
            (utc_now(), level.upper(), namespace, instance, reason, message),
        )


def record_pass(
    namespace: str,
    instance: str,
    outcome: str,
    created: int = 0,
    updated: int = 0,
    deleted: int = 0,
    restarted: bool = False,
    duration_ms: float | None = None,
    message: str = "",
) -> None:
    with connect() as conn:
        conn.execute(
            """
            INSERT INTO passes (ts, namespace, instance, outcome, created, updated, deleted, restarted, duration_ms, message)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (utc_now(), namespace, instance, outcome, created, updated, deleted, int(restarted), duration_ms, message),
        )


def latest_events(limit: int = 100, namespace: str | None = None, instance: str | None = None) -> list[dict[str, Any]]:
    with connect() as conn:
        if namespace and instance:
            rows = conn.execute(
                "SELECT * FROM events WHERE namespace=? AND instance=? ORDER BY id DESC LIMIT ?",
                (namespace, instance, limit),
            ).fetchall()
        else:
            rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]


def latest_passes(limit: int = 100, namespace: str | None = None, instance: str | None = None) -> list[dict[str, Any]]:
    with connect() as conn:
        if namespace and instance:
            rows = conn.execute(
                "SELECT * FROM passes WHERE namespace=? AND instance=? ORDER BY id DESC LIMIT ?",
                (namespace, instance, limit),
            ).fetchall()
        else:
            rows = conn.execute("SELECT * FROM passes ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        out = []
        for r in rows:
            row = dict(r)
            row["restarted"] = bool(row["restarted"])
            out.append(row)
        return out
