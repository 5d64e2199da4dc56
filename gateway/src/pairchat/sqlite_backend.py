from __future__ import annotations

import sqlite3
import threading
from pathlib import Path

SCHEMA_VERSION = 1


class SQLiteBackend:
    """Owns a shared SQLite connection and applies pairchat migrations."""

    def __init__(self, db_path: str) -> None:
        self._lock = threading.Lock()
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
        self._conn.row_factory = sqlite3.Row
        try:
            self._configure()
            self._apply_migrations()
        except Exception:
            self._conn.close()
            raise

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    @property
    def lock(self) -> threading.Lock:
        return self._lock

    def close(self) -> None:
        self._conn.close()

    def _configure(self) -> None:
        cursor = self._conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()

    def _apply_migrations(self) -> None:
        user_version = self._conn.execute("PRAGMA user_version").fetchone()[0]
        if user_version == 0:
            self._create_v1_schema()
            self._conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
        elif user_version != SCHEMA_VERSION:
            raise ValueError(f"Unsupported schema version: {user_version}")

    def _create_v1_schema(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS identities (
                internal_id TEXT PRIMARY KEY,
                handle TEXT NOT NULL UNIQUE,
                fullname TEXT NOT NULL DEFAULT '',
                username TEXT NOT NULL DEFAULT '',
                profile_image TEXT,
                verified INTEGER NOT NULL DEFAULT 0
            )
            """
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS rooms (
                room_id TEXT PRIMARY KEY,
                low_id TEXT NOT NULL,
                high_id TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
            """
        )
        self._conn.execute("CREATE INDEX IF NOT EXISTS rooms_low_id ON rooms (low_id)")
        self._conn.execute("CREATE INDEX IF NOT EXISTS rooms_high_id ON rooms (high_id)")
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS messages (
                room_id TEXT NOT NULL REFERENCES rooms (room_id),
                seq INTEGER NOT NULL,
                msg_id TEXT NOT NULL UNIQUE,
                sender TEXT NOT NULL,
                text TEXT NOT NULL DEFAULT '',
                kind TEXT NOT NULL,
                attachment_url TEXT,
                attachment_name TEXT,
                timestamp TEXT NOT NULL,
                read INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (room_id, seq)
            )
            """
        )
