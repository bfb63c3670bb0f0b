# Copyright (c) 2025 Trae AI. All rights reserved.

import sqlite3
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2


class Database:
    """
    SQLite file holding the whole catalog. Records are stored as JSON keyed by id.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._init_db()

    @property
    def is_memory(self) -> bool:
        return str(self.db_path) == ":memory:"

    def _init_db(self):
        # Allow using :memory: for testing, which is not a path
        if not self.is_memory and not Path(self.db_path).parent.exists():
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        with self.get_connection() as conn:
            if not self.is_memory:
                # Readers keep working while a batch is being written
                conn.execute("PRAGMA journal_mode=WAL")

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS libraries (
                    id TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS media_items (
                    id TEXT PRIMARY KEY,
                    library_id TEXT NOT NULL,
                    remote_path TEXT NOT NULL,
                    added_at REAL,
                    data TEXT NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_media_items_library ON media_items(library_id)"
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS watch_progress (
                    item_id TEXT PRIMARY KEY,
                    last_watched_at REAL,
                    data TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS scan_state (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    data TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS operation_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    action_type TEXT,
                    target TEXT,
                    details TEXT
                )
                """
            )
            conn.commit()

            version = conn.execute("PRAGMA user_version").fetchone()[0]
            if version < SCHEMA_VERSION:
                self._migrate(conn, version)
                conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
                conn.commit()

    def _migrate(self, conn, from_version: int):
        # Version 1 stored items without the added_at column
        cursor = conn.execute("PRAGMA table_info(media_items)")
        columns = [info[1] for info in cursor.fetchall()]
        if "added_at" not in columns:
            conn.execute("ALTER TABLE media_items ADD COLUMN added_at REAL")
        if from_version:
            logger.info(f"Migrated catalog schema from v{from_version} to v{SCHEMA_VERSION}")

    def get_connection(self):
        # :memory: databases vanish with their connection, so keep one around
        if self.is_memory:
            if not hasattr(self, "_memory_conn"):
                self._memory_conn = sqlite3.connect(":memory:", check_same_thread=False)
                self._memory_conn.row_factory = sqlite3.Row
            return self._memory_conn

        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn
