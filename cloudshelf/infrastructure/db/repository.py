# Copyright (c) 2025 Trae AI. All rights reserved.

import json
from typing import Any, Dict, Iterable, List, Optional, Set
from cloudshelf.core.identity import hash_path
from cloudshelf.core.models import Library, MediaItem, ScanState, ScanStatus, WatchProgress
from .database import Database, SCHEMA_VERSION


class MediaRepository:
    """
    MediaItems keyed by their path-derived id. Sole writer of item records.
    """

    def __init__(self, db: Database):
        self.db = db

    @staticmethod
    def _row(item: MediaItem):
        return (item.id, item.library_id, item.remote_path, item.added_at, item.model_dump_json())

    def upsert(self, item: MediaItem):
        self.upsert_many([item])

    def upsert_many(self, items: Iterable[MediaItem]):
        """
        Writes one batch in a single transaction. Earlier batches are never touched.
        """
        rows = [self._row(item) for item in items]
        if not rows:
            return
        with self.db.get_connection() as conn:
            conn.executemany(
                """
                INSERT OR REPLACE INTO media_items (id, library_id, remote_path, added_at, data)
                VALUES (?, ?, ?, ?, ?)
                """,
                rows,
            )
            conn.commit()

    def get(self, item_id: str) -> Optional[MediaItem]:
        with self.db.get_connection() as conn:
            row = conn.execute("SELECT data FROM media_items WHERE id = ?", (item_id,)).fetchone()
            return MediaItem.model_validate_json(row["data"]) if row else None

    def get_by_path(self, remote_path: str) -> Optional[MediaItem]:
        return self.get(hash_path(remote_path))

    def get_all(self) -> List[MediaItem]:
        with self.db.get_connection() as conn:
            cursor = conn.execute("SELECT data FROM media_items ORDER BY added_at DESC")
            return [MediaItem.model_validate_json(row["data"]) for row in cursor.fetchall()]

    def get_by_library(self, library_id: str) -> List[MediaItem]:
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                "SELECT data FROM media_items WHERE library_id = ? ORDER BY added_at DESC",
                (library_id,),
            )
            return [MediaItem.model_validate_json(row["data"]) for row in cursor.fetchall()]

    def known_paths(self, library_id: str) -> Set[str]:
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                "SELECT remote_path FROM media_items WHERE library_id = ?", (library_id,)
            )
            return {row["remote_path"] for row in cursor.fetchall()}

    def count_by_library(self, library_id: str) -> int:
        with self.db.get_connection() as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM media_items WHERE library_id = ?", (library_id,)
            ).fetchone()[0]

    def delete(self, item_id: str):
        self.delete_many([item_id])

    def delete_many(self, item_ids: Iterable[str]):
        """
        Removes items only. Their WatchProgress is left for an explicit purge.
        """
        ids = [(i,) for i in item_ids]
        if not ids:
            return
        with self.db.get_connection() as conn:
            conn.executemany("DELETE FROM media_items WHERE id = ?", ids)
            conn.commit()

    def clear_library(self, library_id: str) -> int:
        with self.db.get_connection() as conn:
            cursor = conn.execute("DELETE FROM media_items WHERE library_id = ?", (library_id,))
            conn.commit()
            return cursor.rowcount


class ProgressRepository:
    def __init__(self, db: Database):
        self.db = db

    def save(self, progress: WatchProgress):
        with self.db.get_connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO watch_progress (item_id, last_watched_at, data) VALUES (?, ?, ?)",
                (progress.item_id, progress.last_watched_at, progress.model_dump_json()),
            )
            conn.commit()

    def get(self, item_id: str) -> Optional[WatchProgress]:
        with self.db.get_connection() as conn:
            row = conn.execute(
                "SELECT data FROM watch_progress WHERE item_id = ?", (item_id,)
            ).fetchone()
            return WatchProgress.model_validate_json(row["data"]) if row else None

    def get_all(self) -> List[WatchProgress]:
        with self.db.get_connection() as conn:
            cursor = conn.execute("SELECT data FROM watch_progress ORDER BY last_watched_at DESC")
            return [WatchProgress.model_validate_json(row["data"]) for row in cursor.fetchall()]

    def delete(self, item_id: str):
        with self.db.get_connection() as conn:
            conn.execute("DELETE FROM watch_progress WHERE item_id = ?", (item_id,))
            conn.commit()


class LibraryRepository:
    def __init__(self, db: Database):
        self.db = db

    def save(self, library: Library):
        with self.db.get_connection() as conn:
            conn.execute(
                """
                INSERT INTO libraries (id, data) VALUES (?, ?)
                ON CONFLICT(id) DO UPDATE SET data = excluded.data
                """,
                (library.id, library.model_dump_json()),
            )
            conn.commit()

    def get(self, library_id: str) -> Optional[Library]:
        with self.db.get_connection() as conn:
            row = conn.execute("SELECT data FROM libraries WHERE id = ?", (library_id,)).fetchone()
            return Library.model_validate_json(row["data"]) if row else None

    def get_all(self) -> List[Library]:
        with self.db.get_connection() as conn:
            cursor = conn.execute("SELECT data FROM libraries ORDER BY created_at, rowid")
            return [Library.model_validate_json(row["data"]) for row in cursor.fetchall()]

    def delete(self, library_id: str):
        with self.db.get_connection() as conn:
            conn.execute("DELETE FROM libraries WHERE id = ?", (library_id,))
            conn.commit()


class ScanStateRepository:
    def __init__(self, db: Database):
        self.db = db

    def load(self) -> ScanState:
        """
        Returns the persisted state reset to idle. A scan never survives a restart.
        """
        with self.db.get_connection() as conn:
            row = conn.execute("SELECT data FROM scan_state WHERE id = 1").fetchone()
        state = ScanState.model_validate_json(row["data"]) if row else ScanState()
        return state.model_copy(
            update={"status": ScanStatus.IDLE, "progress": None, "current_library": None}
        )

    def save(self, state: ScanState):
        with self.db.get_connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO scan_state (id, data) VALUES (1, ?)",
                (state.model_dump_json(),),
            )
            conn.commit()


class LogRepository:
    def __init__(self, db: Database):
        self.db = db

    def add(self, action_type: str, target: str, details: str = None):
        with self.db.get_connection() as conn:
            conn.execute(
                "INSERT INTO operation_logs (action_type, target, details) VALUES (?, ?, ?)",
                (action_type, target, details)
            )
            conn.commit()

    def get_recent(self, limit: int = 100) -> List[Dict]:
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                "SELECT * FROM operation_logs ORDER BY timestamp DESC, id DESC LIMIT ?",
                (limit,)
            )
            return [dict(row) for row in cursor.fetchall()]


class CatalogStore:
    """
    Bundles the repositories that make up the persisted catalog.
    """

    def __init__(self, db: Database):
        self.db = db
        self.media = MediaRepository(db)
        self.progress = ProgressRepository(db)
        self.libraries = LibraryRepository(db)
        self.scan_state = ScanStateRepository(db)
        self.logs = LogRepository(db)

    def export_snapshot(self) -> Dict[str, Any]:
        """
        The whole catalog as one JSON-serializable, versioned document.
        """
        return {
            "version": SCHEMA_VERSION,
            "libraries": [lib.model_dump(mode="json") for lib in self.libraries.get_all()],
            "media_items": {i.id: i.model_dump(mode="json") for i in self.media.get_all()},
            "watch_progress": {p.item_id: p.model_dump(mode="json") for p in self.progress.get_all()},
        }

    def import_snapshot(self, data: Dict[str, Any]) -> Dict[str, int]:
        """
        Merges a snapshot into the catalog. Records with the same id are replaced.
        """
        version = data.get("version", 0)
        if version > SCHEMA_VERSION:
            raise ValueError(f"Snapshot version {version} is newer than supported {SCHEMA_VERSION}")

        libraries = [Library.model_validate(lib) for lib in data.get("libraries", [])]
        for library in libraries:
            self.libraries.save(library)

        items = [MediaItem.model_validate(raw) for raw in (data.get("media_items") or {}).values()]
        self.media.upsert_many(items)

        progress = [WatchProgress.model_validate(raw) for raw in (data.get("watch_progress") or {}).values()]
        for p in progress:
            self.progress.save(p)

        return {"libraries": len(libraries), "media_items": len(items), "watch_progress": len(progress)}

    @staticmethod
    def dumps(snapshot: Dict[str, Any]) -> str:
        return json.dumps(snapshot, ensure_ascii=False, indent=2)
