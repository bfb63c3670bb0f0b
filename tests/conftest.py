# Copyright (c) 2025 Trae AI. All rights reserved.

import pytest
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock
from cloudshelf.core.config import Config
from cloudshelf.core.identity import hash_path
from cloudshelf.core.models import LibraryType, MediaItem, MetadataPatch
from cloudshelf.infrastructure.db.database import Database
from cloudshelf.infrastructure.db.repository import CatalogStore
from cloudshelf.services.scan_state import ScanStateTracker


class FakeClock:
    """
    Manual clock whose sleep advances time instead of waiting.
    """

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds

    async def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "test.db"

@pytest.fixture
def database(db_path):
    return Database(db_path)

@pytest.fixture
def store(database):
    return CatalogStore(database)

@pytest.fixture
def media_repo(store):
    return store.media

@pytest.fixture
def progress_repo(store):
    return store.progress

@pytest.fixture
def log_repo(store):
    return store.logs

@pytest.fixture
def tracker(store):
    return ScanStateTracker(store.scan_state)

@pytest.fixture
def fake_clock():
    return FakeClock()

@pytest.fixture
def config(tmp_path):
    return Config(
        database_path=tmp_path / "test.db",
        tmdb_api_key="fake_key",
        media_extensions=[".mkv", ".mp4", ".mp3", ".epub"],
        scan_interval_minutes=0,
    )

@pytest.fixture
def mock_metadata():
    metadata = MagicMock()
    metadata.search = AsyncMock(return_value=MetadataPatch())
    metadata.search_candidates = AsyncMock(return_value=[])
    metadata.is_degraded.return_value = False
    return metadata

@pytest.fixture
def make_item():
    def _make(remote_path: str, library_id: str = "lib1", library_type: LibraryType = LibraryType.MOVIES, **fields):
        name = Path(remote_path).name
        data = dict(
            id=hash_path(remote_path),
            library_id=library_id,
            library_type=library_type,
            remote_path=remote_path,
            filename=name,
            title=Path(remote_path).stem,
        )
        data.update(fields)
        return MediaItem(**data)
    return _make
