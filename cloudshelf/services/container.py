# Copyright (c) 2025 Trae AI. All rights reserved.

from cloudshelf.core.config import Config
from cloudshelf.core.metadata import MetadataClient
from cloudshelf.core.scanner import RemoteLister, build_lister
from cloudshelf.infrastructure.db.database import Database
from cloudshelf.infrastructure.db.repository import CatalogStore
from .library_service import LibraryService
from .match_service import MatchService
from .playback_service import PlaybackService
from .scan_service import ScanService
from .scan_state import ScanStateTracker


class Services:
    """
    Wires the catalog, clients and services for one process.
    """

    def __init__(
        self,
        config: Config,
        lister: RemoteLister = None,
        metadata: MetadataClient = None,
        database: Database = None,
    ):
        self.config = config
        self.db = database or Database(config.database_path)
        self.store = CatalogStore(self.db)
        self.tracker = ScanStateTracker(self.store.scan_state)
        self.metadata = metadata or MetadataClient.from_config(config)
        self.lister = lister or build_lister(config)

        self.libraries = LibraryService(self.store)
        self.match = MatchService(self.store, self.metadata)
        self.playback = PlaybackService.from_config(self.store, config)
        self.scan = ScanService(config, self.store, self.lister, self.metadata, self.tracker)
