# Copyright (c) 2025 Trae AI. All rights reserved.

import asyncio
import logging
from typing import List, Optional
from cloudshelf.core.exceptions import ItemNotFoundError
from cloudshelf.core.metadata import MetadataClient
from cloudshelf.core.models import Confidence, MediaItem, MetadataPatch, MetadataSource
from cloudshelf.infrastructure.db.repository import CatalogStore

logger = logging.getLogger(__name__)


class MatchService:
    """
    Manual correction of an item's metadata ("fix match").
    """

    def __init__(self, store: CatalogStore, metadata: MetadataClient, candidate_limit: int = 8):
        self.store = store
        self.metadata = metadata
        self.candidate_limit = candidate_limit

    def get_item(self, item_id: str) -> MediaItem:
        item = self.store.media.get(item_id)
        if item is None:
            raise ItemNotFoundError(f"Item not found: {item_id}")
        return item

    def find_by_path(self, remote_path: str) -> MediaItem:
        item = self.store.media.get_by_path(remote_path)
        if item is None:
            raise ItemNotFoundError(f"No item for path: {remote_path}")
        return item

    async def find_candidates(self, item_id: str, query: Optional[str] = None) -> List[MetadataPatch]:
        """
        Searches the item's provider. Defaults to the show name for episodes and the title otherwise.
        """
        item = await asyncio.to_thread(self.get_item, item_id)
        if not query:
            query = item.show_title or item.title
        candidates = await self.metadata.search_candidates(query, item.library_type, self.candidate_limit)
        logger.info(f"Found {len(candidates)} candidates for '{query}'")
        return candidates

    def apply_match(self, item_id: str, candidate: MetadataPatch) -> MediaItem:
        item = self.get_item(item_id)
        updated = item.merged_with(candidate).model_copy(
            update={
                "metadata_source": candidate.metadata_source or MetadataSource.MANUAL,
                "metadata_confidence": Confidence.MANUAL,
            }
        )
        self.store.media.upsert(updated)

        label = candidate.show_title or candidate.title or "?"
        self.store.logs.add(
            "MATCH", item.remote_path, f"Manually matched to {label} (ID: {candidate.metadata_id})"
        )
        logger.info(f"Manually matched {item.filename} to {label}")
        return updated
