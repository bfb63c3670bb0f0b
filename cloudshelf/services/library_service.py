# Copyright (c) 2025 Trae AI. All rights reserved.

import logging
import uuid
from typing import List, Optional
from cloudshelf.core.exceptions import LibraryNotFoundError, LibraryTypeLockedError
from cloudshelf.core.models import Library, LibraryType
from cloudshelf.core.scanner import normalize_root
from cloudshelf.infrastructure.db.repository import CatalogStore

logger = logging.getLogger(__name__)


class LibraryService:
    def __init__(self, store: CatalogStore):
        self.store = store

    def list(self) -> List[Library]:
        return self.store.libraries.get_all()

    def get(self, library_id: str) -> Library:
        library = self.store.libraries.get(library_id)
        if library is None:
            raise LibraryNotFoundError(f"Library not found: {library_id}")
        return library

    def create(self, name: str, type: LibraryType, root_paths: List[str]) -> Library:
        roots = [normalize_root(r) for r in root_paths]
        library = Library(id=uuid.uuid4().hex, name=name, type=type, root_paths=roots)
        self.store.libraries.save(library)
        self.store.logs.add("LIBRARY", name, f"Created {type.value} library with {len(root_paths)} roots")
        logger.info(f"Created library {name} ({library.id})")
        return library

    def update(
        self,
        library_id: str,
        name: Optional[str] = None,
        type: Optional[LibraryType] = None,
        root_paths: Optional[List[str]] = None,
    ) -> Library:
        """
        Changes name and roots freely. The type is locked once the library holds items,
        since every item carries the type it was enriched under.
        """
        library = self.get(library_id)
        changes = {}
        if name is not None:
            changes["name"] = name
        if root_paths is not None:
            changes["root_paths"] = [normalize_root(r) for r in root_paths]
        if type is not None and type != library.type:
            count = self.store.media.count_by_library(library_id)
            if count:
                raise LibraryTypeLockedError(
                    f"Library {library.name} has {count} items; its type cannot change"
                )
            changes["type"] = type

        updated = library.model_copy(update=changes)
        self.store.libraries.save(updated)
        self.store.logs.add("LIBRARY", updated.name, "Updated")
        return updated

    def remove(self, library_id: str) -> int:
        """
        Deletes the library and its items. Watch progress is kept.
        """
        library = self.get(library_id)
        removed = self.store.media.clear_library(library_id)
        self.store.libraries.delete(library_id)
        self.store.logs.add("DELETE", library.name, f"Library removed with {removed} items")
        logger.info(f"Removed library {library.name} and {removed} items")
        return removed
