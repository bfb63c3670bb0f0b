# Copyright (c) 2025 Trae AI. All rights reserved.

import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional, Set
from cloudshelf.core.exceptions import MetadataTransportError
from cloudshelf.core.identity import hash_path
from cloudshelf.core.metadata import MetadataClient
from cloudshelf.core.models import FileDescriptor, Library, MediaItem, ScanSummary
from cloudshelf.core.scanner import RemoteLister, is_under, normalize_root
from cloudshelf.core.title_parser import parse_title
from cloudshelf.infrastructure.db.repository import CatalogStore
from .scan_state import ScanStateTracker

logger = logging.getLogger(__name__)


class ScanService:
    """
    Reconciles libraries against the remote: list, diff, parse, enrich, commit.

    Listing for every root of a library completes before anything in the store
    changes, so a failed listing leaves the catalog as it was.
    """

    def __init__(
        self,
        config,
        store: CatalogStore,
        lister: RemoteLister,
        metadata: MetadataClient,
        tracker: ScanStateTracker,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.store = store
        self.lister = lister
        self.metadata = metadata
        self.tracker = tracker
        self.clock = clock
        self.batch_size = max(1, getattr(config, "batch_size", 20))

    async def scan_all(self) -> List[ScanSummary]:
        """
        Scans every library in turn. A failing library does not stop the rest.
        """
        libraries = await asyncio.to_thread(self.store.libraries.get_all)
        summaries = []
        for library in libraries:
            try:
                summary = await self.scan_library(library)
            except Exception as e:
                logger.error(f"Scan of library {library.name} failed: {e}")
                continue
            if summary is not None:
                summaries.append(summary)
        return summaries

    async def scan_library(self, library: Library) -> Optional[ScanSummary]:
        """
        Returns None without doing anything if another scan is running.
        """
        if not self.tracker.try_begin(library.name):
            logger.info(f"Scan already running; ignoring request for {library.name}")
            return None

        logger.info(f"Scanning library {library.name} ({library.type.value})")

        try:
            await asyncio.to_thread(self.store.logs.add, "SCAN", "START", f"Library {library.name}")
            summary = await self._scan(library)
        except Exception as e:
            self.tracker.fail(str(e))
            await asyncio.to_thread(self.tracker.persist)
            await asyncio.to_thread(self.store.logs.add, "ERROR", "SCAN", f"{library.name}: {e}")
            logger.error(f"Scan failed for {library.name}: {e}")
            raise

        self.tracker.complete(self.clock(), summary.new_items)
        await asyncio.to_thread(self.tracker.persist)
        await asyncio.to_thread(
            self.store.logs.add,
            "SCAN",
            "COMPLETE",
            f"Library {library.name}: {summary.new_items} new, {summary.removed} removed",
        )
        logger.info(
            f"Scan of {library.name} complete. {summary.new_items} new, {summary.removed} removed, "
            f"{summary.metadata_failures} metadata failures"
        )
        return summary

    async def _scan(self, library: Library) -> ScanSummary:
        known = await asyncio.to_thread(self.store.media.known_paths, library.id)
        new_files, removed, listing_errors = await self._list_roots(library, known)

        # Nothing is written before this point
        if removed:
            await asyncio.to_thread(self.store.media.delete_many, [hash_path(p) for p in removed])
            await asyncio.to_thread(
                self.store.logs.add, "DELETE", library.name, f"{len(removed)} items no longer on the remote"
            )
            logger.info(f"Removed {len(removed)} missing items from {library.name}")
        self.tracker.update(removed_items=len(removed))

        failures = 0
        pending: List[MediaItem] = []
        total = len(new_files)
        for processed, descriptor in enumerate(new_files, start=1):
            item, failed = await self._build_item(library, descriptor)
            failures += failed
            pending.append(item)

            if len(pending) >= self.batch_size:
                await asyncio.to_thread(self.store.media.upsert_many, pending)
                pending = []

            self.tracker.update(
                progress=round(processed / total * 100),
                new_items_found=processed,
                metadata_failures=failures,
            )

        if pending:
            await asyncio.to_thread(self.store.media.upsert_many, pending)

        return ScanSummary(
            library_id=library.id,
            new_items=total,
            removed=len(removed),
            metadata_failures=failures,
            listing_errors=listing_errors,
        )

    async def _list_roots(self, library: Library, known: Set[str]):
        new_files: Dict[str, FileDescriptor] = {}
        removed: Set[str] = set()
        errors: List[str] = []

        roots = [normalize_root(r) for r in library.root_paths]
        orphaned = {p for p in known if not any(is_under(p, root) for root in roots)}

        for root in roots:
            under_root = [p for p in known if is_under(p, root)]
            # ListingError propagates and aborts the library
            result = await self.lister.scan_files(root, under_root)
            for descriptor in result.new_files:
                new_files.setdefault(descriptor.remote_path, descriptor)
            removed.update(result.removed_paths)
            for err in result.errors:
                logger.warning(f"Listing {root}: {err}")
            errors.extend(result.errors)

        return list(new_files.values()), sorted(removed | orphaned), errors

    async def _build_item(self, library: Library, descriptor: FileDescriptor):
        """
        Returns the item and 1 if its metadata lookup failed, else 0.
        """
        parsed = parse_title(descriptor.filename)
        now = self.clock()
        item = MediaItem(
            id=hash_path(descriptor.remote_path),
            library_id=library.id,
            library_type=library.type,
            remote_path=descriptor.remote_path,
            filename=descriptor.filename,
            title=parsed.title,
            year=parsed.year,
            season=parsed.season,
            episode=parsed.episode,
            size=descriptor.size,
            mime_type=descriptor.mime_type,
            added_at=now,
            last_scanned_at=now,
        )

        try:
            patch = await self.metadata.search(parsed, library.type)
        except MetadataTransportError as e:
            logger.warning(f"Metadata lookup failed for {descriptor.filename}: {e}")
            return item, 1

        if patch.is_empty:
            logger.debug(f"No metadata match for {descriptor.filename}")
            return item, 0
        return item.merged_with(patch), 0
