# Copyright (c) 2025 Trae AI. All rights reserved.

import asyncio
import logging
import threading
import time
import weakref
from typing import Any, Awaitable, Callable, Dict, List, Optional
import requests
from .exceptions import MetadataTransportError, RateLimitExceededError
from .models import LibraryType, MetadataPatch, MetadataSource, ParsedTitle
from . import providers
from .providers import select_provider

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class ThrottleGate:
    """
    Global request gate: one request in flight at a time, and at least
    `min_gap` seconds between the start of consecutive requests.

    The gate holds across threads. The server scans on a worker thread's
    event loop while request handlers run their own loops.
    """

    def __init__(self, min_gap: float, clock: Clock = time.monotonic, sleep: Sleep = asyncio.sleep):
        self.min_gap = min_gap
        self.clock = clock
        self.sleep = sleep
        self.last_request_at: Optional[float] = None
        self._thread_lock = threading.Lock()
        # One waiter per loop on the thread lock, so waiting tasks never fill the executor
        self._loop_locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Lock]" = (
            weakref.WeakKeyDictionary()
        )
        self._registry_lock = threading.Lock()

    def _loop_lock(self) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        with self._registry_lock:
            lock = self._loop_locks.get(loop)
            if lock is None:
                lock = self._loop_locks[loop] = asyncio.Lock()
            return lock

    async def _acquire_thread_lock(self):
        acquiring = asyncio.ensure_future(asyncio.to_thread(self._thread_lock.acquire))
        try:
            await asyncio.shield(acquiring)
        except asyncio.CancelledError:
            # The worker thread still takes the lock; hand it straight back
            acquiring.add_done_callback(lambda _: self._thread_lock.release())
            raise

    async def __aenter__(self) -> "ThrottleGate":
        loop_lock = self._loop_lock()
        await loop_lock.acquire()
        try:
            await self._acquire_thread_lock()
        except BaseException:
            loop_lock.release()
            raise

        try:
            if self.last_request_at is not None:
                wait = self.min_gap - (self.clock() - self.last_request_at)
                if wait > 0:
                    await self.sleep(wait)
            self.last_request_at = self.clock()
        except BaseException:
            self._thread_lock.release()
            loop_lock.release()
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self._thread_lock.release()
        self._loop_lock().release()


class MetadataClient:
    """
    Queries external catalogs through a single throttle gate, with exponential
    backoff on rate-limit answers.

    search() returns an empty MetadataPatch when nothing matches and raises
    MetadataTransportError only when the provider could not be used.
    """

    def __init__(
        self,
        tmdb_api_key: Optional[str] = None,
        theporndb_api_key: Optional[str] = None,
        min_request_gap: float = 0.12,
        max_attempts: int = 3,
        backoff_base: float = 2.0,
        timeout: float = 10.0,
        degraded_threshold: int = 5,
        session: Optional[requests.Session] = None,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ):
        self.tmdb_api_key = tmdb_api_key
        self.theporndb_api_key = theporndb_api_key
        self.max_attempts = max(1, max_attempts)
        self.backoff_base = backoff_base
        self.timeout = timeout
        self.degraded_threshold = degraded_threshold
        self.session = session or requests.Session()
        self.sleep = sleep
        self.gate = ThrottleGate(min_request_gap, clock=clock, sleep=sleep)
        self._consecutive_failures: Dict[MetadataSource, int] = {}

    @classmethod
    def from_config(cls, config, **kwargs) -> "MetadataClient":
        return cls(
            tmdb_api_key=config.tmdb_api_key,
            theporndb_api_key=config.theporndb_api_key,
            min_request_gap=config.min_request_gap_ms / 1000.0,
            max_attempts=config.max_attempts,
            backoff_base=config.backoff_base_seconds,
            timeout=config.request_timeout_seconds,
            degraded_threshold=config.degraded_threshold,
            **kwargs,
        )

    # Failure tracking

    def _record_success(self, provider: MetadataSource):
        self._consecutive_failures[provider] = 0

    def _record_failure(self, provider: MetadataSource):
        count = self._consecutive_failures.get(provider, 0) + 1
        self._consecutive_failures[provider] = count
        if count == self.degraded_threshold:
            logger.warning(
                f"Provider {provider.value} failed {count} times in a row; it may be down."
            )

    def failure_count(self, provider: MetadataSource) -> int:
        return self._consecutive_failures.get(provider, 0)

    def is_degraded(self, provider: MetadataSource) -> bool:
        return self.failure_count(provider) >= self.degraded_threshold

    def provider_for(self, library_type: LibraryType) -> Optional[MetadataSource]:
        return select_provider(library_type, self.tmdb_api_key, self.theporndb_api_key)

    # Transport

    def _tmdb_auth(self, params: Dict[str, Any]) -> Dict[str, str]:
        # v4 read tokens are JWTs and go in a header; v3 keys go in the query
        if self.tmdb_api_key and self.tmdb_api_key.startswith("eyJ"):
            return {"Authorization": f"Bearer {self.tmdb_api_key}"}
        params["api_key"] = self.tmdb_api_key
        return {}

    async def _get(
        self,
        provider: MetadataSource,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        GET with throttling and rate-limit backoff. Returns None on 404.
        """
        for attempt in range(self.max_attempts):
            async with self.gate:
                try:
                    response = await asyncio.to_thread(
                        self.session.get, url, params=params, headers=headers, timeout=self.timeout
                    )
                except requests.RequestException as e:
                    self._record_failure(provider)
                    raise MetadataTransportError(f"{provider.value} request failed: {e}", provider.value) from e

            if response.status_code == 429:
                if attempt + 1 >= self.max_attempts:
                    break
                wait = self.backoff_base * (2 ** attempt)
                retry_after = response.headers.get("Retry-After") if response.headers else None
                if retry_after and str(retry_after).isdigit():
                    wait = max(wait, float(retry_after))
                logger.warning(
                    f"{provider.value} rate limited. Backing off {wait:.1f}s ({attempt + 1}/{self.max_attempts})"
                )
                await self.sleep(wait)
                continue

            if response.status_code == 404:
                self._record_success(provider)
                return None

            if response.status_code >= 400:
                self._record_failure(provider)
                raise MetadataTransportError(
                    f"{provider.value} answered HTTP {response.status_code} for {url}", provider.value
                )

            try:
                data = response.json()
            except ValueError as e:
                self._record_failure(provider)
                raise MetadataTransportError(f"{provider.value} sent invalid JSON: {e}", provider.value) from e

            self._record_success(provider)
            return data

        self._record_failure(provider)
        raise RateLimitExceededError(
            f"{provider.value} rate limit persisted after {self.max_attempts} attempts", provider.value
        )

    # Provider queries

    async def _tmdb_search(self, kind: str, query: str, year: Optional[int] = None) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"query": query, "language": "en-US", "page": 1}
        if year:
            params["year" if kind == "movie" else "first_air_date_year"] = year
        headers = self._tmdb_auth(params)
        data = await self._get(MetadataSource.TMDB, f"{providers.TMDB_BASE_URL}/search/{kind}", params, headers)
        results = (data or {}).get("results") or []

        # Retry without year if nothing matched (release year often differs from air date)
        if not results and year:
            params.pop("year" if kind == "movie" else "first_air_date_year")
            data = await self._get(MetadataSource.TMDB, f"{providers.TMDB_BASE_URL}/search/{kind}", params, headers)
            results = (data or {}).get("results") or []
        return results

    async def _tmdb_episode(self, show_id: Any, season: int, episode: int) -> Optional[Dict[str, Any]]:
        params: Dict[str, Any] = {"language": "en-US"}
        headers = self._tmdb_auth(params)
        url = f"{providers.TMDB_BASE_URL}/tv/{show_id}/season/{season}/episode/{episode}"
        try:
            return await self._get(MetadataSource.TMDB, url, params, headers)
        except MetadataTransportError as e:
            # Show-level data is still worth keeping
            logger.warning(f"Episode lookup failed for show {show_id} S{season}E{episode}: {e}")
            return None

    async def _musicbrainz_search(self, query: str, limit: int) -> List[Dict[str, Any]]:
        params = {"query": query, "limit": limit, "fmt": "json"}
        headers = {"User-Agent": providers.MUSICBRAINZ_USER_AGENT}
        data = await self._get(MetadataSource.MUSICBRAINZ, providers.MUSICBRAINZ_URL, params, headers)
        return (data or {}).get("recordings") or []

    async def _openlibrary_search(self, query: str, limit: int) -> List[Dict[str, Any]]:
        params = {"q": query, "limit": limit}
        data = await self._get(MetadataSource.OPENLIBRARY, providers.OPENLIBRARY_SEARCH_URL, params)
        return (data or {}).get("docs") or []

    async def _theporndb_search(self, query: str) -> List[Dict[str, Any]]:
        headers = {"Authorization": f"Bearer {self.theporndb_api_key}"}
        data = await self._get(MetadataSource.THEPORNDB, providers.THEPORNDB_SCENES_URL, {"q": query}, headers)
        return (data or {}).get("data") or []

    async def search(self, parsed: ParsedTitle, library_type: LibraryType) -> MetadataPatch:
        """
        Enriches one parsed title. Takes the provider's top-ranked result as the match.
        """
        provider = self.provider_for(library_type)
        if provider is None or not parsed.title:
            return MetadataPatch()

        if provider == MetadataSource.TMDB and library_type == LibraryType.TV:
            results = await self._tmdb_search("tv", parsed.title)
            if not results:
                return MetadataPatch()
            show = results[0]
            episode = None
            if parsed.season is not None and parsed.episode is not None and show.get("id") is not None:
                episode = await self._tmdb_episode(show["id"], parsed.season, parsed.episode)
            return providers.normalize_tmdb_show(show, episode)

        if provider == MetadataSource.TMDB:
            results = await self._tmdb_search("movie", parsed.title, parsed.year)
            return providers.normalize_tmdb_movie(results[0]) if results else MetadataPatch()

        if provider == MetadataSource.MUSICBRAINZ:
            results = await self._musicbrainz_search(parsed.title, 1)
            return providers.normalize_musicbrainz_recording(results[0]) if results else MetadataPatch()

        if provider == MetadataSource.OPENLIBRARY:
            results = await self._openlibrary_search(parsed.title, 1)
            return providers.normalize_openlibrary_doc(results[0]) if results else MetadataPatch()

        results = await self._theporndb_search(parsed.title)
        return providers.normalize_theporndb_scene(results[0]) if results else MetadataPatch()

    async def search_candidates(
        self, query: str, library_type: LibraryType, limit: int = 8
    ) -> List[MetadataPatch]:
        """
        Several normalized candidates for a manual "fix match".
        """
        provider = self.provider_for(library_type)
        if provider is None or not query.strip():
            return []

        if provider == MetadataSource.TMDB:
            kind = "tv" if library_type == LibraryType.TV else "movie"
            results = await self._tmdb_search(kind, query)
            normalize = providers.normalize_tmdb_show if kind == "tv" else providers.normalize_tmdb_movie
            return [normalize(r) for r in results[:limit]]

        if provider == MetadataSource.MUSICBRAINZ:
            results = await self._musicbrainz_search(query, limit)
            return [providers.normalize_musicbrainz_recording(r) for r in results[:limit]]

        if provider == MetadataSource.OPENLIBRARY:
            results = await self._openlibrary_search(query, limit)
            return [providers.normalize_openlibrary_doc(r) for r in results[:limit]]

        results = await self._theporndb_search(query)
        return [providers.normalize_theporndb_scene(r) for r in results[:limit]]
