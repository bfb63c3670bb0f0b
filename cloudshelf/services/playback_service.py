# Copyright (c) 2025 Trae AI. All rights reserved.

import asyncio
import logging
import time
from typing import Callable, Dict, Optional
from pydantic import BaseModel
from cloudshelf.core.exceptions import ItemNotFoundError
from cloudshelf.core.models import WatchProgress
from cloudshelf.infrastructure.db.repository import CatalogStore

logger = logging.getLogger(__name__)


class PlayCommand(BaseModel):
    item_id: str
    resume_at: float = 0.0


class PlaybackChannel:
    """
    Typed hand-off between whoever asks for playback and the component that owns the player.
    """

    def __init__(self, maxsize: int = 0):
        self._queue: "asyncio.Queue[PlayCommand]" = asyncio.Queue(maxsize)

    async def send(self, command: PlayCommand):
        await self._queue.put(command)

    async def next_command(self) -> PlayCommand:
        return await self._queue.get()

    def pending(self) -> int:
        return self._queue.qsize()


class PlaybackService:
    """
    Records watch/read positions. Writes are throttled per item to one every
    `interval` seconds; the first report and completion changes always write.
    """

    def __init__(
        self,
        store: CatalogStore,
        channel: Optional[PlaybackChannel] = None,
        interval: float = 10.0,
        completion_ratio: float = 0.9,
        resume_threshold: float = 5.0,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.channel = channel or PlaybackChannel()
        self.interval = interval
        self.completion_ratio = completion_ratio
        self.resume_threshold = resume_threshold
        self.clock = clock
        self._last_write: Dict[str, float] = {}
        self._last_completed: Dict[str, bool] = {}
        self._pending: Dict[str, WatchProgress] = {}

    @classmethod
    def from_config(cls, store: CatalogStore, config, **kwargs) -> "PlaybackService":
        return cls(
            store,
            interval=config.progress_interval_seconds,
            completion_ratio=config.completion_ratio,
            **kwargs,
        )

    def is_complete(self, position: float, duration: float) -> bool:
        return duration > 0 and position / duration > self.completion_ratio

    def report(self, item_id: str, position: float, duration: float, cfi: Optional[str] = None) -> bool:
        """
        Returns True when the tick was written, False when it is held for a later write.
        """
        now = self.clock()
        progress = WatchProgress(
            item_id=item_id,
            position=position,
            duration=duration,
            completed=self.is_complete(position, duration),
            last_watched_at=now,
            cfi=cfi,
        )

        last = self._last_write.get(item_id)
        transition = self._last_completed.get(item_id) != progress.completed
        if last is None or transition or now - last >= self.interval:
            self._write(progress)
            return True

        self._pending[item_id] = progress
        return False

    def flush(self, item_id: str) -> Optional[WatchProgress]:
        progress = self._pending.get(item_id)
        if progress is not None:
            self._write(progress)
        return progress

    def flush_all(self):
        for item_id in list(self._pending):
            self.flush(item_id)

    def mark_completed(self, item_id: str) -> WatchProgress:
        self._pending.pop(item_id, None)
        current = self.store.progress.get(item_id) or WatchProgress(item_id=item_id)
        progress = current.model_copy(
            update={
                "completed": True,
                "position": current.duration or current.position,
                "last_watched_at": self.clock(),
            }
        )
        self._write(progress)
        return progress

    def clear(self, item_id: str):
        self._pending.pop(item_id, None)
        self._last_write.pop(item_id, None)
        self._last_completed.pop(item_id, None)
        self.store.progress.delete(item_id)

    def resume_position(self, item_id: str) -> float:
        progress = self.store.progress.get(item_id)
        if progress is None or progress.completed or progress.position <= self.resume_threshold:
            return 0.0
        return progress.position

    async def request_play(self, item_id: str, resume_at: Optional[float] = None) -> PlayCommand:
        item = await asyncio.to_thread(self.store.media.get, item_id)
        if item is None:
            raise ItemNotFoundError(f"Item not found: {item_id}")
        if resume_at is None:
            resume_at = await asyncio.to_thread(self.resume_position, item_id)
        command = PlayCommand(item_id=item_id, resume_at=resume_at)
        await self.channel.send(command)
        logger.info(f"Play requested for {item.filename} at {resume_at:.0f}s")
        return command

    def _write(self, progress: WatchProgress):
        self.store.progress.save(progress)
        self._last_write[progress.item_id] = progress.last_watched_at
        self._last_completed[progress.item_id] = progress.completed
        self._pending.pop(progress.item_id, None)
