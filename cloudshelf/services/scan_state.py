# Copyright (c) 2025 Trae AI. All rights reserved.

import logging
import threading
from typing import Callable, List, Optional
from cloudshelf.core.models import ScanProgress, ScanState, ScanStatus
from cloudshelf.infrastructure.db.repository import ScanStateRepository

logger = logging.getLogger(__name__)

Observer = Callable[[ScanProgress], None]


class ScanStateTracker:
    """
    Owns the process-wide ScanState. The orchestrator is the only writer;
    anyone may read a snapshot or subscribe to progress events.
    """

    def __init__(self, repo: Optional[ScanStateRepository] = None):
        self._repo = repo
        self._lock = threading.Lock()
        self._state = repo.load() if repo else ScanState()
        self._observers: List[Observer] = []

    @property
    def state(self) -> ScanState:
        with self._lock:
            return self._state.model_copy()

    @property
    def is_scanning(self) -> bool:
        with self._lock:
            return self._state.status == ScanStatus.SCANNING

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """
        Registers an observer and returns a callable that removes it.
        """
        with self._lock:
            self._observers.append(observer)

        def unsubscribe():
            with self._lock:
                if observer in self._observers:
                    self._observers.remove(observer)

        return unsubscribe

    def try_begin(self, library_name: str) -> bool:
        """
        Moves to scanning unless a scan is already running.
        """
        with self._lock:
            if self._state.status == ScanStatus.SCANNING:
                return False
            self._state = self._state.model_copy(
                update={
                    "status": ScanStatus.SCANNING,
                    "current_library": library_name,
                    "progress": 0,
                    "new_items_found": 0,
                    "removed_items": 0,
                    "metadata_failures": 0,
                    "last_error": None,
                }
            )
        self._publish()
        return True

    def update(self, **changes):
        with self._lock:
            self._state = self._state.model_copy(update=changes)
        self._publish()

    def complete(self, finished_at: float, new_items: int):
        with self._lock:
            self._state = self._state.model_copy(
                update={
                    "status": ScanStatus.IDLE,
                    "progress": 100,
                    "current_library": None,
                    "new_items_found": new_items,
                    "last_scan_at": finished_at,
                }
            )
        self._publish()

    def fail(self, message: str):
        with self._lock:
            self._state = self._state.model_copy(
                update={"status": ScanStatus.ERROR, "current_library": None, "last_error": message}
            )
        self._publish()

    def persist(self):
        """
        Writes the current state to the store. Blocking; async callers run it in a thread.
        """
        if self._repo:
            self._repo.save(self.state)

    def _publish(self):
        state = self.state
        event = ScanProgress(
            status=state.status,
            current_library=state.current_library,
            progress=state.progress,
            new_items_found=state.new_items_found,
        )
        with self._lock:
            observers = list(self._observers)
        for observer in observers:
            try:
                observer(event)
            except Exception:
                # Observers must never affect orchestration
                logger.exception("Scan progress observer failed")
