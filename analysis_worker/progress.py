"""
Progress tracking for running analyses.

An in-memory store of the latest progress entry per job. The service owns
one tracker and hands it to the orchestrator (writer) and the dev HTTP
server (reader, on its own thread), so access is guarded by a lock.
"""

import asyncio
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

from .models import ProgressEntry

logger = logging.getLogger("analysis_worker")


DEFAULT_PROGRESS = {
    'phase': 'initializing',
    'progress': 0,
    'message': 'Starting analysis...'
}


class ProgressTracker:
    """Last-write-wins progress store with idle eviction"""

    def __init__(
        self,
        max_age_sec: int = 3600,
        sweep_interval_sec: int = 300,
        clock: Callable[[], float] = time.time
    ):
        self.max_age_sec = max_age_sec
        self.sweep_interval_sec = sweep_interval_sec
        self._clock = clock
        self._entries: Dict[str, ProgressEntry] = {}
        self._lock = threading.Lock()

    def update(
        self,
        job_id: str,
        phase: str,
        progress: int,
        message: str,
        detail: Optional[Dict[str, Any]] = None
    ) -> None:
        """Overwrite the entry for a job, keeping the original start time"""
        now = self._clock()
        with self._lock:
            previous = self._entries.get(job_id)
            started_at = previous.started_at if previous else now
            self._entries[job_id] = ProgressEntry(
                phase=phase,
                progress=int(progress),
                message=message,
                detail=detail or {},
                updated_at=now,
                started_at=started_at
            )
        logger.debug(f"Job {job_id} progress: {phase} ({progress}%) {message}")

    def read(self, job_id: str) -> Dict[str, Any]:
        """Latest entry for a job, or the initializing default for unknown ids"""
        with self._lock:
            entry = self._entries.get(job_id)
            if entry is None:
                return dict(DEFAULT_PROGRESS, timestamp=self._clock())
            return entry.to_dict()

    def get_entry(self, job_id: str) -> Optional[ProgressEntry]:
        with self._lock:
            return self._entries.get(job_id)

    def clear(self, job_id: str) -> None:
        with self._lock:
            self._entries.pop(job_id, None)

    def sweep(self, now: Optional[float] = None) -> int:
        """Evict entries idle for longer than max_age_sec. Returns the count evicted."""
        now = self._clock() if now is None else now
        with self._lock:
            stale = [
                job_id for job_id, entry in self._entries.items()
                if now - entry.updated_at > self.max_age_sec
            ]
            for job_id in stale:
                del self._entries[job_id]

        if stale:
            logger.info(f"Progress sweep evicted {len(stale)} stale entries")
        return len(stale)

    async def run_sweeper(self) -> None:
        """Sweep on a fixed timer until cancelled"""
        while True:
            await asyncio.sleep(self.sweep_interval_sec)
            self.sweep()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
