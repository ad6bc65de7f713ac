"""In-flight job registry shared by the submitter and the push dispatcher."""

from __future__ import annotations

import threading
from collections import OrderedDict
from typing import Dict, List, Optional

from comfylink.client.errors import DuplicateJobError
from comfylink.client.models import JobRecord
from comfylink.utils.logging import LoggerFactory

logger = LoggerFactory.get_logger("client.registry")


class JobRegistry:
    """
    Job id -> :class:`JobRecord`, in registration order.

    ``insert`` belongs to the submitter and ``lookup`` to the dispatcher. Entries
    leave through ``discard`` (``JobRecord.release()``) or, once the registry
    holds more than ``max_entries``, by evicting the oldest completed jobs.
    Jobs still running are never evicted, so the bound can be exceeded while
    that many jobs are in flight.
    """

    def __init__(self, max_entries: Optional[int] = 1000) -> None:
        self._max_entries = max_entries
        self._records: "OrderedDict[str, JobRecord]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, job_id: object) -> bool:
        with self._lock:
            return job_id in self._records

    def insert(self, job_id: str, record: JobRecord) -> None:
        with self._lock:
            if job_id in self._records:
                raise DuplicateJobError(job_id)
            self._records[job_id] = record
            evicted = self._evict_completed_locked()
        record._on_release = self.discard  # noqa: SLF001 - registry owns the release hook
        if evicted:
            logger.debug(
                "Evicted completed jobs from registry",
                extra_context={"count": len(evicted), "job_ids": evicted},
            )

    def lookup(self, job_id: str) -> Optional[JobRecord]:
        with self._lock:
            return self._records.get(job_id)

    def discard(self, job_id: str) -> bool:
        with self._lock:
            removed = self._records.pop(job_id, None) is not None
        if removed:
            logger.debug("Released job from registry", extra_context={"job_id": job_id})
        return removed

    def job_ids(self) -> List[str]:
        with self._lock:
            return list(self._records)

    def _evict_completed_locked(self) -> List[str]:
        """Drop oldest completed records while over the bound. Caller must hold the lock."""
        if self._max_entries is None or len(self._records) <= self._max_entries:
            return []
        overflow = len(self._records) - self._max_entries
        evicted: Dict[str, JobRecord] = {}
        for job_id, record in self._records.items():
            if len(evicted) >= overflow:
                break
            if record.is_complete:
                evicted[job_id] = record
        for job_id in evicted:
            del self._records[job_id]
        return list(evicted)
