"""
Fire-and-forget job sink for notifications and calendar sync.
"""

import logging
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Dict, List, Protocol

logger = logging.getLogger(__name__)

JOB_SEND_BOOKING_EMAIL = "send_booking_email"
JOB_SYNC_TO_CALENDAR = "sync_to_calendar"


class JobQueueProtocol(Protocol):
    """Anything that accepts a job type and a JSON-like payload."""

    def enqueue(self, job_type: str, payload: Dict[str, Any]) -> None:
        """Queue a job. Return value is never consumed."""


@dataclass
class QueuedJob:
    job_type: str
    payload: Dict[str, Any] = field(default_factory=dict)


class InMemoryJobQueue:
    """
    Collects jobs in process.

    Used by the CLI and tests; a deployment plugs in its real queue through
    ``JobQueueProtocol``.
    """

    def __init__(self):
        self._jobs: List[QueuedJob] = []
        self._lock = Lock()

    def enqueue(self, job_type: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            self._jobs.append(QueuedJob(job_type=job_type, payload=dict(payload)))
        logger.debug("Queued job %s %s", job_type, payload)

    @property
    def jobs(self) -> List[QueuedJob]:
        with self._lock:
            return list(self._jobs)

    def jobs_of_type(self, job_type: str) -> List[QueuedJob]:
        return [job for job in self.jobs if job.job_type == job_type]

    def drain(self) -> List[QueuedJob]:
        """Return and forget every queued job."""
        with self._lock:
            jobs, self._jobs = self._jobs, []
        return jobs
