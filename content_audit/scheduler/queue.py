"""
Job queue adapters.
"""

from collections import deque
from typing import Optional, Protocol, runtime_checkable

from loguru import logger

from content_audit.scheduler.jobs import Job, task_name


@runtime_checkable
class JobQueue(Protocol):
    def enqueue(self, job: Job) -> None:
        """Hand *job* to the queue for asynchronous execution."""


class CeleryJobQueue:
    """Send jobs to the Celery task registered for each job name."""

    def __init__(self, app) -> None:
        self.app = app

    def enqueue(self, job: Job) -> None:
        name = task_name(job.name)
        self.app.send_task(name, kwargs={"payload": job.to_payload()})
        logger.debug("Enqueued {} {}", name, job.to_payload())


class InMemoryJobQueue:
    """FIFO of jobs held in process, drained by the caller.

    ``history`` keeps every job ever enqueued, including popped ones.
    """

    def __init__(self) -> None:
        self._pending: deque = deque()
        self.history: list[Job] = []

    def enqueue(self, job: Job) -> None:
        self._pending.append(job)
        self.history.append(job)

    def pop(self) -> Optional[Job]:
        return self._pending.popleft() if self._pending else None

    def pending(self) -> list[Job]:
        return list(self._pending)

    def __len__(self) -> int:
        return len(self._pending)
