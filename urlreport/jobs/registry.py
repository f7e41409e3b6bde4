import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class JobStatus(str, Enum):
    CREATED = "created"
    VALIDATING = "validating"
    DEDUPLICATING = "deduplicating"
    SUBMITTING = "submitting"
    RECONCILING = "reconciling"
    COMPLETE = "complete"
    STOPPED = "stopped"
    ERRORED = "errored"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.COMPLETE, JobStatus.STOPPED, JobStatus.ERRORED)


@dataclass
class JobHandle:
    job_id: str
    status: JobStatus = JobStatus.CREATED
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    task: asyncio.Task | None = None

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


class JobRegistry:
    """Maps live job IDs to their handles. A handle is removed once its job ends."""

    def __init__(self) -> None:
        self._jobs: dict[str, JobHandle] = {}

    def create(self) -> JobHandle:
        handle = JobHandle(job_id=uuid.uuid4().hex)
        self._jobs[handle.job_id] = handle
        return handle

    def get(self, job_id: str) -> JobHandle | None:
        return self._jobs.get(job_id)

    def cancel(self, job_id: str) -> bool:
        handle = self._jobs.get(job_id)
        if handle is None:
            return False
        handle.cancel_event.set()
        return True

    def remove(self, job_id: str) -> None:
        self._jobs.pop(job_id, None)

    def active(self) -> list[JobHandle]:
        return list(self._jobs.values())

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._jobs

    def __len__(self) -> int:
        return len(self._jobs)
