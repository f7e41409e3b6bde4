import asyncio
import logging

from urlreport.jobs.events import JobEvent, JobObserver, ProgressEvent
from urlreport.jobs.registry import JobHandle, JobStatus

logger = logging.getLogger(__name__)


class JobCancelled(Exception):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"job {job_id} was cancelled")
        self.job_id = job_id


class JobContext:
    """What a pipeline stage sees of its job: cancellation, status and the event channel."""

    def __init__(self, handle: JobHandle, observer: JobObserver) -> None:
        self._handle = handle
        self._observer = observer
        self._progress = 0.0

    @property
    def job_id(self) -> str:
        return self._handle.job_id

    def set_status(self, status: JobStatus) -> None:
        logger.debug("[job] status | job=%s | %s -> %s", self.job_id, self._handle.status.value, status.value)
        self._handle.status = status

    def checkpoint(self) -> None:
        if self._handle.cancelled:
            raise JobCancelled(self.job_id)

    async def sleep(self, seconds: float) -> None:
        """Wait up to seconds, returning early (via JobCancelled) once the job is cancelled."""
        if seconds > 0:
            try:
                await asyncio.wait_for(self._handle.cancel_event.wait(), timeout=seconds)
            except asyncio.TimeoutError:
                pass
        self.checkpoint()

    async def emit(self, event: JobEvent) -> None:
        await self._observer.publish(self.job_id, event)

    async def progress(self, stage: str, message: str, percent: float) -> None:
        # Percentages never go backwards within a job.
        self._progress = max(self._progress, min(round(percent, 1), 100.0))
        await self.emit(ProgressEvent(stage=stage, message=message, progress=self._progress))
