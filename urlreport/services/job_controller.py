import asyncio
import logging

from urlreport.jobs.context import JobCancelled, JobContext
from urlreport.jobs.events import (
    CompleteEvent,
    ErrorEvent,
    InvalidUrlsEvent,
    JobObserver,
    StoppedEvent,
    UrlLimitWarningEvent,
)
from urlreport.jobs.registry import JobHandle, JobRegistry, JobStatus
from urlreport.models.submission import INVALID_URL_ERROR, Submission
from urlreport.repositories.base import AbstractSubmissionRepository
from urlreport.services.batch_submitter import BatchSubmitter, SubmissionTotals
from urlreport.services.deduplicator import Deduplicator, dedupe_preserving_order
from urlreport.services.url_normalizer import normalize_url

logger = logging.getLogger(__name__)

INVALID_EXAMPLES = 10


class JobController:
    """
    Runs submission jobs: capping, validation, dedup, chunked submission.
    Each job is one asyncio task and ends with exactly one terminal event
    (complete, stopped or error) on its progress channel.
    """

    def __init__(
        self,
        repository: AbstractSubmissionRepository,
        deduplicator: Deduplicator,
        submitter: BatchSubmitter,
        observer: JobObserver,
        registry: JobRegistry,
        max_urls_per_job: int = 10000,
    ) -> None:
        self._repository = repository
        self._deduplicator = deduplicator
        self._submitter = submitter
        self._observer = observer
        self._registry = registry
        self._max_urls = max_urls_per_job

    @property
    def registry(self) -> JobRegistry:
        return self._registry

    def submit(self, urls: list[str]) -> str:
        """Start a job in the background and return its ID. Needs a running event loop."""
        handle = self._registry.create()
        handle.task = asyncio.create_task(self.run(handle, urls), name=f"report-job-{handle.job_id}")
        logger.info("[job] submitted | job=%s | urls=%d", handle.job_id, len(urls))
        return handle.job_id

    def cancel(self, job_id: str) -> bool:
        cancelled = self._registry.cancel(job_id)
        if cancelled:
            logger.info("[job] cancel requested | job=%s", job_id)
        return cancelled

    async def run(self, handle: JobHandle, urls: list[str]) -> CompleteEvent | None:
        job = JobContext(handle, self._observer)
        try:
            event = await self._execute(job, urls)
            job.set_status(JobStatus.COMPLETE)
            await job.emit(event)
            logger.info(
                "[job] complete | job=%s | total=%d | reported=%d | skipped=%d | failed=%d | invalid=%d",
                job.job_id,
                event.total,
                event.reported,
                event.skipped,
                event.failed,
                event.invalid,
            )
            return event
        except JobCancelled:
            logger.info("[job] stopped | job=%s", job.job_id)
            job.set_status(JobStatus.STOPPED)
            await job.emit(StoppedEvent())
        except asyncio.CancelledError:
            logger.info("[job] task cancelled | job=%s", job.job_id)
            job.set_status(JobStatus.STOPPED)
            await job.emit(StoppedEvent())
            raise
        except Exception as exc:
            logger.exception("[job] crashed | job=%s", job.job_id)
            job.set_status(JobStatus.ERRORED)
            await job.emit(ErrorEvent(message=str(exc) or type(exc).__name__))
        finally:
            self._registry.remove(handle.job_id)
        return None

    async def _cap(self, job: JobContext, urls: list[str]) -> list[str]:
        lines = [url for url in urls if url and url.strip()]
        if len(lines) <= self._max_urls:
            return lines
        excess = len(lines) - self._max_urls
        logger.warning("[job] input capped | job=%s | total=%d | dropped=%d", job.job_id, len(lines), excess)
        await job.emit(
            UrlLimitWarningEvent(
                total=len(lines),
                processing=self._max_urls,
                remaining=excess,
                message=(
                    f"Only the first {self._max_urls} URLs will be processed. "
                    f"Submit the remaining {excess} URLs in a separate job."
                ),
            )
        )
        return lines[: self._max_urls]

    async def _validate(self, job: JobContext, lines: list[str]) -> tuple[list[str], list[str]]:
        job.set_status(JobStatus.VALIDATING)
        await job.progress("validating", f"Validating {len(lines)} URLs...", 0)
        valid: list[str] = []
        invalid: list[str] = []
        for raw in lines:
            job.checkpoint()
            normalized = normalize_url(raw)
            if normalized.valid:
                valid.append(normalized.url)
            else:
                invalid.append(raw.strip())
        await job.progress("validating", f"{len(valid)} valid, {len(invalid)} invalid", 10)
        return valid, invalid

    async def _record_invalid(self, job: JobContext, invalid: list[str]) -> None:
        unique = dedupe_preserving_order(invalid)
        await job.emit(
            InvalidUrlsEvent(
                count=len(invalid),
                urls=unique[:INVALID_EXAMPLES],
                message=f"{len(invalid)} invalid URLs will be recorded as failed and not submitted.",
            )
        )
        job.checkpoint()
        await asyncio.to_thread(
            self._repository.insert_many, [Submission.failed(raw, INVALID_URL_ERROR) for raw in unique]
        )
        job.checkpoint()

    async def _execute(self, job: JobContext, urls: list[str]) -> CompleteEvent:
        lines = await self._cap(job, urls)
        valid, invalid = await self._validate(job, lines)
        if invalid:
            await self._record_invalid(job, invalid)

        job.set_status(JobStatus.DEDUPLICATING)
        await job.progress("filtering", "Checking for already reported URLs...", 10)
        dedup = await self._deduplicator.filter_existing(job, valid)

        totals = SubmissionTotals()
        if dedup.to_submit:
            totals = await self._submitter.submit_all(job, dedup.to_submit)
        else:
            await job.progress("filtering", "No new URLs to report", 100)

        message = None
        if totals.rate_limited:
            message = (
                f"Rate limit reached! Successfully reported {totals.reported} URLs. "
                f"{totals.not_submitted} URLs were not submitted."
            )
        return CompleteEvent(
            success=not totals.rate_limited,
            total=len(lines),
            reported=totals.reported,
            skipped=dedup.skipped,
            failed=totals.failed,
            invalid=len(invalid),
            rate_limit_reached=totals.rate_limited,
            message=message,
        )
