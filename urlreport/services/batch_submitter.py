import asyncio
import logging
from dataclasses import dataclass

from urlreport.jobs.context import JobContext
from urlreport.jobs.events import BatchErrorEvent, RateLimitEvent
from urlreport.jobs.registry import JobStatus
from urlreport.models.submission import RATE_LIMIT_ERROR, Submission
from urlreport.repositories.base import AbstractSubmissionRepository
from urlreport.services.identifier_reconciler import IdentifierReconciler
from urlreport.services.report_client import ReportApiClient

logger = logging.getLogger(__name__)

# Chunks share the upper part of the job's progress bar; validation and dedup use the rest.
_PROGRESS_START = 20.0
_PROGRESS_SPAN = 80.0


@dataclass
class SubmissionTotals:
    reported: int = 0
    failed: int = 0
    rate_limited: bool = False
    not_submitted: int = 0


class BatchSubmitter:
    def __init__(
        self,
        repository: AbstractSubmissionRepository,
        client: ReportApiClient,
        reconciler: IdentifierReconciler,
        batch_size: int = 1000,
        delay_between_batches: float = 1.0,
    ) -> None:
        self._repository = repository
        self._client = client
        self._reconciler = reconciler
        self._batch_size = max(1, batch_size)
        self._delay = delay_between_batches

    async def _persist_failed(self, urls: list[str], error: str) -> None:
        inserted, duplicates = await asyncio.to_thread(
            self._repository.insert_many, [Submission.failed(url, error) for url in urls]
        )
        logger.info("[submit] failures stored | rows=%d | already_present=%d", len(inserted), len(duplicates))

    async def _store_chunk(self, chunk: list[str], batch_uuid: str) -> list[str]:
        """Insert pending records for chunk, skipping URLs another job stored meanwhile."""
        already_present = await asyncio.to_thread(self._repository.find_existing_urls, chunk)
        fresh = [url for url in chunk if url not in already_present]
        inserted, duplicates = await asyncio.to_thread(
            self._repository.insert_many, [Submission.pending(url, batch_uuid) for url in fresh]
        )
        if already_present or duplicates:
            logger.info(
                "[submit] concurrent inserts detected | batch=%s | present=%d | duplicates=%d",
                batch_uuid,
                len(already_present),
                len(duplicates),
            )
        return inserted

    async def submit_all(self, job: JobContext, urls: list[str]) -> SubmissionTotals:
        """
        Submit urls in chunks, one remote call at a time.
        A 429 fails every URL from the current chunk onward and stops the loop.
        Any other chunk failure is recorded and the loop moves on.
        """
        totals = SubmissionTotals()
        chunks = [urls[start : start + self._batch_size] for start in range(0, len(urls), self._batch_size)]
        total_batches = len(chunks)

        def percent(position: float) -> float:
            return _PROGRESS_START + _PROGRESS_SPAN * position / total_batches

        for index, chunk in enumerate(chunks):
            batch_num = index + 1
            job.checkpoint()
            job.set_status(JobStatus.SUBMITTING)
            await job.progress(
                "submitting",
                f"Submitting batch {batch_num}/{total_batches} ({len(chunk)} URLs)...",
                percent(index),
            )

            result = await self._client.report_urls(chunk)

            if result.rate_limited:
                remaining = [url for pending_chunk in chunks[index:] for url in pending_chunk]
                logger.warning(
                    "[submit] rate limited | job=%s | batch=%d/%d | remaining=%d",
                    job.job_id,
                    batch_num,
                    total_batches,
                    len(remaining),
                )
                await self._persist_failed(remaining, RATE_LIMIT_ERROR)
                totals.failed += len(remaining)
                totals.not_submitted = len(remaining)
                totals.rate_limited = True
                await job.emit(
                    RateLimitEvent(
                        message="Rate limit reached on the reporting API. Please try again after some time.",
                        processed=len(urls) - len(remaining),
                        total=len(urls),
                        remaining=len(remaining),
                    )
                )
                return totals

            if not result.success:
                error = result.error or "Unknown error"
                logger.error(
                    "[submit] batch failed | job=%s | batch=%d/%d | error=%s", job.job_id, batch_num, total_batches, error
                )
                await self._persist_failed(chunk, error)
                totals.failed += len(chunk)
                await job.emit(
                    BatchErrorEvent(
                        batch_num=batch_num,
                        total_batches=total_batches,
                        error=error,
                        message=f"Batch {batch_num}/{total_batches} failed: {error}",
                    )
                )
            else:
                batch_uuid = result.data["uuid"]
                await job.progress("storing", f"Storing batch {batch_num}/{total_batches}...", percent(index + 0.3))
                inserted = await self._store_chunk(chunk, batch_uuid)
                totals.reported += len(chunk)
                logger.info(
                    "[submit] batch stored | job=%s | batch=%d/%d | uuid=%s | inserted=%d",
                    job.job_id,
                    batch_num,
                    total_batches,
                    batch_uuid,
                    len(inserted),
                )
                # Records are stored before honouring a cancel so accepted URLs are never lost.
                job.checkpoint()
                if inserted:
                    job.set_status(JobStatus.RECONCILING)
                    await job.progress(
                        "reconciling",
                        f"Resolving identifiers for batch {batch_num}/{total_batches}...",
                        percent(index + 0.5),
                    )
                    await self._reconciler.reconcile(job, batch_uuid, inserted)

            await job.progress("submitting", f"Finished batch {batch_num}/{total_batches}", percent(index + 1))
            if batch_num < total_batches:
                await job.sleep(self._delay)

        return totals
