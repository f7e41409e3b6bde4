import asyncio
import logging
from dataclasses import dataclass

from urlreport.jobs.context import JobContext
from urlreport.repositories.base import AbstractSubmissionRepository
from urlreport.services.report_client import ApiResult, ReportApiClient

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    success: bool
    attempts: int = 0
    updated: int = 0
    not_found: int = 0


class IdentifierReconciler:
    """Swaps a chunk's shared batch identifier for per-URL identifiers where the API has them."""

    def __init__(
        self,
        repository: AbstractSubmissionRepository,
        client: ReportApiClient,
        wait_before_fetch: float = 10.0,
        retries: int = 3,
        retry_delay: float = 5.0,
    ) -> None:
        self._repository = repository
        self._client = client
        self._wait_before_fetch = wait_before_fetch
        self._retries = retries
        self._retry_delay = retry_delay

    async def _fetch(self, job: JobContext, batch_uuid: str, urls: list[str]) -> tuple[ApiResult, int]:
        attempts = 0
        while True:
            job.checkpoint()
            result = await self._client.get_url_uuids(batch_uuid, urls)
            attempts += 1
            job.checkpoint()
            if result.success or attempts > self._retries:
                return result, attempts
            logger.warning(
                "[reconcile] lookup failed | job=%s | batch=%s | attempt=%d/%d | error=%s",
                job.job_id,
                batch_uuid,
                attempts,
                self._retries + 1,
                result.error,
            )
            await job.sleep(self._retry_delay)

    async def reconcile(self, job: JobContext, batch_uuid: str, urls: list[str]) -> ReconcileResult:
        """
        Wait for the remote side to process the batch, then resolve per-URL identifiers.
        URLs that are not found yet keep the batch identifier; the status poller
        still reaches them through it. Failing every attempt is not an error.
        """
        await job.sleep(self._wait_before_fetch)
        result, attempts = await self._fetch(job, batch_uuid, urls)
        if not result.success:
            logger.warning(
                "[reconcile] giving up | job=%s | batch=%s | attempts=%d | keeping batch identifier",
                job.job_id,
                batch_uuid,
                attempts,
            )
            return ReconcileResult(success=False, attempts=attempts)

        by_key = {url.rstrip("/"): url for url in urls}
        updates: list[tuple[str, str]] = []
        not_found = 0
        for entry in result.data.get("urls") or []:
            if not isinstance(entry, dict):
                continue
            returned_url = (entry.get("data") or {}).get("url")
            stored_url = by_key.get(returned_url.rstrip("/")) if isinstance(returned_url, str) else None
            if stored_url is None:
                continue
            individual_uuid = entry.get("uuid")
            if not entry.get("found"):
                not_found += 1
            elif individual_uuid and individual_uuid != batch_uuid:
                updates.append((stored_url, individual_uuid))

        updated = 0
        for url, individual_uuid in updates:
            if await asyncio.to_thread(self._repository.update_identifier, url, individual_uuid, batch_uuid):
                updated += 1
        logger.info(
            "[reconcile] job=%s | batch=%s | updated=%d | not_found=%d | attempts=%d",
            job.job_id,
            batch_uuid,
            updated,
            not_found,
            attempts,
        )
        return ReconcileResult(success=True, attempts=attempts, updated=updated, not_found=not_found)
