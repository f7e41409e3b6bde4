import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from urlreport.jobs.context import JobContext
from urlreport.repositories.base import AbstractSubmissionRepository

logger = logging.getLogger(__name__)


def dedupe_preserving_order(urls: Iterable[str]) -> list[str]:
    """Drop exact repeats; the first occurrence keeps its position."""
    return list(dict.fromkeys(urls))


@dataclass
class DedupResult:
    to_submit: list[str] = field(default_factory=list)
    existing: list[str] = field(default_factory=list)
    within_batch_duplicates: int = 0

    @property
    def skipped(self) -> int:
        return len(self.existing) + self.within_batch_duplicates


class Deduplicator:
    def __init__(self, repository: AbstractSubmissionRepository, lookup_chunk_size: int = 200) -> None:
        self._repository = repository
        self._lookup_chunk_size = max(1, lookup_chunk_size)

    async def filter_existing(self, job: JobContext, urls: list[str]) -> DedupResult:
        """
        Collapse repeats inside the job, then drop URLs that already have a record.
        The store is queried in chunks of lookup_chunk_size. This check is not atomic
        with the later insert; BatchSubmitter re-checks each chunk before writing.
        """
        unique = dedupe_preserving_order(urls)
        existing: set[str] = set()
        total = len(unique)
        for start in range(0, total, self._lookup_chunk_size):
            chunk = unique[start : start + self._lookup_chunk_size]
            job.checkpoint()
            existing |= await asyncio.to_thread(self._repository.find_existing_urls, chunk)
            job.checkpoint()
            checked = min(start + len(chunk), total)
            await job.progress("filtering", f"Checked {checked}/{total} URLs", 10 + 10 * checked / total)

        result = DedupResult(
            to_submit=[url for url in unique if url not in existing],
            existing=[url for url in unique if url in existing],
            within_batch_duplicates=len(urls) - total,
        )
        logger.info(
            "[dedup] job=%s | unique=%d | existing=%d | repeats=%d",
            job.job_id,
            total,
            len(result.existing),
            result.within_batch_duplicates,
        )
        return result
