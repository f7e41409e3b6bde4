import asyncio
import logging
from dataclasses import dataclass

from urlreport.models.submission import Submission, can_transition
from urlreport.models.tags import extract_tag_names
from urlreport.repositories.base import AbstractSubmissionRepository
from urlreport.services.report_client import ReportApiClient

logger = logging.getLogger(__name__)


@dataclass
class PollSummary:
    updated: int = 0
    total_checked: int = 0
    batches: int = 0


@dataclass(frozen=True)
class _Update:
    url: str
    state: str
    tags: list[str]


def group_by_identifier(records: list[Submission]) -> dict[str, list[Submission]]:
    groups: dict[str, list[Submission]] = {}
    for record in records:
        if record.identifier:
            groups.setdefault(record.identifier, []).append(record)
    return groups


def match_results(records: list[Submission], results: list) -> list[_Update]:
    """
    Pair remote URL results with stored records.
    The remote side may add or drop a trailing slash, so matching ignores it.
    """
    by_key = {record.url.rstrip("/"): record for record in records}
    updates: list[_Update] = []
    seen: set[str] = set()
    for item in results:
        if not isinstance(item, dict) or not isinstance(item.get("url"), str):
            continue
        record = by_key.get(item["url"].rstrip("/"))
        if record is None or record.url in seen:
            continue
        state = item.get("url_state")
        if not isinstance(state, str) or not can_transition(record.state, state):
            logger.debug("[poll] state ignored | url=%s | current=%s | remote=%r", record.url, record.state, state)
            continue
        seen.add(record.url)
        updates.append(_Update(url=record.url, state=state, tags=extract_tag_names(item.get("tags"))))
    return updates


class StatusPoller:
    """Reconciles stored non-terminal records with the remote classification state."""

    def __init__(
        self,
        repository: AbstractSubmissionRepository,
        client: ReportApiClient,
        page_size: int = 1000,
        results_per_group: int = 1000,
        update_concurrency: int = 10,
        delay_between_groups: float = 0.5,
    ) -> None:
        self._repository = repository
        self._client = client
        self._page_size = max(1, page_size)
        self._results_per_group = results_per_group
        self._update_concurrency = max(1, update_concurrency)
        self._delay = delay_between_groups
        self._lock = asyncio.Lock()

    async def _load_pending(self) -> list[Submission]:
        records: list[Submission] = []
        offset = 0
        while True:
            page = await asyncio.to_thread(self._repository.list_pending, self._page_size, offset)
            records.extend(page)
            if len(page) < self._page_size:
                return records
            offset += self._page_size

    async def _apply_one(self, update: _Update) -> bool:
        return await asyncio.to_thread(self._repository.update_classification, update.url, update.state, update.tags)

    async def _apply_sequentially(self, updates: list[_Update]) -> int:
        changed = 0
        for update in updates:
            try:
                changed += await self._apply_one(update)
            except Exception:
                logger.exception("[poll] update failed | url=%s", update.url)
        return changed

    async def _apply(self, identifier: str, updates: list[_Update]) -> int:
        """
        Write updates a few at a time. Once a concurrent chunk has a failure, its
        failed updates and everything after them are written one by one.
        """
        changed = 0
        for start in range(0, len(updates), self._update_concurrency):
            chunk = updates[start : start + self._update_concurrency]
            results = await asyncio.gather(*(self._apply_one(update) for update in chunk), return_exceptions=True)
            changed += sum(1 for result in results if result is True)
            failed = [update for update, result in zip(chunk, results) if isinstance(result, Exception)]
            if failed:
                logger.warning(
                    "[poll] concurrent update failed | identifier=%s | failures=%d | error=%r | going sequential",
                    identifier,
                    len(failed),
                    next(result for result in results if isinstance(result, Exception)),
                )
                return changed + await self._apply_sequentially(failed + updates[start + len(chunk) :])
        return changed

    async def _check_single(self, identifier: str, record: Submission) -> int:
        """Fallback for a per-URL identifier: its submission status is the URL's status."""
        result = await self._client.get_submission_status(identifier)
        if not result.success:
            logger.warning("[poll] status lookup failed | identifier=%s | error=%s", identifier, result.error)
            return 0
        state = result.data.get("state")
        if not isinstance(state, str) or not can_transition(record.state, state):
            return 0
        tags = extract_tag_names(result.data.get("tags"))
        return await asyncio.to_thread(self._repository.update_classification_by_identifier, identifier, state, tags)

    async def _check_group(self, identifier: str, records: list[Submission]) -> int:
        result = await self._client.get_submission_urls(identifier, self._results_per_group)
        if not result.success or not result.data.get("urls"):
            if len(records) == 1:
                return await self._check_single(identifier, records[0])
            logger.warning(
                "[poll] group skipped | identifier=%s | records=%d | error=%s",
                identifier,
                len(records),
                result.error or "no urls returned",
            )
            return 0
        updates = match_results(records, result.data["urls"])
        return await self._apply(identifier, updates)

    async def run(self) -> PollSummary:
        """One sweep over every submitted, non-terminal record. A failing group never aborts the sweep."""
        async with self._lock:
            records = await self._load_pending()
            groups = group_by_identifier(records)
            summary = PollSummary(total_checked=len(records))
            logger.info("[poll] sweep started | records=%d | groups=%d", len(records), len(groups))

            for index, (identifier, group) in enumerate(groups.items()):
                try:
                    summary.updated += await self._check_group(identifier, group)
                except Exception:
                    logger.exception("[poll] group failed | identifier=%s", identifier)
                summary.batches += 1
                if index + 1 < len(groups) and self._delay > 0:
                    await asyncio.sleep(self._delay)

            logger.info(
                "[poll] sweep finished | updated=%d | checked=%d | groups=%d",
                summary.updated,
                summary.total_checked,
                summary.batches,
            )
            return summary
