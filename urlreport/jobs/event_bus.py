import asyncio
import logging
from collections import OrderedDict, deque
from collections.abc import AsyncIterator

from urlreport.jobs.events import JobEvent

logger = logging.getLogger(__name__)


class JobEventBus:
    """
    In-process progress channel keyed by job ID.
    Keeps a bounded history per job so a subscriber that connects after the job
    started still receives every event, ending with the terminal one.
    """

    def __init__(self, history_jobs: int = 100, events_per_job: int = 1000) -> None:
        self._history_jobs = history_jobs
        self._events_per_job = events_per_job
        self._history: OrderedDict[str, deque[JobEvent]] = OrderedDict()
        self._subscribers: dict[str, set[asyncio.Queue]] = {}

    async def publish(self, job_id: str, event: JobEvent) -> None:
        history = self._history.get(job_id)
        if history is None:
            history = self._history[job_id] = deque(maxlen=self._events_per_job)
            while len(self._history) > self._history_jobs:
                evicted, _ = self._history.popitem(last=False)
                logger.debug("[events] history evicted | job=%s", evicted)
        history.append(event)
        for queue in self._subscribers.get(job_id, ()):
            queue.put_nowait(event)

    def history(self, job_id: str) -> list[JobEvent]:
        return list(self._history.get(job_id, ()))

    async def subscribe(self, job_id: str) -> AsyncIterator[JobEvent]:
        """Replay past events for job_id, then follow live ones until a terminal event."""
        queue: asyncio.Queue[JobEvent] = asyncio.Queue()
        for event in self._history.get(job_id, ()):
            queue.put_nowait(event)
        self._subscribers.setdefault(job_id, set()).add(queue)
        try:
            while True:
                event = await queue.get()
                yield event
                if event.terminal:
                    return
        finally:
            subscribers = self._subscribers.get(job_id)
            if subscribers is not None:
                subscribers.discard(queue)
                if not subscribers:
                    del self._subscribers[job_id]
