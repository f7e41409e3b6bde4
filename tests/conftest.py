from collections.abc import Callable

import pytest

from urlreport.config import Settings
from urlreport.db.connection import run_migrations
from urlreport.jobs.events import JobEvent
from urlreport.main import build_pipeline
from urlreport.repositories.submission_repository import SubmissionRepository
from urlreport.services.report_client import ApiResult

Response = ApiResult | Callable[..., ApiResult]


def _next(queue: list[Response], default: ApiResult, *args) -> ApiResult:
    if not queue:
        return default
    response = queue.pop(0)
    return response(*args) if callable(response) else response


class FakeReportClient:
    """Stands in for ReportApiClient. Responses are queued per endpoint; callables get the call args."""

    def __init__(self) -> None:
        self.report_responses: list[Response] = []
        self.uuid_responses: list[Response] = []
        self.url_responses: dict[str, ApiResult] = {}
        self.status_responses: dict[str, ApiResult] = {}
        self.report_calls: list[list[str]] = []
        self.uuid_calls: list[tuple[str, list[str]]] = []
        self.url_calls: list[str] = []
        self.status_calls: list[str] = []
        self._batches = 0

    async def report_urls(self, urls: list[str]) -> ApiResult:
        self.report_calls.append(list(urls))
        self._batches += 1
        default = ApiResult(success=True, data={"uuid": f"batch-{self._batches}"})
        return _next(self.report_responses, default, urls)

    async def get_url_uuids(self, submission_uuid: str, urls: list[str]) -> ApiResult:
        self.uuid_calls.append((submission_uuid, list(urls)))
        return _next(self.uuid_responses, ApiResult(success=True, data={"urls": []}), submission_uuid, urls)

    async def get_submission_urls(self, submission_uuid: str, count: int) -> ApiResult:
        self.url_calls.append(submission_uuid)
        return self.url_responses.get(submission_uuid, ApiResult(success=False, error="HTTP 404"))

    async def get_submission_status(self, submission_uuid: str) -> ApiResult:
        self.status_calls.append(submission_uuid)
        return self.status_responses.get(submission_uuid, ApiResult(success=False, error="HTTP 404"))


class RecordingObserver:
    def __init__(self) -> None:
        self.events: list[tuple[str, JobEvent]] = []

    async def publish(self, job_id: str, event: JobEvent) -> None:
        self.events.append((job_id, event))

    @property
    def names(self) -> list[str]:
        return [event.name for _, event in self.events]

    def of(self, name: str) -> list[JobEvent]:
        return [event for _, event in self.events if event.name == name]


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "urlreport.db")
    run_migrations(path)
    return path


@pytest.fixture
def repository(db_path):
    return SubmissionRepository(db_path)


@pytest.fixture
def app_settings(db_path):
    return Settings(
        _env_file=None,
        DB_PATH=db_path,
        REPORTER_EMAIL="reporter@example.com",
        BATCH_SIZE=1000,
        DELAY_BETWEEN_BATCHES=0,
        WAIT_BEFORE_UUID_FETCH=0,
        UUID_FETCH_RETRIES=2,
        UUID_FETCH_RETRY_DELAY=0,
        STATUS_CHECK_DELAY=0,
    )


@pytest.fixture
def client():
    return FakeReportClient()


@pytest.fixture
def observer():
    return RecordingObserver()


@pytest.fixture
def make_pipeline(app_settings, repository, client, observer):
    """Build (controller, poller) over the temp database, optionally overriding settings."""

    def _make(**overrides):
        configured = app_settings.model_copy(update=overrides)
        return build_pipeline(configured, repository, client, observer)

    return _make
