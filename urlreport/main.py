import asyncio
import logging
from contextlib import asynccontextmanager, suppress

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from urlreport.api.routes import router
from urlreport.config import Settings, settings
from urlreport.db.connection import run_migrations
from urlreport.jobs.event_bus import JobEventBus
from urlreport.jobs.events import JobObserver
from urlreport.jobs.registry import JobRegistry
from urlreport.repositories.submission_repository import SubmissionRepository
from urlreport.services.batch_submitter import BatchSubmitter
from urlreport.services.deduplicator import Deduplicator
from urlreport.services.identifier_reconciler import IdentifierReconciler
from urlreport.services.job_controller import JobController
from urlreport.services.report_client import ReportApiClient
from urlreport.services.status_poller import StatusPoller

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_client(app_settings: Settings) -> ReportApiClient:
    return ReportApiClient(
        base_url=app_settings.REPORT_API_BASE_URL,
        email=app_settings.REPORTER_EMAIL,
        api_key=app_settings.REPORT_API_KEY,
        timeout=app_settings.HTTP_TIMEOUT,
    )


def build_pipeline(
    app_settings: Settings,
    repository: SubmissionRepository,
    client: ReportApiClient,
    observer: JobObserver,
    registry: JobRegistry | None = None,
) -> tuple[JobController, StatusPoller]:
    """Wire the submission pipeline and the status poller from settings."""
    reconciler = IdentifierReconciler(
        repository,
        client,
        wait_before_fetch=app_settings.WAIT_BEFORE_UUID_FETCH,
        retries=app_settings.UUID_FETCH_RETRIES,
        retry_delay=app_settings.UUID_FETCH_RETRY_DELAY,
    )
    submitter = BatchSubmitter(
        repository,
        client,
        reconciler,
        batch_size=app_settings.BATCH_SIZE,
        delay_between_batches=app_settings.DELAY_BETWEEN_BATCHES,
    )
    controller = JobController(
        repository,
        Deduplicator(repository, lookup_chunk_size=app_settings.LOOKUP_CHUNK_SIZE),
        submitter,
        observer,
        registry if registry is not None else JobRegistry(),
        max_urls_per_job=app_settings.MAX_URLS_PER_JOB,
    )
    poller = StatusPoller(
        repository,
        client,
        page_size=app_settings.PAGE_SIZE,
        results_per_group=app_settings.BATCH_SIZE,
        update_concurrency=app_settings.STATUS_UPDATE_CONCURRENCY,
        delay_between_groups=app_settings.STATUS_CHECK_DELAY,
    )
    return controller, poller


def install_services(app: FastAPI, app_settings: Settings, client: ReportApiClient | None = None) -> None:
    run_migrations(app_settings.DB_PATH)
    repository = SubmissionRepository(app_settings.DB_PATH)
    event_bus = JobEventBus(history_jobs=app_settings.EVENT_HISTORY_JOBS)
    registry = JobRegistry()
    controller, poller = build_pipeline(
        app_settings, repository, client or build_client(app_settings), event_bus, registry
    )
    app.state.settings = app_settings
    app.state.repository = repository
    app.state.event_bus = event_bus
    app.state.job_registry = registry
    app.state.job_controller = controller
    app.state.status_poller = poller


async def _sweep_forever(poller: StatusPoller, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await poller.run()
        except Exception:
            logger.exception("[poll] scheduled sweep failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    app_settings: Settings = app.state.settings
    configure_logging(app_settings.LOG_LEVEL)
    logger.info("URL reporter starting | db=%s | port=%s", app_settings.DB_PATH, app_settings.PORT)
    install_services(app, app_settings, client=app.state.report_client)

    sweep = None
    if app_settings.STATUS_SWEEP_INTERVAL > 0:
        sweep = asyncio.create_task(_sweep_forever(app.state.status_poller, app_settings.STATUS_SWEEP_INTERVAL))
    app.state.sweep_task = sweep
    yield

    logger.info("URL reporter shutting down")
    tasks = [handle.task for handle in app.state.job_registry.active() if handle.task is not None]
    if sweep is not None:
        tasks.append(sweep)
    for task in tasks:
        task.cancel()
    for task in tasks:
        with suppress(asyncio.CancelledError):
            await task


def create_app(app_settings: Settings | None = None, client: ReportApiClient | None = None) -> FastAPI:
    """Build the app. client replaces the API client built from settings."""
    app = FastAPI(title="URL Reporter", version="1.0.0", lifespan=lifespan)
    app.state.settings = app_settings or settings
    app.state.report_client = client

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(router)

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled exception")
        return JSONResponse(
            status_code=500,
            content={"status": "error", "message": "Internal server error"},
        )

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run("urlreport.main:app", host="0.0.0.0", port=settings.PORT, log_level=settings.LOG_LEVEL)
