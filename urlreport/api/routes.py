import asyncio
import logging
from contextlib import aclosing

from fastapi import APIRouter, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import PlainTextResponse

from urlreport.models.submission import ALL_STATES
from urlreport.schemas.report import (
    CancelResponse,
    CheckStatusesResponse,
    DeleteRequest,
    DeleteResponse,
    JobStatusResponse,
    ReportRequest,
    ReportResponse,
    SubmissionOut,
    SubmissionsResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()

_FINISHED_STATUS = {"complete": "complete", "stopped": "stopped", "error": "errored"}


@router.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@router.post("/api/report", response_model=ReportResponse)
async def report(payload: ReportRequest, request: Request) -> ReportResponse:
    if not request.app.state.settings.REPORTER_EMAIL:
        raise HTTPException(status_code=400, detail="Reporter email not configured")
    job_id = request.app.state.job_controller.submit(payload.urls)
    return ReportResponse(success=True, job_id=job_id, message="Processing started")


@router.get("/api/jobs/{job_id}", response_model=JobStatusResponse)
async def job_status(job_id: str, request: Request) -> JobStatusResponse:
    handle = request.app.state.job_registry.get(job_id)
    if handle is not None:
        return JobStatusResponse(job_id=job_id, status=handle.status.value, active=not handle.status.terminal)
    history = request.app.state.event_bus.history(job_id)
    if not history:
        raise HTTPException(status_code=404, detail="Unknown job")
    status = _FINISHED_STATUS.get(history[-1].name, "unknown")
    return JobStatusResponse(job_id=job_id, status=status, active=False)


@router.post("/api/jobs/{job_id}/cancel", response_model=CancelResponse)
async def cancel_job(job_id: str, request: Request) -> CancelResponse:
    if not request.app.state.job_controller.cancel(job_id):
        raise HTTPException(status_code=404, detail="Job not found or already finished")
    return CancelResponse(success=True, message="Stop requested")


@router.websocket("/ws/jobs/{job_id}")
async def job_events(websocket: WebSocket, job_id: str) -> None:
    """Stream a job's events, replaying those already sent, until its terminal event."""
    await websocket.accept()
    bus = websocket.app.state.event_bus
    if job_id not in websocket.app.state.job_registry and not bus.history(job_id):
        await websocket.send_json({"event": "error", "data": {"message": "Unknown job"}})
        await websocket.close(code=4404)
        return
    try:
        async with aclosing(bus.subscribe(job_id)) as events:
            async for event in events:
                await websocket.send_json(event.to_message())
    except WebSocketDisconnect:
        logger.info("[ws] client disconnected | job=%s", job_id)
        return
    await websocket.close()


@router.post("/api/check-statuses", response_model=CheckStatusesResponse)
async def check_statuses(request: Request) -> CheckStatusesResponse:
    summary = await request.app.state.status_poller.run()
    if summary.total_checked == 0:
        message = "No pending submissions"
    else:
        message = f"Updated {summary.updated} of {summary.total_checked} submissions"
    return CheckStatusesResponse(
        success=True,
        updated=summary.updated,
        total_checked=summary.total_checked,
        batches=summary.batches,
        message=message,
    )


@router.get("/api/submissions", response_model=SubmissionsResponse)
async def list_submissions(
    request: Request,
    state: str | None = None,
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
) -> SubmissionsResponse:
    if state is not None and state not in ALL_STATES:
        raise HTTPException(status_code=400, detail=f"Unknown state: {state}")
    records = await asyncio.to_thread(request.app.state.repository.list_submissions, state, limit, offset)
    return SubmissionsResponse(
        success=True,
        submissions=[SubmissionOut.model_validate(record, from_attributes=True) for record in records],
    )


@router.delete("/api/submissions", response_model=DeleteResponse)
async def delete_submissions(payload: DeleteRequest, request: Request) -> DeleteResponse:
    repository = request.app.state.repository
    deleted = 0
    if payload.urls:
        deleted += await asyncio.to_thread(repository.delete_by_urls, payload.urls)
    if payload.states:
        deleted += await asyncio.to_thread(repository.delete_by_states, payload.states)
    logger.info("[admin] submissions deleted | urls=%d | states=%s | rows=%d", len(payload.urls), payload.states, deleted)
    return DeleteResponse(success=True, deleted=deleted)


@router.get("/api/export/credited", response_class=PlainTextResponse)
async def export_credited(request: Request, tag: str = "credited") -> str:
    repository = request.app.state.repository
    urls = await asyncio.to_thread(lambda: list(repository.iter_urls_with_tag(tag)))
    logger.info("[export] tagged urls | tag=%s | count=%d", tag, len(urls))
    return "\n".join(urls)
