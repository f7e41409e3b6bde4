"""End-to-end job runs against a temporary SQLite store and a fake reporting API."""
import json

import pytest

from urlreport.services.report_client import ApiResult


def _assert_accounted(event):
    assert event.total == event.reported + event.skipped + event.failed + event.invalid


def _progress_values(observer):
    return [event.progress for event in observer.of("progress")]


async def _run(controller, urls):
    handle = controller.registry.create()
    return handle, await controller.run(handle, urls)


@pytest.mark.asyncio
async def test_mixed_input_scenario(make_pipeline, repository, client, observer):
    controller, _ = make_pipeline()
    _, event = await _run(controller, ["https://a.com", "a.com", "not a url", "ftp://x.com"])

    assert event.name == "complete"
    assert (event.total, event.reported, event.skipped, event.failed, event.invalid) == (4, 1, 1, 0, 2)
    _assert_accounted(event)
    assert client.report_calls == [["https://a.com"]]

    stored = repository.get_by_url("https://a.com")
    assert stored.state == "pending"
    assert stored.identifier == "batch-1"
    for raw in ("not a url", "ftp://x.com"):
        record = repository.get_by_url(raw)
        assert record.state == "failed"
        assert record.error == "Invalid URL format"
        assert record.identifier is None

    invalid_event = observer.of("invalid-urls")[0]
    assert invalid_event.count == 2
    assert invalid_event.urls == ["not a url", "ftp://x.com"]
    assert observer.names[-1] == "complete"


@pytest.mark.asyncio
async def test_progress_is_monotonic(make_pipeline, observer):
    controller, _ = make_pipeline(BATCH_SIZE=2)
    await _run(controller, [f"https://site{i}.com" for i in range(5)])

    values = _progress_values(observer)
    assert values == sorted(values)
    assert values[-1] == 100
    assert all(0 <= value <= 100 for value in values)


@pytest.mark.asyncio
async def test_repeated_invalid_input_is_stored_once(make_pipeline, repository):
    controller, _ = make_pipeline()
    _, event = await _run(controller, ["bad input", "bad input", "https://ok.com"])

    assert event.invalid == 2
    _assert_accounted(event)
    assert len(repository.list_submissions(state="failed")) == 1


@pytest.mark.asyncio
async def test_same_url_across_jobs_is_skipped(make_pipeline, repository, client):
    controller, _ = make_pipeline()
    _, first = await _run(controller, ["https://a.com"])
    _, second = await _run(controller, ["a.com"])

    assert first.reported == 1
    assert (second.reported, second.skipped, second.failed) == (0, 1, 0)
    _assert_accounted(second)
    assert len(client.report_calls) == 1
    assert len(repository.list_submissions()) == 1


@pytest.mark.asyncio
async def test_rate_limit_fails_remaining_chunks(make_pipeline, repository, client, observer):
    controller, _ = make_pipeline(BATCH_SIZE=2)
    client.report_responses = [
        ApiResult(success=True, data={"uuid": "batch-1"}),
        ApiResult(success=False, rate_limited=True, error="Rate limit reached", status_code=429),
    ]
    urls = [f"https://site{i}.com" for i in range(6)]
    _, event = await _run(controller, urls)

    assert len(client.report_calls) == 2
    assert not event.success
    assert event.rate_limit_reached
    assert (event.reported, event.failed) == (2, 4)
    _assert_accounted(event)

    for url in urls[:2]:
        assert repository.get_by_url(url).state == "pending"
    for url in urls[2:]:
        record = repository.get_by_url(url)
        assert record.state == "failed"
        assert record.error == "Rate limit reached"

    rate_limit = observer.of("rate-limit")[0]
    assert (rate_limit.processed, rate_limit.total, rate_limit.remaining) == (2, 6, 4)
    assert observer.names[-1] == "complete"


@pytest.mark.asyncio
async def test_chunk_failure_does_not_abort_job(make_pipeline, repository, client, observer):
    controller, _ = make_pipeline(BATCH_SIZE=2)
    client.report_responses = [ApiResult(success=False, error="HTTP 500: boom", status_code=500)]
    urls = [f"https://site{i}.com" for i in range(4)]
    _, event = await _run(controller, urls)

    assert event.success
    assert (event.reported, event.failed) == (2, 2)
    _assert_accounted(event)
    assert repository.get_by_url(urls[0]).error == "HTTP 500: boom"
    assert repository.get_by_url(urls[2]).state == "pending"

    batch_error = observer.of("batch-error")[0]
    assert (batch_error.batch_num, batch_error.total_batches, batch_error.error) == (1, 2, "HTTP 500: boom")


@pytest.mark.asyncio
async def test_cancel_after_first_chunk(make_pipeline, repository, client, observer):
    controller, _ = make_pipeline(BATCH_SIZE=2)
    handle = controller.registry.create()

    def cancel_during_lookup(batch_uuid, urls):
        controller.cancel(handle.job_id)
        return ApiResult(success=True, data={"urls": []})

    client.uuid_responses = [cancel_during_lookup]
    urls = [f"https://site{i}.com" for i in range(6)]
    result = await controller.run(handle, urls)

    assert result is None
    assert len(client.report_calls) == 1
    assert observer.names[-1] == "stopped"
    assert "complete" not in observer.names
    assert handle.job_id not in controller.registry
    assert handle.status.value == "stopped"
    assert [repository.get_by_url(url) is not None for url in urls] == [True, True, False, False, False, False]


@pytest.mark.asyncio
async def test_cancel_before_start_stops_during_validation(make_pipeline, client, observer):
    controller, _ = make_pipeline()
    handle = controller.registry.create()
    controller.cancel(handle.job_id)

    await controller.run(handle, ["https://a.com"])

    assert client.report_calls == []
    assert observer.names == ["progress", "stopped"]


@pytest.mark.asyncio
async def test_reconciler_replaces_batch_identifier(make_pipeline, repository, client):
    controller, _ = make_pipeline()
    client.uuid_responses = [
        ApiResult(
            success=True,
            data={
                "urls": [
                    {"data": {"url": "https://a.com/"}, "found": True, "uuid": "url-a"},
                    {"data": {"url": "https://b.com"}, "found": False, "uuid": None},
                    {"data": {"url": "https://c.com"}, "found": True, "uuid": "batch-1"},
                    {"data": {"url": "https://elsewhere.com"}, "found": True, "uuid": "url-x"},
                ]
            },
        )
    ]
    await _run(controller, ["https://a.com", "https://b.com", "https://c.com"])

    assert client.uuid_calls[0][0] == "batch-1"
    assert repository.get_by_url("https://a.com").identifier == "url-a"
    assert repository.get_by_url("https://b.com").identifier == "batch-1"
    assert repository.get_by_url("https://c.com").identifier == "batch-1"
    assert repository.get_by_url("https://elsewhere.com") is None


@pytest.mark.asyncio
async def test_reconciler_retries_then_gives_up(make_pipeline, repository, client, observer):
    controller, _ = make_pipeline(UUID_FETCH_RETRIES=2)
    client.uuid_responses = [ApiResult(success=False, error="HTTP 503")] * 3
    _, event = await _run(controller, ["https://a.com"])

    assert len(client.uuid_calls) == 3
    assert event.success
    assert repository.get_by_url("https://a.com").identifier == "batch-1"


@pytest.mark.asyncio
async def test_concurrent_insert_counts_as_reported(make_pipeline, repository, client):
    from urlreport.models.submission import Submission

    controller, _ = make_pipeline()

    def race_then_accept(urls):
        repository.insert(Submission.pending("https://b.com", "other-job-batch"))
        return ApiResult(success=True, data={"uuid": "batch-1"})

    client.report_responses = [race_then_accept]
    _, event = await _run(controller, ["https://a.com", "https://b.com"])

    assert (event.reported, event.skipped, event.failed) == (2, 0, 0)
    _assert_accounted(event)
    assert repository.get_by_url("https://b.com").identifier == "other-job-batch"
    assert client.uuid_calls == [("batch-1", ["https://a.com"])]


@pytest.mark.asyncio
async def test_input_is_capped(make_pipeline, client, observer):
    controller, _ = make_pipeline(MAX_URLS_PER_JOB=2)
    _, event = await _run(controller, ["https://a.com", "", "https://b.com", "https://c.com"])

    warning = observer.of("url-limit-warning")[0]
    assert (warning.total, warning.processing, warning.remaining) == (3, 2, 1)
    assert event.total == 2
    _assert_accounted(event)
    assert client.report_calls == [["https://a.com", "https://b.com"]]


@pytest.mark.asyncio
async def test_unexpected_error_emits_single_error_event(make_pipeline, client, observer):
    controller, _ = make_pipeline()

    def explode(urls):
        raise RuntimeError("unexpected")

    client.report_responses = [explode]
    handle, result = await _run(controller, ["https://a.com"])

    assert result is None
    assert observer.names[-1] == "error"
    assert observer.of("error")[0].message == "unexpected"
    assert [name for name in observer.names if name in ("complete", "stopped", "error")] == ["error"]
    assert handle.job_id not in controller.registry


@pytest.mark.asyncio
async def test_submit_runs_in_background(make_pipeline, observer):
    controller, _ = make_pipeline()
    job_id = controller.submit(["https://a.com"])
    handle = controller.registry.get(job_id)

    await handle.task

    assert observer.events[-1][0] == job_id
    assert observer.names[-1] == "complete"
    assert controller.registry.get(job_id) is None


@pytest.mark.asyncio
async def test_structured_api_error_fails_only_its_chunk(app_settings, repository, observer):
    from unittest.mock import AsyncMock, MagicMock, patch

    from urlreport.main import build_client, build_pipeline

    def response(status_code, body):
        mocked = MagicMock()
        mocked.status_code = status_code
        mocked.text = json.dumps(body)
        mocked.json = MagicMock(return_value=body)
        return mocked

    controller, _ = build_pipeline(
        app_settings.model_copy(update={"BATCH_SIZE": 1}), repository, build_client(app_settings), observer
    )
    with patch("urlreport.services.report_client.httpx.AsyncClient") as mock_client_cls:
        mock_client = AsyncMock()
        mock_client.request = AsyncMock(
            side_effect=[
                response(400, {"message": {"detail": "bad"}}),
                response(200, {"uuid": "batch-2"}),
                response(200, {"urls": []}),
            ]
        )
        mock_client_cls.return_value.__aenter__ = AsyncMock(return_value=mock_client)
        mock_client_cls.return_value.__aexit__ = AsyncMock(return_value=False)
        _, event = await _run(controller, ["https://a.com", "https://b.com"])

    assert event.name == "complete"
    assert (event.reported, event.failed) == (1, 1)
    failed = repository.get_by_url("https://a.com")
    assert failed.state == "failed"
    assert failed.error.startswith("HTTP 400: ")
    assert repository.get_by_url("https://b.com").identifier == "batch-2"
    assert "error" not in observer.names


@pytest.mark.asyncio
async def test_store_lookup_runs_in_chunks(make_pipeline, repository, client, observer):
    from urlreport.models.submission import Submission

    urls = [f"https://site{i}.com" for i in range(5)]
    repository.insert_many([Submission.pending(url, "old-batch") for url in (urls[0], urls[2], urls[4])])
    controller, _ = make_pipeline(LOOKUP_CHUNK_SIZE=2)

    _, event = await _run(controller, urls)

    assert (event.reported, event.skipped) == (2, 3)
    _assert_accounted(event)
    assert client.report_calls == [[urls[1], urls[3]]]
    checked = [e.message for e in observer.of("progress") if e.message.startswith("Checked")]
    assert checked == ["Checked 2/5 URLs", "Checked 4/5 URLs", "Checked 5/5 URLs"]
