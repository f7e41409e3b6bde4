import logging
from dataclasses import dataclass, field

import httpx

logger = logging.getLogger(__name__)


@dataclass
class ApiResult:
    success: bool
    data: dict = field(default_factory=dict)
    error: str | None = None
    rate_limited: bool = False
    status_code: int | None = None


def _error_message(response: httpx.Response) -> str:
    """Prefer the API's own message/error field, fall back to the raw body."""
    text = response.text
    fallback = f"HTTP {response.status_code}: {text}" if text else f"HTTP {response.status_code}"
    try:
        body = response.json()
    except ValueError:
        return fallback
    if isinstance(body, dict):
        for key in ("message", "error"):
            value = body.get(key)
            if isinstance(value, str) and value.strip():
                return value
    return fallback


class ReportApiClient:
    """Thin async client for the URL reporting API. Never raises on transport errors."""

    def __init__(self, base_url: str, email: str, api_key: str = "", timeout: float = 30.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._email = email
        self._api_key = api_key
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def _request(self, method: str, path: str, **kwargs) -> ApiResult:
        url = f"{self._base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.request(method, url, headers=self._headers(), **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("[api] request failed | %s %s | error=%r", method, path, exc)
            return ApiResult(success=False, error=str(exc) or type(exc).__name__)

        if response.status_code == 429:
            return ApiResult(success=False, rate_limited=True, error="Rate limit reached", status_code=429)
        if response.status_code >= 400:
            return ApiResult(success=False, error=_error_message(response), status_code=response.status_code)
        try:
            data = response.json()
        except ValueError:
            return ApiResult(success=False, error="Malformed response body", status_code=response.status_code)
        if not isinstance(data, dict):
            return ApiResult(success=False, error="Unexpected response shape", status_code=response.status_code)
        return ApiResult(success=True, data=data, status_code=response.status_code)

    async def report_urls(self, urls: list[str]) -> ApiResult:
        """POST /report/urls. On success data["uuid"] holds the batch submission identifier."""
        result = await self._request(
            "POST",
            "/report/urls",
            json={"email": self._email, "urls": [{"url": url} for url in urls]},
        )
        if result.success and not result.data.get("uuid"):
            return ApiResult(success=False, error="Response did not include a submission uuid", status_code=result.status_code)
        return result

    async def get_url_uuids(self, submission_uuid: str, urls: list[str]) -> ApiResult:
        return await self._request(
            "POST",
            f"/submission/{submission_uuid}/url_uuids",
            json={"urls": [{"url": url} for url in urls]},
        )

    async def get_submission_status(self, submission_uuid: str) -> ApiResult:
        return await self._request("GET", f"/submission/{submission_uuid}")

    async def get_submission_urls(self, submission_uuid: str, count: int) -> ApiResult:
        return await self._request("GET", f"/submission/{submission_uuid}/urls", params={"count": count})
