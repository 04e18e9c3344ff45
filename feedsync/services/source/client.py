from __future__ import annotations

from collections.abc import Callable
import logging
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from feedsync.logging_utils import structured_log
from feedsync.services.quota.types import QuotaAvailability, QuotaReading
from feedsync.services.source.errors import (
    MalformedResponseError,
    QuotaExhaustedError,
    SideFetchHttpError,
    SourceBusyError,
    SourceRequestError,
)
from feedsync.services.source.types import CoverAttachment, QuotaHeaders, SourcePage

logger = logging.getLogger(__name__)

USER_ID_HEADER = "X-Base-User-Id"
TENANT_KEY_HEADER = "X-Tenant-Key"
QUOTA_REMAINING_HEADER = "X-RateLimit-Remaining"
QUOTA_LIMIT_HEADER = "X-RateLimit-Limit"
TRANSCRIBE_BUSY_CODE = "TRANSCRIBE_BUSY"

DEFAULT_SEARCH_TIMEOUT_SECONDS = 20.0
DEFAULT_QUOTA_TIMEOUT_SECONDS = 5.0
DEFAULT_TRANSCRIPT_TIMEOUT_SECONDS = 180.0


class _CursorPayload(BaseModel):
    has_more: bool | int = False
    max_cursor: str | int | None = None
    cursor: str | int | None = None

    model_config = ConfigDict(extra="allow")

    def next_cursor(self) -> str | None:
        raw = self.max_cursor if self.max_cursor is not None else self.cursor
        if raw is None:
            return None
        text = str(raw).strip()
        return text or None


class SearchPagePayload(_CursorPayload):
    search_item_list: list[Any]


class AccountVideosPayload(_CursorPayload):
    aweme_list: list[Any]


class QuotaPayload(BaseModel):
    status: str | None = None
    remaining: int | None = None
    quota: int | None = None
    message: str | None = None

    model_config = ConfigDict(extra="allow")


class RateLimitPayload(BaseModel):
    remaining: int | None = None
    quota: int | None = None
    message: str | None = None

    model_config = ConfigDict(extra="allow")


class SourceErrorPayload(BaseModel):
    code: str | None = None
    error: str | None = None
    message: str | None = None
    retryAfter: str | int | float | None = None

    model_config = ConfigDict(extra="allow")


class TranscriptPayload(BaseModel):
    text: str | None = None
    empty: bool = False

    model_config = ConfigDict(extra="allow")


def parse_quota_headers(headers: httpx.Headers) -> QuotaHeaders | None:
    remaining = headers.get(QUOTA_REMAINING_HEADER)
    limit = headers.get(QUOTA_LIMIT_HEADER)
    if not remaining or not limit:
        return None
    try:
        return QuotaHeaders(remaining=int(remaining), limit=int(limit))
    except ValueError:
        return None


def _json_or_empty(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _retry_after_seconds(raw: Any) -> float | None:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


class ContentSourceClient:
    """HTTP client for the content source and its auxiliary endpoints.

    Every response carrying quota headers is reported through
    ``on_quota_headers``. A 429 from any endpoint raises
    ``QuotaExhaustedError``.
    """

    def __init__(
        self,
        *,
        base_url: str,
        user_id: str,
        tenant_key: str,
        search_timeout: float = DEFAULT_SEARCH_TIMEOUT_SECONDS,
        quota_timeout: float = DEFAULT_QUOTA_TIMEOUT_SECONDS,
        transcript_timeout: float = DEFAULT_TRANSCRIPT_TIMEOUT_SECONDS,
        on_quota_headers: Callable[[QuotaHeaders], None] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._search_timeout = search_timeout
        self._quota_timeout = quota_timeout
        self._transcript_timeout = transcript_timeout
        self.on_quota_headers = on_quota_headers
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={
                USER_ID_HEADER: user_id,
                TENANT_KEY_HEADER: tenant_key,
            },
            follow_redirects=True,
            transport=transport,
        )

    async def __aenter__(self) -> ContentSourceClient:
        return self

    async def __aexit__(self, *_exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _post(self, path: str, payload: dict[str, Any], *, timeout: float) -> httpx.Response:
        response = await self._http.post(path, json=payload, timeout=timeout)
        self._observe(response)
        if response.status_code == 429:
            body = RateLimitPayload.model_validate(_json_or_empty(response))
            structured_log(
                logger,
                "warning",
                "source.quota_exhausted",
                path=path,
                remaining=body.remaining,
                quota=body.quota,
            )
            raise QuotaExhaustedError(
                body.message or "Daily quota exhausted",
                remaining=body.remaining if body.remaining is not None else 0,
                quota=body.quota,
            )
        return response

    def _observe(self, response: httpx.Response) -> None:
        headers = parse_quota_headers(response.headers)
        if headers is not None and self.on_quota_headers is not None:
            self.on_quota_headers(headers)

    async def _request_page(self, path: str, payload: dict[str, Any]) -> httpx.Response:
        try:
            response = await self._post(path, payload, timeout=self._search_timeout)
        except httpx.HTTPError as exc:
            raise SourceRequestError(f"Request to {path} failed: {exc!r}") from exc
        if response.status_code >= 400:
            structured_log(
                logger,
                "warning",
                "source.request_failed",
                path=path,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise SourceRequestError(
                f"Request to {path} failed with status {response.status_code}",
                status_code=response.status_code,
            )
        return response

    @staticmethod
    def _decode(response: httpx.Response, model: type[BaseModel], *, path: str) -> Any:
        try:
            return model.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise MalformedResponseError(f"Unexpected response shape from {path}: {exc}") from exc

    async def search_videos(
        self,
        keyword: str,
        *,
        cursor: str,
        count: int,
        region: str,
        sort_type: str = "0",
        publish_time: str = "0",
    ) -> SourcePage:
        path = "/api/tiktok"
        response = await self._request_page(
            path,
            {
                "keyword": keyword,
                "count": str(count),
                "offset": cursor,
                "sort_type": sort_type,
                "publish_time": publish_time,
                "region": region,
            },
        )
        payload = self._decode(response, SearchPagePayload, path=path)
        return SourcePage(
            items=list(payload.search_item_list),
            has_more=bool(payload.has_more),
            next_cursor=payload.next_cursor(),
        )

    async def list_account_videos(
        self,
        username: str,
        *,
        cursor: str,
        count: int,
        region: str,
    ) -> SourcePage:
        path = "/api/tiktok-user"
        response = await self._request_page(
            path,
            {
                "username": username,
                "count": str(count),
                "offset": cursor,
                "region": region,
            },
        )
        payload = self._decode(response, AccountVideosPayload, path=path)
        return SourcePage(
            items=list(payload.aweme_list),
            has_more=bool(payload.has_more),
            next_cursor=payload.next_cursor(),
        )

    async def fetch_account_info(self, username: str) -> dict[str, Any]:
        path = "/api/tiktok-user-info"
        response = await self._request_page(path, {"username": username})
        try:
            data = response.json()
        except ValueError as exc:
            raise MalformedResponseError(f"Unexpected response shape from {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise MalformedResponseError(f"Unexpected response shape from {path}: expected an object")
        return data

    async def download_cover(
        self,
        cover_url: str,
        *,
        file_name: str,
        convert_to_jpg: bool = False,
    ) -> CoverAttachment:
        path = "/api/cover-to-jpg" if convert_to_jpg else "/api/cover-download"
        response = await self._post(path, {"url": cover_url}, timeout=self._search_timeout)
        if response.status_code >= 400:
            raise SideFetchHttpError(
                f"Cover download failed with status {response.status_code}",
                status_code=response.status_code,
            )
        if not response.content:
            raise SideFetchHttpError("Cover download returned an empty body", status_code=response.status_code)
        content_type = response.headers.get("content-type", "image/jpeg").split(";", 1)[0].strip()
        return CoverAttachment(
            file_name=file_name,
            content_type=content_type or "image/jpeg",
            content=response.content,
        )

    async def extract_transcript(self, video_url: str) -> str:
        path = "/api/extract-audio"
        response = await self._post(path, {"videoUrl": video_url}, timeout=self._transcript_timeout)
        if response.status_code >= 400:
            error = SourceErrorPayload.model_validate(_json_or_empty(response))
            if response.status_code == 503 and error.code == TRANSCRIBE_BUSY_CODE:
                raise SourceBusyError(
                    error.error or error.message or "Transcription service is busy",
                    retry_after_seconds=_retry_after_seconds(error.retryAfter),
                )
            raise SideFetchHttpError(
                error.error or error.message or f"Transcription failed with status {response.status_code}",
                status_code=response.status_code,
            )
        payload = TranscriptPayload.model_validate(_json_or_empty(response))
        return payload.text or ""

    async def fetch_quota(self) -> QuotaReading:
        """Read the authoritative quota; transport failures read as degraded."""
        try:
            response = await self._http.get("/api/quota", timeout=self._quota_timeout)
        except httpx.HTTPError as exc:
            structured_log(logger, "warning", "source.quota_unreachable", error=repr(exc))
            return QuotaReading(availability=QuotaAvailability.DEGRADED)

        body = QuotaPayload.model_validate(_json_or_empty(response))
        if response.status_code >= 400:
            if response.status_code == 503 and body.status == QuotaAvailability.UNAVAILABLE.value:
                return QuotaReading(availability=QuotaAvailability.UNAVAILABLE, message=body.message)
            return QuotaReading(availability=QuotaAvailability.DEGRADED, message=body.message)

        self._observe(response)
        if body.status == QuotaAvailability.UNAVAILABLE.value:
            return QuotaReading(availability=QuotaAvailability.UNAVAILABLE, message=body.message)
        if body.status == QuotaAvailability.DEGRADED.value:
            return QuotaReading(availability=QuotaAvailability.DEGRADED, message=body.message)
        if body.status == QuotaAvailability.AVAILABLE.value:
            return QuotaReading(
                availability=QuotaAvailability.AVAILABLE,
                remaining=body.remaining,
                ceiling=body.quota,
            )
        return QuotaReading(availability=QuotaAvailability.DEGRADED, message=body.message)
