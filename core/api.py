"""
Task Service Client

Async HTTP client for the remote task service (aiohttp). Every call requires a
non-empty auth token; a missing token fails locally before any network I/O.
Idempotent reads retry transient failures with tenacity.
"""

import asyncio
from typing import Any, AsyncIterator, Callable, Dict, List, Optional
from urllib.parse import quote, urljoin

import aiohttp
import structlog
from pydantic import ValidationError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type
)

from config import config
from core.models import MediaFile, Task, TranscriptionStatus

# Configure structured logger
logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[int, Optional[int]], None]

_UPLOAD_CHUNK_SIZE = 64 * 1024


class ApiError(Exception):
    """Custom exception for task service failures"""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class MissingTokenError(ApiError):
    """No auth token available; raised before any request is made"""
    pass


class AuthenticationError(ApiError):
    """Token rejected by the service"""
    pass


class TaskNotFoundError(ApiError):
    """Task id unknown to the service"""
    pass


class TransientApiError(ApiError):
    """Rate limits, server errors and network failures"""
    pass


def require_token(token: Optional[str]) -> str:
    if not token:
        raise MissingTokenError("No token available")
    return token


def error_for_status(status: int, body: str = "") -> ApiError:
    """Map an HTTP error status to the matching ApiError subclass"""
    detail = body[:300] if body else "No response body"
    message = f"Task service returned {status}: {detail}"

    if status in (401, 403):
        return AuthenticationError(message, status)
    if status == 404:
        return TaskNotFoundError(message, status)
    if status == 429 or status >= 500:
        return TransientApiError(message, status)
    return ApiError(message, status)


def _parse_task(data: Any) -> Task:
    try:
        return Task.model_validate(data)
    except ValidationError as e:
        raise ApiError(f"Malformed task payload: {e}")


async def _stream_with_progress(data: bytes, on_progress: Optional[ProgressCallback]) -> AsyncIterator[bytes]:
    total = len(data)
    loaded = 0
    for offset in range(0, total, _UPLOAD_CHUNK_SIZE):
        chunk = data[offset:offset + _UPLOAD_CHUNK_SIZE]
        loaded += len(chunk)
        yield chunk
        if on_progress:
            on_progress(loaded, total)


_read_retry = retry(
    stop=stop_after_attempt(config.api.max_retries),
    wait=wait_exponential(
        multiplier=config.api.retry_delay,
        min=1,
        max=60
    ),
    retry=retry_if_exception_type((TransientApiError,)),
    reraise=True
)


class TaskApiClient:
    """Client for the task service REST API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[aiohttp.ClientSession] = None
    ):
        self.base_url = base_url or config.api.base_url
        if not self.base_url.endswith('/'):
            self.base_url += '/'
        self.timeout = aiohttp.ClientTimeout(total=timeout if timeout is not None else config.api.request_timeout)
        self._session = session

    async def __aenter__(self) -> "TaskApiClient":
        self._ensure_session()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def _url(self, endpoint: str) -> str:
        return urljoin(self.base_url, endpoint)

    @staticmethod
    def _task_path(task_id: str, suffix: str = "") -> str:
        path = f"tasks/{quote(str(task_id), safe='')}"
        return f"{path}/{suffix}" if suffix else path

    async def _request(self, method: str, endpoint: str, token: Optional[str], **kwargs) -> Any:
        token = require_token(token)
        session = self._ensure_session()
        headers = {"Authorization": f"Bearer {token}"}

        logger.debug("Task service request", method=method, endpoint=endpoint)

        try:
            async with session.request(method, self._url(endpoint), headers=headers, **kwargs) as resp:
                if resp.status >= 400:
                    raise error_for_status(resp.status, await resp.text())
                if resp.status == 204:
                    return None
                if resp.content_type == 'application/json':
                    return await resp.json()
                text = await resp.text()
                return text or None
        except asyncio.TimeoutError:
            raise TransientApiError("Task service request timed out")
        except aiohttp.ClientConnectionError as e:
            raise TransientApiError(f"Network error connecting to task service: {e}")
        except aiohttp.ClientError as e:
            raise ApiError(f"Task service request failed: {e}")

    async def _upload(
        self,
        endpoint: str,
        token: Optional[str],
        file: MediaFile,
        on_progress: Optional[ProgressCallback]
    ) -> Task:
        require_token(token)
        form = aiohttp.FormData()
        form.add_field(
            'file',
            _stream_with_progress(file.data, on_progress),
            filename=file.filename,
            content_type=file.content_type
        )
        logger.info("Uploading file",
                    endpoint=endpoint,
                    filename=file.filename,
                    size_kb=file.size_bytes / 1024)
        return _parse_task(await self._request("POST", endpoint, token, data=form))

    # ── Task CRUD ─────────────────────────────────────────────────────

    async def update_task(self, token: Optional[str], task_id: str, fields: Dict[str, Any]) -> Task:
        data = await self._request("PATCH", self._task_path(task_id), token, json=fields)
        return _parse_task(data)

    @_read_retry
    async def fetch_task_by_id(self, token: Optional[str], task_id: str) -> Task:
        return _parse_task(await self._request("GET", self._task_path(task_id), token))

    @_read_retry
    async def fetch_tasks(self, token: Optional[str]) -> List[Task]:
        data = await self._request("GET", "tasks", token)
        if not isinstance(data, list):
            raise ApiError("Expected a list of tasks")
        return [_parse_task(item) for item in data]

    # ── Media ingest ──────────────────────────────────────────────────

    async def upload_file(
        self,
        token: Optional[str],
        task_id: str,
        file: MediaFile,
        on_progress: Optional[ProgressCallback] = None
    ) -> Task:
        return await self._upload(self._task_path(task_id, "upload"), token, file, on_progress)

    async def upload_and_summarize_pdf(
        self,
        token: Optional[str],
        task_id: str,
        file: MediaFile,
        on_progress: Optional[ProgressCallback] = None
    ) -> Task:
        return await self._upload(self._task_path(task_id, "upload-and-summarize"), token, file, on_progress)

    # ── Remote jobs ───────────────────────────────────────────────────

    async def transcribe_task(self, token: Optional[str], task_id: str) -> None:
        await self._request("POST", self._task_path(task_id, "transcribe"), token)

    @_read_retry
    async def is_task_transcribing(self, token: Optional[str], task_id: str) -> TranscriptionStatus:
        data = await self._request("GET", self._task_path(task_id, "transcription-status"), token)
        value = data.get("status") if isinstance(data, dict) else data
        try:
            return TranscriptionStatus(str(value).strip().strip('"'))
        except ValueError:
            raise ApiError(f"Unknown transcription status: {value!r}")

    async def transcribe_youtube(self, token: Optional[str], task_id: str, video_id: str) -> None:
        await self._request("POST", self._task_path(task_id, "youtube"), token, json={"video_id": video_id})

    async def scrape_website(self, token: Optional[str], url: str) -> Task:
        return _parse_task(await self._request("POST", "tasks/scrape", token, json={"url": url}))

    async def summarize_task(self, token: Optional[str], task_id: str, language: str = "") -> None:
        await self._request("POST", self._task_path(task_id, "summarize"), token, json={"language": language})

    async def combine_tasks(self, token: Optional[str], task_ids: List[str]) -> Task:
        data = await self._request("POST", "tasks/combine", token, json={"task_ids": list(task_ids)})
        return _parse_task(data)
