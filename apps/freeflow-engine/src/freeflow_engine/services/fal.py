"""fal.ai client: reference uploads and queued model execution."""

import asyncio
import json
import logging
import mimetypes
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

import aiohttp

from freeflow_engine.core.config import settings
from freeflow_engine.core.errors import ProviderError, UploadError

logger = logging.getLogger(__name__)

QueueUpdateCallback = Callable[[Any], None]

TERMINAL_FAILURES = {"FAILED", "ERROR", "CANCELLED"}


def extract_upload_url(upload_result: Any) -> Optional[str]:
    """Find the public URL in the handful of shapes storage uploads come back in."""
    if not upload_result:
        return None
    if isinstance(upload_result, str):
        return upload_result
    if not isinstance(upload_result, dict):
        return None

    nested = upload_result.get("data") if isinstance(upload_result.get("data"), dict) else {}
    for candidate in (
        upload_result.get("url"),
        upload_result.get("file_url"),
        upload_result.get("signedUrl"),
        upload_result.get("signed_url"),
        nested.get("url"),
        nested.get("signed_url"),
        nested.get("signedUrl"),
    ):
        if isinstance(candidate, str) and candidate:
            return candidate
    return None


def describe_event(event: Any) -> Optional[str]:
    """Turn a queue update into a single log line."""
    if event is None or event == "":
        return None
    if isinstance(event, str):
        return event
    if isinstance(event, dict):
        message = event.get("status") or event.get("message")
        if isinstance(message, str) and message:
            return message
    return json.dumps(event, default=str)


async def _error_detail(resp: aiohttp.ClientResponse) -> str:
    try:
        body = await resp.json(content_type=None)
    except (aiohttp.ContentTypeError, ValueError):
        return (await resp.text())[:300] or resp.reason or ""
    if isinstance(body, dict):
        detail = body.get("detail") or body.get("error") or body.get("message")
        if detail:
            return detail if isinstance(detail, str) else json.dumps(detail)
    return json.dumps(body)[:300]


class FalClient:
    """Thin async client for the fal queue and storage REST APIs."""

    def __init__(
        self,
        credentials: Optional[str] = None,
        queue_url: Optional[str] = None,
        storage_url: Optional[str] = None,
        poll_interval: Optional[float] = None,
    ):
        self._credentials = (credentials if credentials is not None else settings.FAL_KEY).strip()
        self.queue_url = (queue_url or settings.FAL_QUEUE_URL).rstrip("/")
        self.storage_url = (storage_url or settings.FAL_STORAGE_URL).rstrip("/")
        self.poll_interval = poll_interval if poll_interval is not None else settings.POLL_INTERVAL

    def configure(self, credentials: str) -> None:
        """Swap the API key used for subsequent calls."""
        self._credentials = (credentials or "").strip()

    @property
    def has_credentials(self) -> bool:
        return bool(self._credentials)

    def _headers(self) -> Dict[str, str]:
        if not self._credentials:
            return {}
        return {"Authorization": f"Key {self._credentials}"}

    async def upload_file(self, file_path: Union[str, Path]) -> Any:
        """Upload a local file to fal storage. Returns the storage response."""
        path = Path(file_path)
        if not path.is_file():
            raise UploadError(f"Reference file not found: {path}")

        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        loop = asyncio.get_running_loop()
        data = await loop.run_in_executor(None, path.read_bytes)

        async with aiohttp.ClientSession(headers=self._headers()) as session:
            async with session.post(
                f"{self.storage_url}/storage/upload/initiate",
                params={"storage_type": "fal-cdn-v3"},
                json={"file_name": path.name, "content_type": content_type},
            ) as resp:
                if resp.status >= 400:
                    raise UploadError(f"Upload initiation failed ({resp.status}): {await _error_detail(resp)}")
                initiated = await resp.json(content_type=None)

            upload_url = initiated.get("upload_url") if isinstance(initiated, dict) else None
            if not upload_url:
                raise UploadError("Upload initiation returned no upload URL")

            async with session.put(
                upload_url, data=data, headers={"Content-Type": content_type}
            ) as resp:
                if resp.status >= 400:
                    raise UploadError(f"Upload failed ({resp.status})")

        logger.info("Uploaded %s (%d bytes)", path.name, len(data))
        return initiated

    async def subscribe(
        self,
        endpoint: str,
        arguments: Dict[str, Any],
        on_queue_update: Optional[QueueUpdateCallback] = None,
    ) -> Any:
        """Submit to the queue, poll until done, and return the result payload."""
        async with aiohttp.ClientSession(headers=self._headers()) as session:
            async with session.post(f"{self.queue_url}/{endpoint}", json=arguments) as resp:
                if resp.status >= 400:
                    raise ProviderError(
                        f"Submission failed ({resp.status}): {await _error_detail(resp)}",
                        status=resp.status,
                    )
                submitted = await resp.json(content_type=None)

            request_id = submitted.get("request_id", "")
            status_url = submitted.get("status_url") or f"{self.queue_url}/{endpoint}/requests/{request_id}/status"
            response_url = submitted.get("response_url") or f"{self.queue_url}/{endpoint}/requests/{request_id}"
            logger.info("Submitted %s as request %s", endpoint, request_id)

            while True:
                async with session.get(status_url, params={"logs": "1"}) as resp:
                    if resp.status >= 400:
                        raise ProviderError(
                            f"Status check failed ({resp.status}): {await _error_detail(resp)}",
                            status=resp.status,
                        )
                    update = await resp.json(content_type=None)

                if on_queue_update is not None:
                    on_queue_update(update)

                status = update.get("status") if isinstance(update, dict) else None
                if status == "COMPLETED":
                    break
                if status in TERMINAL_FAILURES:
                    raise ProviderError(update.get("error") or f"Request {request_id} {status.lower()}")

                await asyncio.sleep(self.poll_interval)

            async with session.get(response_url) as resp:
                if resp.status >= 400:
                    raise ProviderError(
                        f"Result fetch failed ({resp.status}): {await _error_detail(resp)}",
                        status=resp.status,
                    )
                return await resp.json(content_type=None)
