"""Prepare pipeline: upload reference files before a job may be queued."""

import dataclasses
import logging
from pathlib import Path
from typing import Any, Awaitable, Optional, Protocol, Union

from freeflow_engine.adapters.spec import ModelSpec, UnifiedPayload
from freeflow_engine.core.errors import UploadError
from freeflow_engine.services.fal import extract_upload_url

logger = logging.getLogger(__name__)

FileRef = Union[str, Path]


class Uploader(Protocol):
    def upload_file(self, file_path: FileRef) -> Awaitable[Any]: ...


class PreparePipeline:
    """Resolves local reference files into provider-accessible URLs."""

    def __init__(self, uploader: Uploader):
        self.uploader = uploader

    async def _upload(self, file_path: FileRef, label: str) -> str:
        try:
            result = await self.uploader.upload_file(file_path)
        except UploadError as e:
            raise UploadError(f"Unable to upload {label}: {e}") from e
        except Exception as e:
            logger.warning("Upload of %s failed: %s", file_path, e)
            raise UploadError(f"Unable to upload {label}.") from e

        url = extract_upload_url(result)
        if not url:
            raise UploadError(f"Unable to upload {label}.")
        return url

    async def prepare(
        self,
        spec: ModelSpec,
        base_payload: UnifiedPayload,
        start_file: Optional[FileRef],
        end_file: Optional[FileRef] = None,
    ) -> UnifiedPayload:
        """Upload start (and, when supported, end) references and return the full payload.

        Sequential; any failure raises UploadError and nothing partial is returned.
        """
        changes = {}
        if start_file is not None:
            changes["start_frame_url"] = await self._upload(start_file, "start frame")

        if end_file is not None and spec.supports.end_frame.enabled:
            changes["end_frame_url"] = await self._upload(end_file, "end frame")
        elif end_file is not None:
            logger.info("Model %s does not support end frames; ignoring end reference", spec.id)

        return dataclasses.replace(base_payload, **changes)
