"""
Upload/Ingest Pipeline

Single responsibility: file or recorded clip → server-side task.
PDFs go to upload-and-summarize in one round trip; audio is uploaded and then
an explicit transcription is requested. A per-task uploading flag brackets
each call and is always cleared afterwards.
"""

from typing import Callable, Dict, Mapping, Optional

import structlog

from core.api import ProgressCallback, TaskApiClient
from core.models import MediaFile, Task

# Configure structured logger
logger = structlog.get_logger(__name__)

SUPPORTED_CONTENT_TYPES = ("application/pdf", "audio/mp3", "audio/mpeg")


class UnsupportedMediaError(ValueError):
    """Payload content type is not accepted for upload"""
    pass


def is_supported_media(file: MediaFile) -> bool:
    return file.content_type in SUPPORTED_CONTENT_TYPES


def log_progress(task_id: str) -> ProgressCallback:
    """Progress callback that reports upload progress to the log"""

    def on_progress(loaded: int, total: Optional[int]) -> None:
        if total:
            logger.debug("Upload progress",
                         task_id=task_id,
                         percent=round(loaded / total * 100, 1))
        else:
            logger.debug("Upload progress", task_id=task_id, loaded_bytes=loaded)

    return on_progress


class IngestPipeline:
    """Uploads payloads for tasks and starts their remote processing."""

    def __init__(self, api: TaskApiClient, on_flags_changed: Optional[Callable[[], None]] = None):
        self.api = api
        self.on_flags_changed = on_flags_changed
        self._uploading: Dict[str, bool] = {}

    @property
    def uploading(self) -> Mapping[str, bool]:
        return dict(self._uploading)

    def is_uploading(self, task_id: str) -> bool:
        return self._uploading.get(task_id, False)

    def _set_flags(self, flags: Dict[str, bool]) -> None:
        # Whole-mapping replacement so interleaved completions never lose updates
        self._uploading = flags
        if self.on_flags_changed:
            self.on_flags_changed()

    async def ingest(
        self,
        token: Optional[str],
        task_id: str,
        file: MediaFile,
        on_progress: Optional[ProgressCallback] = None
    ) -> Task:
        """Upload a payload for a task; returns the server's copy of the task"""

        if not is_supported_media(file):
            raise UnsupportedMediaError(f"Unsupported file type: {file.content_type}")

        progress = on_progress or log_progress(task_id)

        logger.info("Starting ingest",
                    task_id=task_id,
                    filename=file.filename,
                    content_type=file.content_type,
                    size_kb=file.size_bytes / 1024)

        self._set_flags({**self._uploading, task_id: True})
        try:
            if file.is_pdf:
                updated_task = await self.api.upload_and_summarize_pdf(token, task_id, file, progress)
            else:
                updated_task = await self.api.upload_file(token, task_id, file, progress)
                await self.api.transcribe_task(token, task_id)

            logger.info("Ingest completed",
                        task_id=task_id,
                        status=updated_task.transcription_status.value)
            return updated_task
        finally:
            self._set_flags({k: v for k, v in self._uploading.items() if k != task_id})
