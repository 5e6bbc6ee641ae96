"""
Configuration for pytest tests.
"""

import asyncio
from typing import Dict, List, Optional

import pytest

from config import AppConfig, EditorConfig, RecordingConfig, WatcherConfig
from core.api import TaskNotFoundError, require_token
from core.context import SessionContext
from core.models import Media, MediaFile, Task, TranscriptionStatus
from core.orchestrator import TaskOrchestrator
from core.recording import Recorder

SAMPLE_SRT = (
    "1\n"
    "00:00:00,000 --> 00:00:02,500\n"
    "Hello there.\n"
    "\n"
    "2\n"
    "00:00:02,500 --> 00:00:05,000\n"
    "General Kenobi.\n"
)


class FakeTaskApi:
    """In-memory stand-in for TaskApiClient that records every call."""

    def __init__(self):
        self.tasks: Dict[str, Task] = {}
        self.calls: List[tuple] = []
        # When set, status checks block until the event is set
        self.status_gate: Optional[asyncio.Event] = None
        self._created = 0

    def add(self, task: Task) -> Task:
        self.tasks[task.id] = task
        return task

    def set_status(self, task_id: str, status: TranscriptionStatus, **fields) -> Task:
        self.tasks[task_id] = self.tasks[task_id].model_copy(update={"transcription_status": status, **fields})
        return self.tasks[task_id]

    def complete(self, task_id: str, **fields) -> Task:
        return self.set_status(task_id, TranscriptionStatus.COMPLETED, **fields)

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]

    def _record(self, name: str, token: Optional[str], *args):
        require_token(token)
        self.calls.append((name,) + args)

    def _get(self, task_id: str) -> Task:
        if task_id not in self.tasks:
            raise TaskNotFoundError(f"Task service returned 404: {task_id}", 404)
        return self.tasks[task_id]

    def _new_task(self, prefix: str, **fields) -> Task:
        self._created += 1
        return self.add(Task(id=f"{prefix}-{self._created}", **fields))

    async def update_task(self, token, task_id, fields):
        self._record("update_task", token, task_id, dict(fields))
        task = self._get(task_id)
        update = {k: v for k, v in fields.items() if k in ("name", "content")}
        if "download_url" in fields and task.media is not None:
            update["media"] = task.media.model_copy(update={"download_url": fields["download_url"]})
        return self.add(task.model_copy(update=update))

    async def fetch_task_by_id(self, token, task_id):
        self._record("fetch_task_by_id", token, task_id)
        return self._get(task_id)

    async def fetch_tasks(self, token):
        self._record("fetch_tasks", token)
        return list(self.tasks.values())

    async def upload_file(self, token, task_id, file, on_progress=None):
        self._record("upload_file", token, task_id, file.filename)
        if on_progress:
            on_progress(file.size_bytes, file.size_bytes)
        media = Media(download_url=f"https://cdn.example.com/{file.filename}", name=file.filename)
        return self.add(self._get(task_id).model_copy(update={
            "media": media,
            "transcription_status": TranscriptionStatus.IN_PROGRESS
        }))

    async def upload_and_summarize_pdf(self, token, task_id, file, on_progress=None):
        self._record("upload_and_summarize_pdf", token, task_id, file.filename)
        return self.set_status(task_id, TranscriptionStatus.COMPLETED, summary="PDF summary")

    async def transcribe_task(self, token, task_id):
        self._record("transcribe_task", token, task_id)
        self.set_status(task_id, TranscriptionStatus.IN_PROGRESS)

    async def is_task_transcribing(self, token, task_id):
        self._record("is_task_transcribing", token, task_id)
        if self.status_gate is not None:
            await self.status_gate.wait()
        return self._get(task_id).transcription_status

    async def transcribe_youtube(self, token, task_id, video_id):
        self._record("transcribe_youtube", token, task_id, video_id)
        self.set_status(task_id, TranscriptionStatus.IN_PROGRESS)

    async def scrape_website(self, token, url):
        self._record("scrape_website", token, url)
        return self._new_task("scraped", name=url, content="Scraped page",
                              transcription_status=TranscriptionStatus.COMPLETED)

    async def summarize_task(self, token, task_id, language=""):
        self._record("summarize_task", token, task_id, language)

    async def combine_tasks(self, token, task_ids):
        self._record("combine_tasks", token, list(task_ids))
        content = "\n".join(self._get(task_id).content for task_id in task_ids)
        return self._new_task("combined", name="Combined", content=content,
                              transcription_status=TranscriptionStatus.COMPLETED)


class FakeRecorder(Recorder):
    """Recorder that hands back a fixed MP3 payload."""

    def __init__(self, fail_on_init: bool = False, payload: bytes = b"ID3fake-mp3"):
        self.fail_on_init = fail_on_init
        self.payload = payload
        self.started = False
        self.stopped = False
        self.closed = False

    async def init_audio(self):
        if self.fail_on_init:
            raise OSError("No input device")

    async def init_worker(self):
        pass

    def start_recording(self):
        self.started = True

    async def stop_recording(self):
        self.stopped = True
        return self.payload

    def close(self):
        self.closed = True


@pytest.fixture
def settings():
    """Application config with intervals shrunk for fast tests."""
    return AppConfig(
        watcher=WatcherConfig(poll_interval=0.01, wait_interval=0.01),
        editor=EditorConfig(debounce_delay=0.01),
        recording=RecordingConfig(tick_interval=0.01),
        auth_token="test-token",
        credits=5
    )


@pytest.fixture
def api():
    return FakeTaskApi()


@pytest.fixture
def context():
    return SessionContext(token="test-token", credits=5)


@pytest.fixture
def make_task():
    """Factory for tasks with an attached MP3 by default."""

    def factory(task_id: str = "task-1", status: TranscriptionStatus = TranscriptionStatus.NOT_STARTED, **fields):
        fields.setdefault("name", f"Task {task_id}")
        fields.setdefault("media", Media(download_url=f"https://cdn.example.com/{task_id}.mp3", name=f"{task_id}.mp3"))
        return Task(id=task_id, transcription_status=status, **fields)

    return factory


@pytest.fixture
def mp3_file():
    return MediaFile(filename="interview.mp3", content_type="audio/mpeg", data=b"ID3" + b"\x00" * 2048)


@pytest.fixture
def pdf_file():
    return MediaFile(filename="paper.pdf", content_type="application/pdf", data=b"%PDF-1.7 test")


@pytest.fixture
def recorders():
    """Every FakeRecorder handed out by recorder_factory, in order."""
    return []


@pytest.fixture
def recorder_factory(recorders):
    def factory():
        recorder = FakeRecorder()
        recorders.append(recorder)
        return recorder

    return factory


@pytest.fixture
def orchestrator(context, api, settings, recorder_factory):
    return TaskOrchestrator(context, api, recorder_factory=recorder_factory, settings=settings)
