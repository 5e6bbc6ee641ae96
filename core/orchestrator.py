"""
Task Orchestrator

Top-level state machine over the active task. It owns the ingest pipeline,
the completion watcher, the recording session and the edit debouncer, and
dispatches user actions to them. Every asynchronous result is tagged with
the generation it was started under; a task switch bumps the generation so
late results for the previous task are dropped instead of applied.
"""

from pathlib import Path
from typing import Callable, List, Optional

import structlog
from pydantic import BaseModel, ConfigDict

from config import AppConfig, config
from core.api import ProgressCallback, TaskApiClient
from core.context import SessionContext
from core.export import ExportFormat, export_task
from core.ingest import IngestPipeline, is_supported_media
from core.models import MediaFile, Task, TranscriptSegment, TranscriptionStatus
from core.recording import Recorder, RecordingError, RecordingSession
from core.scheduling import Debouncer
from core.transcript import parse_transcript_segments
from core.watcher import CompletionWatcher
from core.youtube import extract_video_id

# Configure structured logger
logger = structlog.get_logger(__name__)

SUPPORTED_LANGUAGES = (
    "English",
    "Spanish",
    "French",
    "German",
    "Italian",
    "Portuguese",
    "Russian",
    "Japanese",
    "Korean",
    "Chinese",
)

UPLOAD_ERROR = "Failed to upload file. Please try again."
RECORDING_UPLOAD_ERROR = "Failed to upload recorded audio. Please try again."


class ViewState(BaseModel):
    """Snapshot of everything a view needs to render the active task"""

    model_config = ConfigDict(frozen=True)

    task: Optional[Task] = None
    segments: List[TranscriptSegment] = []
    edited_content: str = ""
    is_editing: bool = False
    is_saving: bool = False
    is_uploading: bool = False
    is_recording: bool = False
    is_paused: bool = False
    recording_time: str = "00:00"
    can_transcribe: bool = False
    error: Optional[str] = None
    show_upgrade_prompt: bool = False
    tasks_stale: bool = False
    generation: int = 0


Listener = Callable[[ViewState], None]


def format_content(content: Optional[str]) -> str:
    """Convert plain newlines to the rich-text editor's line breaks"""
    return (content or "").replace("\n", "<br>")


def can_transcribe(task: Optional[Task]) -> bool:
    if task is None or task.media is None or not task.media.download_url:
        return False
    if task.is_in_progress:
        return False
    return (task.media.name or "").endswith(".mp3")


def _no_recorder() -> Recorder:
    raise RecordingError("No recorder configured")


class TaskOrchestrator:
    """Owns the active task and dispatches user actions against it."""

    def __init__(
        self,
        context: SessionContext,
        api: TaskApiClient,
        recorder_factory: Optional[Callable[[], Recorder]] = None,
        settings: Optional[AppConfig] = None
    ):
        self.context = context
        self.api = api
        self.settings = settings or config

        self.generation = 0
        self.edited_content = ""
        self.is_editing = False
        self.is_saving = False
        self.error: Optional[str] = None
        self.show_upgrade_prompt = False
        self._listeners: List[Listener] = []

        self.ingest = IngestPipeline(api, on_flags_changed=self._notify)
        self.watcher = CompletionWatcher(
            api,
            context,
            apply_result=self.apply_result,
            is_current=self.is_current,
            settings=self.settings.watcher
        )
        self.recording = RecordingSession(
            recorder_factory or _no_recorder,
            on_clip=self._ingest_recording,
            tick_interval=self.settings.recording.tick_interval,
            on_tick=lambda _: self._notify()
        )
        self._edit_debouncer = Debouncer(self._apply_edit, self.settings.editor.debounce_delay)

    # ── State ─────────────────────────────────────────────────────────

    @property
    def task(self) -> Optional[Task]:
        return self.context.store.selected_task

    @property
    def segments(self) -> List[TranscriptSegment]:
        task = self.task
        return parse_transcript_segments(task.transcription_result if task else None)

    def is_current(self, task_id: str, generation: int) -> bool:
        task = self.task
        return generation == self.generation and task is not None and task.id == task_id

    def view_state(self) -> ViewState:
        task = self.task
        return ViewState(
            task=task,
            segments=self.segments,
            edited_content=self.edited_content,
            is_editing=self.is_editing,
            is_saving=self.is_saving,
            is_uploading=self.ingest.is_uploading(task.id) if task else False,
            is_recording=self.recording.is_recording,
            is_paused=self.recording.is_paused,
            recording_time=self.recording.formatted_time,
            can_transcribe=can_transcribe(task),
            error=self.error,
            show_upgrade_prompt=self.show_upgrade_prompt,
            tasks_stale=self.context.store.stale,
            generation=self.generation
        )

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register a ViewState listener; returns a function that removes it"""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self) -> None:
        if not self._listeners:
            return
        state = self.view_state()
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as e:
                logger.error("View listener failed", error=str(e))

    # ── Lifecycle ─────────────────────────────────────────────────────

    def init(self, task: Task) -> None:
        """Select the task this orchestrator works on"""
        self.handle_task_change(task)

    async def teardown(self) -> None:
        """Release timers, pollers and the recorder, then deselect the task"""
        self._edit_debouncer.cancel()
        self.is_editing = False
        self.watcher.cancel()
        await self.recording.cancel()

        self.generation += 1
        self.context.store.set_selected_task(None)
        self.edited_content = ""
        self.error = None
        logger.debug("Orchestrator torn down", generation=self.generation)
        self._notify()

    def handle_task_change(self, new_task: Optional[Task]) -> None:
        """Make new_task the active task; no awaits, so observers see one change"""
        previous = self.task
        if previous is None or new_task is None or previous.id != new_task.id:
            self.generation += 1
            if previous is not None:
                self.watcher.cancel(previous.id)
            # A pending edit belongs to the previous task
            self._edit_debouncer.cancel()
            self.is_editing = False
            self.error = None

        self.context.store.set_selected_task(new_task)
        self.edited_content = format_content(new_task.content) if new_task else ""
        self._sync_watcher()

        logger.debug("Active task changed",
                     task_id=new_task.id if new_task else None,
                     generation=self.generation)
        self._notify()

    def _sync_watcher(self) -> None:
        task = self.task
        if task is not None and task.is_in_progress:
            self.watcher.watch(task.id, self.generation)
        else:
            self.watcher.cancel()

    # ── Applying results ──────────────────────────────────────────────

    def apply_result(self, task: Task, generation: int) -> bool:
        """
        Apply a server copy of the active task that left IN_PROGRESS.

        Both the poller and the wait-loop land here. Applying the same data
        twice leaves identical state. Returns False for stale results.
        """
        if not self.is_current(task.id, generation):
            logger.info("Discarding stale result", task_id=task.id, generation=generation)
            return False

        self.context.store.update_task(task)
        self.context.store.set_selected_task(task)
        self.edited_content = format_content(task.content)
        self._sync_watcher()
        self._notify()
        return True

    def _replace_active(self, task: Task) -> None:
        self.context.store.set_selected_task(task)
        self._sync_watcher()
        self._notify()

    def _commit(self, task: Task, generation: int) -> bool:
        """Mirror a confirmed server copy into the list; replace the active task if still current"""
        self.context.store.update_task(task)
        if not self.is_current(task.id, generation):
            logger.info("Discarding stale result", task_id=task.id, generation=generation)
            return False
        self._replace_active(task)
        return True

    def _mark_status(self, task_id: str, generation: int, status: TranscriptionStatus) -> None:
        """Local-only status change; the next confirmed server copy overrides it"""
        if self.is_current(task_id, generation):
            self._replace_active(self.task.with_status(status))

    def _fail(self, task_id: Optional[str], generation: int, message: str) -> None:
        if task_id is None or self.is_current(task_id, generation):
            self.error = message
            self._notify()

    # ── Preconditions ─────────────────────────────────────────────────

    def _require_credits(self, action: str) -> bool:
        if self.context.credits <= 0:
            logger.warning("Credits exhausted, upgrade required", action=action)
            self.show_upgrade_prompt = True
            self._notify()
            return False
        return True

    def _require_token(self, action: str) -> Optional[str]:
        if not self.context.token:
            logger.error("No token available", action=action)
            return None
        return self.context.token

    def _require_task(self, action: str) -> Optional[Task]:
        if self.task is None:
            logger.error("No active task", action=action)
        return self.task

    def dismiss_upgrade_prompt(self) -> None:
        self.show_upgrade_prompt = False
        self._notify()

    # ── Upload and recording ──────────────────────────────────────────

    async def _run_ingest(self, task: Task, token: str, file: MediaFile, error_message: str,
                          on_progress: Optional[ProgressCallback] = None) -> Optional[Task]:
        generation = self.generation
        self.error = None
        self._mark_status(task.id, generation, TranscriptionStatus.IN_PROGRESS)

        try:
            updated_task = await self.ingest.ingest(token, task.id, file, on_progress)
        except Exception as e:
            # Optimistic IN_PROGRESS stays; the watcher reconciles it
            logger.error("Upload failed", task_id=task.id, filename=file.filename, error=str(e))
            self._fail(task.id, generation, error_message)
            return None

        self._commit(updated_task, generation)
        return updated_task

    async def upload(self, file: MediaFile, on_progress: Optional[ProgressCallback] = None) -> Optional[Task]:
        """Upload a PDF or MP3 for the active task"""
        if not self._require_credits("upload"):
            return None
        task = self._require_task("upload")
        token = self._require_token("upload")
        if task is None or token is None:
            return None

        if not is_supported_media(file):
            logger.warning("Unsupported file type", content_type=file.content_type)
            self._fail(None, self.generation, f"Unsupported file type: {file.content_type}")
            return None

        return await self._run_ingest(task, token, file, UPLOAD_ERROR, on_progress)

    async def record(self) -> None:
        """Start recording when idle, stop and upload when recording"""
        if not self._require_credits("record"):
            return

        if self.recording.is_recording:
            await self.stop_recording()
            return

        if await self.recording.start():
            self.error = None
        self._notify()

    async def stop_recording(self) -> Optional[MediaFile]:
        clip = await self.recording.stop()
        self._notify()
        return clip

    def pause_recording(self) -> None:
        self.recording.toggle_pause()
        self._notify()

    async def cancel_recording(self) -> None:
        await self.recording.cancel()
        self._notify()

    async def _ingest_recording(self, clip: MediaFile) -> None:
        # Credits may run out mid-recording; the recorder is still released by the session
        if not self._require_credits("record"):
            return
        task = self._require_task("record")
        token = self._require_token("record")
        if task is None or token is None:
            return

        if await self._run_ingest(task, token, clip, RECORDING_UPLOAD_ERROR) is not None:
            await self.watcher.refresh_tasks()

    # ── Transcription ─────────────────────────────────────────────────

    async def transcribe_now(self) -> Optional[TranscriptionStatus]:
        """Start transcription of the attached media and wait for a terminal status"""
        if not self._require_credits("transcribe"):
            return None
        task = self._require_task("transcribe")
        token = self._require_token("transcribe")
        if task is None or token is None:
            return None

        generation = self.generation
        self.error = None
        try:
            server_status = await self.watcher.check_status(task.id)
            self._mark_status(task.id, generation, TranscriptionStatus.IN_PROGRESS)

            if server_status == TranscriptionStatus.IN_PROGRESS:
                logger.info("Transcription already running, waiting", task_id=task.id)
            else:
                await self.api.transcribe_task(token, task.id)
                logger.info("Transcription requested", task_id=task.id)
                await self.watcher.refresh_tasks()

            return await self.watcher.wait_until_terminal(task.id, generation)
        except Exception as e:
            logger.error("Transcription failed", task_id=task.id, error=str(e))
            self._fail(task.id, generation, f"Transcription failed: {e}")
            return None

    async def transcribe_youtube(self, url: str) -> bool:
        if not self._require_credits("youtube"):
            return False
        task = self._require_task("youtube")
        token = self._require_token("youtube")
        if task is None or token is None:
            return False

        generation = self.generation
        video_id = extract_video_id(url)
        if not video_id:
            logger.warning("Invalid YouTube URL", url=url)
            self._fail(task.id, generation, "YouTube transcription failed: Invalid YouTube URL")
            return False

        self.error = None
        self._mark_status(task.id, generation, TranscriptionStatus.IN_PROGRESS)
        try:
            await self.api.transcribe_youtube(token, task.id, video_id)
        except Exception as e:
            logger.error("YouTube transcription failed", task_id=task.id, video_id=video_id, error=str(e))
            self._fail(task.id, generation, f"YouTube transcription failed: {e}")
            return False

        logger.info("YouTube transcription requested", task_id=task.id, video_id=video_id)
        return True

    async def scrape_website(self, url: str) -> Optional[Task]:
        """Scrape a web page into a new task and switch to it"""
        if not self._require_credits("scrape"):
            return None
        token = self._require_token("scrape")
        if token is None:
            return None

        task = self.task
        generation = self.generation
        if not url or not url.strip():
            self._fail(None, generation, "Website scraping failed: Missing website URL")
            return None

        self.error = None
        if task is not None:
            self._mark_status(task.id, generation, TranscriptionStatus.IN_PROGRESS)

        try:
            scraped_task = await self.api.scrape_website(token, url.strip())
        except Exception as e:
            logger.error("Website scraping failed", url=url, error=str(e))
            self._fail(task.id if task else None, generation, f"Website scraping failed: {e}")
            return None

        self.context.store.add_task(scraped_task)
        if generation == self.generation:
            self.handle_task_change(scraped_task)
        logger.info("Website scraped", url=url, task_id=scraped_task.id)
        return scraped_task

    # ── Summaries, combine, media ─────────────────────────────────────

    async def summarize(self, language: str = "") -> bool:
        """Persist the edit buffer, then request a summary (translated when language is set)"""
        if not self._require_credits("summarize"):
            return False
        task = self._require_task("summarize")
        token = self._require_token("summarize")
        if task is None or token is None:
            return False

        if language and language not in SUPPORTED_LANGUAGES:
            self._fail(task.id, self.generation, f"Unsupported language: {language}")
            return False

        self._edit_debouncer.flush()
        generation = self.generation
        self.error = None

        try:
            saved_task = await self.api.update_task(token, task.id, {"content": self.edited_content})
            self.context.store.update_task(saved_task)
            if self.is_current(task.id, generation):
                self._replace_active(saved_task.with_status(TranscriptionStatus.IN_PROGRESS))

            await self.api.summarize_task(token, task.id, language)
        except Exception as e:
            logger.error("Summarize failed", task_id=task.id, language=language, error=str(e))
            self._mark_status(task.id, generation, TranscriptionStatus.FAILED)
            return False

        logger.info("Summary requested", task_id=task.id, language=language or None)
        return True

    async def combine(self, task_ids: List[str]) -> Optional[Task]:
        if not self._require_credits("combine"):
            return None
        if len(task_ids) < 2:
            logger.error("Combine needs at least two tasks", task_count=len(task_ids))
            self._fail(None, self.generation, "Select at least two tasks to combine")
            return None
        token = self._require_token("combine")
        if token is None:
            return None

        generation = self.generation
        try:
            combined_task = await self.api.combine_tasks(token, list(task_ids))
        except Exception as e:
            logger.error("Combine failed", task_ids=task_ids, error=str(e))
            self._fail(None, generation, f"Failed to combine tasks: {e}")
            return None

        if generation == self.generation:
            self.handle_task_change(combined_task)
        self.context.store.invalidate()
        logger.info("Tasks combined", task_ids=task_ids, task_id=combined_task.id)
        return combined_task

    async def remove_media(self) -> None:
        """Detach the media from the active task"""
        if not self._require_credits("remove_media"):
            return
        task = self._require_task("remove_media")
        if task is None:
            return

        media = task.media
        if media is None or not media.download_url:
            logger.debug("No media to remove", task_id=task.id)
            return
        token = self._require_token("remove_media")
        if token is None:
            return

        generation = self.generation
        self._replace_active(task.model_copy(update={"media": media.model_copy(update={"download_url": None})}))
        try:
            updated_task = await self.api.update_task(token, task.id, {
                "name": task.name,
                "content": task.content,
                "download_url": None
            })
        except Exception as e:
            logger.error("Remove media failed", task_id=task.id, error=str(e))
            self._fail(task.id, generation, f"Failed to remove media: {e}")
            return

        self._commit(updated_task, generation)
        logger.info("Media removed", task_id=task.id)

    # ── Editing ───────────────────────────────────────────────────────

    def edit_content(self, content: str) -> None:
        """Buffer an edit; only the latest call within the debounce window is applied"""
        task = self.task
        if task is None:
            return
        self.is_editing = True
        self._edit_debouncer(content, task.id)
        self._notify()

    def _apply_edit(self, content: str, task_id: str) -> None:
        if self.task is not None and self.task.id == task_id:
            self.edited_content = content
        self.is_editing = False
        self._notify()

    async def save(self) -> Optional[Task]:
        token = self._require_token("save")
        task = self._require_task("save")
        if token is None or task is None:
            return None

        if self.is_editing:
            logger.info("Editing in progress, please wait...", task_id=task.id)
            return None

        generation = self.generation
        self.is_saving = True
        self._notify()
        try:
            saved_task = await self.api.update_task(token, task.id, {"content": self.edited_content})
        except Exception as e:
            logger.error("Save failed", task_id=task.id, error=str(e))
            self.is_saving = False
            self._fail(task.id, generation, f"Failed to save transcription: {e}")
            return None

        self.is_saving = False
        self._commit(saved_task, generation)
        logger.info("Transcription saved", task_id=task.id)
        return saved_task

    # ── Export and list refresh ───────────────────────────────────────

    def export(self, fmt: ExportFormat, directory: Path) -> Optional[Path]:
        task = self.task
        if task is None:
            return None
        return export_task(task, fmt, directory)

    async def refresh_tasks(self) -> List[Task]:
        await self.watcher.refresh_tasks()
        self._notify()
        return self.context.store.tasks
