"""
Audio Recording Session

Single responsibility: local capture lifecycle idle → recording ⇄ paused → idle.
The capture device and encoder worker are acquired on start and released on
every exit path once the recorded clip has been handed to the ingest step.
"""

import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import structlog

from core.models import MediaFile
from core.scheduling import RepeatingTimer

# Configure structured logger
logger = structlog.get_logger(__name__)

RECORDING_CONTENT_TYPE = "audio/mpeg"


class RecordingStatus(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    PAUSED = "paused"


class RecordingError(Exception):
    """Capture device or encoder worker failure"""
    pass


class Recorder(ABC):
    """Capture device plus encoder worker producing a single MP3 clip."""

    @abstractmethod
    async def init_audio(self) -> None:
        """Acquire the capture device"""

    @abstractmethod
    async def init_worker(self) -> None:
        """Start the encoder worker"""

    @abstractmethod
    def start_recording(self) -> None:
        """Begin capturing"""

    @abstractmethod
    async def stop_recording(self) -> bytes:
        """Stop capturing and return the encoded clip"""

    @abstractmethod
    def close(self) -> None:
        """Release the device and worker"""


def format_recording_time(seconds: int) -> str:
    """Render an elapsed recording time as MM:SS"""
    minutes, remaining = divmod(int(seconds), 60)
    return f"{minutes:02d}:{remaining:02d}"


def recording_filename() -> str:
    return f"recording_{int(time.time() * 1000)}.mp3"


class RecordingSession:
    """Owns one recorder and its elapsed-time timer between start and stop."""

    def __init__(
        self,
        recorder_factory: Callable[[], Recorder],
        on_clip: Callable[[MediaFile], Awaitable[Any]],
        tick_interval: float = 1.0,
        on_tick: Optional[Callable[[int], None]] = None
    ):
        self.recorder_factory = recorder_factory
        self.on_clip = on_clip
        self.on_tick = on_tick
        self.status = RecordingStatus.IDLE
        self.elapsed_seconds = 0
        self._recorder: Optional[Recorder] = None
        self._timer = RepeatingTimer(self._tick, tick_interval, name="recording_timer")

    @property
    def is_recording(self) -> bool:
        return self.status != RecordingStatus.IDLE

    @property
    def is_paused(self) -> bool:
        return self.status == RecordingStatus.PAUSED

    @property
    def formatted_time(self) -> str:
        return format_recording_time(self.elapsed_seconds)

    @property
    def timer_running(self) -> bool:
        return self._timer.running

    def _tick(self) -> None:
        self.elapsed_seconds += 1
        if self.on_tick:
            self.on_tick(self.elapsed_seconds)

    @staticmethod
    def _release(recorder: Recorder) -> None:
        try:
            recorder.close()
        except Exception as e:
            logger.error("Failed to release recorder", error=str(e))

    @staticmethod
    async def _acquire(recorder: Recorder) -> None:
        try:
            await recorder.init_audio()
            await recorder.init_worker()
            recorder.start_recording()
        except Exception as e:
            raise RecordingError(f"Recorder initialization failed: {e}") from e

    async def start(self) -> bool:
        """Acquire the recorder and start capturing; False when it could not start"""
        if self.status != RecordingStatus.IDLE:
            logger.warning("Recording already active", status=self.status.value)
            return False

        try:
            recorder = self.recorder_factory()
        except RecordingError as e:
            logger.error("Recorder not initialized", error=str(e))
            return False

        try:
            await self._acquire(recorder)
        except RecordingError as e:
            logger.error("Error starting recording", error=str(e))
            self._release(recorder)
            return False

        self._recorder = recorder
        self.status = RecordingStatus.RECORDING
        self.elapsed_seconds = 0
        self._timer.start()

        logger.info("Recording started")
        return True

    def pause(self) -> None:
        if self.status != RecordingStatus.RECORDING:
            return
        self._timer.cancel()
        self.status = RecordingStatus.PAUSED
        logger.info("Recording paused", elapsed_seconds=self.elapsed_seconds)

    def resume(self) -> None:
        if self.status != RecordingStatus.PAUSED:
            return
        self.status = RecordingStatus.RECORDING
        self._timer.start()
        logger.info("Recording resumed", elapsed_seconds=self.elapsed_seconds)

    def toggle_pause(self) -> None:
        if self.status == RecordingStatus.RECORDING:
            self.pause()
        elif self.status == RecordingStatus.PAUSED:
            self.resume()

    async def stop(self) -> Optional[MediaFile]:
        """Stop capturing and hand the clip to on_clip; no-op when idle"""
        if self._recorder is None:
            return None

        recorder = self._recorder
        self._recorder = None
        self._timer.cancel()
        self.status = RecordingStatus.IDLE

        try:
            try:
                blob = await recorder.stop_recording()
            except Exception as e:
                logger.error("Error stopping recording", error=str(e))
                return None

            clip = MediaFile(
                filename=recording_filename(),
                content_type=RECORDING_CONTENT_TYPE,
                data=blob
            )
            logger.info("Recording stopped",
                        elapsed_seconds=self.elapsed_seconds,
                        size_kb=clip.size_bytes / 1024)

            await self.on_clip(clip)
            return clip
        finally:
            self._release(recorder)

    async def cancel(self) -> None:
        """Discard the current capture without uploading it"""
        self._timer.cancel()
        if self._recorder is None:
            return

        recorder = self._recorder
        self._recorder = None
        self.status = RecordingStatus.IDLE
        try:
            await recorder.stop_recording()
        except Exception as e:
            logger.warning("Error discarding recording", error=str(e))
        finally:
            self._release(recorder)
        logger.info("Recording cancelled")
