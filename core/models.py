"""
Task Data Models

Validated pydantic models shared by every core module. Tasks are immutable:
every change produces a new instance through model_copy, and fresher server
copies replace local ones wholesale.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TranscriptionStatus(str, Enum):
    """Lifecycle status of a task's remote transcription job"""

    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class Media(BaseModel):
    """Media attached to a task"""

    model_config = ConfigDict(frozen=True, extra='ignore')

    download_url: Optional[str] = None
    name: Optional[str] = None
    youtube_id: Optional[str] = None


class Task(BaseModel):
    """A piece of content being transcribed or summarized"""

    model_config = ConfigDict(frozen=True, extra='ignore')

    id: str = Field(description="Server-assigned task identifier")
    name: str = Field(default="", description="Display name")
    content: str = Field(default="", description="Rich-text notes")
    transcription_result: Optional[str] = Field(None, description="Raw SRT transcript")
    summary: Optional[str] = None
    transcription_status: TranscriptionStatus = TranscriptionStatus.NOT_STARTED
    media: Optional[Media] = None
    output_format: Optional[str] = None
    is_bookmarked: bool = False

    @field_validator('content', mode='before')
    @classmethod
    def coerce_content(cls, v):
        return v or ""

    @field_validator('id', mode='before')
    @classmethod
    def coerce_id(cls, v):
        if v is None or v == "":
            raise ValueError("Task id is required")
        return str(v)

    @property
    def is_in_progress(self) -> bool:
        return self.transcription_status == TranscriptionStatus.IN_PROGRESS

    def with_status(self, status: TranscriptionStatus) -> "Task":
        return self.model_copy(update={"transcription_status": status})


class TranscriptSegment(BaseModel):
    """Time-bounded slice of a transcript (derived, never persisted)"""

    model_config = ConfigDict(frozen=True)

    id: str
    start_time: float = Field(description="Start in seconds")
    end_time: float = Field(description="End in seconds")
    text: str


class MediaFile(BaseModel):
    """File-like payload handed to the ingest pipeline"""

    model_config = ConfigDict(frozen=True)

    filename: str
    content_type: str
    data: bytes = Field(repr=False)

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    @property
    def is_pdf(self) -> bool:
        return self.content_type == "application/pdf"
