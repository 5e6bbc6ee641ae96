"""
Tests for the upload/ingest pipeline.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.api import ApiError
from core.ingest import IngestPipeline, UnsupportedMediaError, is_supported_media
from core.models import MediaFile, TranscriptionStatus


@pytest.mark.parametrize("content_type, supported", [
    ("application/pdf", True),
    ("audio/mp3", True),
    ("audio/mpeg", True),
    ("audio/wav", False),
    ("text/plain", False),
])
def test_is_supported_media(content_type, supported):
    file = MediaFile(filename="f", content_type=content_type, data=b"x")
    assert is_supported_media(file) is supported


def test_audio_is_uploaded_then_transcribed(api, make_task, mp3_file):
    api.add(make_task("t1", media=None))
    pipeline = IngestPipeline(api)
    progress = MagicMock()

    task = asyncio.run(pipeline.ingest("test-token", "t1", mp3_file, progress))

    assert api.call_names() == ["upload_file", "transcribe_task"]
    assert task.media.name == "interview.mp3"
    progress.assert_called_with(mp3_file.size_bytes, mp3_file.size_bytes)
    assert pipeline.uploading == {}


def test_pdf_is_uploaded_and_summarized_in_one_call(api, make_task, pdf_file):
    api.add(make_task("t1"))
    pipeline = IngestPipeline(api)

    task = asyncio.run(pipeline.ingest("test-token", "t1", pdf_file))

    assert api.call_names() == ["upload_and_summarize_pdf"]
    assert task.transcription_status == TranscriptionStatus.COMPLETED
    assert task.summary == "PDF summary"


def test_unsupported_payload_rejected_before_io(api, make_task):
    api.add(make_task("t1"))
    pipeline = IngestPipeline(api)
    file = MediaFile(filename="notes.txt", content_type="text/plain", data=b"hi")

    with pytest.raises(UnsupportedMediaError):
        asyncio.run(pipeline.ingest("test-token", "t1", file))

    assert api.calls == []


def test_uploading_flag_cleared_on_failure(api, make_task, mp3_file):
    api.add(make_task("t1"))
    seen = []

    async def failing_upload(token, task_id, file, on_progress=None):
        seen.append(pipeline.is_uploading(task_id))
        raise ApiError("Task service returned 500", 500)

    api.upload_file = failing_upload
    pipeline = IngestPipeline(api)

    with pytest.raises(ApiError):
        asyncio.run(pipeline.ingest("test-token", "t1", mp3_file))

    assert seen == [True]
    assert not pipeline.is_uploading("t1")
    assert pipeline.uploading == {}


def test_interleaved_uploads_keep_independent_flags(api, make_task, mp3_file):
    api.add(make_task("a"))
    api.add(make_task("b"))
    gates = {"a": asyncio.Event(), "b": asyncio.Event()}
    original_upload = api.upload_file

    async def gated_upload(token, task_id, file, on_progress=None):
        await gates[task_id].wait()
        return await original_upload(token, task_id, file, on_progress)

    api.upload_file = gated_upload
    changes = MagicMock()
    pipeline = IngestPipeline(api, on_flags_changed=changes)

    async def scenario():
        first = asyncio.create_task(pipeline.ingest("test-token", "a", mp3_file))
        second = asyncio.create_task(pipeline.ingest("test-token", "b", mp3_file))
        await asyncio.sleep(0)
        assert pipeline.uploading == {"a": True, "b": True}

        gates["b"].set()
        await second
        assert pipeline.uploading == {"a": True}

        gates["a"].set()
        await first

    asyncio.run(scenario())

    assert pipeline.uploading == {}
    assert changes.call_count == 4


def test_uploading_snapshot_is_a_copy(api):
    pipeline = IngestPipeline(api)
    snapshot = pipeline.uploading
    snapshot["x"] = True

    assert not pipeline.is_uploading("x")


def test_missing_token_propagates(api, make_task, mp3_file):
    api.add(make_task("t1"))
    pipeline = IngestPipeline(api)
    api.transcribe_task = AsyncMock()

    with pytest.raises(ApiError):
        asyncio.run(pipeline.ingest(None, "t1", mp3_file))

    api.transcribe_task.assert_not_awaited()
    assert pipeline.uploading == {}
