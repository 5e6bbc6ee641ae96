"""
Tests for the completion watcher (passive poller and active wait-loop).
"""

import asyncio
from unittest.mock import MagicMock

from config import WatcherConfig
from core.api import TransientApiError
from core.models import TranscriptionStatus
from core.watcher import CompletionWatcher


def make_watcher(api, context, current=lambda task_id, generation: True, **overrides):
    settings = WatcherConfig(**{"poll_interval": 0.01, "wait_interval": 0.01, **overrides})
    apply_result = MagicMock(return_value=True)
    watcher = CompletionWatcher(api, context, apply_result, current, settings)
    return watcher, apply_result


def test_poller_reconciles_completed_task(api, context, make_task):
    api.add(make_task("t1", status=TranscriptionStatus.IN_PROGRESS))
    watcher, apply_result = make_watcher(api, context)

    async def scenario():
        watcher.watch("t1", 1)
        await asyncio.sleep(0.03)
        api.complete("t1", transcription_result="1\n00:00 --> 00:01\nhi")
        await asyncio.sleep(0.05)

    asyncio.run(scenario())

    apply_result.assert_called_once()
    fresh, generation = apply_result.call_args.args
    assert fresh.transcription_status == TranscriptionStatus.COMPLETED
    assert generation == 1
    assert "fetch_tasks" in api.call_names()
    assert watcher.watching_task_id is None


def test_poller_reconciles_failed_status_without_list_refresh(api, context, make_task):
    api.add(make_task("t1", status=TranscriptionStatus.FAILED))
    watcher, apply_result = make_watcher(api, context)

    async def scenario():
        watcher.watch("t1", 1)
        await asyncio.sleep(0.05)

    asyncio.run(scenario())

    apply_result.assert_called_once()
    assert "fetch_tasks" not in api.call_names()


def test_watch_same_id_keeps_single_poller(api, context, make_task):
    api.add(make_task("t1", status=TranscriptionStatus.IN_PROGRESS))
    watcher, _ = make_watcher(api, context)

    async def scenario():
        watcher.watch("t1", 1)
        first = watcher._poll_task
        watcher.watch("t1", 1)
        assert watcher._poll_task is first
        watcher.cancel()

    asyncio.run(scenario())


def test_switching_ids_cancels_previous_poller(api, context, make_task):
    api.add(make_task("a", status=TranscriptionStatus.IN_PROGRESS))
    api.add(make_task("b", status=TranscriptionStatus.IN_PROGRESS))
    watcher, _ = make_watcher(api, context)

    async def scenario():
        watcher.watch("a", 1)
        first = watcher._poll_task
        watcher.watch("b", 2)
        await asyncio.sleep(0)
        assert first.cancelled()
        assert watcher.watching_task_id == "b"
        watcher.cancel()

    asyncio.run(scenario())


def test_cancel_for_other_id_is_ignored(api, context, make_task):
    api.add(make_task("a", status=TranscriptionStatus.IN_PROGRESS))
    watcher, _ = make_watcher(api, context)

    async def scenario():
        watcher.watch("a", 1)
        watcher.cancel("b")
        assert watcher.watching_task_id == "a"
        watcher.cancel("a")
        assert watcher.watching_task_id is None

    asyncio.run(scenario())


def test_stale_generation_stops_poller_without_applying(api, context, make_task):
    api.add(make_task("t1", status=TranscriptionStatus.COMPLETED))
    watcher, apply_result = make_watcher(api, context, current=lambda task_id, generation: generation == 2)

    async def scenario():
        watcher.watch("t1", 1)
        await asyncio.sleep(0.05)

    asyncio.run(scenario())

    apply_result.assert_not_called()
    assert api.calls == []


def test_missing_task_invalidates_list_and_keeps_polling(api, context):
    watcher, apply_result = make_watcher(api, context)

    async def scenario():
        watcher.watch("gone", 1)
        await asyncio.sleep(0.05)
        assert watcher.watching_task_id == "gone"
        watcher.cancel()

    asyncio.run(scenario())

    assert context.store.stale
    assert api.call_names().count("is_task_transcribing") > 1
    apply_result.assert_not_called()


def test_poller_retries_after_failed_fetch(api, context, make_task):
    api.add(make_task("t1", status=TranscriptionStatus.COMPLETED))
    original_fetch = api.fetch_task_by_id
    attempts = []

    async def flaky_fetch(token, task_id):
        attempts.append(task_id)
        if len(attempts) == 1:
            raise TransientApiError("Task service returned 503", 503)
        return await original_fetch(token, task_id)

    api.fetch_task_by_id = flaky_fetch
    watcher, apply_result = make_watcher(api, context)

    async def scenario():
        watcher.watch("t1", 1)
        await asyncio.sleep(0.08)

    asyncio.run(scenario())

    assert len(attempts) == 2
    apply_result.assert_called_once()
    assert watcher.watching_task_id is None


def test_missing_token_stops_polling(api, context, make_task):
    api.add(make_task("t1", status=TranscriptionStatus.IN_PROGRESS))
    context.token = None
    watcher, apply_result = make_watcher(api, context)

    async def scenario():
        watcher.watch("t1", 1)
        await asyncio.sleep(0.05)

    asyncio.run(scenario())

    assert watcher.watching_task_id is None
    apply_result.assert_not_called()


def test_wait_loop_runs_until_terminal(api, context, make_task):
    api.add(make_task("t1", status=TranscriptionStatus.IN_PROGRESS))
    watcher, apply_result = make_watcher(api, context)

    async def scenario():
        waiting = asyncio.create_task(watcher.wait_until_terminal("t1", 1))
        await asyncio.sleep(0.05)
        assert not waiting.done()
        api.complete("t1")
        return await asyncio.wait_for(waiting, 1)

    assert asyncio.run(scenario()) == TranscriptionStatus.COMPLETED
    apply_result.assert_called_once()


def test_wait_loop_respects_iteration_cap(api, context, make_task):
    api.add(make_task("t1", status=TranscriptionStatus.IN_PROGRESS))
    watcher, apply_result = make_watcher(api, context, max_wait_iterations=2)

    status = asyncio.run(watcher.wait_until_terminal("t1", 1))

    assert status == TranscriptionStatus.IN_PROGRESS
    assert api.call_names().count("is_task_transcribing") == 3
    apply_result.assert_not_called()


def test_wait_loop_abandoned_after_switch(api, context, make_task):
    api.add(make_task("t1", status=TranscriptionStatus.IN_PROGRESS))
    current = {"generation": 1}
    watcher, apply_result = make_watcher(
        api, context, current=lambda task_id, generation: generation == current["generation"]
    )

    async def scenario():
        waiting = asyncio.create_task(watcher.wait_until_terminal("t1", 1))
        await asyncio.sleep(0.02)
        current["generation"] = 2
        return await asyncio.wait_for(waiting, 1)

    assert asyncio.run(scenario()) is None
    apply_result.assert_not_called()


def test_reconcile_drops_stale_generation(api, context, make_task):
    api.add(make_task("t1", status=TranscriptionStatus.COMPLETED))
    watcher, apply_result = make_watcher(api, context, current=lambda task_id, generation: False)

    applied = asyncio.run(watcher.reconcile("t1", 1, TranscriptionStatus.COMPLETED))

    assert applied is False
    apply_result.assert_not_called()
    assert api.calls == []
