"""
Completion Watcher

Two producers detect that a remote transcription job left IN_PROGRESS:
a passive poller (every poll_interval while the active task is in progress)
and an active wait-loop (driven by an explicit transcribe action). Both feed
the same reconcile step, which hands the server's fresh copy to an idempotent
apply function tagged with the generation it was started under. Results from
a stale generation are dropped there.
"""

import asyncio
from typing import Callable, Optional

import structlog

from config import WatcherConfig, config
from core.api import ApiError, MissingTokenError, TaskApiClient, TaskNotFoundError
from core.context import SessionContext
from core.models import Task, TranscriptionStatus

# Configure structured logger
logger = structlog.get_logger(__name__)

ApplyResult = Callable[[Task, int], bool]
IsCurrent = Callable[[str, int], bool]


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class CompletionWatcher:
    """Observes one task's remote status until it reaches a terminal state."""

    def __init__(
        self,
        api: TaskApiClient,
        context: SessionContext,
        apply_result: ApplyResult,
        is_current: IsCurrent,
        settings: Optional[WatcherConfig] = None
    ):
        self.api = api
        self.context = context
        self.apply_result = apply_result
        self.is_current = is_current
        self.settings = settings or config.watcher
        self._poll_task: Optional[asyncio.Task] = None
        self._poll_task_id: Optional[str] = None

    # ── Passive poller ────────────────────────────────────────────────

    @property
    def watching_task_id(self) -> Optional[str]:
        if self._poll_task is not None and not self._poll_task.done():
            return self._poll_task_id
        return None

    def watch(self, task_id: str, generation: int) -> None:
        """Start polling task_id, replacing any poller bound to another id"""
        if self.watching_task_id == task_id:
            return

        self.cancel()
        self._poll_task_id = task_id
        self._poll_task = asyncio.create_task(
            self._poll_loop(task_id, generation),
            name=f"status_poll_{task_id}"
        )
        logger.debug("Status polling started", task_id=task_id, generation=generation)

    def cancel(self, task_id: Optional[str] = None) -> None:
        """Cancel the poller (only if bound to task_id, when one is given)"""
        if task_id is not None and task_id != self._poll_task_id:
            return
        # A poller reconciling its own result just finishes instead
        if self._poll_task is not None and not self._poll_task.done() and self._poll_task is not _current_task():
            self._poll_task.cancel()
            logger.debug("Status polling cancelled", task_id=self._poll_task_id)
        self._poll_task = None
        self._poll_task_id = None

    async def _poll_loop(self, task_id: str, generation: int) -> None:
        try:
            while True:
                await asyncio.sleep(self.settings.poll_interval)
                if not self.is_current(task_id, generation):
                    break

                try:
                    status = await self.check_status(task_id)
                    if status == TranscriptionStatus.IN_PROGRESS:
                        continue
                    # Detach first so apply_result can start a fresh poller if needed
                    self._detach_current()
                    await self.reconcile(task_id, generation, status)
                    return
                except MissingTokenError:
                    logger.error("No token available, polling stopped", task_id=task_id)
                    return
                except TaskNotFoundError:
                    logger.warning("Task not found, reloading tasks...", task_id=task_id)
                    self.context.store.invalidate()
                except ApiError as e:
                    logger.warning("Status poll failed", task_id=task_id, error=str(e))

                if not self._reattach_current(task_id):
                    return

            logger.debug("Poller stopped for stale generation", task_id=task_id, generation=generation)
        finally:
            self._detach_current()

    def _detach_current(self) -> None:
        if self._poll_task is not None and self._poll_task is _current_task():
            self._poll_task = None
            self._poll_task_id = None

    def _reattach_current(self, task_id: str) -> bool:
        """Rebind a detached poller after a failed reconcile; False when another poller took over"""
        current = _current_task()
        if self._poll_task is None:
            self._poll_task = current
            self._poll_task_id = task_id
        return self._poll_task is current

    # ── Active wait-loop ──────────────────────────────────────────────

    async def wait_until_terminal(self, task_id: str, generation: int) -> Optional[TranscriptionStatus]:
        """
        Re-check status every wait_interval until it leaves IN_PROGRESS, then reconcile.

        Returns the last observed status, or None when the active task changed
        while waiting. Status and fetch errors propagate to the caller.
        """
        status = await self.check_status(task_id)
        iterations = 0
        cap = self.settings.max_wait_iterations

        while status == TranscriptionStatus.IN_PROGRESS:
            if not self.is_current(task_id, generation):
                logger.info("Wait loop abandoned after task switch", task_id=task_id, generation=generation)
                return None
            if cap is not None and iterations >= cap:
                logger.warning("Wait loop reached iteration cap", task_id=task_id, iterations=iterations)
                return status

            await asyncio.sleep(self.settings.wait_interval)
            iterations += 1
            status = await self.check_status(task_id)

        await self.reconcile(task_id, generation, status)
        return status

    # ── Shared reconciliation ─────────────────────────────────────────

    async def check_status(self, task_id: str) -> TranscriptionStatus:
        return await self.api.is_task_transcribing(self.context.token, task_id)

    async def refresh_tasks(self) -> None:
        try:
            tasks = await self.api.fetch_tasks(self.context.token)
        except ApiError as e:
            logger.error("Failed to refresh task list", error=str(e))
            return
        self.context.store.replace_all(tasks)

    async def reconcile(self, task_id: str, generation: int, status: TranscriptionStatus) -> bool:
        """
        Fetch the server copy of a task that left IN_PROGRESS and apply it.

        Returns False for a stale generation. Fetch errors propagate so the
        caller can retry on its next check.
        """
        if not self.is_current(task_id, generation):
            logger.info("Discarding stale result", task_id=task_id, generation=generation)
            return False

        if status == TranscriptionStatus.COMPLETED:
            await self.refresh_tasks()

        try:
            fresh_task = await self.api.fetch_task_by_id(self.context.token, task_id)
        except ApiError as e:
            logger.error("Failed to fetch updated task", task_id=task_id, error=str(e))
            raise

        logger.info("Transcription reached terminal status",
                    task_id=task_id,
                    status=fresh_task.transcription_status.value)
        return self.apply_result(fresh_task, generation)
