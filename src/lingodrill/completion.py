import asyncio
import logging
from typing import Awaitable, Optional

from .client import PracticeService
from .exceptions import PracticeServiceError, SessionFinalizeError
from .models import SessionResult, StreakStatus

logger = logging.getLogger(__name__)


class CompletionOptimizer:
    """
    Runs the finalize call for one session at most once.

    ``begin_eager_completion`` starts it while the last feedback countdown is
    still showing; ``resolve`` then reuses that task instead of calling again.
    """

    def __init__(self, service: PracticeService, session_id: str, refresh_streak: bool = True):
        self.service = service
        self.session_id = session_id
        self.refresh_streak = refresh_streak
        self.streak_status: Optional[StreakStatus] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def started(self) -> bool:
        return self._task is not None

    def begin_eager_completion(
        self, duration_seconds: int, after: Optional[Awaitable] = None
    ) -> asyncio.Task:
        if self._task is None:
            logger.info(f"Eager completion for session {self.session_id}")
            self._task = asyncio.get_running_loop().create_task(
                self._complete(duration_seconds, after)
            )
            self._task.add_done_callback(self._log_failure)
        return self._task

    async def resolve(self, duration_seconds: int) -> SessionResult:
        task = self.begin_eager_completion(duration_seconds)
        try:
            return await task
        except Exception as e:
            # Drop the failed task so a retry issues a fresh call.
            if self._task is task:
                self._task = None
            if isinstance(e, PracticeServiceError):
                raise SessionFinalizeError(f"Could not finalize session {self.session_id}") from e
            raise

    def cancel(self):
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def _log_failure(self, task: asyncio.Task):
        # Retrieving the exception keeps an unawaited failure from being reported at GC.
        if task.cancelled() or task.exception() is None:
            return
        logger.warning(f"Finalize failed for session {self.session_id}: {task.exception()!r}")

    async def _complete(self, duration_seconds: int, after: Optional[Awaitable]) -> SessionResult:
        if after is not None:
            # Final answer must reach the server before it computes the totals.
            await after
        result = await self.service.finalize_session(self.session_id, duration_seconds)
        if self.refresh_streak:
            try:
                self.streak_status = await self.service.fetch_streak_status()
            except PracticeServiceError as e:
                logger.warning(f"Streak refresh failed for {self.session_id}: {e}")
        return result
