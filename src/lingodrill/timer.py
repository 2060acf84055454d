import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .config import settings

logger = logging.getLogger(__name__)


class AutoAdvanceTimer:
    """
    Feedback countdown that fires its expiry callback once per arming.

    The tick loop runs as its own task; the expiry callback runs in a separate
    task so that a callback which resets the timer never cancels itself.
    """

    def __init__(
        self,
        on_expire: Callable[[], Awaitable[None]],
        seconds: Optional[int] = None,
        interval: Optional[float] = None,
    ):
        self.seconds = settings.FEEDBACK_SECONDS if seconds is None else seconds
        self.interval = settings.TICK_SECONDS if interval is None else interval
        self.remaining = self.seconds
        self._on_expire = on_expire
        self._tick_task: Optional[asyncio.Task] = None
        self._expiry_task: Optional[asyncio.Task] = None
        self._armed = False
        self._fired = False

    @property
    def running(self) -> bool:
        return self._tick_task is not None and not self._tick_task.done()

    @property
    def expiry_task(self) -> Optional[asyncio.Task]:
        return self._expiry_task

    def start(self):
        """Arm the countdown from the full value and start ticking."""
        self.reset()
        self._armed = True
        self._tick_task = asyncio.get_running_loop().create_task(self._run())

    def reset(self):
        """Stop ticking and restore the full countdown value."""
        task = self._tick_task
        self._tick_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self.remaining = self.seconds
        self._armed = False
        self._fired = False

    stop = reset

    def tick(self) -> bool:
        """Count one step down; returns True when this tick fired the expiry."""
        if not self._armed or self._fired:
            return False
        self.remaining = max(0, self.remaining - 1)
        if self.remaining > 0:
            return False
        self._fired = True
        self._expiry_task = asyncio.get_running_loop().create_task(self._expire())
        return True

    async def _run(self):
        while self._armed and not self._fired:
            await asyncio.sleep(self.interval)
            self.tick()

    async def _expire(self):
        try:
            await self._on_expire()
        except Exception:
            logger.exception("Auto-advance callback failed")
