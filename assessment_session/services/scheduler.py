"""Scheduler service that drives assessment timers."""
import logging
from typing import Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from assessment_session.config import Config
from assessment_session.models import TimerStatus
from assessment_session.services.timer import TimerController

logger = logging.getLogger(__name__)


class TimerScheduler:
    """Ticks a TimerController once per interval and reports expiry."""

    def __init__(
        self,
        timer: TimerController,
        on_expire: Optional[Callable[[], Awaitable[None]]] = None,
        interval_seconds: Optional[int] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        """Initialize timer scheduler.

        Args:
            timer: Initialized timer controller to drive
            on_expire: Coroutine called once when the clock reaches zero
            interval_seconds: Tick interval, defaults to Config.TIMER_TICK_SECONDS
            scheduler: Shared scheduler; a private one is created when omitted
        """
        self.timer = timer
        self.on_expire = on_expire
        self.interval_seconds = interval_seconds or Config.TIMER_TICK_SECONDS
        self.scheduler = scheduler or AsyncIOScheduler(timezone=Config.TIMEZONE)
        self._owns_scheduler = scheduler is None

    @property
    def job_id(self) -> str:
        return f"timer:{self.timer.assessment_id}"

    def start(self):
        """Start ticking. The timer itself is switched to running."""
        self.timer.start()
        self.scheduler.add_job(
            self.run_tick,
            "interval",
            seconds=self.interval_seconds,
            id=self.job_id,
            name=f"Assessment timer {self.timer.assessment_id}",
            replace_existing=True,
        )
        if not self.scheduler.running:
            self.scheduler.start()
        logger.info(f"Timer job {self.job_id} started every {self.interval_seconds}s")

    def pause(self):
        """Pause the clock without removing the job, e.g. while a dialog is open."""
        self.timer.pause()

    def resume(self):
        self.timer.start()

    def stop(self):
        if self.scheduler.get_job(self.job_id):
            self.scheduler.remove_job(self.job_id)
            logger.info(f"Timer job {self.job_id} removed")

    def shutdown(self):
        """Gracefully shutdown the scheduler if this service created it."""
        self.stop()
        if self._owns_scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Timer scheduler shut down")

    async def run_tick(self):
        remaining = self.timer.tick()
        if self.timer.status != TimerStatus.EXPIRED:
            return remaining

        self.stop()
        if self.on_expire:
            try:
                await self.on_expire()
            except Exception as e:
                logger.error(f"Error in expiry callback for {self.job_id}: {e}", exc_info=True)
        return remaining
