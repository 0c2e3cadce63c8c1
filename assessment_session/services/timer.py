"""Persisted countdown clock for an assessment.

The controller never schedules anything itself: the host calls ``tick()``
once per second from whatever drives it (see ``TimerScheduler``), and every
state change is written through to the store so a reload resumes the clock
where it stopped.
"""
import logging
from typing import Optional

from assessment_session.models import TimerRecord, TimerStatus
from assessment_session.services.store import PersistentStore
from assessment_session.utils.keys import timer_key

logger = logging.getLogger(__name__)


class TimerController:
    def __init__(self, store: PersistentStore):
        self.store = store
        self.assessment_id: Optional[str] = None
        self.record: Optional[TimerRecord] = None
        self.status = TimerStatus.IDLE
        self._seed_seconds = 0

    @property
    def remaining_seconds(self) -> int:
        return self.record.remaining_seconds if self.record else 0

    def _persist(self):
        self.store.set_json(timer_key(self.assessment_id), self.record.to_dict())

    def _load(self) -> Optional[TimerRecord]:
        data = self.store.get_json(timer_key(self.assessment_id))
        if not data:
            return None
        try:
            record = TimerRecord.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Discarding invalid timer record for {self.assessment_id}: {e}")
            return None
        if record.remaining_seconds < 0:
            logger.warning(f"Discarding negative timer record for {self.assessment_id}")
            return None
        return record

    def initialize(self, assessment_id: str, duration_minutes: int) -> int:
        self.assessment_id = assessment_id
        self._seed_seconds = int(duration_minutes) * 60

        record = self._load()
        if record is None:
            self.record = TimerRecord(remaining_seconds=self._seed_seconds, is_running=False)
            self.status = TimerStatus.IDLE
            self._persist()
            logger.info(f"Timer for {assessment_id} seeded with {self._seed_seconds} seconds")
            return self.record.remaining_seconds

        self.record = record
        if record.remaining_seconds == 0:
            record.is_running = False
            self.status = TimerStatus.EXPIRED
        elif record.is_running:
            self.status = TimerStatus.RUNNING
        elif record.remaining_seconds == self._seed_seconds:
            self.status = TimerStatus.IDLE
        else:
            self.status = TimerStatus.PAUSED
        logger.info(f"Timer for {assessment_id} restored at {record.remaining_seconds} seconds ({self.status.value})")
        return record.remaining_seconds

    def _require_initialized(self):
        if self.record is None:
            raise RuntimeError("Timer is not initialized")

    def start(self):
        self._require_initialized()
        if self.status in (TimerStatus.RUNNING, TimerStatus.EXPIRED):
            return
        self.record.is_running = True
        self.status = TimerStatus.RUNNING
        self._persist()

    def pause(self):
        self._require_initialized()
        if self.status != TimerStatus.RUNNING:
            return
        self.record.is_running = False
        self.status = TimerStatus.PAUSED
        self._persist()

    # An idle clock starts on its first tick; paused and expired clocks ignore ticks.
    def tick(self) -> int:
        self._require_initialized()
        if self.status == TimerStatus.IDLE:
            self.record.is_running = True
            self.status = TimerStatus.RUNNING
        elif self.status != TimerStatus.RUNNING:
            return self.record.remaining_seconds

        self.record.remaining_seconds = max(self.record.remaining_seconds - 1, 0)
        if self.record.remaining_seconds == 0:
            self.record.is_running = False
            self.status = TimerStatus.EXPIRED
            logger.info(f"Timer for {self.assessment_id} expired")
        self._persist()
        return self.record.remaining_seconds

    def reset(self, duration_minutes: int) -> int:
        self._require_initialized()
        self._seed_seconds = int(duration_minutes) * 60
        self.record = TimerRecord(remaining_seconds=self._seed_seconds, is_running=False)
        self.status = TimerStatus.IDLE
        self._persist()
        logger.info(f"Timer for {self.assessment_id} reset to {self._seed_seconds} seconds")
        return self._seed_seconds

    def stop(self):
        """Halts the clock after final submission."""
        if self.record is None:
            return
        self.record.is_running = False
        if self.status != TimerStatus.EXPIRED:
            self.status = TimerStatus.PAUSED
        self._persist()

    def format_remaining(self) -> str:
        minutes, seconds = divmod(self.remaining_seconds, 60)
        return f"{minutes:02d}:{seconds:02d}"
