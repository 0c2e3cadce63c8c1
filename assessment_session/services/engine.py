import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from assessment_session.config import Config
from assessment_session.errors import RemoteUnavailable
from assessment_session.models import (
    AssessmentStructure,
    AssessmentType,
    AttemptStatus,
    SessionRecord,
    SubmissionResult,
)
from assessment_session.services.api import ApiError, AssessmentApi
from assessment_session.services.attempts import AttemptCoordinator
from assessment_session.services.session_state import SessionState
from assessment_session.services.store import PersistentStore
from assessment_session.services.submission import SubmissionPipeline
from assessment_session.services.timer import TimerController
from assessment_session.utils.retry import retry_async

logger = logging.getLogger(__name__)


@dataclass
class OpenResult:
    record: SessionRecord
    structure: AssessmentStructure
    remaining_seconds: int
    content_reset: bool


class AssessmentSession:
    """Everything the host needs to run one quiz or test."""

    def __init__(
        self,
        api: AssessmentApi,
        store: PersistentStore,
        assessment_id: str,
        assessment_type,
        state: Optional[SessionState] = None,
        retry_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
        reset_timer_on_drift: Optional[bool] = None,
    ):
        self.api = api
        self.store = store
        self.assessment_id = str(assessment_id)
        self.assessment_type = AssessmentType(assessment_type)
        self.state = state or SessionState(store)
        self.timer = TimerController(store)
        self.retry_attempts = retry_attempts or Config.RETRY_ATTEMPTS
        self.retry_delay = Config.RETRY_DELAY_SECONDS if retry_delay is None else retry_delay
        self.reset_timer_on_drift = (
            Config.RESET_TIMER_ON_CONTENT_DRIFT if reset_timer_on_drift is None else reset_timer_on_drift
        )
        self.structure: Optional[AssessmentStructure] = None
        self.attempts: Optional[AttemptCoordinator] = None
        self.pipeline: Optional[SubmissionPipeline] = None

    async def _fetch_structure(self) -> AssessmentStructure:
        try:
            data = await retry_async(
                self.api.get_assessment_structure,
                self.assessment_id,
                self.assessment_type.value,
                attempts=self.retry_attempts,
                delay=self.retry_delay,
                description=f"get {self.assessment_type.value} {self.assessment_id}",
            )
        except ApiError as e:
            raise RemoteUnavailable(f"Could not load {self.assessment_type.value} {self.assessment_id}: {e}") from e
        if data is None:
            raise RemoteUnavailable(f"{self.assessment_type.value} {self.assessment_id} returned no content")
        return AssessmentStructure.from_api(data)

    async def open(self) -> OpenResult:
        """Loads or creates local state, checks it against the server content and restores the timer."""
        structure = await self._fetch_structure()
        self.structure = structure

        self.state.load(self.assessment_id, self.assessment_type)
        # Attempt status is read after a content-drift purge.
        content_reset = self.state.reconcile_with_content(structure.questions)
        record = self.state.record

        self.attempts = AttemptCoordinator(
            self.api, self.state, retry_attempts=self.retry_attempts, retry_delay=self.retry_delay
        )
        self.pipeline = SubmissionPipeline(
            self.api,
            self.state,
            self.attempts,
            timer=self.timer,
            retry_attempts=self.retry_attempts,
            retry_delay=self.retry_delay,
        )

        duration = structure.time_limit or Config.DEFAULT_DURATION_MINUTES
        remaining = self.timer.initialize(self.assessment_id, duration)
        if content_reset and self.reset_timer_on_drift:
            remaining = self.timer.reset(duration)

        logger.info(
            f"Opened {self.state.session_key}: question {record.current_question_index + 1}/"
            f"{len(structure.questions)}, {len(record.answers)} answer(s), {remaining}s left"
        )
        return OpenResult(record, structure, remaining, content_reset)

    def _require_open(self):
        if self.pipeline is None:
            raise RuntimeError(f"{self.assessment_type.value} {self.assessment_id} is not open")

    async def ensure_attempt(self) -> str:
        self._require_open()
        return await self.attempts.ensure_attempt()

    async def submit(self, confirmed: bool = False) -> SubmissionResult:
        self._require_open()
        return await self.pipeline.submit(confirmed=confirmed)

    def save_answer(self, question_id: str, value: Any):
        self.state.save_answer(question_id, value)

    def mark_question_submitted(self, question_id: str):
        self.state.mark_question_submitted(question_id)

    def go_to_question(self, index: int) -> bool:
        return self.state.go_to_question(index)

    def reset(self) -> SessionRecord:
        record = self.state.reset()
        duration = (self.structure and self.structure.time_limit) or Config.DEFAULT_DURATION_MINUTES
        if self.timer.record is not None:
            self.timer.reset(duration)
        if self.attempts is not None:
            self.attempts.status = AttemptStatus.NO_ATTEMPT
        return record


class SessionRegistry:
    """Hands out a single AssessmentSession per assessment so all writes share one owner."""

    def __init__(self, api: AssessmentApi, store: PersistentStore, **options):
        self.api = api
        self.store = store
        self.options = options
        self._sessions: Dict[Tuple[str, str], AssessmentSession] = {}

    def get(self, assessment_id: str, assessment_type) -> AssessmentSession:
        key = (AssessmentType(assessment_type).value, str(assessment_id))
        session = self._sessions.get(key)
        if session is None:
            session = AssessmentSession(self.api, self.store, assessment_id, assessment_type, **self.options)
            self._sessions[key] = session
        return session

    def discard(self, assessment_id: str, assessment_type):
        self._sessions.pop((AssessmentType(assessment_type).value, str(assessment_id)), None)
