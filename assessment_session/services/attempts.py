import asyncio
import logging
from typing import Optional

from assessment_session.config import Config
from assessment_session.errors import RemoteUnavailable
from assessment_session.models import AttemptStatus
from assessment_session.services.api import ApiError, AssessmentApi
from assessment_session.services.session_state import SessionState
from assessment_session.utils.retry import retry_async

logger = logging.getLogger(__name__)


class AttemptCoordinator:
    """Owns the link between a local session and its server-side attempt."""

    def __init__(
        self,
        api: AssessmentApi,
        state: SessionState,
        retry_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ):
        self.api = api
        self.state = state
        self.retry_attempts = retry_attempts or Config.RETRY_ATTEMPTS
        self.retry_delay = Config.RETRY_DELAY_SECONDS if retry_delay is None else retry_delay
        self._creating: Optional[asyncio.Task] = None
        self.status = AttemptStatus.ACTIVE if state.stored_attempt_id() else AttemptStatus.NO_ATTEMPT

    def detect_prior_completion(self) -> bool:
        completed = self.state.store.get(self.state.completed_key) == "true"
        if completed:
            logger.info(f"{self.state.session_key} has a completion flag from a previous run")
        return completed

    async def ensure_attempt(self) -> str:
        attempt_id = self.state.stored_attempt_id()
        if attempt_id:
            if not self.state.record.attempt_id:
                self.state.set_attempt_id(attempt_id)
            if self.status == AttemptStatus.NO_ATTEMPT:
                self.status = AttemptStatus.ACTIVE
            return attempt_id

        # Concurrent callers wait on the same creation request.
        if self._creating is None:
            self._creating = asyncio.ensure_future(self._create())
        try:
            return await asyncio.shield(self._creating)
        finally:
            if self._creating is not None and self._creating.done():
                self._creating = None

    async def _create(self) -> str:
        self.status = AttemptStatus.CREATING
        assessment_id = self.state.assessment_id
        logger.info(f"Creating remote attempt for {self.state.session_key}")
        try:
            response = await self.api.start_quiz_attempt(assessment_id)
        except ApiError as e:
            if not e.already_exists:
                self.status = AttemptStatus.NO_ATTEMPT
                logger.error(f"Failed to start attempt for {assessment_id}: {e}")
                raise RemoteUnavailable(f"Could not start attempt for {assessment_id}: {e}") from e
            existing = e.payload.get("id") or e.payload.get("attemptId") or self.state.stored_attempt_id()
            if not existing:
                self.status = AttemptStatus.NO_ATTEMPT
                raise RemoteUnavailable(f"Attempt for {assessment_id} exists but its id is unknown") from e
            logger.info(f"Attempt {existing} already exists for {assessment_id}, reusing it")
            response = {"id": existing}

        if not response or not response.get("id"):
            self.status = AttemptStatus.NO_ATTEMPT
            raise RemoteUnavailable(f"Start attempt for {assessment_id} returned no id")

        attempt_id = str(response["id"])
        self.state.set_attempt_id(attempt_id)
        self.status = AttemptStatus.ACTIVE
        logger.info(f"Attempt {attempt_id} linked to {self.state.session_key}")
        return attempt_id

    async def fetch_attempt(self, attempt_id: Optional[str] = None) -> dict:
        """Loads the attempt record, retrying while the server returns nothing."""
        attempt_id = attempt_id or self.state.stored_attempt_id()
        if not attempt_id:
            raise RemoteUnavailable(f"No attempt linked to {self.state.session_key}")
        try:
            attempt = await retry_async(
                self.api.get_quiz_attempt,
                attempt_id,
                attempts=self.retry_attempts,
                delay=self.retry_delay,
                description=f"get attempt {attempt_id}",
            )
        except ApiError as e:
            raise RemoteUnavailable(f"Could not load attempt {attempt_id}: {e}") from e
        if attempt is None:
            raise RemoteUnavailable(f"Attempt {attempt_id} is not available yet")
        return attempt

    async def is_completed_remotely(self) -> bool:
        attempt_id = self.state.stored_attempt_id()
        if not attempt_id:
            return False
        try:
            attempt = await self.api.get_quiz_attempt(attempt_id)
        except ApiError as e:
            logger.warning(f"Could not check attempt {attempt_id} status: {e}")
            return False
        completed_at = (attempt or {}).get("completedAt") or (attempt or {}).get("completed_at")
        if completed_at:
            logger.info(f"Attempt {attempt_id} was already completed at {completed_at}")
            return True
        return False

    def mark_completed(self):
        self.status = AttemptStatus.COMPLETED
