"""Final submission of an assessment.

The pipeline is safe to call repeatedly: once a completion is recorded,
locally or on the server, further calls report success without touching
the completion endpoint again.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

from assessment_session.config import Config
from assessment_session.errors import PartialFlushFailure, RemoteUnavailable
from assessment_session.models import FlushFailure, Question, SubmissionResult, SubmissionStatus
from assessment_session.services.api import ApiError, AssessmentApi
from assessment_session.services.attempts import AttemptCoordinator
from assessment_session.services.session_state import SessionState, has_answer
from assessment_session.services.timer import TimerController
from assessment_session.utils.retry import retry_async
from assessment_session.utils.time_utils import to_iso

logger = logging.getLogger(__name__)


def build_response_data(question: Question, value: Any) -> Dict[str, Any]:
    if question.type == "MULTIPLE_CHOICE":
        return {"type": "MULTIPLE_CHOICE", "selectedOptionId": value}
    return {"type": "CODE", "codeSubmission": value}


class SubmissionPipeline:
    def __init__(
        self,
        api: AssessmentApi,
        state: SessionState,
        attempts: AttemptCoordinator,
        timer: Optional[TimerController] = None,
        retry_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ):
        self.api = api
        self.state = state
        self.attempts = attempts
        self.timer = timer
        self.retry_attempts = retry_attempts or Config.RETRY_ATTEMPTS
        self.retry_delay = Config.RETRY_DELAY_SECONDS if retry_delay is None else retry_delay
        self._lock = asyncio.Lock()

    async def submit(self, confirmed: bool = False) -> SubmissionResult:
        async with self._lock:
            return await self._submit(confirmed)

    async def _submit(self, confirmed: bool) -> SubmissionResult:
        session_key = self.state.session_key

        if self.state.is_completed():
            logger.info(f"{session_key} already completed, nothing to submit")
            return SubmissionResult(self.state.record.attempt_id, SubmissionStatus.ALREADY_COMPLETED)

        if await self.attempts.is_completed_remotely():
            self._finalize()
            return SubmissionResult(self.state.record.attempt_id, SubmissionStatus.ALREADY_COMPLETED)

        unanswered = self.state.unanswered_count()
        if unanswered and not confirmed:
            logger.info(f"{session_key} has {unanswered} unanswered question(s), confirmation required")
            return SubmissionResult(
                self.state.stored_attempt_id(),
                SubmissionStatus.CONFIRMATION_REQUIRED,
                unanswered_count=unanswered,
            )

        attempt_id = self.state.stored_attempt_id()
        if not attempt_id:
            attempt_id = await self._submit_in_one_call()
            self._finalize()
            return SubmissionResult(attempt_id, SubmissionStatus.COMPLETED, unanswered_count=unanswered)

        failures = await self._flush(attempt_id)
        if failures and all(f.already_completed for f in failures):
            logger.info(f"Attempt {attempt_id} was completed on the server during flush")
            self._finalize()
            return SubmissionResult(attempt_id, SubmissionStatus.ALREADY_COMPLETED, unanswered, failures)

        status = await self._complete(attempt_id)
        self._finalize()
        logger.info(f"{session_key} submitted with attempt {attempt_id} ({status.value})")
        return SubmissionResult(attempt_id, status, unanswered, failures)

    async def _submit_in_one_call(self) -> Optional[str]:
        """Creates and completes the attempt at once when none was started earlier."""
        record = self.state.record
        assessment_id = self.state.assessment_id
        answers = {qid: value for qid, value in record.answers.items() if has_answer(value)}
        logger.info(f"Submitting {len(answers)} answer(s) for {assessment_id} in one request")
        try:
            result = await retry_async(
                self.api.submit_complete_quiz,
                assessment_id,
                to_iso(record.started_at),
                answers,
                attempts=self.retry_attempts,
                delay=self.retry_delay,
                description=f"submit complete {assessment_id}",
            )
        except ApiError as e:
            raise RemoteUnavailable(f"Could not submit {assessment_id}: {e}") from e
        if result is None:
            raise RemoteUnavailable(f"Submitting {assessment_id} returned no response")

        attempt_id = result.get("id")
        if attempt_id:
            self.state.set_attempt_id(str(attempt_id))
            return str(attempt_id)
        logger.warning(f"Submit response for {assessment_id} has no attempt id: {result}")
        return None

    async def _flush_one(self, attempt_id: str, question: Question, value: Any) -> Optional[FlushFailure]:
        try:
            response = await retry_async(
                self.api.submit_quiz_response,
                attempt_id,
                question.id,
                build_response_data(question, value),
                attempts=self.retry_attempts,
                delay=self.retry_delay,
                description=f"submit answer {question.id}",
            )
        except ApiError as e:
            if e.already_completed:
                logger.warning(f"Attempt {attempt_id} already completed, skipping answer {question.id}")
                return FlushFailure(question.id, str(e), already_completed=True, explained=True)
            if e.not_implemented:
                logger.warning(f"Response endpoint unavailable for {question.id}, continuing: {e}")
                return FlushFailure(question.id, str(e), explained=True)
            logger.error(f"Error submitting answer for {question.id}: {e}")
            return FlushFailure(question.id, str(e))
        except Exception as e:
            logger.error(f"Unexpected error submitting answer for {question.id}: {e}")
            return FlushFailure(question.id, f"{type(e).__name__}: {e}")
        if response is None:
            return FlushFailure(question.id, "empty response")
        return None

    async def _flush(self, attempt_id: str) -> List[FlushFailure]:
        answers = self.state.record.answers
        pending = []
        for question in self.state.questions:
            value = answers.get(question.id)
            if has_answer(value):
                pending.append(self._flush_one(attempt_id, question, value))

        unknown = [qid for qid in answers if qid not in {q.id for q in self.state.questions}]
        if unknown:
            logger.warning(f"Skipping answers for unknown questions: {', '.join(unknown)}")

        logger.info(f"Flushing {len(pending)} answer(s) to attempt {attempt_id}")
        results = await asyncio.gather(*pending)
        failures = [f for f in results if f is not None]

        if failures:
            logger.warning(f"{len(failures)} of {len(pending)} answer(s) failed to submit for attempt {attempt_id}")
            unexplained = [f for f in failures if not f.explained]
            if unexplained and len(unexplained) == len(pending):
                raise PartialFlushFailure(failures)
        return failures

    async def _complete(self, attempt_id: str) -> SubmissionStatus:
        try:
            result = await retry_async(
                self.api.complete_quiz_attempt,
                attempt_id,
                attempts=self.retry_attempts,
                delay=self.retry_delay,
                description=f"complete attempt {attempt_id}",
            )
        except ApiError as e:
            if e.already_completed:
                logger.info(f"Attempt {attempt_id} was already completed")
                return SubmissionStatus.ALREADY_COMPLETED
            if e.not_implemented:
                logger.warning(f"Completion endpoint returned {e}, accepting flushed answers")
                return SubmissionStatus.FALLBACK
            logger.error(f"Error completing attempt {attempt_id}: {e}")
            raise RemoteUnavailable(f"Could not complete attempt {attempt_id}: {e}") from e
        if result is None:
            raise RemoteUnavailable(f"Completing attempt {attempt_id} returned no response")
        return SubmissionStatus.COMPLETED

    def _finalize(self):
        if self.timer is not None:
            self.timer.stop()
        self.state.mark_completed()
        self.attempts.mark_completed()
