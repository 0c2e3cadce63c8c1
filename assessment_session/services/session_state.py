"""Canonical record of one assessment run.

All reads and writes of ``session:``, ``attempt:`` and ``completed:`` keys for an
assessment go through a single SessionState instance. Every mutation rewrites
the whole record immediately, so a navigation or reload at any point resumes
from the last change.
"""
import logging
from datetime import timedelta
from typing import Any, Callable, List, Optional, Sequence

from assessment_session.config import Config
from assessment_session.errors import AttemptAlreadyLinked, NoAnswerProvided
from assessment_session.models import (
    AssessmentType,
    Question,
    ResetReason,
    SessionRecord,
    TaskState,
)
from assessment_session.services import content_guard
from assessment_session.services.store import PersistentStore
from assessment_session.utils.keys import (
    assessment_keys,
    attempt_key,
    completed_key,
    session_key,
    timer_key,
)
from assessment_session.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


def has_answer(value: Any) -> bool:
    return value is not None and value != "" and value != [] and value != {}


def salvage_answers(data: dict) -> Optional[dict]:
    """Returns the stored answers if they are still a mapping, else None."""
    answers = data.get("answers")
    return answers if isinstance(answers, dict) else None


class SessionState:
    def __init__(
        self,
        store: PersistentStore,
        stale_after: Optional[timedelta] = None,
        clock: Callable = utcnow,
    ):
        self.store = store
        self.stale_after = stale_after or timedelta(hours=Config.SESSION_STALE_HOURS)
        self.clock = clock

        self.assessment_id: Optional[str] = None
        self.assessment_type: Optional[AssessmentType] = None
        self.record: Optional[SessionRecord] = None
        self.questions: List[Question] = []
        self.last_reset_reason: Optional[ResetReason] = None

    # ---- keys ---------------------------------------------------------------

    @property
    def session_key(self) -> str:
        return session_key(self.assessment_type, self.assessment_id)

    @property
    def attempt_key(self) -> str:
        return attempt_key(self.assessment_type, self.assessment_id)

    @property
    def completed_key(self) -> str:
        return completed_key(self.assessment_type, self.assessment_id)

    # ---- persistence --------------------------------------------------------

    def _persist(self, touch: bool = True):
        if touch:
            self.record.last_updated = self.clock()
        self.store.set_json(self.session_key, self.record.to_dict())

    def purge(self, keep: Sequence[str] = ()):
        """Deletes every stored key of this assessment except ``keep``."""
        for key in assessment_keys(self.assessment_type, self.assessment_id):
            if key not in keep:
                self.store.remove(key)

    def _fresh(self, reason: ResetReason, answers: Optional[dict] = None) -> SessionRecord:
        now = self.clock()
        self.record = SessionRecord(answers=dict(answers or {}), started_at=now, last_updated=now)
        if self.questions:
            self.record.task_states = [TaskState(question_id=q.id) for q in self.questions]
        self.last_reset_reason = reason
        self._persist()
        return self.record

    def load(self, assessment_id: str, assessment_type) -> SessionRecord:
        self.assessment_id = str(assessment_id)
        self.assessment_type = AssessmentType(assessment_type)
        self.last_reset_reason = None

        if self.store.get(self.completed_key) == "true":
            logger.info(f"{self.session_key} was completed earlier, starting fresh")
            self.purge()
            return self._fresh(ResetReason.ALREADY_COMPLETED)

        data = self.store.get_json(self.session_key)
        if data is None:
            logger.info(f"No saved state for {self.session_key}, initializing")
            return self._fresh(ResetReason.NEW)

        if set(data) == {"answers"}:
            logger.warning(f"Stored state for {self.session_key} was corrupted, keeping recovered answers")
            return self._fresh(ResetReason.CORRUPTED, answers=salvage_answers(data))

        try:
            record = SessionRecord.from_dict(data)
        except (TypeError, ValueError, KeyError) as e:
            logger.error(f"Invalid session record for {self.session_key}: {e}")
            self.store.remove(self.session_key)
            return self._fresh(ResetReason.CORRUPTED, answers=salvage_answers(data))

        if record.completed:
            logger.info(f"{self.session_key} is marked completed, starting fresh")
            self.purge()
            return self._fresh(ResetReason.ALREADY_COMPLETED)

        age = self.clock() - record.last_updated
        if age > self.stale_after:
            logger.info(
                f"{self.session_key} expired ({age.total_seconds() / 3600:.2f} hours old), starting fresh"
            )
            self.purge()
            return self._fresh(ResetReason.EXPIRED)

        self.record = record
        if not record.attempt_id:
            saved_attempt = self.store.get(self.attempt_key)
            if saved_attempt:
                logger.info(f"Restored attempt {saved_attempt} for {self.session_key} from lookup key")
                record.attempt_id = saved_attempt
                self._persist(touch=False)
        return self.record

    # ---- content ------------------------------------------------------------

    def reconcile_with_content(self, questions: Sequence[Question]) -> bool:
        """Aligns the record with the current question set.

        Returns True when stored progress was discarded because the content
        changed, so the host can tell the user.
        """
        self.questions = list(questions)
        result = content_guard.check_and_reconcile(self.record, content_guard.fingerprint(self.questions))
        if not result.valid:
            # the timer outlives a content reset; the caller decides whether to re-seed it
            self.purge(keep=(timer_key(self.assessment_id),))
            self.last_reset_reason = ResetReason.CONTENT_DRIFT
            result.record.started_at = self.clock()
        self.record = result.record

        question_ids = [q.id for q in self.questions]
        if [t.question_id for t in self.record.task_states] != question_ids:
            self.record.task_states = [TaskState(question_id=qid) for qid in question_ids]
        if self.questions:
            self.record.current_question_index = min(
                max(self.record.current_question_index, 0), len(self.questions) - 1
            )
        else:
            self.record.current_question_index = 0

        self._persist()
        return not result.valid

    # ---- answers ------------------------------------------------------------

    def save_answer(self, question_id: str, value: Any):
        previous = self.record.answers.get(question_id)
        self.record.answers[question_id] = value

        task = self.record.task(question_id)
        if task and task.is_submitted and value != previous:
            task.is_submitted = False
            logger.info(f"Answer to {question_id} changed after submission, reopening it")
        self._persist()

    def mark_question_submitted(self, question_id: str):
        if not has_answer(self.record.answers.get(question_id)):
            raise NoAnswerProvided(question_id)
        task = self.record.task(question_id)
        if task is None:
            task = TaskState(question_id=question_id)
            self.record.task_states.append(task)
        task.is_submitted = True
        self._persist()

    def mark_question_viewed(self, question_id: str):
        task = self.record.task(question_id)
        if task is None or task.is_viewed:
            return
        task.is_viewed = True
        self._persist()

    # ---- navigation ---------------------------------------------------------

    def go_to_question(self, index: int) -> bool:
        if index < 0 or (self.questions and index >= len(self.questions)):
            logger.warning(f"Question index {index} out of range for {self.session_key}")
            return False
        self.record.current_question_index = index
        self._persist()
        return True

    def next_question(self) -> bool:
        return self.go_to_question(self.record.current_question_index + 1)

    def previous_question(self) -> bool:
        return self.go_to_question(self.record.current_question_index - 1)

    # ---- attempt & completion -----------------------------------------------

    def set_attempt_id(self, attempt_id: str):
        if self.record.attempt_id and self.record.attempt_id != attempt_id:
            raise AttemptAlreadyLinked(
                f"{self.session_key} is linked to attempt {self.record.attempt_id}, not {attempt_id}"
            )
        self.record.attempt_id = attempt_id
        self.store.set(self.attempt_key, attempt_id)
        self._persist()

    def stored_attempt_id(self) -> Optional[str]:
        return (self.record and self.record.attempt_id) or self.store.get(self.attempt_key)

    def is_completed(self) -> bool:
        return bool(self.record and self.record.completed) or self.store.get(self.completed_key) == "true"

    def mark_completed(self):
        """Closes the run: only the completion flag stays in the store."""
        self.record.completed = True
        self.record.last_updated = self.clock()
        self.purge(keep=(self.completed_key,))
        self.store.set(self.completed_key, "true")
        logger.info(f"{self.session_key} completed with attempt {self.record.attempt_id}")

    def reset(self) -> SessionRecord:
        """Drops all local progress, including the attempt link and completion flag."""
        logger.info(f"Forcing reset of {self.session_key}")
        self.purge()
        record = self._fresh(ResetReason.MANUAL)
        if self.questions:
            record.content_fingerprint = content_guard.fingerprint(self.questions)
            self._persist()
        return record

    # ---- progress -----------------------------------------------------------

    def unanswered_count(self) -> int:
        return sum(1 for q in self.questions if not has_answer(self.record.answers.get(q.id)))

    def submitted_count(self) -> int:
        return sum(1 for t in self.record.task_states if t.is_submitted)

    def progress(self) -> float:
        if not self.questions:
            return 0.0
        answered = len(self.questions) - self.unanswered_count()
        return answered / len(self.questions) * 100
