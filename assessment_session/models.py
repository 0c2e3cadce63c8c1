from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from assessment_session.utils.time_utils import utcnow, to_iso, parse_timestamp


class AssessmentType(str, Enum):
    QUIZ = "quiz"
    TEST = "test"


class TimerStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    EXPIRED = "expired"


class AttemptStatus(str, Enum):
    NO_ATTEMPT = "no_attempt"
    CREATING = "creating"
    ACTIVE = "active"
    COMPLETED = "completed"


class SubmissionStatus(str, Enum):
    COMPLETED = "completed"
    ALREADY_COMPLETED = "already_completed"
    FALLBACK = "fallback"  # completion endpoint missing, local flush accepted
    CONFIRMATION_REQUIRED = "confirmation_required"


class ResetReason(str, Enum):
    NEW = "new"
    CORRUPTED = "corrupted"
    CONTENT_DRIFT = "content_drift"
    EXPIRED = "expired"
    ALREADY_COMPLETED = "already_completed"
    MANUAL = "manual"


@dataclass
class Question:
    id: str
    type: str  # MULTIPLE_CHOICE | CODE
    text: str
    order_num: int

    @classmethod
    def from_api(cls, data: dict):
        """Builds a question from an API payload (camelCase or snake_case keys)."""
        return cls(
            id=str(data["id"]),
            type=data.get("questionType") or data.get("type") or "",
            text=data.get("questionText") or data.get("text") or "",
            order_num=int(data.get("orderNum", data.get("order_num", 0)) or 0),
        )


@dataclass
class TaskState:
    question_id: str
    is_submitted: bool = False
    is_viewed: bool = False


@dataclass
class SessionRecord:
    current_question_index: int = 0
    answers: Dict[str, Any] = field(default_factory=dict)
    task_states: List[TaskState] = field(default_factory=list)
    started_at: datetime = field(default_factory=utcnow)
    content_fingerprint: Optional[str] = None
    attempt_id: Optional[str] = None
    last_updated: datetime = field(default_factory=utcnow)
    completed: bool = False

    def task(self, question_id: str) -> Optional[TaskState]:
        for task in self.task_states:
            if task.question_id == question_id:
                return task
        return None

    def to_dict(self):
        data = asdict(self)
        data["started_at"] = to_iso(self.started_at)
        data["last_updated"] = to_iso(self.last_updated)
        return data

    @classmethod
    def from_dict(cls, data: dict):
        """Restores a record from stored JSON.

        Missing or unparseable ``last_updated`` maps to the epoch so the
        record is treated as stale rather than fresh.
        """
        started_at = parse_timestamp(data.get("started_at")) or utcnow()
        last_updated = parse_timestamp(data.get("last_updated")) or datetime.fromtimestamp(0, started_at.tzinfo)
        answers = data.get("answers") or {}
        if not isinstance(answers, dict):
            raise TypeError(f"answers must be an object, got {type(answers).__name__}")
        return cls(
            current_question_index=max(int(data.get("current_question_index") or 0), 0),
            answers=dict(answers),
            task_states=[TaskState(**task) for task in data.get("task_states") or []],
            started_at=started_at,
            content_fingerprint=data.get("content_fingerprint"),
            attempt_id=data.get("attempt_id"),
            last_updated=last_updated,
            completed=data.get("completed") in (True, "true"),
        )


@dataclass
class TimerRecord:
    remaining_seconds: int
    is_running: bool = False

    def to_dict(self):
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict):
        return cls(
            remaining_seconds=int(data["remaining_seconds"]),
            is_running=data.get("is_running") in (True, "true"),
        )


@dataclass
class ReconcileResult:
    valid: bool
    record: SessionRecord


@dataclass
class FlushFailure:
    question_id: str
    error: str
    already_completed: bool = False
    explained: bool = False  # already completed or endpoint missing


@dataclass
class SubmissionResult:
    attempt_id: Optional[str]
    status: SubmissionStatus
    unanswered_count: int = 0
    failures: List[FlushFailure] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status != SubmissionStatus.CONFIRMATION_REQUIRED


@dataclass
class AssessmentStructure:
    questions: List[Question]
    time_limit: Optional[int] = None  # minutes
    passing_score: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api(cls, data: dict):
        questions = [Question.from_api(q) for q in data.get("questions") or []]
        time_limit = data.get("timeLimit", data.get("time_limit"))
        passing_score = data.get("passingScore", data.get("passing_score"))
        return cls(
            questions=questions,
            time_limit=int(time_limit) if time_limit is not None else None,
            passing_score=int(passing_score) if passing_score is not None else None,
            raw=data,
        )
