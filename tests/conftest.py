import asyncio
from datetime import datetime, timedelta

import pytest
import pytz

from assessment_session.models import Question
from assessment_session.services.api import AssessmentApi
from assessment_session.services.session_state import SessionState
from assessment_session.services.store import MemoryStore


QUESTIONS = [
    {"id": "q1", "questionType": "MULTIPLE_CHOICE", "questionText": "Pick one", "orderNum": 1},
    {"id": "q2", "questionType": "CODE", "questionText": "Reverse a list", "orderNum": 2},
    {"id": "q3", "questionType": "MULTIPLE_CHOICE", "questionText": "Pick another", "orderNum": 3},
]


class FrozenClock:
    def __init__(self, now=None):
        self.now = now or datetime(2026, 10, 19, 12, 0, tzinfo=pytz.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class FakeApi(AssessmentApi):
    def __init__(self, structure=None):
        self.structure = structure if structure is not None else {
            "id": "Q1",
            "questions": [dict(q) for q in QUESTIONS],
            "timeLimit": 10,
            "passingScore": 70,
        }
        self.calls = []
        self.next_attempt = 1
        self.start_error = None
        self.response_errors = {}
        self.complete_error = None
        self.complete_results = []
        self.attempt_results = []
        self.one_shot_result = {"id": "attempt-final"}
        self.attempts = {}

    def count(self, name):
        return sum(1 for call in self.calls if call[0] == name)

    async def get_assessment_structure(self, assessment_id, assessment_type):
        self.calls.append(("get_assessment_structure", assessment_id, assessment_type))
        return self.structure

    async def start_quiz_attempt(self, assessment_id):
        self.calls.append(("start_quiz_attempt", assessment_id))
        await asyncio.sleep(0)
        if self.start_error:
            raise self.start_error
        attempt_id = f"attempt-{self.next_attempt}"
        self.next_attempt += 1
        self.attempts[attempt_id] = {"id": attempt_id, "completedAt": None}
        return {"id": attempt_id}

    async def submit_quiz_response(self, attempt_id, question_id, response_data):
        self.calls.append(("submit_quiz_response", attempt_id, question_id, response_data))
        error = self.response_errors.get(question_id)
        if error:
            raise error
        return {"ok": True}

    async def submit_complete_quiz(self, assessment_id, start_time_iso, answers):
        self.calls.append(("submit_complete_quiz", assessment_id, start_time_iso, answers))
        return self.one_shot_result

    async def complete_quiz_attempt(self, attempt_id):
        self.calls.append(("complete_quiz_attempt", attempt_id))
        if self.complete_error:
            raise self.complete_error
        if self.complete_results:
            return self.complete_results.pop(0)
        return {"id": attempt_id, "completedAt": "2026-10-19T12:30:00Z"}

    async def get_quiz_attempt(self, attempt_id):
        self.calls.append(("get_quiz_attempt", attempt_id))
        if self.attempt_results:
            return self.attempt_results.pop(0)
        return self.attempts.get(attempt_id)


@pytest.fixture
def questions():
    return [Question.from_api(q) for q in QUESTIONS]


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def api():
    return FakeApi()


@pytest.fixture
def state(store, clock, questions):
    session_state = SessionState(store, clock=clock)
    session_state.load("Q1", "quiz")
    session_state.reconcile_with_content(questions)
    return session_state
