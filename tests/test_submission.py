import pytest

from assessment_session.errors import NoAnswerProvided, PartialFlushFailure, RemoteUnavailable
from assessment_session.models import SubmissionStatus, TimerStatus
from assessment_session.services.api import ApiError
from assessment_session.services.attempts import AttemptCoordinator
from assessment_session.services.submission import SubmissionPipeline, build_response_data
from assessment_session.services.timer import TimerController


@pytest.fixture
def timer(store):
    controller = TimerController(store)
    controller.initialize("Q1", 10)
    return controller


@pytest.fixture
def attempts(api, state):
    return AttemptCoordinator(api, state, retry_attempts=3, retry_delay=0)


@pytest.fixture
def pipeline(api, state, attempts, timer):
    return SubmissionPipeline(api, state, attempts, timer=timer, retry_attempts=3, retry_delay=0)


def answer_all(state):
    state.save_answer("q1", "optA")
    state.save_answer("q2", "def f(xs): return xs[::-1]")
    state.save_answer("q3", "optC")


async def test_scenario_from_start_to_confirmation(api, state, timer, pipeline):
    assert timer.remaining_seconds == 600
    for _ in range(5):
        timer.tick()
    assert timer.remaining_seconds == 595

    state.save_answer("q1", "optA")
    state.mark_question_submitted("q1")
    assert state.record.task_states[0].is_submitted is True
    state.save_answer("q1", "optB")
    assert state.record.task_states[0].is_submitted is False

    result = await pipeline.submit()

    assert result.status == SubmissionStatus.CONFIRMATION_REQUIRED
    assert result.unanswered_count == 2
    assert result.success is False
    assert api.count("complete_quiz_attempt") == 0
    assert state.record.completed is False


async def test_full_submission_flushes_completes_and_cleans_up(api, state, store, timer, attempts, pipeline):
    answer_all(state)
    await attempts.ensure_attempt()
    timer.start()

    result = await pipeline.submit()

    assert result.status == SubmissionStatus.COMPLETED
    assert result.attempt_id == "attempt-1"
    assert result.failures == []
    flushed = [call for call in api.calls if call[0] == "submit_quiz_response"]
    assert [call[2] for call in flushed] == ["q1", "q2", "q3"]
    assert flushed[0][3] == {"type": "MULTIPLE_CHOICE", "selectedOptionId": "optA"}
    assert flushed[1][3] == {"type": "CODE", "codeSubmission": "def f(xs): return xs[::-1]"}
    assert api.count("complete_quiz_attempt") == 1
    assert state.record.completed is True
    assert timer.status == TimerStatus.PAUSED
    assert store.keys_with_prefix("") == ["completed:quiz:Q1"]


async def test_second_submit_does_not_complete_again(api, state, attempts, pipeline):
    answer_all(state)
    await attempts.ensure_attempt()

    first = await pipeline.submit()
    second = await pipeline.submit()

    assert first.status == SubmissionStatus.COMPLETED
    assert second.status == SubmissionStatus.ALREADY_COMPLETED
    assert second.success is True
    assert second.attempt_id == "attempt-1"
    assert api.count("complete_quiz_attempt") == 1


async def test_confirmed_submission_with_unanswered_questions(api, state, attempts, pipeline):
    state.save_answer("q1", "optA")
    await attempts.ensure_attempt()

    result = await pipeline.submit(confirmed=True)

    assert result.status == SubmissionStatus.COMPLETED
    assert result.unanswered_count == 2
    assert api.count("submit_quiz_response") == 1


async def test_remote_completion_short_circuits(api, state, attempts, pipeline):
    answer_all(state)
    await attempts.ensure_attempt()
    api.attempts["attempt-1"]["completedAt"] = "2026-10-19T12:10:00Z"

    result = await pipeline.submit()

    assert result.status == SubmissionStatus.ALREADY_COMPLETED
    assert api.count("submit_quiz_response") == 0
    assert api.count("complete_quiz_attempt") == 0
    assert state.is_completed() is True


async def test_flush_rejected_as_already_completed_is_success(api, state, attempts, pipeline):
    answer_all(state)
    await attempts.ensure_attempt()
    for qid in ("q1", "q2", "q3"):
        api.response_errors[qid] = ApiError("Attempt has already been completed", status=400)

    result = await pipeline.submit()

    assert result.status == SubmissionStatus.ALREADY_COMPLETED
    assert len(result.failures) == 3
    assert api.count("complete_quiz_attempt") == 0


async def test_single_failed_answer_does_not_abort(api, state, attempts, pipeline):
    answer_all(state)
    await attempts.ensure_attempt()
    api.response_errors["q2"] = ApiError("Invalid payload", status=400)

    result = await pipeline.submit()

    assert result.status == SubmissionStatus.COMPLETED
    assert [f.question_id for f in result.failures] == ["q2"]
    assert api.count("submit_quiz_response") == 3


async def test_transport_error_on_one_answer_does_not_abort(api, state, attempts, pipeline):
    answer_all(state)
    await attempts.ensure_attempt()
    api.response_errors["q2"] = ConnectionError("socket reset")

    result = await pipeline.submit()

    assert result.status == SubmissionStatus.COMPLETED
    assert [f.question_id for f in result.failures] == ["q2"]
    assert "ConnectionError" in result.failures[0].error
    assert result.failures[0].explained is False
    assert api.count("complete_quiz_attempt") == 1


async def test_every_answer_failing_blocks_completion(api, state, attempts, pipeline):
    answer_all(state)
    await attempts.ensure_attempt()
    for qid in ("q1", "q2", "q3"):
        api.response_errors[qid] = ApiError("Invalid payload", status=400)

    with pytest.raises(PartialFlushFailure) as exc_info:
        await pipeline.submit()

    assert len(exc_info.value.failures) == 3
    assert api.count("complete_quiz_attempt") == 0
    assert state.is_completed() is False


async def test_transient_flush_errors_are_retried(api, state, attempts, pipeline):
    state.save_answer("q1", "optA")
    await attempts.ensure_attempt()
    api.response_errors["q1"] = ApiError("Service unavailable", status=503)

    with pytest.raises(PartialFlushFailure):
        await pipeline.submit(confirmed=True)
    assert api.count("submit_quiz_response") == 3


async def test_missing_completion_endpoint_falls_back(api, state, attempts, pipeline):
    answer_all(state)
    await attempts.ensure_attempt()
    api.complete_error = ApiError("Not Found", status=404)

    result = await pipeline.submit()

    assert result.status == SubmissionStatus.FALLBACK
    assert result.success is True
    assert state.is_completed() is True


async def test_completion_already_done_on_server(api, state, attempts, pipeline):
    answer_all(state)
    await attempts.ensure_attempt()
    api.complete_error = ApiError("This attempt has already been completed", status=400)

    result = await pipeline.submit()

    assert result.status == SubmissionStatus.ALREADY_COMPLETED


async def test_empty_completion_responses_surface_remote_unavailable(api, state, store, attempts, pipeline):
    answer_all(state)
    await attempts.ensure_attempt()
    api.complete_results = [None, None, None]

    with pytest.raises(RemoteUnavailable):
        await pipeline.submit()

    assert api.count("complete_quiz_attempt") == 3
    assert state.is_completed() is False
    assert store.get("session:quiz:Q1") is not None

    result = await pipeline.submit()
    assert result.status == SubmissionStatus.COMPLETED


async def test_one_call_submission_without_attempt(api, state, store, pipeline):
    answer_all(state)

    result = await pipeline.submit()

    assert result.status == SubmissionStatus.COMPLETED
    assert result.attempt_id == "attempt-final"
    call = [c for c in api.calls if c[0] == "submit_complete_quiz"][0]
    assert call[1] == "Q1"
    assert call[2] == state.record.started_at.isoformat()
    assert call[3] == {"q1": "optA", "q2": "def f(xs): return xs[::-1]", "q3": "optC"}
    assert api.count("start_quiz_attempt") == 0
    assert store.keys_with_prefix("") == ["completed:quiz:Q1"]


def test_build_response_data(questions):
    assert build_response_data(questions[0], "opt") == {"type": "MULTIPLE_CHOICE", "selectedOptionId": "opt"}
    assert build_response_data(questions[1], "code") == {"type": "CODE", "codeSubmission": "code"}


def test_no_answer_signal_is_local(state, api):
    with pytest.raises(NoAnswerProvided):
        state.mark_question_submitted("q3")
    assert api.calls == []
