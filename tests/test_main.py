import io
import json

from assessment_session.main import build_parser, list_sessions, reset_session, show_session
from assessment_session.services.session_state import SessionState


def seed(store, clock):
    state = SessionState(store, clock=clock)
    state.load("Q1", "quiz")
    state.save_answer("q1", "optA")
    state.set_attempt_id("attempt-1")
    store.set("timer:Q1", json.dumps({"remaining_seconds": 120, "is_running": True}))
    return state


def test_list_sessions(store, clock):
    seed(store, clock)
    store.set("session:test:T9", "{broken")
    out = io.StringIO()

    assert list_sessions(store, out=out) == 0

    lines = out.getvalue().splitlines()
    assert lines[0].startswith("quiz  Q1")
    assert "answers=1" in lines[0]
    assert "attempt=attempt-1" in lines[0]
    assert lines[1].endswith("corrupted")


def test_list_sessions_empty(store):
    out = io.StringIO()

    list_sessions(store, out=out)

    assert out.getvalue().strip() == "No stored sessions"


def test_show_session(store, clock):
    seed(store, clock)
    out = io.StringIO()

    assert show_session(store, "quiz", "Q1", out=out) == 0

    payload = json.loads(out.getvalue())
    assert payload["session"]["answers"] == {"q1": "optA"}
    assert payload["timer"]["remaining_seconds"] == 120
    assert payload["completed"] is False
    assert show_session(store, "test", "Q1", out=io.StringIO()) == 1


def test_reset_session(store, clock):
    seed(store, clock)

    reset_session(store, "quiz", "Q1", out=io.StringIO())

    assert store.keys_with_prefix("") == []


def test_parser_requires_type_for_reset():
    args = build_parser().parse_args(["--backend", "memory", "reset", "test", "T1"])

    assert (args.backend, args.command, args.type, args.assessment_id) == ("memory", "reset", "test", "T1")
