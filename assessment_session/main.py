import argparse
import json
import logging
import sys

from assessment_session.config import Config
from assessment_session.models import AssessmentType, SessionRecord
from assessment_session.services.session_state import SessionState
from assessment_session.services.store import PersistentStore, create_store
from assessment_session.utils.keys import completed_key, session_key, timer_key
from assessment_session.utils.time_utils import format_local

logger = logging.getLogger(__name__)


def configure_logging(level: str = None):
    logging.basicConfig(
        level=getattr(logging, (level or Config.LOG_LEVEL).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


def list_sessions(store: PersistentStore, out=sys.stdout):
    keys = store.keys_with_prefix("session:")
    if not keys:
        print("No stored sessions", file=out)
        return 0
    for key in keys:
        _, assessment_type, assessment_id = key.split(":", 2)
        data = store.get_json(key)
        if data is None or set(data) == {"answers"}:
            print(f"{assessment_type:<5} {assessment_id:<36} corrupted", file=out)
            continue
        try:
            record = SessionRecord.from_dict(data)
        except (TypeError, ValueError):
            print(f"{assessment_type:<5} {assessment_id:<36} invalid", file=out)
            continue
        completed = store.get(completed_key(assessment_type, assessment_id)) == "true"
        print(
            f"{assessment_type:<5} {assessment_id:<36} "
            f"q{record.current_question_index + 1} "
            f"answers={len(record.answers)} "
            f"attempt={record.attempt_id or '-'} "
            f"updated={format_local(record.last_updated, Config.TIMEZONE)}"
            f"{' completed' if completed else ''}",
            file=out,
        )
    return 0


def show_session(store: PersistentStore, assessment_type: str, assessment_id: str, out=sys.stdout):
    key = session_key(assessment_type, assessment_id)
    data = store.get_json(key)
    if data is None:
        print(f"No session stored under {key}", file=out)
        return 1
    payload = {
        "session": data,
        "timer": store.get_json(timer_key(assessment_id)),
        "completed": store.get(completed_key(assessment_type, assessment_id)) == "true",
    }
    print(json.dumps(payload, indent=2, ensure_ascii=False), file=out)
    return 0


def reset_session(store: PersistentStore, assessment_type: str, assessment_id: str, out=sys.stdout):
    state = SessionState(store)
    state.assessment_id = assessment_id
    state.assessment_type = AssessmentType(assessment_type)
    state.purge()
    print(f"Cleared stored state for {assessment_type} {assessment_id}", file=out)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="assessment-session", description="Inspect stored assessment sessions")
    parser.add_argument("--backend", choices=["redis", "file", "memory"], help="Override STORE_BACKEND")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="List stored sessions")
    for name, help_text in (("show", "Print one stored session"), ("reset", "Delete all stored state of a session")):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("type", choices=[t.value for t in AssessmentType])
        cmd.add_argument("assessment_id")
    return parser


def main(argv=None):
    configure_logging()
    args = build_parser().parse_args(argv)

    try:
        Config.validate()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    store = create_store(args.backend)
    if args.command == "list":
        return list_sessions(store)
    if args.command == "show":
        return show_session(store, args.type, args.assessment_id)
    return reset_session(store, args.type, args.assessment_id)


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
