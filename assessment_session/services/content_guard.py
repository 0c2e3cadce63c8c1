import hashlib
import json
import logging
from typing import Sequence

from assessment_session.models import Question, ReconcileResult, SessionRecord

logger = logging.getLogger(__name__)


def fingerprint(questions: Sequence[Question]) -> str:
    """Order-sensitive digest of the (id, type, text, order_num) of every question."""
    payload = json.dumps(
        [[q.id, q.type, q.text, q.order_num] for q in questions],
        ensure_ascii=False,
        separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def check_and_reconcile(stored: SessionRecord, fresh_fingerprint: str) -> ReconcileResult:
    if not stored.content_fingerprint:
        stored.content_fingerprint = fresh_fingerprint
        return ReconcileResult(valid=True, record=stored)

    if stored.content_fingerprint == fresh_fingerprint:
        return ReconcileResult(valid=True, record=stored)

    logger.info(
        f"Assessment content changed ({stored.content_fingerprint[:12]} -> {fresh_fingerprint[:12]}), "
        f"discarding local progress"
    )
    return ReconcileResult(valid=False, record=SessionRecord(content_fingerprint=fresh_fingerprint))
