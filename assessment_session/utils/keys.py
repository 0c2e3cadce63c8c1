from typing import List


def _type_value(assessment_type) -> str:
    return getattr(assessment_type, "value", assessment_type)


def session_key(assessment_type, assessment_id: str) -> str:
    return f"session:{_type_value(assessment_type)}:{assessment_id}"


def attempt_key(assessment_type, assessment_id: str) -> str:
    return f"attempt:{_type_value(assessment_type)}:{assessment_id}"


def completed_key(assessment_type, assessment_id: str) -> str:
    return f"completed:{_type_value(assessment_type)}:{assessment_id}"


def timer_key(assessment_id: str) -> str:
    return f"timer:{assessment_id}"


def assessment_keys(assessment_type, assessment_id: str) -> List[str]:
    """All keys owned by one assessment instance."""
    return [
        session_key(assessment_type, assessment_id),
        attempt_key(assessment_type, assessment_id),
        completed_key(assessment_type, assessment_id),
        timer_key(assessment_id),
    ]
