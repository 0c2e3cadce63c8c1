class AssessmentSessionError(Exception):
    """Base error for the assessment session engine."""


class NoAnswerProvided(AssessmentSessionError):
    """A question was confirmed before any answer was saved for it."""

    def __init__(self, question_id: str):
        super().__init__(f"No answer provided for question {question_id}")
        self.question_id = question_id


class AttemptAlreadyLinked(AssessmentSessionError):
    """The session already points at a different remote attempt."""


class RemoteUnavailable(AssessmentSessionError):
    """The API kept failing or returning nothing after all retries. The user can retry."""


class PartialFlushFailure(AssessmentSessionError):
    """Every answer in the final flush failed for reasons other than a completed attempt."""

    def __init__(self, failures):
        super().__init__(f"Failed to submit {len(failures)} answer(s) before completion")
        self.failures = failures
