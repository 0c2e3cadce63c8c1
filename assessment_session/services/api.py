from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class ApiError(Exception):
    """Error raised by an AssessmentApi implementation."""

    def __init__(self, message: str, status: Optional[int] = None, payload: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.payload = payload or {}

    @property
    def already_completed(self) -> bool:
        return "already been completed" in self.message.lower()

    @property
    def already_exists(self) -> bool:
        return self.status == 409 or "already exists" in self.message.lower()

    @property
    def not_implemented(self) -> bool:
        message = self.message.lower()
        return self.status in (404, 501) or "404" in message or "not found" in message

    def __str__(self):
        return f"{self.status} {self.message}" if self.status else self.message


class AssessmentApi(ABC):
    """Remote operations the engine depends on. Implemented by the host's HTTP client."""

    @abstractmethod
    async def get_assessment_structure(self, assessment_id: str, assessment_type: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def start_quiz_attempt(self, assessment_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def submit_quiz_response(
        self, attempt_id: str, question_id: str, response_data: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def submit_complete_quiz(
        self, assessment_id: str, start_time_iso: str, answers: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def complete_quiz_attempt(self, attempt_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def get_quiz_attempt(self, attempt_id: str) -> Optional[Dict[str, Any]]:
        ...
