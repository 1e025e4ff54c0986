from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

from assessment.models import (
    Attempt,
    AttemptSkill,
    Exam,
    ExamType,
    Incident,
    OutboxEntry,
    PolicySnapshot,
    ProctoringSession,
    ProctoringViolation,
    QuestionPackage,
)


class AttemptLedger(ABC):
    """Relational record of exams, attempts and per-skill results.

    The transition methods (``mark_started``, ``complete_attempt``, ``cancel_attempt``) are guarded
    conditional writes and return whether the row actually changed.
    """

    @abstractmethod
    async def has_baseline(self, user_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def create_exam(self, exam_type: ExamType, user_id: str, course_id: Optional[str]) -> Exam:
        raise NotImplementedError

    @abstractmethod
    async def get_exam(self, exam_id: int) -> Optional[Exam]:
        raise NotImplementedError

    @abstractmethod
    async def latest_exam(self, user_id: str, exam_type: ExamType, course_id: Optional[str] = None) -> Optional[Exam]:
        raise NotImplementedError

    @abstractmethod
    async def create_attempt(
        self,
        exam_id: int,
        attempt_no: int,
        policy_snapshot: PolicySnapshot,
        duration_minutes: Optional[int],
        expires_at: Optional[datetime],
    ) -> Attempt:
        raise NotImplementedError

    @abstractmethod
    async def get_attempt(self, attempt_id: int) -> Optional[Attempt]:
        raise NotImplementedError

    @abstractmethod
    async def list_attempts(self, exam_id: int) -> list[Attempt]:
        """Attempts of one exam ordered by attempt number."""
        raise NotImplementedError

    @abstractmethod
    async def count_attempts(self, exam_id: int) -> int:
        raise NotImplementedError

    @abstractmethod
    async def set_package_ref(self, attempt_id: int, package_ref: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def mark_started(self, attempt_id: int, started_at: datetime) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def complete_attempt(
        self, attempt_id: int, final_grade: float, passed: bool, submitted_at: datetime
    ) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def cancel_attempt(self, attempt_id: int, reason: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def upsert_skills(self, skills: list[AttemptSkill]) -> None:
        raise NotImplementedError

    @abstractmethod
    async def list_skills(self, attempt_id: int) -> list[AttemptSkill]:
        raise NotImplementedError

    @abstractmethod
    async def list_attempts_for_user(self, user_id: str) -> list[tuple[Exam, Attempt]]:
        raise NotImplementedError

    @abstractmethod
    async def enqueue_outbox(self, entry: OutboxEntry) -> None:
        raise NotImplementedError

    @abstractmethod
    async def list_outbox(self) -> list[OutboxEntry]:
        raise NotImplementedError


class PackageStore(ABC):
    @abstractmethod
    async def insert(self, package: QuestionPackage) -> str:
        raise NotImplementedError

    @abstractmethod
    async def get_by_attempt(self, attempt_id: int) -> Optional[QuestionPackage]:
        raise NotImplementedError

    @abstractmethod
    async def update(self, attempt_id: int, fields: dict[str, Any]) -> None:
        raise NotImplementedError


class ProctoringStore(ABC):
    @abstractmethod
    async def upsert_session(self, attempt_id: str, exam_id: str) -> ProctoringSession:
        """Create the session or flip it to ``active``; repeat calls change nothing else."""
        raise NotImplementedError

    @abstractmethod
    async def get_session(self, attempt_id: str) -> Optional[ProctoringSession]:
        raise NotImplementedError

    @abstractmethod
    async def get_violation(self, attempt_id: str) -> Optional[ProctoringViolation]:
        raise NotImplementedError

    @abstractmethod
    async def record_violation(self, attempt_id: str) -> ProctoringViolation:
        """Increment the strike counter and append a ``focus_lost`` event in one write."""
        raise NotImplementedError

    @abstractmethod
    async def append_violation_event(self, attempt_id: str, event_type: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def create_incident(self, incident: Incident) -> Incident:
        raise NotImplementedError

    @abstractmethod
    async def list_incidents(self, attempt_id: str) -> list[Incident]:
        raise NotImplementedError
