from __future__ import annotations

import itertools
from datetime import datetime
from typing import Any, Dict, List, Optional

from assessment.models import (
    Attempt,
    AttemptSkill,
    AttemptStatus,
    CameraStatus,
    Exam,
    ExamType,
    Incident,
    OutboxEntry,
    PolicySnapshot,
    ProctoringSession,
    ProctoringViolation,
    QuestionPackage,
    ViolationEvent,
    ViolationEventType,
    utcnow,
)
from assessment.storage.repo import AttemptLedger, PackageStore, ProctoringStore

CLOSED_STATUSES = (AttemptStatus.canceled, AttemptStatus.submitted)


class InMemoryAttemptLedger(AttemptLedger):
    def __init__(self) -> None:
        self.exams: Dict[int, Exam] = {}
        self.attempts: Dict[int, Attempt] = {}
        self.skills: Dict[tuple[int, str], AttemptSkill] = {}
        self.outbox: List[OutboxEntry] = []
        self._exam_ids = itertools.count(1)
        self._attempt_ids = itertools.count(1)

    async def has_baseline(self, user_id: str) -> bool:
        return any(e.user_id == user_id and e.exam_type == ExamType.baseline for e in self.exams.values())

    async def create_exam(self, exam_type: ExamType, user_id: str, course_id: Optional[str]) -> Exam:
        exam = Exam(exam_id=next(self._exam_ids), exam_type=exam_type, user_id=user_id, course_id=course_id)
        self.exams[exam.exam_id] = exam
        return exam

    async def get_exam(self, exam_id: int) -> Optional[Exam]:
        return self.exams.get(exam_id)

    async def latest_exam(self, user_id: str, exam_type: ExamType, course_id: Optional[str] = None) -> Optional[Exam]:
        matches = [
            e
            for e in self.exams.values()
            if e.user_id == user_id and e.exam_type == exam_type and (course_id is None or e.course_id == course_id)
        ]
        return max(matches, key=lambda e: e.exam_id) if matches else None

    async def create_attempt(
        self,
        exam_id: int,
        attempt_no: int,
        policy_snapshot: PolicySnapshot,
        duration_minutes: Optional[int],
        expires_at: Optional[datetime],
    ) -> Attempt:
        attempt = Attempt(
            attempt_id=next(self._attempt_ids),
            exam_id=exam_id,
            attempt_no=attempt_no,
            policy_snapshot=policy_snapshot,
            duration_minutes=duration_minutes,
            expires_at=expires_at,
        )
        self.attempts[attempt.attempt_id] = attempt
        return attempt

    async def get_attempt(self, attempt_id: int) -> Optional[Attempt]:
        attempt = self.attempts.get(attempt_id)
        # Hand out copies so callers never mutate the stored row.
        return attempt.model_copy() if attempt else None

    async def list_attempts(self, exam_id: int) -> list[Attempt]:
        rows = [a for a in self.attempts.values() if a.exam_id == exam_id]
        return [a.model_copy() for a in sorted(rows, key=lambda a: a.attempt_no)]

    async def count_attempts(self, exam_id: int) -> int:
        return sum(1 for a in self.attempts.values() if a.exam_id == exam_id)

    async def set_package_ref(self, attempt_id: int, package_ref: str) -> None:
        attempt = self.attempts.get(attempt_id)
        if attempt is not None:
            attempt.package_ref = package_ref

    async def mark_started(self, attempt_id: int, started_at: datetime) -> bool:
        attempt = self.attempts.get(attempt_id)
        if attempt is None or attempt.started_at is not None or attempt.status == AttemptStatus.canceled:
            return False
        attempt.started_at = started_at
        attempt.status = AttemptStatus.in_progress
        return True

    async def complete_attempt(
        self, attempt_id: int, final_grade: float, passed: bool, submitted_at: datetime
    ) -> bool:
        attempt = self.attempts.get(attempt_id)
        if attempt is None or attempt.submitted_at is not None or attempt.status in CLOSED_STATUSES:
            return False
        attempt.final_grade = final_grade
        attempt.passed = passed
        attempt.submitted_at = submitted_at
        attempt.status = AttemptStatus.submitted
        return True

    async def cancel_attempt(self, attempt_id: int, reason: str) -> bool:
        attempt = self.attempts.get(attempt_id)
        if attempt is None or attempt.status in CLOSED_STATUSES:
            return False
        attempt.status = AttemptStatus.canceled
        attempt.cancel_reason = reason
        return True

    async def upsert_skills(self, skills: list[AttemptSkill]) -> None:
        for s in skills:
            self.skills[(s.attempt_id, s.skill_id)] = s

    async def list_skills(self, attempt_id: int) -> list[AttemptSkill]:
        return [s for (aid, _), s in self.skills.items() if aid == attempt_id]

    async def list_attempts_for_user(self, user_id: str) -> list[tuple[Exam, Attempt]]:
        rows = []
        for attempt in sorted(self.attempts.values(), key=lambda a: a.attempt_id):
            exam = self.exams.get(attempt.exam_id)
            if exam is not None and exam.user_id == user_id:
                rows.append((exam, attempt.model_copy()))
        return rows

    async def enqueue_outbox(self, entry: OutboxEntry) -> None:
        self.outbox.append(entry)

    async def list_outbox(self) -> list[OutboxEntry]:
        return list(self.outbox)


def _set_path(doc: dict[str, Any], dotted: str, value: Any) -> None:
    parts = dotted.split(".")
    for p in parts[:-1]:
        doc = doc.setdefault(p, {})
    doc[parts[-1]] = value


class InMemoryPackageStore(PackageStore):
    def __init__(self) -> None:
        self.packages: Dict[int, dict[str, Any]] = {}

    async def insert(self, package: QuestionPackage) -> str:
        self.packages[package.attempt_id] = package.model_dump()
        return package.package_id

    async def get_by_attempt(self, attempt_id: int) -> Optional[QuestionPackage]:
        doc = self.packages.get(attempt_id)
        return QuestionPackage.model_validate(doc) if doc else None

    async def update(self, attempt_id: int, fields: dict[str, Any]) -> None:
        doc = self.packages.get(attempt_id)
        if doc is None:
            return
        for k, v in fields.items():
            _set_path(doc, k, v)
        doc["updated_at"] = utcnow()


class InMemoryProctoringStore(ProctoringStore):
    def __init__(self) -> None:
        self.sessions: Dict[str, ProctoringSession] = {}
        self.violations: Dict[str, ProctoringViolation] = {}
        self.incidents: List[Incident] = []

    async def upsert_session(self, attempt_id: str, exam_id: str) -> ProctoringSession:
        session = self.sessions.get(attempt_id)
        if session is None:
            session = ProctoringSession(attempt_id=attempt_id, exam_id=exam_id)
            self.sessions[attempt_id] = session
        session.camera_status = CameraStatus.active
        return session

    async def get_session(self, attempt_id: str) -> Optional[ProctoringSession]:
        return self.sessions.get(attempt_id)

    async def get_violation(self, attempt_id: str) -> Optional[ProctoringViolation]:
        return self.violations.get(attempt_id)

    async def record_violation(self, attempt_id: str) -> ProctoringViolation:
        violation = self.violations.setdefault(attempt_id, ProctoringViolation(attempt_id=attempt_id))
        violation.count += 1
        violation.events.append(ViolationEvent(type=ViolationEventType.focus_lost))
        return violation.model_copy(deep=True)

    async def append_violation_event(self, attempt_id: str, event_type: str) -> None:
        violation = self.violations.setdefault(attempt_id, ProctoringViolation(attempt_id=attempt_id))
        violation.events.append(ViolationEvent(type=ViolationEventType(event_type)))

    async def create_incident(self, incident: Incident) -> Incident:
        self.incidents.append(incident)
        return incident

    async def list_incidents(self, attempt_id: str) -> list[Incident]:
        return [i for i in self.incidents if i.attempt_id == attempt_id]
