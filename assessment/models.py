from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExamType(str, Enum):
    baseline = "baseline"
    postcourse = "postcourse"


class AttemptStatus(str, Enum):
    pending = "pending"
    in_progress = "in_progress"
    submitted = "submitted"
    canceled = "canceled"


class PackageStatus(str, Enum):
    draft = "draft"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"
    archived = "archived"


class SkillStatus(str, Enum):
    acquired = "acquired"
    failed = "failed"
    pending_review = "pending_review"


class CameraStatus(str, Enum):
    inactive = "inactive"
    active = "active"


class ViolationEventType(str, Enum):
    focus_lost = "focus_lost"
    exam_canceled = "exam_canceled"


class IncidentSource(str, Enum):
    automation = "automation"
    proctor = "proctor"
    appeal = "appeal"
    system = "system"


class IncidentSeverity(str, Enum):
    info = "info"
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


class IncidentStatus(str, Enum):
    open = "open"
    investigating = "investigating"
    mitigated = "mitigated"
    closed = "closed"


# ===== Relational ledger =====

class PolicySnapshot(BaseModel):
    """Policy frozen onto an attempt when it is created."""

    model_config = ConfigDict(frozen=True, extra="allow")

    passing_grade: float = 70.0
    max_attempts: Optional[int] = None
    retry_cooldown_hours: Optional[float] = None
    grade_precision: Optional[int] = None


class Exam(BaseModel):
    exam_id: int
    exam_type: ExamType
    user_id: str
    course_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class Attempt(BaseModel):
    attempt_id: int
    exam_id: int
    attempt_no: int = 1
    policy_snapshot: PolicySnapshot = Field(default_factory=PolicySnapshot)
    status: AttemptStatus = AttemptStatus.pending

    started_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    duration_minutes: Optional[int] = None

    final_grade: Optional[float] = None
    passed: Optional[bool] = None
    package_ref: Optional[str] = None
    cancel_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) > self.expires_at


class AttemptSkill(BaseModel):
    attempt_id: int
    skill_id: str
    skill_name: str
    score: float
    status: SkillStatus


class OutboxEntry(BaseModel):
    event_type: str
    target_service: str
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


# ===== Document store =====

class PackageQuestion(BaseModel):
    question_id: str
    skill_id: str
    skill_name: Optional[str] = None
    type: str = "mcq"
    prompt: dict[str, Any] = Field(default_factory=dict)
    options: list[Any] = Field(default_factory=list)
    answer_key: Any = None
    hints: Optional[list[str]] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class QuestionPackage(BaseModel):
    package_id: str = Field(default_factory=lambda: uuid4().hex)
    exam_id: int
    attempt_id: int
    user_id: str
    exam_type: ExamType
    questions: list[PackageQuestion] = Field(default_factory=list)
    coding_questions: list[dict[str, Any]] = Field(default_factory=list)
    coverage_map: list[dict[str, Any]] = Field(default_factory=list)
    skills: list[dict[str, Any]] = Field(default_factory=list)
    policy: PolicySnapshot = Field(default_factory=PolicySnapshot)
    grading: Optional[dict[str, Any]] = None
    final_status: PackageStatus = PackageStatus.draft
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ProctoringSession(BaseModel):
    attempt_id: str
    exam_id: str
    camera_status: CameraStatus = CameraStatus.inactive
    start_time: datetime = Field(default_factory=utcnow)
    events: list[dict[str, Any]] = Field(default_factory=list)


class ViolationEvent(BaseModel):
    type: ViolationEventType
    timestamp: datetime = Field(default_factory=utcnow)


class ProctoringViolation(BaseModel):
    attempt_id: str
    count: int = 0
    events: list[ViolationEvent] = Field(default_factory=list)


class Incident(BaseModel):
    incident_id: str = Field(default_factory=lambda: f"incident_{uuid4().hex}")
    attempt_id: str
    exam_id: Optional[str] = None
    incident_type: str = "anomaly"
    source: IncidentSource = IncidentSource.automation
    severity: IncidentSeverity = IncidentSeverity.low
    status: IncidentStatus = IncidentStatus.open
    summary: str
    details: dict[str, Any] = Field(default_factory=dict)
    opened_at: datetime = Field(default_factory=utcnow)
    closed_at: Optional[datetime] = None


# ===== Policy / attempt tracker =====

class AttemptHistoryEntry(BaseModel):
    n: int
    at: datetime
    result_id: str
    grade: Optional[float] = None
    passed: Optional[bool] = None
    version: int


class PolicyLedgerEntry(BaseModel):
    user_id: str
    exam_type: str
    attempts: int = 0
    last_attempt_at: Optional[datetime] = None
    cooldown_until: Optional[datetime] = None
    override: bool = False
    history: list[AttemptHistoryEntry] = Field(default_factory=list)


class Eligibility(BaseModel):
    ok: bool
    reason: Optional[str] = None  # override|cooldown|limit
    until: Optional[datetime] = None

    @property
    def status(self) -> str:
        if self.ok:
            return "ok"
        return f"blocked:{self.reason}"


# ===== Grading =====

class SubmittedAnswer(BaseModel):
    question_id: str
    type: str = "mcq"
    skill_id: Optional[str] = None
    answer: Any = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class SkillScore(BaseModel):
    skill_id: str
    skill_name: str
    score: float
    status: SkillStatus


class GradingRequest(BaseModel):
    questions: list[PackageQuestion]
    coding_questions: list[dict[str, Any]] = Field(default_factory=list)
    skills: list[dict[str, Any]] = Field(default_factory=list)
    answers: list[SubmittedAnswer]
    passing_grade: float


class GradingResult(BaseModel):
    per_skill: list[SkillScore]
    final_grade: float
    engine: str = "internal"
    items: list[dict[str, Any]] = Field(default_factory=list)


# ===== Request DTOs =====

class CreateExamRequest(BaseModel):
    user_id: Optional[str] = None
    exam_type: Optional[str] = None
    course_id: Optional[str] = None
    course_name: Optional[str] = None


class RetakeRequest(BaseModel):
    user_id: Optional[str] = None
    course_id: Optional[str] = None


class StartExamRequest(BaseModel):
    attempt_id: Optional[int] = None


class SubmitExamRequest(BaseModel):
    attempt_id: Optional[int] = None
    answers: Optional[list[SubmittedAnswer]] = None


class CancelExamRequest(BaseModel):
    attempt_id: Optional[int] = None
    reason: Optional[str] = None


class IncidentRequest(BaseModel):
    incident_type: str = "anomaly"
    severity: IncidentSeverity = IncidentSeverity.low
    source: IncidentSource = IncidentSource.automation
    summary: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)


class OverrideRequest(BaseModel):
    user_id: Optional[str] = None
    exam_type: str = ExamType.postcourse.value
    allow: bool = True


# ===== Response DTOs =====

class CreateExamResponse(BaseModel):
    exam_id: int
    attempt_id: int
    attempt_no: int
    exam_type: ExamType
    user_id: str
    course_id: Optional[str] = None
    passing_grade: Optional[float] = None
    max_attempts: Optional[int] = None
    expires_at: Optional[datetime] = None
    policy_snapshot: PolicySnapshot


class SubmitExamResponse(BaseModel):
    user_id: str
    exam_type: ExamType
    course_id: Optional[str] = None
    exam_id: int
    attempt_id: int
    attempt_no: int
    passing_grade: float
    final_grade: float
    passed: bool
    skills: list[SkillScore]
    submitted_at: datetime


class ViolationResponse(BaseModel):
    attempt_id: int
    count: int
    canceled: bool
