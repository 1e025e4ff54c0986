"""Domain error taxonomy.

Every error carries a stable snake_case ``code`` that is returned verbatim to the
caller as ``{"error": code}`` together with any ``extra`` fields.
"""

from __future__ import annotations

from typing import Any


class AssessmentError(Exception):
    status_code: int = 400
    code: str = "bad_request"

    def __init__(self, code: str | None = None, **extra: Any) -> None:
        self.code = code or self.code
        self.extra = extra
        super().__init__(self.code)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, **self.extra}


# ===== Validation (400) =====

class ValidationFailed(AssessmentError):
    code = "validation_failed"


class InvalidExamType(AssessmentError):
    code = "invalid_exam_type"


class UnsupportedAction(AssessmentError):
    code = "unsupported_action"


# ===== State conflicts =====

class BaselineAlreadyExists(AssessmentError):
    code = "baseline_already_exists"


class BaselineAttemptNotAllowed(AssessmentError):
    code = "baseline_attempt_not_allowed"


class MaxAttemptsReached(AssessmentError):
    code = "max_attempts_reached"


class ExamMismatch(AssessmentError):
    code = "exam_mismatch"


class AttemptAlreadySubmitted(AssessmentError):
    code = "attempt_already_submitted"


class AttemptNotClosed(AssessmentError):
    code = "attempt_not_closed"


class ExamTimeExpired(AssessmentError):
    status_code = 403
    code = "exam_time_expired"


class AttemptCanceled(AssessmentError):
    status_code = 403
    code = "attempt_canceled"


class ProctoringNotStarted(AssessmentError):
    status_code = 403
    code = "proctoring_not_started"


class AttemptLimitReached(AssessmentError):
    status_code = 403
    code = "attempt_limit_reached"


class CooldownActive(AssessmentError):
    status_code = 429
    code = "cooldown_active"


class InvalidSignature(AssessmentError):
    status_code = 401
    code = "invalid_signature"


# ===== Not found (404) =====

class NotFound(AssessmentError):
    status_code = 404
    code = "not_found"


class AttemptNotFound(NotFound):
    code = "attempt_not_found"


class PackageNotFound(NotFound):
    code = "package_not_found"
