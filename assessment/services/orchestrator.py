from __future__ import annotations

import logging
import math
from datetime import timedelta
from functools import partial
from typing import Any, Callable, Optional

import anyio.to_thread

from assessment.errors import (
    AttemptAlreadySubmitted,
    AttemptCanceled,
    AttemptLimitReached,
    AttemptNotClosed,
    AttemptNotFound,
    BaselineAlreadyExists,
    BaselineAttemptNotAllowed,
    CooldownActive,
    ExamMismatch,
    ExamTimeExpired,
    InvalidExamType,
    MaxAttemptsReached,
    NotFound,
    PackageNotFound,
    ProctoringNotStarted,
    ValidationFailed,
)
from assessment.integrations.gateways import Gateways
from assessment.models import (
    Attempt,
    AttemptSkill,
    AttemptStatus,
    CameraStatus,
    CreateExamResponse,
    Exam,
    ExamType,
    GradingRequest,
    OutboxEntry,
    PackageStatus,
    PolicySnapshot,
    QuestionPackage,
    SubmitExamResponse,
    SubmittedAnswer,
    utcnow,
)
from assessment.observability import get_tracer
from assessment.services.grading import Grader, final_grade
from assessment.services.packages import QuestionGenerator, learner_view, question_count, skills_from_coverage
from assessment.services.proctoring import summarize
from assessment.services.tracker import AttemptTracker
from assessment.settings import Settings
from assessment.storage.repo import AttemptLedger, PackageStore, ProctoringStore
from assessment.workers.dispatch import Schedule, TaskDispatcher, deliver

logger = logging.getLogger(__name__)

_SNAPSHOT_KEYS = {"passing_grade", "max_attempts", "retry_cooldown_hours", "grade_precision"}


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def parse_exam_type(value: Optional[str]) -> ExamType:
    try:
        return ExamType(str(value).strip().lower())
    except ValueError:
        raise InvalidExamType(exam_type=value) from None


class ExamOrchestrator:
    """Create, start and submit exams across the ledger, the package store and the partner services."""

    def __init__(
        self,
        ledger: AttemptLedger,
        packages: PackageStore,
        proctoring: ProctoringStore,
        tracker: AttemptTracker,
        gateways: Gateways,
        grader: Grader,
        generator: QuestionGenerator,
        settings: Settings,
        schedule: Optional[Schedule] = None,
    ) -> None:
        self.ledger = ledger
        self.packages = packages
        self.proctoring = proctoring
        self.tracker = tracker
        self.gateways = gateways
        self.grader = grader
        self.generator = generator
        self.settings = settings
        self.schedule = schedule or TaskDispatcher()

    # ===== policy =====

    def build_snapshot(self, exam_type: ExamType, policy: dict[str, Any]) -> PolicySnapshot:
        s = self.settings
        passing = _number(policy.get("passing_grade"))
        if passing is None:
            passing = s.default_passing_grade

        if exam_type == ExamType.baseline:
            max_attempts: Optional[int] = 1
            cooldown = None
        else:
            max_attempts = int(_number(policy.get("max_attempts")) or s.default_postcourse_max_attempts)
            cooldown = _number(policy.get("retry_cooldown_hours"))
            if cooldown is None:
                cooldown = s.default_retry_cooldown_hours

        precision = _number(policy.get("grade_precision"))
        extras = {k: v for k, v in policy.items() if k not in _SNAPSHOT_KEYS}
        return PolicySnapshot(
            passing_grade=float(passing),
            max_attempts=max_attempts,
            retry_cooldown_hours=cooldown,
            grade_precision=s.default_grade_precision if precision is None else int(precision),
            **extras,
        )

    async def _fetch_policy(self, exam_type: ExamType) -> dict[str, Any]:
        result = await self.gateways.directory.fetch_policy(exam_type.value)
        return dict(result.data or {})

    async def _fetch_scope(
        self, exam_type: ExamType, user_id: str, course_id: Optional[str]
    ) -> tuple[list[dict[str, Any]], list[dict[str, Any]], dict[str, Any]]:
        """Skills and coverage map for the exam, plus course info for post-course exams."""
        if exam_type == ExamType.baseline:
            data = (await self.gateways.skills_engine.fetch_baseline_skills(user_id)).data or {}
            skills = [
                {"skill_id": str(sk.get("skill_id")), "skill_name": str(sk.get("skill_name") or sk.get("skill_id"))}
                for sk in data.get("skills") or []
                if isinstance(sk, dict) and sk.get("skill_id")
            ]
            return skills, [], {}

        data = (await self.gateways.course_builder.fetch_coverage(user_id, course_id)).data or {}
        coverage_map = [lesson for lesson in data.get("coverage_map") or [] if isinstance(lesson, dict)]
        course = {"course_id": data.get("course_id"), "course_name": data.get("course_name")}
        return skills_from_coverage(coverage_map), coverage_map, course

    # ===== create =====

    async def create(
        self,
        user_id: Optional[str],
        exam_type: Optional[str],
        course_id: Optional[str] = None,
        course_name: Optional[str] = None,
    ) -> CreateExamResponse:
        if not user_id or not exam_type:
            raise ValidationFailed("user_id_and_exam_type_required")
        etype = parse_exam_type(exam_type)

        tracer = get_tracer()
        with tracer.start_as_current_span("exam.create") as span:
            span.set_attribute("exam.type", etype.value)

            if etype == ExamType.baseline and await self.ledger.has_baseline(user_id):
                raise BaselineAlreadyExists()

            policy = await self._fetch_policy(etype)
            skills, coverage_map, course = await self._fetch_scope(etype, user_id, course_id)
            course_id = course_id or course.get("course_id")
            course_name = course_name or course.get("course_name")

            snapshot = self.build_snapshot(etype, policy)
            exam = await self.ledger.create_exam(etype, user_id, course_id if etype == ExamType.postcourse else None)
            attempt = await self._open_attempt(exam, 1, snapshot, skills, coverage_map, course_name)

            span.set_attribute("exam.id", exam.exam_id)
            span.set_attribute("attempt.id", attempt.attempt_id)
            logger.info(f"Exam created exam={exam.exam_id} attempt={attempt.attempt_id} type={etype.value}")

        return self._created(exam, attempt)

    def _created(self, exam: Exam, attempt: Attempt) -> CreateExamResponse:
        snapshot = attempt.policy_snapshot
        return CreateExamResponse(
            exam_id=exam.exam_id,
            attempt_id=attempt.attempt_id,
            attempt_no=attempt.attempt_no,
            exam_type=exam.exam_type,
            user_id=exam.user_id,
            course_id=exam.course_id,
            passing_grade=snapshot.passing_grade,
            max_attempts=snapshot.max_attempts,
            expires_at=attempt.expires_at,
            policy_snapshot=snapshot,
        )

    async def _open_attempt(
        self,
        exam: Exam,
        attempt_no: int,
        snapshot: PolicySnapshot,
        skills: list[dict[str, Any]],
        coverage_map: list[dict[str, Any]],
        course_name: Optional[str],
    ) -> Attempt:
        count = question_count(skills, coverage_map)
        duration = count * self.settings.minutes_per_question if count else None
        expires_at = utcnow() + timedelta(minutes=duration) if duration else None

        attempt = await self.ledger.create_attempt(exam.exam_id, attempt_no, snapshot, duration, expires_at)

        questions = await self.generator.generate(skills, exam.exam_type.value)
        coding: list[dict[str, Any]] = []
        amount = self.settings.coding_questions_per_exam
        if amount > 0 and skills:
            result = await self.gateways.devlab.request_coding_questions([sk["skill_id"] for sk in skills], amount)
            coding = list((result.data or {}).get("questions") or [])[:amount]

        package = QuestionPackage(
            exam_id=exam.exam_id,
            attempt_id=attempt.attempt_id,
            user_id=exam.user_id,
            exam_type=exam.exam_type,
            questions=questions,
            coding_questions=coding,
            coverage_map=coverage_map,
            skills=skills,
            policy=snapshot,
            metadata={
                "course_id": exam.course_id,
                "course_name": course_name,
                "attempt_no": attempt_no,
                "question_count": count,
                "duration_minutes": duration,
                "expires_at": expires_at.isoformat() if expires_at else None,
            },
        )
        # Separate round-trips: an attempt can briefly exist without its package reference.
        package_ref = await self.packages.insert(package)
        await self.ledger.set_package_ref(attempt.attempt_id, package_ref)
        attempt.package_ref = package_ref
        return attempt

    # ===== shared checks =====

    @staticmethod
    async def _track(call: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run a tracker call in a worker thread; the tracker reads and writes its JSON file synchronously."""
        return await anyio.to_thread.run_sync(partial(call, *args, **kwargs))

    async def _load(self, attempt_id: int) -> tuple[Attempt, Exam]:
        attempt = await self.ledger.get_attempt(attempt_id)
        if attempt is None:
            raise AttemptNotFound()
        exam = await self.ledger.get_exam(attempt.exam_id)
        if exam is None:
            raise AttemptNotFound()
        return attempt, exam

    async def _require_camera(self, attempt_id: int) -> None:
        if not self.settings.require_camera:
            return
        session = await self.proctoring.get_session(str(attempt_id))
        if session is None or session.camera_status != CameraStatus.active:
            raise ProctoringNotStarted()

    @staticmethod
    def _check_open(attempt: Attempt) -> None:
        # Cancellation is terminal and wins over every other state.
        if attempt.status == AttemptStatus.canceled:
            raise AttemptCanceled()
        if attempt.is_expired():
            raise ExamTimeExpired(expires_at=attempt.expires_at.isoformat() if attempt.expires_at else None)

    # ===== start =====

    async def start(self, attempt_id: Optional[int], exam_id: Optional[int] = None) -> dict[str, Any]:
        if attempt_id is None:
            raise ValidationFailed("attempt_id_required")

        tracer = get_tracer()
        with tracer.start_as_current_span("exam.start") as span:
            span.set_attribute("attempt.id", attempt_id)
            attempt, exam = await self._load(attempt_id)
            if exam_id is not None and exam_id != exam.exam_id:
                raise ExamMismatch()

            self._check_open(attempt)
            if attempt.status == AttemptStatus.submitted:
                raise AttemptAlreadySubmitted()

            count = await self.ledger.count_attempts(exam.exam_id)
            max_attempts = attempt.policy_snapshot.max_attempts
            if exam.exam_type == ExamType.baseline:
                if attempt.attempt_no > 1 or count > 1:
                    raise BaselineAttemptNotAllowed()
            elif max_attempts is not None and (attempt.attempt_no > max_attempts or count > max_attempts):
                raise MaxAttemptsReached(max_attempts=max_attempts)

            await self._require_camera(attempt.attempt_id)

            package = await self.packages.get_by_attempt(attempt.attempt_id)
            if package is None:
                raise PackageNotFound()

            now = utcnow()
            if await self.ledger.mark_started(attempt.attempt_id, now):
                await self.packages.update(
                    attempt.attempt_id,
                    {"final_status": PackageStatus.in_progress, "metadata.start_time": now},
                )
                logger.info(f"Attempt started attempt={attempt.attempt_id}")

            current = await self.ledger.get_attempt(attempt.attempt_id)
            if current is None or current.status == AttemptStatus.canceled:
                raise AttemptCanceled()

        return {
            "exam_id": exam.exam_id,
            "attempt_id": current.attempt_id,
            "attempt_no": current.attempt_no,
            "exam_type": exam.exam_type.value,
            "status": current.status.value,
            "started_at": current.started_at.isoformat() if current.started_at else None,
            "expires_at": current.expires_at.isoformat() if current.expires_at else None,
            "duration_minutes": current.duration_minutes,
            "package": learner_view(package),
        }

    # ===== submit =====

    async def submit(
        self,
        attempt_id: Optional[int],
        answers: Optional[list[SubmittedAnswer]],
        exam_id: Optional[int] = None,
        schedule: Optional[Schedule] = None,
    ) -> SubmitExamResponse:
        if attempt_id is None or answers is None:
            raise ValidationFailed("attempt_id_and_answers_required")

        tracer = get_tracer()
        with tracer.start_as_current_span("exam.submit") as span:
            span.set_attribute("attempt.id", attempt_id)
            attempt, exam = await self._load(attempt_id)
            if exam_id is not None and exam_id != exam.exam_id:
                raise ExamMismatch()

            self._check_open(attempt)
            if attempt.status == AttemptStatus.submitted or attempt.submitted_at is not None:
                raise AttemptAlreadySubmitted()
            await self._require_camera(attempt.attempt_id)

            package = await self.packages.get_by_attempt(attempt.attempt_id)
            if package is None:
                raise PackageNotFound()

            snapshot = attempt.policy_snapshot
            graded = await self.grader.grade(
                GradingRequest(
                    questions=package.questions,
                    coding_questions=package.coding_questions,
                    skills=package.skills,
                    answers=answers,
                    passing_grade=snapshot.passing_grade,
                )
            )
            grade = final_grade(graded.per_skill, snapshot.grade_precision)
            passed = grade >= snapshot.passing_grade
            submitted_at = utcnow()

            if not await self.ledger.complete_attempt(attempt.attempt_id, grade, passed, submitted_at):
                current = await self.ledger.get_attempt(attempt.attempt_id)
                if current is not None and current.status == AttemptStatus.canceled:
                    raise AttemptCanceled()
                raise AttemptAlreadySubmitted()

            span.set_attribute("exam.final_grade", grade)
            span.set_attribute("exam.passed", passed)

            await self.ledger.upsert_skills(
                [
                    AttemptSkill(
                        attempt_id=attempt.attempt_id,
                        skill_id=s.skill_id,
                        skill_name=s.skill_name,
                        score=s.score,
                        status=s.status,
                    )
                    for s in graded.per_skill
                ]
            )
            await self.packages.update(
                attempt.attempt_id,
                {
                    "grading": {
                        "engine": graded.engine,
                        "final_grade": grade,
                        "passed": passed,
                        "per_skill": [s.model_dump(mode="json") for s in graded.per_skill],
                        "items": graded.items,
                        "graded_at": submitted_at.isoformat(),
                    },
                    "final_status": PackageStatus.completed,
                },
            )

            await self._track(
                self.tracker.record_attempt,
                exam.user_id,
                exam.exam_type.value,
                result_id=f"attempt-{attempt.attempt_id}",
                grade=grade,
                passed=passed,
            )
            if not passed and snapshot.retry_cooldown_hours:
                await self._track(
                    self.tracker.set_cooldown, exam.user_id, exam.exam_type.value, hours=snapshot.retry_cooldown_hours
                )

            logger.info(f"Attempt submitted attempt={attempt.attempt_id} grade={grade} passed={passed}")

        response = SubmitExamResponse(
            user_id=exam.user_id,
            exam_type=exam.exam_type,
            course_id=exam.course_id,
            exam_id=exam.exam_id,
            attempt_id=attempt.attempt_id,
            attempt_no=attempt.attempt_no,
            passing_grade=snapshot.passing_grade,
            final_grade=grade,
            passed=passed,
            skills=graded.per_skill,
            submitted_at=submitted_at,
        )
        results = response.model_dump(mode="json")
        if package.metadata.get("course_name"):
            results["course_name"] = package.metadata["course_name"]
        if snapshot.max_attempts is not None:
            results["max_attempts"] = snapshot.max_attempts

        await self._publish_results(exam, attempt, results, schedule or self.schedule)
        return response

    async def _publish_results(
        self, exam: Exam, attempt: Attempt, results: dict[str, Any], schedule: Schedule
    ) -> None:
        """Record each push in the outbox, then hand it to the scheduler without waiting for it."""
        g = self.gateways
        pushes = [
            ("exam_results", g.directory.name, g.directory.push_exam_results, results),
            ("assessment_results", g.skills_engine.name, g.skills_engine.push_assessment_results, results),
        ]
        if exam.exam_type == ExamType.postcourse:
            pushes.append(("exam_results", g.course_builder.name, g.course_builder.push_exam_results, results))

        summary = await summarize(self.proctoring, attempt.attempt_id)
        pushes.append(
            (
                "proctoring_summary",
                g.protocol_camera.name,
                lambda payload: g.protocol_camera.send_summary(attempt.attempt_id, payload),
                summary,
            )
        )

        for event_type, target, send, payload in pushes:
            await self.ledger.enqueue_outbox(OutboxEntry(event_type=event_type, target_service=target, payload=payload))
            schedule(deliver, event_type, target, send, payload)

    # ===== retake =====

    async def retake(self, user_id: Optional[str], course_id: Optional[str] = None) -> CreateExamResponse:
        if not user_id:
            raise ValidationFailed("user_id_required")

        exam = await self.ledger.latest_exam(user_id, ExamType.postcourse, course_id)
        if exam is None:
            raise NotFound("postcourse_exam_not_found")

        tracer = get_tracer()
        with tracer.start_as_current_span("exam.retake") as span:
            span.set_attribute("exam.id", exam.exam_id)

            attempts = await self.ledger.list_attempts(exam.exam_id)
            latest = attempts[-1] if attempts else None
            # An expired attempt can no longer be submitted and counts as closed.
            if (
                latest is not None
                and latest.status not in (AttemptStatus.submitted, AttemptStatus.canceled)
                and not latest.is_expired()
            ):
                raise AttemptNotClosed(attempt_id=latest.attempt_id, status=latest.status.value)

            policy = await self._fetch_policy(ExamType.postcourse)
            snapshot = self.build_snapshot(ExamType.postcourse, policy)
            attempt_no = (latest.attempt_no if latest else 0) + 1

            eligibility = await self._track(
                self.tracker.can_attempt, user_id, ExamType.postcourse.value, snapshot.max_attempts or 0
            )
            if not eligibility.ok:
                if eligibility.reason == "cooldown":
                    raise CooldownActive(until=eligibility.until.isoformat() if eligibility.until else None)
                raise AttemptLimitReached(max_attempts=snapshot.max_attempts)
            if (snapshot.max_attempts or 0) < attempt_no:
                if eligibility.reason != "override":
                    raise AttemptLimitReached(max_attempts=snapshot.max_attempts)
                # An override grants exactly this extra attempt.
                snapshot = snapshot.model_copy(update={"max_attempts": attempt_no})

            skills, coverage_map, course = await self._fetch_scope(ExamType.postcourse, user_id, exam.course_id)
            attempt = await self._open_attempt(
                exam, attempt_no, snapshot, skills, coverage_map, course.get("course_name")
            )
            span.set_attribute("attempt.id", attempt.attempt_id)
            logger.info(f"Retake opened exam={exam.exam_id} attempt={attempt.attempt_id} no={attempt_no}")

        return self._created(exam, attempt)

    # ===== cancel =====

    async def cancel(
        self, attempt_id: Optional[int], reason: Optional[str] = None, exam_id: Optional[int] = None
    ) -> dict[str, Any]:
        if attempt_id is None:
            raise ValidationFailed("attempt_id_required")
        attempt, exam = await self._load(attempt_id)
        if exam_id is not None and exam_id != exam.exam_id:
            raise ExamMismatch()

        changed = await self.ledger.cancel_attempt(attempt.attempt_id, reason or "manual")
        if changed:
            await self.packages.update(attempt.attempt_id, {"final_status": PackageStatus.cancelled})
            logger.warning(f"Attempt canceled manually attempt={attempt.attempt_id} reason={reason or 'manual'}")
        else:
            current = await self.ledger.get_attempt(attempt.attempt_id)
            if current is not None and current.status == AttemptStatus.submitted:
                raise AttemptAlreadySubmitted()

        return {"attempt_id": attempt.attempt_id, "status": AttemptStatus.canceled.value, "changed": changed}

    # ===== reads =====

    @staticmethod
    def _attempt_view(exam: Exam, attempt: Attempt) -> dict[str, Any]:
        return {
            "exam_id": exam.exam_id,
            "exam_type": exam.exam_type.value,
            "user_id": exam.user_id,
            "course_id": exam.course_id,
            **attempt.model_dump(mode="json", exclude={"exam_id"}),
        }

    async def attempt_detail(self, attempt_id: int) -> dict[str, Any]:
        attempt = await self.ledger.get_attempt(attempt_id)
        exam = await self.ledger.get_exam(attempt.exam_id) if attempt else None
        if attempt is None or exam is None:
            raise NotFound()
        view = self._attempt_view(exam, attempt)
        view["skills"] = [s.model_dump(mode="json") for s in await self.ledger.list_skills(attempt_id)]
        return view

    async def attempts_for_user(self, user_id: str) -> list[dict[str, Any]]:
        return [self._attempt_view(exam, attempt) for exam, attempt in await self.ledger.list_attempts_for_user(user_id)]

    async def attempt_skills(self, attempt_id: int) -> list[dict[str, Any]]:
        if await self.ledger.get_attempt(attempt_id) is None:
            raise NotFound()
        return [s.model_dump(mode="json") for s in await self.ledger.list_skills(attempt_id)]

    async def remaining_time(self, attempt_id: int) -> dict[str, Any]:
        attempt = await self.ledger.get_attempt(attempt_id)
        if attempt is None:
            raise NotFound()
        remaining = None
        if attempt.expires_at is not None:
            remaining = max(0, math.floor((attempt.expires_at - utcnow()).total_seconds()))
        return {
            "attempt_id": attempt.attempt_id,
            "expires_at": attempt.expires_at.isoformat() if attempt.expires_at else None,
            "remaining_seconds": remaining,
            "expired": attempt.is_expired(),
        }

    async def _exam_with_attempts(self, exam_id: int) -> tuple[Exam, list[Attempt]]:
        exam = await self.ledger.get_exam(exam_id)
        if exam is None:
            raise NotFound()
        return exam, await self.ledger.list_attempts(exam_id)

    async def exam_detail(self, exam_id: int) -> dict[str, Any]:
        exam, attempts = await self._exam_with_attempts(exam_id)
        return {
            **exam.model_dump(mode="json"),
            "attempts": [a.model_dump(mode="json", exclude={"policy_snapshot"}) for a in attempts],
            "latest_attempt_id": attempts[-1].attempt_id if attempts else None,
        }

    async def exam_status(self, exam_id: int) -> dict[str, Any]:
        """Whether the latest attempt's question package has been assembled."""
        exam, attempts = await self._exam_with_attempts(exam_id)
        latest = attempts[-1] if attempts else None
        package = await self.packages.get_by_attempt(latest.attempt_id) if latest else None
        return {
            "exam_id": exam.exam_id,
            "exam_type": exam.exam_type.value,
            "status": "ready" if package is not None else "preparing",
            "attempt_id": latest.attempt_id if latest else None,
            "attempt_no": latest.attempt_no if latest else None,
            "attempt_status": latest.status.value if latest else None,
            "package_status": package.final_status.value if package else None,
        }

    async def package_for_exam(self, exam_id: int) -> dict[str, Any]:
        _, attempts = await self._exam_with_attempts(exam_id)
        package = await self.packages.get_by_attempt(attempts[-1].attempt_id) if attempts else None
        if package is None:
            raise NotFound()
        return learner_view(package)

    async def result(self, exam_id: int, attempt_id: int) -> dict[str, Any]:
        detail = await self.attempt_detail(attempt_id)
        if detail["exam_id"] != exam_id:
            raise ExamMismatch()
        return detail
