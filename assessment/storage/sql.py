from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint, func, select, update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from assessment.models import (
    Attempt,
    AttemptSkill,
    AttemptStatus,
    Exam,
    ExamType,
    OutboxEntry,
    PolicySnapshot,
    utcnow,
)
from assessment.storage.repo import AttemptLedger

CLOSED_STATUSES = (AttemptStatus.canceled.value, AttemptStatus.submitted.value)


class Base(DeclarativeBase):
    pass


class ExamRow(Base):
    __tablename__ = "exams"
    exam_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    exam_type: Mapped[str] = mapped_column(String(32))
    user_id: Mapped[str] = mapped_column(String(255), index=True)
    course_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class AttemptRow(Base):
    __tablename__ = "exam_attempts"
    __table_args__ = (UniqueConstraint("exam_id", "attempt_no"),)

    attempt_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    exam_id: Mapped[int] = mapped_column(Integer, ForeignKey("exams.exam_id"), index=True)
    attempt_no: Mapped[int] = mapped_column(Integer)
    policy_snapshot: Mapped[dict] = mapped_column(JSON)
    status: Mapped[str] = mapped_column(String(32), default=AttemptStatus.pending.value)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    final_grade: Mapped[float | None] = mapped_column(Float, nullable=True)
    passed: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    package_ref: Mapped[str | None] = mapped_column(String(64), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class AttemptSkillRow(Base):
    __tablename__ = "attempt_skills"
    __table_args__ = (UniqueConstraint("attempt_id", "skill_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    attempt_id: Mapped[int] = mapped_column(Integer, ForeignKey("exam_attempts.attempt_id"), index=True)
    skill_id: Mapped[str] = mapped_column(String(255))
    skill_name: Mapped[str] = mapped_column(String(255))
    score: Mapped[float] = mapped_column(Float)
    status: Mapped[str] = mapped_column(String(32))


class OutboxRow(Base):
    __tablename__ = "outbox_integrations"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_type: Mapped[str] = mapped_column(String(64))
    target_service: Mapped[str] = mapped_column(String(64))
    payload: Mapped[dict] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything we store is UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_exam(row: ExamRow) -> Exam:
    return Exam(
        exam_id=row.exam_id,
        exam_type=ExamType(row.exam_type),
        user_id=row.user_id,
        course_id=row.course_id,
        created_at=_aware(row.created_at),
    )


def _to_attempt(row: AttemptRow) -> Attempt:
    return Attempt(
        attempt_id=row.attempt_id,
        exam_id=row.exam_id,
        attempt_no=row.attempt_no,
        policy_snapshot=PolicySnapshot.model_validate(row.policy_snapshot or {}),
        status=AttemptStatus(row.status),
        started_at=_aware(row.started_at),
        submitted_at=_aware(row.submitted_at),
        expires_at=_aware(row.expires_at),
        duration_minutes=row.duration_minutes,
        final_grade=row.final_grade,
        passed=row.passed,
        package_ref=row.package_ref,
        cancel_reason=row.cancel_reason,
        created_at=_aware(row.created_at),
    )


class SqlAttemptLedger(AttemptLedger):
    def __init__(self, database_url: str, engine: AsyncEngine | None = None) -> None:
        self.engine = engine or create_async_engine(database_url, pool_pre_ping=True)
        self.sessionmaker = async_sessionmaker(self.engine, expire_on_commit=False)
        self._schema_ready = False

    async def create_schema(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self._schema_ready = True

    async def dispose(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        if not self._schema_ready:
            await self.create_schema()
        async with self.sessionmaker() as s:
            yield s

    async def has_baseline(self, user_id: str) -> bool:
        async with self.session() as s:
            stmt = select(func.count()).select_from(ExamRow).where(
                ExamRow.user_id == user_id, ExamRow.exam_type == ExamType.baseline.value
            )
            return (await s.scalar(stmt) or 0) > 0

    async def create_exam(self, exam_type: ExamType, user_id: str, course_id: Optional[str]) -> Exam:
        async with self.session() as s:
            row = ExamRow(exam_type=exam_type.value, user_id=user_id, course_id=course_id, created_at=utcnow())
            s.add(row)
            await s.commit()
            return _to_exam(row)

    async def get_exam(self, exam_id: int) -> Optional[Exam]:
        async with self.session() as s:
            row = await s.get(ExamRow, exam_id)
            return _to_exam(row) if row else None

    async def latest_exam(self, user_id: str, exam_type: ExamType, course_id: Optional[str] = None) -> Optional[Exam]:
        async with self.session() as s:
            stmt = select(ExamRow).where(ExamRow.user_id == user_id, ExamRow.exam_type == exam_type.value)
            if course_id is not None:
                stmt = stmt.where(ExamRow.course_id == course_id)
            row = await s.scalar(stmt.order_by(ExamRow.exam_id.desc()).limit(1))
            return _to_exam(row) if row else None

    async def create_attempt(
        self,
        exam_id: int,
        attempt_no: int,
        policy_snapshot: PolicySnapshot,
        duration_minutes: Optional[int],
        expires_at: Optional[datetime],
    ) -> Attempt:
        async with self.session() as s:
            row = AttemptRow(
                exam_id=exam_id,
                attempt_no=attempt_no,
                policy_snapshot=policy_snapshot.model_dump(mode="json"),
                status=AttemptStatus.pending.value,
                duration_minutes=duration_minutes,
                expires_at=expires_at,
                created_at=utcnow(),
            )
            s.add(row)
            await s.commit()
            return _to_attempt(row)

    async def get_attempt(self, attempt_id: int) -> Optional[Attempt]:
        async with self.session() as s:
            row = await s.get(AttemptRow, attempt_id)
            return _to_attempt(row) if row else None

    async def list_attempts(self, exam_id: int) -> list[Attempt]:
        async with self.session() as s:
            stmt = select(AttemptRow).where(AttemptRow.exam_id == exam_id).order_by(AttemptRow.attempt_no)
            result = await s.scalars(stmt)
            return [_to_attempt(a) for a in result.all()]

    async def count_attempts(self, exam_id: int) -> int:
        async with self.session() as s:
            stmt = select(func.count()).select_from(AttemptRow).where(AttemptRow.exam_id == exam_id)
            return int(await s.scalar(stmt) or 0)

    async def set_package_ref(self, attempt_id: int, package_ref: str) -> None:
        async with self.session() as s:
            await s.execute(
                update(AttemptRow).where(AttemptRow.attempt_id == attempt_id).values(package_ref=package_ref)
            )
            await s.commit()

    async def _guarded_update(self, stmt) -> bool:
        async with self.session() as s:
            result = await s.execute(stmt.execution_options(synchronize_session=False))
            await s.commit()
            return result.rowcount == 1

    async def mark_started(self, attempt_id: int, started_at: datetime) -> bool:
        stmt = (
            update(AttemptRow)
            .where(
                AttemptRow.attempt_id == attempt_id,
                AttemptRow.started_at.is_(None),
                AttemptRow.status != AttemptStatus.canceled.value,
            )
            .values(started_at=started_at, status=AttemptStatus.in_progress.value)
        )
        return await self._guarded_update(stmt)

    async def complete_attempt(
        self, attempt_id: int, final_grade: float, passed: bool, submitted_at: datetime
    ) -> bool:
        stmt = (
            update(AttemptRow)
            .where(
                AttemptRow.attempt_id == attempt_id,
                AttemptRow.submitted_at.is_(None),
                AttemptRow.status.not_in(CLOSED_STATUSES),
            )
            .values(
                final_grade=final_grade,
                passed=passed,
                submitted_at=submitted_at,
                status=AttemptStatus.submitted.value,
            )
        )
        return await self._guarded_update(stmt)

    async def cancel_attempt(self, attempt_id: int, reason: str) -> bool:
        stmt = (
            update(AttemptRow)
            .where(AttemptRow.attempt_id == attempt_id, AttemptRow.status.not_in(CLOSED_STATUSES))
            .values(status=AttemptStatus.canceled.value, cancel_reason=reason)
        )
        return await self._guarded_update(stmt)

    async def upsert_skills(self, skills: list[AttemptSkill]) -> None:
        if not skills:
            return
        async with self.session() as s:
            for skill in skills:
                existing = await s.scalar(
                    select(AttemptSkillRow).where(
                        AttemptSkillRow.attempt_id == skill.attempt_id,
                        AttemptSkillRow.skill_id == skill.skill_id,
                    )
                )
                if existing is None:
                    s.add(
                        AttemptSkillRow(
                            attempt_id=skill.attempt_id,
                            skill_id=skill.skill_id,
                            skill_name=skill.skill_name,
                            score=skill.score,
                            status=skill.status.value,
                        )
                    )
                else:
                    existing.skill_name = skill.skill_name
                    existing.score = skill.score
                    existing.status = skill.status.value
            await s.commit()

    async def list_skills(self, attempt_id: int) -> list[AttemptSkill]:
        async with self.session() as s:
            rows = await s.scalars(
                select(AttemptSkillRow).where(AttemptSkillRow.attempt_id == attempt_id).order_by(AttemptSkillRow.id)
            )
            return [
                AttemptSkill(
                    attempt_id=r.attempt_id,
                    skill_id=r.skill_id,
                    skill_name=r.skill_name,
                    score=r.score,
                    status=r.status,
                )
                for r in rows
            ]

    async def list_attempts_for_user(self, user_id: str) -> list[tuple[Exam, Attempt]]:
        async with self.session() as s:
            stmt = (
                select(ExamRow, AttemptRow)
                .join(AttemptRow, AttemptRow.exam_id == ExamRow.exam_id)
                .where(ExamRow.user_id == user_id)
                .order_by(AttemptRow.attempt_id)
            )
            result = await s.execute(stmt)
            return [(_to_exam(e), _to_attempt(a)) for e, a in result.all()]

    async def enqueue_outbox(self, entry: OutboxEntry) -> None:
        async with self.session() as s:
            s.add(
                OutboxRow(
                    event_type=entry.event_type,
                    target_service=entry.target_service,
                    payload=entry.payload,
                    created_at=entry.created_at,
                )
            )
            await s.commit()

    async def list_outbox(self) -> list[OutboxEntry]:
        async with self.session() as s:
            rows = await s.scalars(select(OutboxRow).order_by(OutboxRow.id))
            return [
                OutboxEntry(
                    event_type=r.event_type,
                    target_service=r.target_service,
                    payload=r.payload,
                    created_at=_aware(r.created_at),
                )
                for r in rows
            ]
