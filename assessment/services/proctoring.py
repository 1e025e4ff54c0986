from __future__ import annotations

import logging
from typing import Any, Optional

from assessment.errors import AttemptNotFound, ValidationFailed
from assessment.integrations.gateways import IncidentResponseGateway
from assessment.models import (
    Attempt,
    AttemptStatus,
    CameraStatus,
    Incident,
    IncidentRequest,
    PackageStatus,
    ProctoringSession,
    ViolationEventType,
    ViolationResponse,
)
from assessment.observability import get_tracer
from assessment.storage.repo import AttemptLedger, PackageStore, ProctoringStore
from assessment.workers.dispatch import Schedule, TaskDispatcher, deliver_call

logger = logging.getLogger(__name__)

CANCEL_REASON = "focus_violations"


async def summarize(store: ProctoringStore, attempt_id: Any) -> dict[str, Any]:
    key = str(attempt_id)
    session = await store.get_session(key)
    violation = await store.get_violation(key)
    incidents = await store.list_incidents(key)

    events_total = len(incidents)
    if session is not None:
        events_total += len(session.events)
    if violation is not None:
        events_total += len(violation.events)

    return {
        "events_total": events_total,
        "violations": violation.count if violation else 0,
        "terminated": bool(violation and any(e.type == ViolationEventType.exam_canceled for e in violation.events)),
        "incidents": len(incidents),
        "camera_status": (session.camera_status if session else CameraStatus.inactive).value,
    }


class ProctoringEngine:
    """Camera sessions, focus-loss strikes and incidents for an attempt.

    ``no_session -> active -> (violation)* -> canceled``. Reaching ``strike_threshold`` cancels the
    attempt through a guarded write on the ledger, so only the first crossing has side effects.
    """

    def __init__(
        self,
        ledger: AttemptLedger,
        store: ProctoringStore,
        packages: PackageStore,
        incident_response: IncidentResponseGateway,
        strike_threshold: int = 3,
        schedule: Optional[Schedule] = None,
    ) -> None:
        self.ledger = ledger
        self.store = store
        self.packages = packages
        self.incident_response = incident_response
        self.strike_threshold = strike_threshold
        self.schedule = schedule or TaskDispatcher()

    async def _attempt(self, attempt_id: Optional[int]) -> Attempt:
        if attempt_id is None:
            raise ValidationFailed("attempt_id_required")
        attempt = await self.ledger.get_attempt(attempt_id)
        if attempt is None:
            raise AttemptNotFound()
        return attempt

    async def start_camera(self, attempt_id: Optional[int]) -> ProctoringSession:
        attempt = await self._attempt(attempt_id)
        session = await self.store.upsert_session(str(attempt.attempt_id), str(attempt.exam_id))
        logger.info(f"Camera active for attempt={attempt.attempt_id}")
        return session

    async def is_camera_active(self, attempt_id: int) -> bool:
        session = await self.store.get_session(str(attempt_id))
        return session is not None and session.camera_status == CameraStatus.active

    async def report_focus_violation(
        self, attempt_id: Optional[int], schedule: Optional[Schedule] = None
    ) -> ViolationResponse:
        attempt = await self._attempt(attempt_id)
        key = str(attempt.attempt_id)

        if attempt.status == AttemptStatus.canceled:
            existing = await self.store.get_violation(key)
            return ViolationResponse(
                attempt_id=attempt.attempt_id, count=existing.count if existing else 0, canceled=True
            )

        tracer = get_tracer()
        with tracer.start_as_current_span("proctoring.focus_violation") as span:
            span.set_attribute("attempt.id", attempt.attempt_id)

            violation = await self.store.record_violation(key)
            span.set_attribute("proctoring.strikes", violation.count)
            logger.info(f"Focus violation attempt={attempt.attempt_id} strikes={violation.count}")

            canceled = False
            if violation.count >= self.strike_threshold:
                canceled = await self._cancel(attempt, schedule or self.schedule)
            span.set_attribute("proctoring.canceled", canceled)

        return ViolationResponse(attempt_id=attempt.attempt_id, count=violation.count, canceled=canceled)

    async def _cancel(self, attempt: Attempt, schedule: Schedule) -> bool:
        changed = await self.ledger.cancel_attempt(attempt.attempt_id, CANCEL_REASON)
        if not changed:
            current = await self.ledger.get_attempt(attempt.attempt_id)
            return current is not None and current.status == AttemptStatus.canceled

        key = str(attempt.attempt_id)
        await self.store.append_violation_event(key, ViolationEventType.exam_canceled.value)
        await self.packages.update(attempt.attempt_id, {"final_status": PackageStatus.cancelled})
        logger.warning(f"Attempt canceled after {self.strike_threshold} strikes attempt={attempt.attempt_id}")

        exam = await self.ledger.get_exam(attempt.exam_id)
        if exam is not None:
            schedule(
                deliver_call,
                "incident-response alert",
                self.incident_response.alert_cancellation,
                exam.user_id,
                attempt.attempt_id,
                exam.exam_type.value,
                CANCEL_REASON,
            )
        return True

    async def report_incident(self, attempt_id: Optional[int], req: IncidentRequest) -> Incident:
        if attempt_id is None:
            raise ValidationFailed("attempt_id_required")
        attempt = await self.ledger.get_attempt(attempt_id)

        incident = Incident(
            attempt_id=str(attempt_id),
            exam_id=str(attempt.exam_id) if attempt else None,
            incident_type=req.incident_type,
            source=req.source,
            severity=req.severity,
            summary=req.summary or f"{req.incident_type} reported",
            details=req.details,
        )
        logger.info(f"Incident attempt={attempt_id} type={req.incident_type} severity={req.severity.value}")
        return await self.store.create_incident(incident)

    async def summary(self, attempt_id: int) -> dict[str, Any]:
        return await summarize(self.store, attempt_id)

    async def status(self, attempt_id: int) -> dict[str, Any]:
        await self._attempt(attempt_id)
        key = str(attempt_id)
        session = await self.store.get_session(key)
        violation = await self.store.get_violation(key)
        incidents = await self.store.list_incidents(key)
        return {
            "attempt_id": attempt_id,
            "session": session.model_dump(mode="json") if session else None,
            "strikes": violation.count if violation else 0,
            "events": [e.model_dump(mode="json") for e in violation.events] if violation else [],
            "incidents": [i.model_dump(mode="json") for i in incidents],
            "summary": await summarize(self.store, attempt_id),
        }
