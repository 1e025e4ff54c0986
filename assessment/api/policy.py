from __future__ import annotations

from fastapi import APIRouter, Depends

from assessment.errors import NotFound, ValidationFailed
from assessment.models import OverrideRequest, PolicyLedgerEntry
from assessment.services.orchestrator import parse_exam_type
from assessment.services.tracker import AttemptTracker
from assessment.wiring import get_tracker

router = APIRouter(prefix="/policy", tags=["policy"])

# Plain def handlers: FastAPI runs them in its threadpool, off the event loop.


@router.post("/override", response_model=PolicyLedgerEntry)
def set_override(req: OverrideRequest, tracker: AttemptTracker = Depends(get_tracker)) -> PolicyLedgerEntry:
    if not req.user_id:
        raise ValidationFailed("user_id_required")
    exam_type = parse_exam_type(req.exam_type)
    return tracker.set_override(req.user_id, exam_type.value, req.allow)


@router.get("/{user_id}/{exam_type}", response_model=PolicyLedgerEntry)
def get_policy_entry(
    user_id: str, exam_type: str, tracker: AttemptTracker = Depends(get_tracker)
) -> PolicyLedgerEntry:
    entry = tracker.get_entry(user_id, parse_exam_type(exam_type).value)
    if entry is None:
        raise NotFound()
    return entry
