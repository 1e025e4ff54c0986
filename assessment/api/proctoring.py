from __future__ import annotations

from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends

from assessment.models import Incident, IncidentRequest, ProctoringSession, ViolationResponse
from assessment.services.proctoring import ProctoringEngine
from assessment.wiring import get_proctoring_engine

router = APIRouter(prefix="/proctoring", tags=["proctoring"])


@router.post("/{attempt_id}/start_camera", response_model=ProctoringSession)
async def start_camera(
    attempt_id: int, engine: ProctoringEngine = Depends(get_proctoring_engine)
) -> ProctoringSession:
    return await engine.start_camera(attempt_id)


@router.post("/{attempt_id}/focus_violation", response_model=ViolationResponse)
async def focus_violation(
    attempt_id: int,
    background_tasks: BackgroundTasks,
    engine: ProctoringEngine = Depends(get_proctoring_engine),
) -> ViolationResponse:
    return await engine.report_focus_violation(attempt_id, schedule=background_tasks.add_task)


@router.post("/{attempt_id}/incident", response_model=Incident, status_code=201)
async def report_incident(
    attempt_id: int, req: IncidentRequest, engine: ProctoringEngine = Depends(get_proctoring_engine)
) -> Incident:
    return await engine.report_incident(attempt_id, req)


@router.get("/{attempt_id}")
async def proctoring_status(
    attempt_id: int, engine: ProctoringEngine = Depends(get_proctoring_engine)
) -> dict[str, Any]:
    return await engine.status(attempt_id)
