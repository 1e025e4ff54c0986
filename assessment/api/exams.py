from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, BackgroundTasks, Depends

from assessment.models import (
    CancelExamRequest,
    CreateExamRequest,
    CreateExamResponse,
    RetakeRequest,
    StartExamRequest,
    SubmitExamRequest,
    SubmitExamResponse,
)
from assessment.services.orchestrator import ExamOrchestrator
from assessment.wiring import get_orchestrator

router = APIRouter(prefix="/exams", tags=["exams"])


@router.post("", response_model=CreateExamResponse, status_code=201)
async def create_exam(
    req: CreateExamRequest, orchestrator: ExamOrchestrator = Depends(get_orchestrator)
) -> CreateExamResponse:
    return await orchestrator.create(req.user_id, req.exam_type, req.course_id, req.course_name)


@router.post("/postcourse/retake", response_model=CreateExamResponse, status_code=201)
async def retake_postcourse(
    req: RetakeRequest, orchestrator: ExamOrchestrator = Depends(get_orchestrator)
) -> CreateExamResponse:
    return await orchestrator.retake(req.user_id, req.course_id)


@router.post("/{exam_id}/start")
async def start_exam(
    exam_id: int, req: Optional[StartExamRequest] = None, orchestrator: ExamOrchestrator = Depends(get_orchestrator)
) -> dict[str, Any]:
    req = req or StartExamRequest()
    return await orchestrator.start(req.attempt_id, exam_id=exam_id)


@router.post("/{exam_id}/submit", response_model=SubmitExamResponse)
async def submit_exam(
    exam_id: int,
    background_tasks: BackgroundTasks,
    req: Optional[SubmitExamRequest] = None,
    orchestrator: ExamOrchestrator = Depends(get_orchestrator),
) -> SubmitExamResponse:
    req = req or SubmitExamRequest()
    # Result pushes run after the response is sent.
    return await orchestrator.submit(req.attempt_id, req.answers, exam_id=exam_id, schedule=background_tasks.add_task)


@router.post("/{exam_id}/cancel")
async def cancel_exam(
    exam_id: int, req: Optional[CancelExamRequest] = None, orchestrator: ExamOrchestrator = Depends(get_orchestrator)
) -> dict[str, Any]:
    req = req or CancelExamRequest()
    return await orchestrator.cancel(req.attempt_id, req.reason, exam_id=exam_id)


@router.get("/{exam_id}")
async def get_exam(exam_id: int, orchestrator: ExamOrchestrator = Depends(get_orchestrator)) -> dict[str, Any]:
    return await orchestrator.exam_detail(exam_id)


@router.get("/{exam_id}/status")
async def get_exam_status(exam_id: int, orchestrator: ExamOrchestrator = Depends(get_orchestrator)) -> dict[str, Any]:
    return await orchestrator.exam_status(exam_id)
