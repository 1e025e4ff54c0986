from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from assessment.services.orchestrator import ExamOrchestrator
from assessment.wiring import get_orchestrator

router = APIRouter(prefix="/results", tags=["results"])


@router.get("/{exam_id}/{attempt_id}")
async def get_result(
    exam_id: int, attempt_id: int, orchestrator: ExamOrchestrator = Depends(get_orchestrator)
) -> dict[str, Any]:
    return await orchestrator.result(exam_id, attempt_id)
