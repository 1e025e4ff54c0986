from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from assessment.services.orchestrator import ExamOrchestrator
from assessment.wiring import get_orchestrator

router = APIRouter(prefix="/packages", tags=["packages"])


@router.get("/{exam_id}")
async def get_package(exam_id: int, orchestrator: ExamOrchestrator = Depends(get_orchestrator)) -> dict[str, Any]:
    """Question package of the exam's latest attempt, hints and answer keys removed."""
    return await orchestrator.package_for_exam(exam_id)
