from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from assessment.services.orchestrator import ExamOrchestrator
from assessment.wiring import get_orchestrator

router = APIRouter(prefix="/attempts", tags=["attempts"])


@router.get("/user/{user_id}")
async def list_user_attempts(
    user_id: str, orchestrator: ExamOrchestrator = Depends(get_orchestrator)
) -> list[dict[str, Any]]:
    return await orchestrator.attempts_for_user(user_id)


@router.get("/{attempt_id}")
async def get_attempt(attempt_id: int, orchestrator: ExamOrchestrator = Depends(get_orchestrator)) -> dict[str, Any]:
    return await orchestrator.attempt_detail(attempt_id)


@router.get("/{attempt_id}/skills")
async def get_attempt_skills(
    attempt_id: int, orchestrator: ExamOrchestrator = Depends(get_orchestrator)
) -> list[dict[str, Any]]:
    return await orchestrator.attempt_skills(attempt_id)


@router.get("/{attempt_id}/remaining_time")
async def get_remaining_time(
    attempt_id: int, orchestrator: ExamOrchestrator = Depends(get_orchestrator)
) -> dict[str, Any]:
    return await orchestrator.remaining_time(attempt_id)
