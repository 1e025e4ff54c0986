from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request

from assessment.envelope import normalize_envelope, parse_envelope
from assessment.errors import InvalidSignature
from assessment.services.inbound import handle_envelope
from assessment.services.orchestrator import ExamOrchestrator
from assessment.services.tracker import AttemptTracker
from assessment.settings import settings
from assessment.signature import verify_signature
from assessment.wiring import get_orchestrator, get_tracker

router = APIRouter(prefix="/api", tags=["integration"])


@router.post("/fill-content-metrics")
@router.post("/fill-content-metrics/", include_in_schema=False)
async def fill_content_metrics(
    request: Request,
    orchestrator: ExamOrchestrator = Depends(get_orchestrator),
    tracker: AttemptTracker = Depends(get_tracker),
) -> dict[str, Any]:
    envelope = parse_envelope(await request.body())

    if settings.coordinator_public_key:
        caller = request.headers.get("x-service-name")
        signature = request.headers.get("x-signature")
        if not verify_signature(
            caller or "", signature, settings.coordinator_public_key, envelope, settings.signature_prefix
        ):
            raise InvalidSignature()

    return await handle_envelope(normalize_envelope(envelope), orchestrator, tracker)
