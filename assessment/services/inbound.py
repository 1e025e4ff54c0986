from __future__ import annotations

import logging
from typing import Any

import anyio.to_thread

from assessment.errors import UnsupportedAction, ValidationFailed
from assessment.models import ExamType
from assessment.services.orchestrator import ExamOrchestrator, parse_exam_type
from assessment.services.tracker import AttemptTracker

logger = logging.getLogger(__name__)


async def handle_envelope(
    envelope: dict[str, Any], orchestrator: ExamOrchestrator, tracker: AttemptTracker
) -> dict[str, Any]:
    """Run the action named in a normalized envelope and fill ``response.answer`` with its result."""
    payload = envelope.get("payload") or {}
    action = str(payload.get("action") or "")
    logger.info(f"Inbound envelope requester={envelope.get('requester_service')} action={action}")

    if action == "start-baseline-exam":
        created = await orchestrator.create(payload.get("user_id"), ExamType.baseline.value)
        answer: Any = created.model_dump(mode="json")
    elif action == "start-postcourse-exam":
        created = await orchestrator.create(
            payload.get("user_id"),
            ExamType.postcourse.value,
            course_id=payload.get("course_id"),
            course_name=payload.get("course_name"),
        )
        answer = created.model_dump(mode="json")
    elif action == "grant-extra-attempt":
        user_id = payload.get("user_id")
        if not user_id:
            raise ValidationFailed("user_id_required")
        exam_type = parse_exam_type(payload.get("exam_type") or ExamType.postcourse.value)
        entry = await anyio.to_thread.run_sync(tracker.set_override, str(user_id), exam_type.value, True)
        answer = {"user_id": entry.user_id, "exam_type": entry.exam_type, "override": entry.override}
    else:
        raise UnsupportedAction(action=action or None)

    response = dict(envelope.get("response") or {})
    response["answer"] = answer
    return {**envelope, "response": response}
