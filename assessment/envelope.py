from __future__ import annotations

import json
from typing import Any

from assessment.errors import ValidationFailed
from assessment.signature import canonical_json


def build_envelope(requester_service: str, payload: dict[str, Any] | None) -> dict[str, Any]:
    return {
        "requester_service": requester_service,
        "payload": dict(payload or {}),
        "response": {"answer": ""},
    }


def stringify_envelope(envelope: dict[str, Any]) -> str:
    return canonical_json(envelope)


def parse_envelope(raw: Any) -> dict[str, Any]:
    """Accept an envelope as a dict or JSON text. Anything that is not an object becomes empty."""
    if raw is None:
        return build_envelope("", {})
    obj = raw
    if isinstance(raw, (str, bytes)):
        try:
            obj = json.loads(raw)
        except ValueError as exc:
            raise ValidationFailed("invalid_envelope_json") from exc
    if not isinstance(obj, dict):
        return build_envelope("", {})
    return obj


def _first(*values: Any) -> str | None:
    for v in values:
        if v:
            return str(v)
    return None


def normalize_envelope(envelope: dict[str, Any] | None) -> dict[str, Any]:
    out = dict(envelope or {})
    requester = str(out.get("requester_service") or out.get("requester") or "")
    headers = out.get("headers") if isinstance(out.get("headers"), dict) else {}

    request_id = _first(
        out.get("request_id"),
        out.get("requestId"),
        headers.get("x-request-id"),
        headers.get("X-Request-Id"),
    )
    service_origin = _first(out.get("service-origin"), out.get("service_origin"), out.get("serviceOrigin"))

    payload_in = out.get("payload")
    if isinstance(payload_in, dict):
        payload = dict(payload_in)
    elif isinstance(payload_in, str):
        try:
            parsed = json.loads(payload_in)
        except ValueError:
            parsed = {}
        payload = parsed if isinstance(parsed, dict) else {}
    else:
        payload = {}

    response_in = out.get("response")
    response = dict(response_in) if isinstance(response_in, dict) else {"answer": ""}
    if response.get("answer") is None:
        response["answer"] = ""

    if not payload.get("action"):
        lowered = requester.lower()
        if "skills" in lowered:
            payload["action"] = "start-baseline-exam"
        elif "course" in lowered:
            payload["action"] = "start-postcourse-exam"

    normalized: dict[str, Any] = {"requester_service": requester, "payload": payload, "response": response}
    if request_id:
        normalized["request_id"] = request_id
    if service_origin:
        normalized["service_origin"] = service_origin
    return normalized


def decode_answer(answer: Any) -> Any:
    """Decode ``response.answer``; it may be an object, JSON text, or JSON text encoded twice."""
    value = answer
    for _ in range(2):
        if not isinstance(value, (str, bytes)):
            break
        try:
            value = json.loads(value)
        except ValueError:
            break
    return value
