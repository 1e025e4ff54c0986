from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import httpx
from pydantic import BaseModel

from assessment.envelope import build_envelope, decode_answer
from assessment.integrations import mocks, payloads
from assessment.integrations.coordinator import CoordinatorClient, CoordinatorError
from assessment.observability import get_tracer

logger = logging.getLogger(__name__)


class GatewayResult(BaseModel):
    integration: str
    action: str
    data: Any = None
    degraded: bool = False
    reason: Optional[str] = None


def _non_empty_list(value: Any) -> bool:
    return isinstance(value, list) and len(value) > 0


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


# Optional policy fields; when present they must be numeric.
POLICY_NUMBERS = ("max_attempts", "retry_cooldown_hours", "grade_precision")


class IntegrationGateway:
    """Sends one envelope per call and never raises.

    Any transport failure, timeout or unusable answer is replaced by the partner's deterministic
    mock. There is no retry: a single failed call is enough to degrade.
    """

    name = "integration"

    def __init__(self, client: CoordinatorClient, timeout: float | None = None) -> None:
        self.client = client
        self.timeout = timeout or client.timeout

    def extract(self, action: str, answer: Any) -> Any:
        """Return the business data from a decoded answer, or None when it is unusable."""
        if isinstance(answer, dict) and answer:
            return answer
        if _non_empty_list(answer):
            return answer
        return None

    def mock(self, action: str, payload: dict[str, Any]) -> Any:
        return mocks.accepted(payload)

    def _fallback(self, action: str, payload: dict[str, Any], reason: str) -> GatewayResult:
        logger.warning(f"MOCK-FALLBACK integration={self.name} action={action} reason={reason}")
        return GatewayResult(
            integration=self.name,
            action=action,
            data=self.mock(action, payload),
            degraded=True,
            reason=reason,
        )

    async def send(self, payload: dict[str, Any]) -> GatewayResult:
        action = str(payload.get("action") or "")
        envelope = build_envelope(self.client.service_name, payload)

        tracer = get_tracer()
        with tracer.start_as_current_span("integration.send") as span:
            span.set_attribute("integration.name", self.name)
            span.set_attribute("integration.action", action)

            try:
                body = await asyncio.wait_for(self.client.post(envelope), timeout=self.timeout)
            except (asyncio.TimeoutError, httpx.TimeoutException):
                result = self._fallback(action, payload, "timeout")
            except CoordinatorError as exc:
                result = self._fallback(action, payload, exc.reason)
            except httpx.HTTPError as exc:
                result = self._fallback(action, payload, f"transport_error:{type(exc).__name__}")
            except Exception as exc:  # noqa: BLE001
                logger.exception(f"Unexpected error calling {self.name}")
                result = self._fallback(action, payload, f"unexpected:{type(exc).__name__}")
            else:
                response = body.get("response") if isinstance(body.get("response"), dict) else {}
                data = self.extract(action, decode_answer(response.get("answer")))
                if data is None:
                    result = self._fallback(action, payload, "empty_response")
                else:
                    result = GatewayResult(integration=self.name, action=action, data=data)

            span.set_attribute("integration.degraded", result.degraded)
            return result


class DirectoryGateway(IntegrationGateway):
    name = "directory"

    def extract(self, action: str, answer: Any) -> Any:
        if action == "fetch-policy":
            if not isinstance(answer, dict) or not _is_number(answer.get("passing_grade")):
                return None
            if any(answer.get(key) is not None and not _is_number(answer[key]) for key in POLICY_NUMBERS):
                return None
            return answer
        return super().extract(action, answer)

    def mock(self, action: str, payload: dict[str, Any]) -> Any:
        if action == "fetch-policy":
            return mocks.directory_policy(payload.get("exam_type", ""))
        return super().mock(action, payload)

    async def fetch_policy(self, exam_type: str) -> GatewayResult:
        return await self.send(payloads.fetch_policy(exam_type))

    async def push_exam_results(self, results: dict[str, Any]) -> GatewayResult:
        return await self.send(payloads.exam_results(results, self.name))


class SkillsEngineGateway(IntegrationGateway):
    name = "skills-engine"

    def extract(self, action: str, answer: Any) -> Any:
        if action == "fetch-baseline-skills":
            if isinstance(answer, dict) and _non_empty_list(answer.get("skills")):
                return answer
            return None
        return super().extract(action, answer)

    def mock(self, action: str, payload: dict[str, Any]) -> Any:
        if action == "fetch-baseline-skills":
            return mocks.baseline_skills(payload.get("user_id"), payload.get("user_name"))
        return super().mock(action, payload)

    async def fetch_baseline_skills(self, user_id: str, user_name: str | None = None) -> GatewayResult:
        return await self.send(payloads.fetch_baseline_skills(user_id, user_name))

    async def push_assessment_results(self, results: dict[str, Any]) -> GatewayResult:
        return await self.send(payloads.assessment_results(results))


class CourseBuilderGateway(IntegrationGateway):
    name = "course-builder"

    def extract(self, action: str, answer: Any) -> Any:
        if action == "coverage_map":
            if isinstance(answer, dict) and _non_empty_list(answer.get("coverage_map")):
                return answer
            return None
        return super().extract(action, answer)

    def mock(self, action: str, payload: dict[str, Any]) -> Any:
        if action == "coverage_map":
            return mocks.coverage(payload.get("learner_id"), payload.get("course_id"))
        return super().mock(action, payload)

    async def fetch_coverage(self, learner_id: str, course_id: str | None) -> GatewayResult:
        return await self.send(payloads.fetch_coverage(learner_id, course_id))

    async def push_exam_results(self, results: dict[str, Any]) -> GatewayResult:
        return await self.send(payloads.exam_results(results, self.name))


class DevLabGateway(IntegrationGateway):
    name = "devlab"

    def extract(self, action: str, answer: Any) -> Any:
        if action == "coding":
            if _non_empty_list(answer):
                return {"questions": answer}
            if isinstance(answer, dict) and _non_empty_list(answer.get("questions")):
                return answer
            return None
        if action == "grade-coding":
            if _non_empty_list(answer):
                return {"results": answer}
            if isinstance(answer, dict) and _non_empty_list(answer.get("results")):
                return answer
            return None
        return super().extract(action, answer)

    def mock(self, action: str, payload: dict[str, Any]) -> Any:
        if action == "coding":
            return mocks.coding_questions(payload.get("skills"))
        if action == "grade-coding":
            return mocks.grade_coding(payload.get("answers") or [])
        return super().mock(action, payload)

    async def request_coding_questions(self, skills: list[str], amount: int) -> GatewayResult:
        return await self.send(payloads.coding_questions(skills, amount))

    async def grade_coding_answers(
        self, questions: list[dict[str, Any]], answers: list[dict[str, Any]]
    ) -> GatewayResult:
        return await self.send(payloads.grade_coding(questions, answers))


class ProtocolCameraGateway(IntegrationGateway):
    name = "protocol-camera"

    def mock(self, action: str, payload: dict[str, Any]) -> Any:
        return mocks.camera_summary(payload.get("attempt_id"), payload.get("summary"))

    async def send_summary(self, attempt_id: Any, summary: dict[str, Any]) -> GatewayResult:
        return await self.send(payloads.proctoring_summary(attempt_id, summary))


class IncidentResponseGateway(IntegrationGateway):
    name = "incident-response"

    async def alert_cancellation(
        self, user_id: str, attempt_id: Any, exam_type: str | None, reason: str = "focus_violations"
    ) -> GatewayResult:
        return await self.send(payloads.admin_alert(user_id, attempt_id, exam_type, reason))


class Gateways:
    def __init__(self, client: CoordinatorClient) -> None:
        self.client = client
        self.directory = DirectoryGateway(client)
        self.skills_engine = SkillsEngineGateway(client)
        self.course_builder = CourseBuilderGateway(client)
        self.devlab = DevLabGateway(client)
        self.protocol_camera = ProtocolCameraGateway(client)
        self.incident_response = IncidentResponseGateway(client)
