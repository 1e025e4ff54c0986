import asyncio
import json
import logging

import httpx
import pytest

from assessment.integrations.coordinator import CoordinatorClient
from assessment.integrations.gateways import Gateways
from assessment.signature import generate_signature, verify_signature

pytestmark = pytest.mark.anyio

COORDINATOR = "http://coordinator.test"


def make_gateways(handler, timeout=6.0, **kwargs):
    client = CoordinatorClient(
        base_url=COORDINATOR,
        service_name="assessment-service",
        timeout=timeout,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )
    return Gateways(client)


def answer(body_answer):
    return httpx.Response(200, json={"requester_service": "x", "payload": {}, "response": {"answer": body_answer}})


async def test_live_answer_is_used():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return answer({"passing_grade": 80, "max_attempts": 5})

    gw = make_gateways(handler)
    result = await gw.directory.fetch_policy("postcourse")

    assert result.degraded is False
    assert result.data == {"passing_grade": 80, "max_attempts": 5}
    assert seen["url"] == f"{COORDINATOR}/api/fill-content-metrics/"
    assert seen["body"]["requester_service"] == "assessment-service"
    assert seen["body"]["payload"]["action"] == "fetch-policy"
    assert seen["body"]["payload"]["route"] == {"destination": "directory", "strict": True}
    assert seen["body"]["response"] == {"answer": ""}


async def test_string_answer_is_decoded():
    coverage = {"course_id": "c1", "course_name": "JS", "coverage_map": [{"lesson_id": "L1", "skills": ["s1"]}]}
    gw = make_gateways(lambda request: answer(json.dumps(json.dumps(coverage))))
    result = await gw.course_builder.fetch_coverage("u1", "c1")
    assert result.degraded is False
    assert result.data == coverage


async def test_transport_error_falls_back_to_mock(caplog):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    gw = make_gateways(handler)
    with caplog.at_level(logging.WARNING):
        result = await gw.directory.fetch_policy("postcourse")

    assert result.degraded is True
    assert result.reason.startswith("transport_error")
    assert result.data == {"passing_grade": 70, "max_attempts": 3}
    assert "MOCK-FALLBACK integration=directory action=fetch-policy" in caplog.text


async def test_timeout_falls_back_to_mock(caplog):
    async def handler(request):
        await asyncio.sleep(1.0)
        return answer({"skills": [{"skill_id": "late"}]})

    gw = make_gateways(handler, timeout=0.05)
    with caplog.at_level(logging.WARNING):
        result = await gw.skills_engine.fetch_baseline_skills("u1")

    assert result.degraded is True
    assert result.reason == "timeout"
    assert [s["skill_id"] for s in result.data["skills"]] == ["js_loops", "js_if_else", "js_promises"]
    assert result.data["user_id"] == "u1"
    assert "MOCK-FALLBACK integration=skills-engine" in caplog.text


async def test_http_error_status_falls_back():
    gw = make_gateways(lambda request: httpx.Response(503, json={"error": "down"}))
    result = await gw.course_builder.fetch_coverage("u1", None)
    assert result.degraded is True
    assert result.reason == "http_503"
    assert result.data["course_id"] == "c_789"
    assert result.data["coverage_map"] == [{"lesson_id": "L101", "skills": ["s_js_async", "s_js_promises"]}]


@pytest.mark.parametrize("body_answer", ["", None, {}, [], {"skills": []}, "not json"])
async def test_empty_or_malformed_answer_falls_back(body_answer):
    gw = make_gateways(lambda request: answer(body_answer))
    result = await gw.skills_engine.fetch_baseline_skills("u1")
    assert result.degraded is True
    assert result.reason == "empty_response"


@pytest.mark.parametrize(
    "policy",
    [
        {"passing_grade": 70, "max_attempts": "three"},
        {"passing_grade": 70, "retry_cooldown_hours": "soon"},
        {"passing_grade": 70, "grade_precision": [2]},
        {"passing_grade": True},
    ],
)
async def test_policy_with_non_numeric_fields_falls_back(policy):
    gw = make_gateways(lambda request: answer(policy))
    result = await gw.directory.fetch_policy("postcourse")
    assert result.degraded is True
    assert result.reason == "empty_response"
    assert result.data == {"passing_grade": 70, "max_attempts": 3}


async def test_policy_with_null_optional_fields_is_accepted():
    gw = make_gateways(lambda request: answer({"passing_grade": 75, "max_attempts": None}))
    result = await gw.directory.fetch_policy("postcourse")
    assert result.degraded is False
    assert result.data["passing_grade"] == 75


async def test_non_json_body_falls_back():
    gw = make_gateways(lambda request: httpx.Response(200, content=b"<html>oops</html>"))
    result = await gw.devlab.request_coding_questions(["s1"], 1)
    assert result.degraded is True
    assert result.reason == "malformed_response"
    assert result.data["questions"][0]["qid"] == "devlab_q42"


async def test_unconfigured_coordinator_falls_back(offline_gateways):
    result = await offline_gateways.protocol_camera.send_summary(7, {"events_total": 2})
    assert result.degraded is True
    assert result.reason == "coordinator_not_configured"
    assert result.data == {"attempt_id": 7, "summary": {"events_total": 2}}

    pushed = await offline_gateways.directory.push_exam_results({"attempt_id": 7})
    assert pushed.data["status"] == "accepted"
    assert pushed.data["payload"]["attempt_id"] == 7


async def test_devlab_list_answer_is_wrapped():
    gw = make_gateways(lambda request: answer([{"qid": "live_q1"}]))
    result = await gw.devlab.request_coding_questions(["s1"], 1)
    assert result.degraded is False
    assert result.data == {"questions": [{"qid": "live_q1"}]}


async def test_mock_coding_grader_is_deterministic(offline_gateways):
    answers = [
        {"question_id": "q1", "skill_id": "s1", "code_answer": "function add(a, b) { return a + b; }"},
        {"question_id": "q2", "skill_id": "s1", "code_answer": "function f() { for (;;) {} return 1 }"},
        {"question_id": "q3", "skill_id": "s1", "code_answer": "while(true) {}"},
        {"question_id": "q4", "skill_id": "s1", "code_answer": "x"},
    ]
    result = await offline_gateways.devlab.grade_coding_answers([], answers)
    assert [r["score"] for r in result.data["results"]] == [100, 70, 40, 0]


async def test_requests_are_signed_over_the_sent_envelope(ec_keys):
    private_pem, public_pem = ec_keys
    seen = {}

    def handler(request):
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return answer({"passing_grade": 70})

    gw = make_gateways(handler, private_key=private_pem)
    await gw.directory.fetch_policy("baseline")

    assert seen["headers"]["x-service-name"] == "assessment-service"
    assert verify_signature("assessment-service", seen["headers"]["x-signature"], public_pem, seen["body"])


async def test_unsigned_when_no_private_key(caplog):
    seen = {}

    def handler(request):
        seen["headers"] = request.headers
        return answer({"passing_grade": 70})

    gw = make_gateways(handler)
    with caplog.at_level(logging.WARNING):
        result = await gw.directory.fetch_policy("baseline")
    assert result.degraded is False
    assert "x-signature" not in seen["headers"]
    assert "PRIVATE_KEY is not set" in caplog.text


async def test_bad_coordinator_response_signature_falls_back(ec_keys):
    private_pem, public_pem = ec_keys
    body = {"requester_service": "x", "payload": {}, "response": {"answer": {"passing_grade": 99}}}
    good = generate_signature("coordinator", private_pem, body)

    def signed(request):
        return httpx.Response(200, json=body, headers={"X-Service-Name": "coordinator", "X-Service-Signature": good})

    gw = make_gateways(signed, coordinator_public_key=public_pem)
    assert (await gw.directory.fetch_policy("baseline")).data == {"passing_grade": 99}

    def forged(request):
        tampered = {**body, "response": {"answer": {"passing_grade": 1}}}
        return httpx.Response(200, json=tampered, headers={"X-Service-Name": "coordinator", "X-Service-Signature": good})

    gw = make_gateways(forged, coordinator_public_key=public_pem)
    result = await gw.directory.fetch_policy("baseline")
    assert result.degraded is True
    assert result.reason == "invalid_response_signature"
    assert result.data == {"passing_grade": 70}
