import pytest
from fastapi.testclient import TestClient

from assessment.api import integration
from assessment.main import create_app
from assessment.signature import canonical_json, generate_signature
from assessment.wiring import get_orchestrator, get_proctoring_engine, get_tracker


@pytest.fixture
def client(components):
    app = create_app()
    app.dependency_overrides[get_orchestrator] = lambda: components.orchestrator
    app.dependency_overrides[get_proctoring_engine] = lambda: components.engine
    app.dependency_overrides[get_tracker] = lambda: components.tracker
    return TestClient(app)


def create(client, user_id="u1", exam_type="baseline", **extra):
    res = client.post("/exams", json={"user_id": user_id, "exam_type": exam_type, **extra})
    assert res.status_code == 201, res.text
    return res.json()


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"


def test_full_baseline_flow(client, components):
    created = create(client)
    exam_id, attempt_id = created["exam_id"], created["attempt_id"]
    assert created["max_attempts"] == 1
    assert created["policy_snapshot"]["passing_grade"] == 70

    res = client.post(f"/exams/{exam_id}/start", json={"attempt_id": attempt_id})
    assert res.status_code == 403
    assert res.json() == {"error": "proctoring_not_started"}

    res = client.post(f"/proctoring/{attempt_id}/start_camera")
    assert res.status_code == 200
    assert res.json()["camera_status"] == "active"

    res = client.post(f"/exams/{exam_id}/start", json={"attempt_id": attempt_id})
    assert res.status_code == 200
    started = res.json()
    assert started["status"] == "in_progress"
    assert "hints" not in started["package"]["questions"][0]
    assert "answer_key" not in started["package"]["questions"][0]

    answers = [{"question_id": q["question_id"], "answer": "Always"} for q in started["package"]["questions"]]
    res = client.post(f"/exams/{exam_id}/submit", json={"attempt_id": attempt_id, "answers": answers})
    assert res.status_code == 200, res.text
    result = res.json()
    assert result["passed"] is True
    assert result["final_grade"] == 83.33
    assert len(result["skills"]) == 3

    # Background pushes ran once the response was sent.
    assert len(components.ledger.outbox) == 3

    detail = client.get(f"/attempts/{attempt_id}").json()
    assert detail["status"] == "submitted"
    assert [a["attempt_id"] for a in client.get("/attempts/user/u1").json()] == [attempt_id]
    assert len(client.get(f"/attempts/{attempt_id}/skills").json()) == 3
    assert client.get(f"/attempts/{attempt_id}/remaining_time").json()["attempt_id"] == attempt_id

    res = client.post(f"/exams/{exam_id}/submit", json={"attempt_id": attempt_id, "answers": answers})
    assert res.status_code == 400
    assert res.json()["error"] == "attempt_already_submitted"


def test_create_errors(client):
    res = client.post("/exams", json={})
    assert res.status_code == 400
    assert res.json() == {"error": "user_id_and_exam_type_required"}

    res = client.post("/exams", json={"user_id": "u1", "exam_type": "final"})
    assert res.status_code == 400
    assert res.json() == {"error": "invalid_exam_type", "exam_type": "final"}

    create(client)
    res = client.post("/exams", json={"user_id": "u1", "exam_type": "baseline"})
    assert res.status_code == 400
    assert res.json() == {"error": "baseline_already_exists"}


def test_start_errors(client):
    created = create(client)
    exam_id, attempt_id = created["exam_id"], created["attempt_id"]

    res = client.post(f"/exams/{exam_id}/start")
    assert res.status_code == 400
    assert res.json() == {"error": "attempt_id_required"}

    res = client.post(f"/exams/{exam_id + 1}/start", json={"attempt_id": attempt_id})
    assert res.status_code == 400
    assert res.json() == {"error": "exam_mismatch"}

    res = client.post(f"/exams/{exam_id}/start", json={"attempt_id": 999})
    assert res.status_code == 404
    assert res.json() == {"error": "attempt_not_found"}


def test_focus_violations_cancel_over_http(client, caplog):
    created = create(client, exam_type="postcourse")
    exam_id, attempt_id = created["exam_id"], created["attempt_id"]
    client.post(f"/proctoring/{attempt_id}/start_camera")
    client.post(f"/exams/{exam_id}/start", json={"attempt_id": attempt_id})

    counts = [client.post(f"/proctoring/{attempt_id}/focus_violation").json() for _ in range(3)]
    assert [(c["count"], c["canceled"]) for c in counts] == [(1, False), (2, False), (3, True)]
    assert "MOCK-FALLBACK integration=incident-response" in caplog.text

    res = client.post(f"/exams/{exam_id}/start", json={"attempt_id": attempt_id})
    assert res.status_code == 403
    assert res.json() == {"error": "attempt_canceled"}

    status = client.get(f"/proctoring/{attempt_id}").json()
    assert status["strikes"] == 3
    assert status["summary"]["terminated"] is True


def test_incident_and_manual_cancel(client):
    created = create(client)
    exam_id, attempt_id = created["exam_id"], created["attempt_id"]

    res = client.post(f"/proctoring/{attempt_id}/incident", json={"incident_type": "phone_detected", "severity": "high"})
    assert res.status_code == 201
    assert res.json()["severity"] == "high"

    res = client.post(f"/exams/{exam_id}/cancel", json={"attempt_id": attempt_id, "reason": "proctor"})
    assert res.json() == {"attempt_id": attempt_id, "status": "canceled", "changed": True}


def test_policy_override_and_retake(client):
    res = client.post("/exams/postcourse/retake", json={"user_id": "u1"})
    assert res.status_code == 404
    assert res.json() == {"error": "postcourse_exam_not_found"}

    created = create(client, exam_type="postcourse", course_id="c1")

    assert client.get("/policy/u1/postcourse").status_code == 404
    res = client.post("/policy/override", json={"user_id": "u1"})
    assert res.status_code == 200
    assert res.json()["override"] is True
    assert client.get("/policy/u1/postcourse").json()["override"] is True

    res = client.post("/exams/postcourse/retake", json={"user_id": "u1", "course_id": "c1"})
    assert res.status_code == 400
    assert res.json()["error"] == "attempt_not_closed"

    client.post(f"/exams/{created['exam_id']}/cancel", json={"attempt_id": created["attempt_id"]})
    res = client.post("/exams/postcourse/retake", json={"user_id": "u1", "course_id": "c1"})
    assert res.status_code == 201
    assert res.json()["attempt_no"] == 2
    assert res.json()["exam_id"] == created["exam_id"]

    assert client.post("/policy/override", json={}).json() == {"error": "user_id_required"}


def test_exam_reads(client):
    created = create(client)
    exam_id, attempt_id = created["exam_id"], created["attempt_id"]

    exam = client.get(f"/exams/{exam_id}").json()
    assert exam["user_id"] == "u1"
    assert [a["attempt_id"] for a in exam["attempts"]] == [attempt_id]

    status = client.get(f"/exams/{exam_id}/status").json()
    assert status == {
        "exam_id": exam_id,
        "exam_type": "baseline",
        "status": "ready",
        "attempt_id": attempt_id,
        "attempt_no": 1,
        "attempt_status": "pending",
        "package_status": "draft",
    }

    package = client.get(f"/packages/{exam_id}").json()
    assert package["exam_id"] == exam_id
    assert package["questions"]
    assert all("hints" not in q and "answer_key" not in q for q in package["questions"])

    for path in (f"/exams/{exam_id + 1}", f"/exams/{exam_id + 1}/status", f"/packages/{exam_id + 1}"):
        res = client.get(path)
        assert res.status_code == 404
        assert res.json() == {"error": "not_found"}


def test_result_lookup(client):
    created = create(client)
    exam_id, attempt_id = created["exam_id"], created["attempt_id"]

    res = client.get(f"/results/{exam_id}/{attempt_id}")
    assert res.status_code == 200
    assert res.json()["attempt_id"] == attempt_id
    assert res.json()["skills"] == []

    res = client.get(f"/results/{exam_id + 1}/{attempt_id}")
    assert res.status_code == 400
    assert res.json() == {"error": "exam_mismatch"}

    res = client.get(f"/results/{exam_id}/999")
    assert res.status_code == 404
    assert res.json() == {"error": "not_found"}

    assert client.get("/results/abc/1").status_code == 422


def test_inbound_start_baseline(client):
    envelope = {"requester_service": "skills-engine", "payload": {"user_id": "u7"}}
    res = client.post("/api/fill-content-metrics", json=envelope)
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["payload"]["action"] == "start-baseline-exam"
    assert body["response"]["answer"]["exam_type"] == "baseline"
    assert body["response"]["answer"]["user_id"] == "u7"


def test_inbound_grant_extra_attempt(client, components):
    envelope = {"requester_service": "directory", "payload": {"action": "grant-extra-attempt", "user_id": "u7"}}
    res = client.post("/api/fill-content-metrics/", json=envelope)
    assert res.status_code == 200
    assert res.json()["response"]["answer"] == {"user_id": "u7", "exam_type": "postcourse", "override": True}
    assert components.tracker.get_entry("u7", "postcourse").override is True


def test_inbound_errors(client):
    res = client.post("/api/fill-content-metrics", content=b"{broken", headers={"content-type": "application/json"})
    assert res.status_code == 400
    assert res.json() == {"error": "invalid_envelope_json"}

    res = client.post("/api/fill-content-metrics", json={"requester_service": "directory", "payload": {"action": "dance"}})
    assert res.status_code == 400
    assert res.json() == {"error": "unsupported_action", "action": "dance"}


def test_inbound_signature_is_enforced(client, ec_keys, monkeypatch):
    private_pem, public_pem = ec_keys
    monkeypatch.setattr(integration.settings, "coordinator_public_key", public_pem)
    envelope = {"requester_service": "skills-engine", "payload": {"user_id": "u8"}}

    res = client.post("/api/fill-content-metrics", json=envelope)
    assert res.status_code == 401
    assert res.json() == {"error": "invalid_signature"}

    signature = generate_signature("coordinator", private_pem, envelope)
    res = client.post(
        "/api/fill-content-metrics",
        content=canonical_json(envelope).encode(),
        headers={"content-type": "application/json", "x-service-name": "coordinator", "x-signature": signature},
    )
    assert res.status_code == 200, res.text


def test_unhandled_errors_are_wrapped(components):
    class Broken:
        async def attempts_for_user(self, user_id):
            raise RuntimeError("boom")

    app = create_app()
    app.dependency_overrides[get_orchestrator] = lambda: Broken()
    client = TestClient(app, raise_server_exceptions=False)

    res = client.get("/attempts/user/u1")
    assert res.status_code == 500
    body = res.json()
    assert body["error"] == "internal_error"
    assert body["correlation_id"]
