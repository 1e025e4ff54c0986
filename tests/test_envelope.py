import json

import pytest

from assessment.envelope import build_envelope, decode_answer, normalize_envelope, parse_envelope
from assessment.errors import ValidationFailed


def test_build_envelope_shape():
    env = build_envelope("assessment-service", {"action": "fetch-policy"})
    assert env == {
        "requester_service": "assessment-service",
        "payload": {"action": "fetch-policy"},
        "response": {"answer": ""},
    }


def test_parse_accepts_text_and_rejects_bad_json():
    assert parse_envelope('{"requester_service": "x", "payload": {}}')["requester_service"] == "x"
    assert parse_envelope(None)["payload"] == {}
    assert parse_envelope("[1, 2]")["payload"] == {}
    with pytest.raises(ValidationFailed) as exc:
        parse_envelope("{nope")
    assert exc.value.code == "invalid_envelope_json"


def test_normalize_parses_string_payload_and_fills_answer():
    env = normalize_envelope(
        {"requester_service": "directory", "payload": json.dumps({"action": "x", "user_id": "u1"}), "response": None}
    )
    assert env["payload"] == {"action": "x", "user_id": "u1"}
    assert env["response"] == {"answer": ""}


@pytest.mark.parametrize(
    "requester,expected",
    [
        ("skills-engine-service", "start-baseline-exam"),
        ("course-builder", "start-postcourse-exam"),
        ("directory", None),
    ],
)
def test_default_action_from_requester(requester, expected):
    env = normalize_envelope({"requester": requester, "payload": {"user_id": "u1"}})
    assert env["requester_service"] == requester
    assert env["payload"].get("action") == expected


def test_explicit_action_wins():
    env = normalize_envelope({"requester_service": "skills-engine", "payload": {"action": "grant-extra-attempt"}})
    assert env["payload"]["action"] == "grant-extra-attempt"


def test_request_id_and_origin_aliases():
    env = normalize_envelope(
        {"requester_service": "x", "headers": {"x-request-id": "r-1"}, "serviceOrigin": "gateway", "payload": {}}
    )
    assert env["request_id"] == "r-1"
    assert env["service_origin"] == "gateway"


def test_decode_answer_handles_double_encoding():
    obj = {"questions": [{"qid": "q1"}]}
    assert decode_answer(obj) == obj
    assert decode_answer(json.dumps(obj)) == obj
    assert decode_answer(json.dumps(json.dumps(obj))) == obj
    assert decode_answer("plain text") == "plain text"
    assert decode_answer("") == ""
