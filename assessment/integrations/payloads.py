"""Payload shaping, one builder per partner action.

Every payload carries ``action`` plus a ``route`` hint the coordinator uses to pick the target.
"""

from __future__ import annotations

from typing import Any


def _route(destination: str) -> dict[str, Any]:
    return {"destination": destination, "strict": True}


def fetch_policy(exam_type: str) -> dict[str, Any]:
    return {"action": "fetch-policy", "exam_type": exam_type, "route": _route("directory")}


def fetch_baseline_skills(user_id: str, user_name: str | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {"action": "fetch-baseline-skills", "user_id": user_id}
    if user_name:
        payload["user_name"] = user_name
    payload["route"] = _route("skills-engine")
    return payload


def fetch_coverage(learner_id: str, course_id: str | None) -> dict[str, Any]:
    return {
        "action": "coverage_map",
        "learner_id": learner_id,
        "course_id": course_id,
        "route": _route("course-builder"),
    }


def coding_questions(skills: list[str], amount: int, difficulty: str = "medium") -> dict[str, Any]:
    return {
        "action": "coding",
        "amount": amount,
        "difficulty": difficulty,
        "humanLanguage": "en",
        "programming_language": "javascript",
        "skills": skills,
        "route": _route("devlab"),
    }


def grade_coding(questions: list[dict[str, Any]], answers: list[dict[str, Any]]) -> dict[str, Any]:
    return {
        "action": "grade-coding",
        "questions": questions,
        "answers": answers,
        "route": _route("devlab"),
    }


def proctoring_summary(attempt_id: Any, summary: dict[str, Any]) -> dict[str, Any]:
    return {
        "action": "proctoring-summary",
        "attempt_id": attempt_id,
        "summary": summary,
        "route": _route("protocol-camera"),
    }


def exam_results(results: dict[str, Any], destination: str) -> dict[str, Any]:
    """Directory and course-builder share the result contract."""
    return {"action": "push-exam-results", **results, "route": _route(destination)}


def assessment_results(results: dict[str, Any]) -> dict[str, Any]:
    action = "baseline-exam-result" if results.get("exam_type") == "baseline" else "postcourse-exam-result"
    return {"action": action, **results, "route": _route("skills-engine")}


def admin_alert(user_id: str, attempt_id: Any, exam_type: str | None, reason: str) -> dict[str, Any]:
    return {
        "action": "exam-canceled-alert",
        "user_id": user_id,
        "attempt_id": attempt_id,
        "exam_type": exam_type,
        "reason": reason,
        "route": _route("incident-response"),
    }
