"""Deterministic stand-ins for partner services, used whenever a gateway degrades."""

from __future__ import annotations

import re
from typing import Any

BASELINE_SKILLS = [
    {"skill_id": "js_loops", "skill_name": "Loops", "topic_name": "javascript"},
    {"skill_id": "js_if_else", "skill_name": "If/Else", "topic_name": "javascript"},
    {"skill_id": "js_promises", "skill_name": "Promises", "topic_name": "javascript"},
]

CODING_KEYWORDS = ("function", "return", "for", "while", "map", "filter", "reduce", "async")

_RETURN_SUM = re.compile(r"\breturn\s+[^;]*\b[a-zA-Z_]\w*\s*\+\s*[a-zA-Z_]\w*")
_A_PLUS_B = re.compile(r"\ba\s*\+\s*b\b")


def accepted(payload: dict[str, Any]) -> dict[str, Any]:
    return {"status": "accepted", "payload": payload}


# ===== directory =====

def directory_policy(exam_type: str) -> dict[str, Any]:
    if exam_type == "postcourse":
        return {"passing_grade": 70, "max_attempts": 3}
    return {"passing_grade": 70}


# ===== skills-engine =====

def baseline_skills(user_id: str | None, user_name: str | None = None) -> dict[str, Any]:
    return {
        "user_id": user_id or "u_123",
        "user_name": user_name or "Jane Doe",
        "skills": [dict(s) for s in BASELINE_SKILLS],
        "passing_grade": 70,
    }


# ===== course-builder =====

def coverage(learner_id: str | None, course_id: str | None, learner_name: str | None = None) -> dict[str, Any]:
    return {
        "learner_id": learner_id or "u_123",
        "learner_name": learner_name or "Jane Doe",
        "course_id": course_id or "c_789",
        "course_name": "Intro to JS",
        "coverage_map": [{"lesson_id": "L101", "skills": ["s_js_async", "s_js_promises"]}],
    }


# ===== dev-lab =====

def coding_questions(skills: list[str] | None = None) -> dict[str, Any]:
    return {
        "questions": [
            {
                "qid": "devlab_q42",
                "type": "code",
                "question": "Write a function that returns the sum of two numbers.",
                "starter_code": "// your code here\nfunction add(a, b) {\n  // TODO\n}",
                "expected_output": "add(2, 3) === 5",
                "test_cases": [{"input": [2, 3], "output": 5}, {"input": [-1, 1], "output": 0}],
                "programming_language": "javascript",
                "humanLanguage": "en",
                "skills": list(skills or ["s_js_basics"]),
                "difficulty": "medium",
                "hints": ["Use the + operator."],
            }
        ]
    }


def score_code(code: str) -> int:
    normalized = (code or "").lower()
    if _RETURN_SUM.search(normalized) or _A_PLUS_B.search(normalized):
        return 100
    matches = sum(1 for k in CODING_KEYWORDS if k in normalized)
    if matches >= 3:
        return 70
    if matches >= 1:
        return 40
    return 0


def grade_coding(answers: list[dict[str, Any]]) -> dict[str, Any]:
    results = []
    for a in answers:
        code = a.get("code_answer") if isinstance(a.get("code_answer"), str) else ""
        score = score_code(code)
        status = "acquired" if score >= 70 else "not_acquired"
        results.append(
            {
                "question_id": str(a.get("question_id") or ""),
                "skill_id": str(a.get("skill_id") or ""),
                "score": score,
                "status": status,
                "feedback": "Meets requirements." if status == "acquired" else "Needs improvement.",
            }
        )
    final = round(sum(r["score"] for r in results) / len(results)) if results else 0
    return {"success": True, "results": results, "final_grade": final}


# ===== protocol-camera =====

def camera_summary(attempt_id: Any, summary: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "attempt_id": attempt_id,
        "summary": summary or {"events_total": 0, "violations": 0, "terminated": False},
    }
