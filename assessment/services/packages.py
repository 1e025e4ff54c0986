from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from assessment.models import PackageQuestion, QuestionPackage

HIDDEN_KEYS = frozenset({"hints"})
ANSWER_KEYS = frozenset({"answer_key", "correct_answer", "expected_output", "test_cases"})


def strip_hints(value: Any) -> Any:
    """Return a copy of ``value`` with every ``hints`` key removed, at any depth."""
    if isinstance(value, dict):
        return {k: strip_hints(v) for k, v in value.items() if k not in HIDDEN_KEYS}
    if isinstance(value, (list, tuple)):
        return [strip_hints(v) for v in value]
    return value


def _drop_answers(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _drop_answers(v) for k, v in value.items() if k not in ANSWER_KEYS}
    if isinstance(value, list):
        return [_drop_answers(v) for v in value]
    return value


def learner_view(package: QuestionPackage) -> dict[str, Any]:
    """Package as shown to the learner: no hints and no answer keys."""
    doc = package.model_dump(mode="json", exclude={"grading"})
    doc["questions"] = _drop_answers(doc["questions"])
    doc["coding_questions"] = _drop_answers(doc["coding_questions"])
    return strip_hints(doc)


def question_count(skills: list[dict[str, Any]], coverage_map: list[dict[str, Any]]) -> int:
    if coverage_map:
        return sum(len(lesson.get("skills") or []) for lesson in coverage_map)
    return len(skills)


def skills_from_coverage(coverage_map: list[dict[str, Any]]) -> list[dict[str, Any]]:
    seen: dict[str, dict[str, Any]] = {}
    for lesson in coverage_map:
        for skill in lesson.get("skills") or []:
            if isinstance(skill, dict):
                skill_id = str(skill.get("skill_id") or skill.get("id") or "")
                name = str(skill.get("skill_name") or skill.get("name") or skill_id)
            else:
                skill_id = name = str(skill)
            if skill_id and skill_id not in seen:
                seen[skill_id] = {"skill_id": skill_id, "skill_name": name, "lesson_id": lesson.get("lesson_id")}
    return list(seen.values())


class QuestionGenerator(ABC):
    @abstractmethod
    async def generate(self, skills: list[dict[str, Any]], exam_type: str) -> list[PackageQuestion]:
        raise NotImplementedError


class TemplateQuestionGenerator(QuestionGenerator):
    """Deterministic generator, one multiple-choice question per skill."""

    OPTIONS = ["Always", "Sometimes", "Never", "Only in strict mode"]

    async def generate(self, skills: list[dict[str, Any]], exam_type: str) -> list[PackageQuestion]:
        questions: list[PackageQuestion] = []
        for i, skill in enumerate(skills, start=1):
            skill_id = str(skill.get("skill_id"))
            name = str(skill.get("skill_name") or skill_id)
            questions.append(
                PackageQuestion(
                    question_id=f"{exam_type}_q{i}",
                    skill_id=skill_id,
                    skill_name=name,
                    type="mcq",
                    prompt={
                        "question": f"When does {name} apply in a JavaScript program?",
                        "hints": [f"Think about how {name} changes control flow."],
                    },
                    options=list(self.OPTIONS),
                    answer_key=self.OPTIONS[0],
                    hints=[f"Review the lesson on {name}."],
                    metadata={"difficulty": "medium", "lesson_id": skill.get("lesson_id")},
                )
            )
        return questions
