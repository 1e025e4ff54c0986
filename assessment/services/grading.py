from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from decimal import ROUND_DOWN, Decimal
from typing import Any, Optional

from assessment.integrations.gateways import DevLabGateway
from assessment.models import GradingRequest, GradingResult, SkillScore, SkillStatus, SubmittedAnswer

logger = logging.getLogger(__name__)


def truncate(value: float, precision: Optional[int]) -> float:
    """Cut ``value`` down to ``precision`` decimals. Never rounds up."""
    if precision is None:
        return float(value)
    quantum = Decimal(1).scaleb(-precision)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_DOWN))


def final_grade(per_skill: list[SkillScore], precision: Optional[int] = None) -> float:
    """Arithmetic mean of per-skill scores; 0 when there are none."""
    if not per_skill:
        return 0.0
    total = sum(Decimal(str(s.score)) for s in per_skill)
    return truncate(float(total / len(per_skill)), precision)


class Grader(ABC):
    @abstractmethod
    async def grade(self, req: GradingRequest) -> GradingResult:
        raise NotImplementedError


class InternalGrader(Grader):
    """Scores a package against submitted answers.

    Multiple choice is exact-matched against the answer key, open answers wait for review and code is
    graded by the dev-lab service. Unanswered questions score 0 and still count towards their skill.
    """

    def __init__(self, devlab: DevLabGateway) -> None:
        self.devlab = devlab

    async def _grade_code(
        self, coding_questions: list[dict[str, Any]], answers: dict[str, SubmittedAnswer]
    ) -> dict[str, float]:
        submitted = []
        for q in coding_questions:
            qid = str(q.get("qid") or q.get("question_id") or "")
            a = answers.get(qid)
            if a is None or not isinstance(a.answer, str) or not a.answer.strip():
                continue
            submitted.append({"question_id": qid, "skill_id": _coding_skill(q), "code_answer": a.answer})
        if not submitted:
            return {}

        result = await self.devlab.grade_coding_answers(coding_questions, submitted)
        scores: dict[str, float] = {}
        for r in (result.data or {}).get("results") or []:
            qid = str(r.get("question_id") or "")
            raw = float(r.get("score") or 0)
            max_score = float(r.get("max_score") or 100)
            scores[qid] = max(0.0, min(100.0, raw * 100.0 / max_score if max_score else 0.0))
        return scores

    async def grade(self, req: GradingRequest) -> GradingResult:
        answers = {a.question_id: a for a in req.answers}

        # skill_id -> {"name", "scores", "pending"}
        buckets: "OrderedDict[str, dict[str, Any]]" = OrderedDict()
        for s in req.skills:
            sid = str(s.get("skill_id"))
            buckets[sid] = {"name": str(s.get("skill_name") or sid), "scores": [], "pending": False}

        def bucket(skill_id: str, name: str | None = None) -> dict[str, Any]:
            return buckets.setdefault(skill_id, {"name": name or skill_id, "scores": [], "pending": False})

        items: list[dict[str, Any]] = []
        for q in req.questions:
            b = bucket(q.skill_id, q.skill_name)
            a = answers.get(q.question_id)
            if q.type == "open":
                score = 0.0
                if a is not None and a.answer not in (None, ""):
                    b["pending"] = True
            else:
                given = None if a is None else a.answer
                score = 100.0 if given is not None and str(given).strip() == str(q.answer_key).strip() else 0.0
            b["scores"].append(score)
            items.append({"question_id": q.question_id, "skill_id": q.skill_id, "type": q.type, "score": score})

        code_scores = await self._grade_code(req.coding_questions, answers)
        for q in req.coding_questions:
            qid = str(q.get("qid") or q.get("question_id") or "")
            skill_id = _coding_skill(q)
            score = code_scores.get(qid, 0.0)
            bucket(skill_id)["scores"].append(score)
            items.append({"question_id": qid, "skill_id": skill_id, "type": "code", "score": score})

        per_skill: list[SkillScore] = []
        for sid, b in buckets.items():
            scores = b["scores"]
            score = sum(scores) / len(scores) if scores else 0.0
            if b["pending"]:
                status = SkillStatus.pending_review
            elif score >= req.passing_grade:
                status = SkillStatus.acquired
            else:
                status = SkillStatus.failed
            per_skill.append(SkillScore(skill_id=sid, skill_name=b["name"], score=score, status=status))

        return GradingResult(per_skill=per_skill, final_grade=final_grade(per_skill), items=items)


def _coding_skill(question: dict[str, Any]) -> str:
    if question.get("skill_id"):
        return str(question["skill_id"])
    skills = question.get("skills") or []
    return str(skills[0]) if skills else "coding"
