import pytest

from assessment.models import GradingRequest, PackageQuestion, SkillScore, SkillStatus, SubmittedAnswer
from assessment.services.grading import InternalGrader, final_grade, truncate

pytestmark = pytest.mark.anyio


def mcq(qid, skill_id, key="B"):
    return PackageQuestion(question_id=qid, skill_id=skill_id, skill_name=skill_id.title(), options=["A", "B"], answer_key=key)


def score(skill_id, value):
    return SkillScore(skill_id=skill_id, skill_name=skill_id, score=value, status=SkillStatus.acquired)


@pytest.mark.parametrize(
    "value,precision,expected",
    [
        (83.3333, 2, 83.33),
        (69.999, 2, 69.99),
        (69.995, 2, 69.99),
        (70.0, 2, 70.0),
        (12.987, 0, 12.0),
        (12.987, None, 12.987),
    ],
)
def test_truncate_never_rounds_up(value, precision, expected):
    assert truncate(value, precision) == expected


def test_final_grade_is_mean_of_skills():
    assert final_grade([score("a", 100), score("b", 50), score("c", 50)], 2) == 66.66
    assert final_grade([], 2) == 0.0


async def test_mcq_exact_match(offline_gateways):
    grader = InternalGrader(offline_gateways.devlab)
    req = GradingRequest(
        questions=[mcq("q1", "loops"), mcq("q2", "loops"), mcq("q3", "promises")],
        skills=[{"skill_id": "loops", "skill_name": "Loops"}, {"skill_id": "promises", "skill_name": "Promises"}],
        answers=[
            SubmittedAnswer(question_id="q1", answer="B"),
            SubmittedAnswer(question_id="q2", answer="A"),
            SubmittedAnswer(question_id="q3", answer=" B "),
        ],
        passing_grade=70,
    )
    result = await grader.grade(req)

    by_skill = {s.skill_id: s for s in result.per_skill}
    assert by_skill["loops"].score == 50
    assert by_skill["loops"].status == SkillStatus.failed
    assert by_skill["loops"].skill_name == "Loops"
    assert by_skill["promises"].score == 100
    assert by_skill["promises"].status == SkillStatus.acquired
    assert result.final_grade == 75
    assert [i["score"] for i in result.items] == [100, 0, 100]


async def test_skill_without_questions_scores_zero(offline_gateways):
    grader = InternalGrader(offline_gateways.devlab)
    req = GradingRequest(
        questions=[mcq("q1", "loops")],
        skills=[{"skill_id": "loops"}, {"skill_id": "async"}],
        answers=[SubmittedAnswer(question_id="q1", answer="B")],
        passing_grade=70,
    )
    result = await grader.grade(req)
    assert [(s.skill_id, s.score) for s in result.per_skill] == [("loops", 100), ("async", 0)]


async def test_open_answers_are_pending_review(offline_gateways):
    grader = InternalGrader(offline_gateways.devlab)
    open_q = PackageQuestion(question_id="q1", skill_id="design", type="open")
    req = GradingRequest(
        questions=[open_q],
        answers=[SubmittedAnswer(question_id="q1", type="open", answer="It depends on the event loop.")],
        passing_grade=70,
    )
    result = await grader.grade(req)
    (design,) = result.per_skill
    assert design.score == 0
    assert design.status == SkillStatus.pending_review


async def test_code_answers_go_through_devlab(offline_gateways):
    grader = InternalGrader(offline_gateways.devlab)
    coding = [
        {"qid": "c1", "skills": ["loops"]},
        {"qid": "c2", "skill_id": "loops"},
        {"qid": "c3", "skills": ["promises"]},
    ]
    req = GradingRequest(
        questions=[],
        coding_questions=coding,
        answers=[
            SubmittedAnswer(question_id="c1", type="code", answer="function add(a, b) { return a + b }"),
            SubmittedAnswer(question_id="c2", type="code", answer="while (x) {}"),
        ],
        passing_grade=70,
    )
    result = await grader.grade(req)

    by_skill = {s.skill_id: s.score for s in result.per_skill}
    assert by_skill == {"loops": 70, "promises": 0}
    assert [(i["question_id"], i["type"], i["score"]) for i in result.items] == [
        ("c1", "code", 100),
        ("c2", "code", 40),
        ("c3", "code", 0),
    ]
