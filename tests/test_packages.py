import pytest

from assessment.models import ExamType, PackageQuestion, QuestionPackage
from assessment.services.packages import (
    TemplateQuestionGenerator,
    learner_view,
    question_count,
    skills_from_coverage,
    strip_hints,
)

pytestmark = pytest.mark.anyio


def test_strip_hints_at_any_depth():
    doc = {
        "hints": ["top"],
        "questions": [
            {"qid": "q1", "hints": ["a"], "prompt": {"text": "x", "hints": ["b"]}},
            {"qid": "q2", "steps": [{"hints": ["c"], "n": 1}]},
        ],
    }
    assert strip_hints(doc) == {
        "questions": [
            {"qid": "q1", "prompt": {"text": "x"}},
            {"qid": "q2", "steps": [{"n": 1}]},
        ]
    }
    # The input is left untouched.
    assert doc["hints"] == ["top"]


def test_learner_view_hides_hints_answers_and_grading():
    package = QuestionPackage(
        exam_id=1,
        attempt_id=1,
        user_id="u1",
        exam_type=ExamType.postcourse,
        questions=[
            PackageQuestion(
                question_id="q1",
                skill_id="s1",
                prompt={"question": "?", "hints": ["h"]},
                options=["A", "B"],
                answer_key="A",
                hints=["h"],
            )
        ],
        coding_questions=[{"qid": "c1", "hints": ["h"], "test_cases": [{"input": 1}], "expected_output": "1"}],
        grading={"final_grade": 100},
    )
    view = learner_view(package)

    (q,) = view["questions"]
    assert "hints" not in q
    assert "answer_key" not in q
    assert q["prompt"] == {"question": "?"}
    assert q["options"] == ["A", "B"]
    assert view["coding_questions"] == [{"qid": "c1"}]
    assert "grading" not in view
    assert view["exam_type"] == "postcourse"


def test_question_count_prefers_coverage():
    skills = [{"skill_id": "a"}, {"skill_id": "b"}]
    assert question_count(skills, []) == 2
    assert question_count(skills, [{"skills": ["x", "y"]}, {"skills": ["z"]}]) == 3
    assert question_count([], []) == 0


def test_skills_from_coverage_dedupes_and_accepts_objects():
    coverage = [
        {"lesson_id": "L1", "skills": ["s1", {"skill_id": "s2", "skill_name": "Async"}]},
        {"lesson_id": "L2", "skills": ["s1", {"id": "s3", "name": "Closures"}]},
    ]
    assert skills_from_coverage(coverage) == [
        {"skill_id": "s1", "skill_name": "s1", "lesson_id": "L1"},
        {"skill_id": "s2", "skill_name": "Async", "lesson_id": "L1"},
        {"skill_id": "s3", "skill_name": "Closures", "lesson_id": "L2"},
    ]


async def test_template_generator_one_question_per_skill():
    questions = await TemplateQuestionGenerator().generate(
        [{"skill_id": "js_loops", "skill_name": "Loops"}, {"skill_id": "js_promises"}], "baseline"
    )
    assert [q.question_id for q in questions] == ["baseline_q1", "baseline_q2"]
    assert questions[0].answer_key in questions[0].options
    assert questions[1].skill_name == "js_promises"
    assert questions[0].hints
