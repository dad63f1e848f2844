import pytest

from harness.candidates import candidate_count, quality_threshold, score_review, select_best
from harness.schemas import Candidate, Review, TaskSpec
from tests.fakes import review


def _pair(cid: str, **review_kwargs):
    return Candidate(id=cid, draft_text=f"answer {cid}"), Review.model_validate(review(**review_kwargs))


def test_major_issue_costs_exactly_one_and_a_half_points():
    clean = Review.model_validate(review(9.0))
    flagged = Review.model_validate(review(9.0, major_issues=["unsupported claim"]))
    assert score_review(clean) == pytest.approx(9.0)
    assert score_review(clean) - score_review(flagged) == pytest.approx(1.5)


def test_missing_subscores_count_as_zero():
    partial = Review.model_validate({"overall_score": 10, "subscores": {"correctness": 10}})
    assert score_review(partial) == pytest.approx(4.5)


def test_select_best_is_deterministic_and_keeps_generation_order_on_ties():
    pairs = [_pair("C1", score=7.0), _pair("C2", score=8.0), _pair("C3", score=8.0)]
    first = select_best(pairs)
    again = select_best(list(pairs))
    assert first[0].id == "C2"
    assert again[0].id == "C2"


def test_select_best_penalises_major_issues():
    pairs = [_pair("C1", score=9.0, major_issues=["a", "b"]), _pair("C2", score=7.0)]
    assert select_best(pairs)[0].id == "C2"


def test_select_best_rejects_empty_input():
    with pytest.raises(ValueError):
        select_best([])


@pytest.mark.parametrize(
    "recipe,stakes,expected",
    [
        ("best_of_n", "low", 2),
        ("best_of_n", "medium", 4),
        ("best_of_n", "high", 6),
        ("direct", "high", 1),
        ("rag_cited", "medium", 1),
    ],
)
def test_candidate_count(recipe, stakes, expected):
    spec = TaskSpec(task_type="other", stakes=stakes, recipe=recipe)
    assert candidate_count(spec) == expected


def test_quality_thresholds():
    assert quality_threshold(TaskSpec(task_type="other", stakes="low", recipe="direct")) == 6.5
    assert quality_threshold(TaskSpec(task_type="other", stakes="medium", recipe="direct")) == 7.5
    assert quality_threshold(TaskSpec(task_type="other", stakes="high", recipe="direct")) == 8.0
