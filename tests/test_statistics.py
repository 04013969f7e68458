
from datetime import datetime

import pytest

from exambank.analytics.statistics import aggregate_statistics, export_results, score_distribution
from exambank.models.domain import AnswerDetail, Difficulty, ResultRecord, VariationRecord


def detail(qid, difficulty, ok):
    return AnswerDetail(question_id=qid, submitted_answer=0, is_correct=ok, difficulty=difficulty,
                        correct_answer=0, points=1.0 if ok else 0.0, max_points=1.0)


def result(rid, variation_id, correct, total=10, passing=6.0, time_spent=None, details=()):
    score = round(correct / total * 10, 2)
    return ResultRecord(
        id=rid, exam_id=1, variation_id=variation_id, answers=[], correct_count=correct, total_questions=total,
        score=score, percentage=round(correct / total * 100, 2), is_passed=score >= passing,
        details=list(details), time_spent=time_spent,
    )


@pytest.fixture
def results():
    return [
        result(1, 100, 10, time_spent=600, details=[detail(1, Difficulty.EASY, True), detail(2, Difficulty.HARD, True)]),
        result(2, 100, 7, time_spent=900, details=[detail(1, Difficulty.EASY, True), detail(2, Difficulty.HARD, False)]),
        result(3, 200, 4, details=[detail(3, Difficulty.EASY, False), detail(4, Difficulty.MEDIUM, True)]),
        result(4, 200, 6),
        result(5, 200, 0),
    ]


def test_empty_results_give_zeroed_views():
    stats = aggregate_statistics(1, [])
    assert stats["overall"]["count"] == 0
    assert stats["overall"]["average_score"] == 0.0
    assert stats["overall"]["pass_rate"] == 0.0
    assert stats["overall"]["average_time_spent"] == 0.0
    assert stats["per_variation"] == []
    assert stats["score_distribution"] == []
    assert stats["difficulty_performance"]["hard"] == {"total": 0, "correct": 0, "percentage": 0.0}


def test_overall(results):
    overall = aggregate_statistics(1, results)["overall"]
    assert overall["count"] == 5
    assert overall["average_score"] == pytest.approx(5.4)
    assert overall["min_score"] == 0.0
    assert overall["max_score"] == 10.0
    assert overall["median_score"] == 6.0
    assert overall["passed_count"] == sum(1 for r in results if r.is_passed) == 3
    assert overall["failed_count"] == 2
    assert overall["pass_rate"] == pytest.approx(0.6)
    assert overall["average_time_spent"] == 750.0


def test_per_variation(results):
    variations = [
        VariationRecord(id=200, exam_id=1, variation_number=2, variation_letter="B", questions_order=[]),
        VariationRecord(id=100, exam_id=1, variation_number=1, variation_letter="A", questions_order=[]),
    ]
    rows = aggregate_statistics(1, results, variations)["per_variation"]
    assert [r["variation_letter"] for r in rows] == ["A", "B"]
    a, b = rows
    assert a["count"] == 2 and a["passed_count"] == 2 and a["average_score"] == pytest.approx(8.5)
    assert b["count"] == 3 and b["passed_count"] == 1 and b["average_time_spent"] == 0.0


def test_score_distribution_buckets(results):
    buckets = aggregate_statistics(1, results)["score_distribution"]
    assert [(b["range"], b["count"]) for b in buckets] == [
        ("0-10", 1), ("40-50", 1), ("60-70", 1), ("70-80", 1), ("90-100", 1),
    ]
    assert sum(b["count"] for b in buckets) == len(results)


def test_distribution_sorted_ascending():
    buckets = score_distribution([result(1, 1, 9), result(2, 1, 1), result(3, 1, 9), result(4, 1, 5)])
    assert [b["bucket"] for b in buckets] == [1, 5, 9]
    assert buckets[-1]["count"] == 2


def test_difficulty_performance(results):
    perf = aggregate_statistics(1, results)["difficulty_performance"]
    assert perf["easy"] == {"total": 3, "correct": 2, "percentage": pytest.approx(66.67)}
    assert perf["medium"] == {"total": 1, "correct": 1, "percentage": 100.0}
    assert perf["hard"] == {"total": 2, "correct": 1, "percentage": 50.0}


def test_export_rows_carry_variation_labels(results):
    results[0].student_name = "Ana"
    results[0].submitted_at = datetime(2024, 3, 1, 9, 30)
    variations = [VariationRecord(id=100, exam_id=1, variation_number=1, variation_letter="A", questions_order=[])]
    rows = export_results(results, variations)

    assert [r["id"] for r in rows] == [1, 2, 3, 4, 5]
    first = rows[0]
    assert first["student_name"] == "Ana"
    assert (first["variation_number"], first["variation_letter"]) == (1, "A")
    assert (first["score"], first["percentage"], first["is_passed"]) == (10.0, 100.0, True)
    assert first["submitted_at"] == "2024-03-01T09:30:00"
    assert rows[2]["variation_id"] == 200
    assert rows[2]["variation_number"] is None
    assert rows[2]["submitted_at"] is None
    assert export_results([]) == []
