"""
Statistics Aggregator.

Every view here is a pure function of the results passed in, so the output
can be recomputed at any time or cached as plain JSON.
"""
import statistics as stats
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence

from exambank.models.domain import Difficulty, ResultRecord, VariationRecord

BUCKET_COUNT = 10


def _round(value: float) -> float:
    return round(value, 2)


def summarize(results: Sequence[ResultRecord]) -> dict:
    count = len(results)
    if not count:
        return {
            "count": 0, "average_score": 0.0, "min_score": 0.0, "max_score": 0.0,
            "median_score": 0.0, "std_dev_score": 0.0, "passed_count": 0, "failed_count": 0,
            "pass_rate": 0.0, "average_time_spent": 0.0,
        }
    scores = [r.score for r in results]
    passed = sum(1 for r in results if r.is_passed)
    times = [r.time_spent for r in results if r.time_spent is not None]
    return {
        "count": count,
        "average_score": _round(sum(scores) / count),
        "min_score": min(scores),
        "max_score": max(scores),
        "median_score": _round(stats.median(scores)),
        "std_dev_score": _round(stats.pstdev(scores)),
        "passed_count": passed,
        "failed_count": count - passed,
        "pass_rate": _round(passed / count),
        "average_time_spent": _round(sum(times) / len(times)) if times else 0.0,
    }


def per_variation(results: Iterable[ResultRecord], variations: Optional[Sequence[VariationRecord]] = None) -> List[dict]:
    groups: Dict[int, List[ResultRecord]] = defaultdict(list)
    for r in results:
        groups[r.variation_id].append(r)
    known = {v.id: v for v in variations or []}
    rows = []
    for variation_id in sorted(groups, key=lambda vid: (known[vid].variation_number if vid in known else float("inf"), vid)):
        row = {"variation_id": variation_id, **summarize(groups[variation_id])}
        if variation_id in known:
            row["variation_number"] = known[variation_id].variation_number
            row["variation_letter"] = known[variation_id].variation_letter
        rows.append(row)
    return rows


def bucket_label(bucket: int) -> str:
    return f"{bucket * 10}-{bucket * 10 + 10}"


def score_distribution(results: Iterable[ResultRecord]) -> List[dict]:
    """Results per 10-point percentage band; a perfect 100 lands in 90-100."""
    counts: Dict[int, int] = defaultdict(int)
    for r in results:
        counts[min(int(r.percentage // 10), BUCKET_COUNT - 1)] += 1
    return [{"bucket": b, "range": bucket_label(b), "count": counts[b]} for b in sorted(counts)]


def difficulty_performance(results: Iterable[ResultRecord]) -> Dict[str, dict]:
    tally = {d: {"total": 0, "correct": 0} for d in Difficulty}
    for r in results:
        for detail in r.details:
            tally[detail.difficulty]["total"] += 1
            if detail.is_correct:
                tally[detail.difficulty]["correct"] += 1
    return {
        d.value: {
            "total": t["total"],
            "correct": t["correct"],
            "percentage": _round(t["correct"] / t["total"] * 100) if t["total"] else 0.0,
        }
        for d, t in tally.items()
    }


def aggregate_statistics(exam_id: int, results: Sequence[ResultRecord],
                         variations: Optional[Sequence[VariationRecord]] = None) -> dict:
    results = list(results)
    return {
        "exam_id": exam_id,
        "overall": summarize(results),
        "per_variation": per_variation(results, variations),
        "score_distribution": score_distribution(results),
        "difficulty_performance": difficulty_performance(results),
    }


def export_results(results: Iterable[ResultRecord], variations: Optional[Sequence[VariationRecord]] = None) -> List[dict]:
    """One flat row per result, labelled with its variation, for spreadsheet export."""
    known = {v.id: v for v in variations or []}
    rows = []
    for r in results:
        variation = known.get(r.variation_id)
        rows.append({
            "id": r.id,
            "student_name": r.student_name,
            "student_id": r.student_id,
            "variation_id": r.variation_id,
            "variation_number": variation.variation_number if variation else None,
            "variation_letter": variation.variation_letter if variation else None,
            "correct_count": r.correct_count,
            "total_questions": r.total_questions,
            "score": r.score,
            "percentage": r.percentage,
            "earned_points": r.earned_points,
            "total_points": r.total_points,
            "is_passed": r.is_passed,
            "time_spent": r.time_spent,
            "submitted_at": r.submitted_at.isoformat() if r.submitted_at else None,
        })
    return rows
