"""
Scoring Engine: one submission against one variation's answer key.
"""
import logging
from typing import List, Optional, Sequence

from sqlalchemy.exc import IntegrityError

from exambank.core.cache import invalidate_stats
from exambank.models.domain import AnswerDetail, ResultRecord, SubmissionMetadata, VariationRecord, utc_now
from exambank.services.errors import AnswerCountMismatch, ValidationError

logger = logging.getLogger(__name__)


def _check_answers(answers: Sequence[Optional[int]], expected: int) -> None:
    if len(answers) != expected:
        raise AnswerCountMismatch(expected=expected, received=len(answers))
    bad = [
        pos + 1 for pos, a in enumerate(answers)
        if a is not None and (isinstance(a, bool) or not isinstance(a, int) or a < 0)
    ]
    if bad:
        raise ValidationError("Answers must be blank or a non-negative alternative index", problems=[f"position {p}" for p in bad])


def evaluate(variation: VariationRecord, answers: Sequence[Optional[int]], passing_score: float,
             metadata: Optional[SubmissionMetadata] = None) -> ResultRecord:
    """
    Score ``answers`` against ``variation`` without touching storage.

    Position k of ``answers`` is compared with the correct alternative of
    ``variation.questions[k]``; a blank (None) answer counts as incorrect.
    ``score`` is on a 0-10 scale and ``percentage`` on 0-100, both rounded
    to two decimals.
    """
    questions = variation.questions
    _check_answers(answers, len(questions))
    metadata = metadata or SubmissionMetadata()
    link_points = {l.question_id: l.points for l in variation.links}

    details: List[AnswerDetail] = []
    for question, answer in zip(questions, answers):
        max_points = link_points.get(question.id, question.resolved_points())
        is_correct = answer is not None and answer == question.correct_answer
        details.append(AnswerDetail(
            question_id=question.id,
            submitted_answer=answer,
            is_correct=is_correct,
            difficulty=question.difficulty,
            correct_answer=question.correct_answer,
            points=max_points if is_correct else 0.0,
            max_points=max_points,
        ))

    total = len(questions)
    correct = sum(1 for d in details if d.is_correct)
    score = round(correct / total * 10, 2) if total else 0.0
    percentage = round(correct / total * 100, 2) if total else 0.0
    return ResultRecord(
        id=None,
        exam_id=variation.exam_id,
        variation_id=variation.id,
        answers=list(answers),
        correct_count=correct,
        total_questions=total,
        score=score,
        percentage=percentage,
        is_passed=score >= passing_score,
        details=details,
        earned_points=sum(d.points for d in details),
        total_points=sum(d.max_points for d in details),
        student_name=metadata.student_name,
        student_id=metadata.student_id,
        submission_key=metadata.submission_key,
        time_spent=metadata.time_spent,
    )


class ScoringEngine:
    def __init__(self, store):
        self.store = store

    def _replay(self, existing: ResultRecord, variation_id: int) -> ResultRecord:
        if existing.variation_id != variation_id:
            raise ValidationError(
                f"Submission key {existing.submission_key} was already used for variation {existing.variation_id}"
            )
        logger.info(f"Submission {existing.submission_key} already scored as result {existing.id}")
        return existing

    def score_submission(self, exam_id: int, variation_id: int, answers: Sequence[Optional[int]],
                         metadata: Optional[SubmissionMetadata] = None) -> ResultRecord:
        metadata = metadata or SubmissionMetadata()
        if metadata.submission_key:
            existing = self.store.find_result_by_key(exam_id, metadata.submission_key)
            if existing:
                return self._replay(existing, variation_id)

        exam = self.store.load_exam(exam_id)
        variation = self.store.load_variation(exam_id, variation_id)
        result = evaluate(variation, answers, exam.passing_score, metadata)
        result.submitted_at = utc_now()

        try:
            with self.store.transaction():
                result.id = self.store.persist_result(result, started_at=metadata.started_at)
                self.store.record_question_outcomes(result.details)
        except IntegrityError:
            # a concurrent request stored the same key first
            existing = self.store.find_result_by_key(exam_id, metadata.submission_key) if metadata.submission_key else None
            if existing is None:
                raise
            return self._replay(existing, variation_id)
        invalidate_stats(exam_id)
        logger.info(
            f"Scored result {result.id} for exam {exam_id} variation {variation_id}: "
            f"{result.correct_count}/{result.total_questions} score={result.score}"
        )
        return result


def score_submission(store, exam_id: int, variation_id: int, answers: Sequence[Optional[int]],
                     metadata: Optional[SubmissionMetadata] = None) -> ResultRecord:
    return ScoringEngine(store).score_submission(exam_id, variation_id, answers, metadata)


def add_review_feedback(store, result_id: int, reviewer: str, feedback: Optional[str] = None) -> ResultRecord:
    with store.transaction():
        result = store.mark_reviewed(result_id, reviewer, feedback)
    logger.info(f"Result {result_id} reviewed by {reviewer}")
    return result
