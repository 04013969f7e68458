"""
SQL-backed store used by generation and scoring.

All reads hand back the plain records from ``exambank.models.domain``.
Writes are only flushed; ``transaction()`` owns commit and rollback so a
whole generation run lands (or disappears) as one unit.
"""
import logging
from collections import Counter
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterable, Iterator, List, Optional, Sequence

from sqlalchemy import select, update, delete, func
from sqlalchemy.orm import Session

from exambank.models.domain import (
    Alternative, AnswerDetail, Difficulty, Distribution, ExamConfig, ExamStatus,
    QuestionLink, QuestionRecord, ResultRecord, VariationRecord, utc_now,
)
from exambank.models.orm import Exam, ExamQuestion, ExamResult, ExamVariation, Question, Subject
from exambank.services.errors import NotFound

logger = logging.getLogger(__name__)


def question_record(q: Question) -> QuestionRecord:
    return QuestionRecord(
        id=q.id,
        text=q.text,
        alternatives=[Alternative(text=a.get("text", ""), explanation=a.get("explanation")) for a in (q.alternatives or [])],
        correct_answer=q.correct_answer,
        difficulty=Difficulty(q.difficulty),
        points=q.points,
        times_used=q.times_used or 0,
        created_at=q.created_at,
        is_active=q.is_active,
    )


def exam_config(exam: Exam) -> ExamConfig:
    return ExamConfig(
        id=exam.id,
        owner_id=exam.owner_id,
        subject_ids=list(exam.subject_ids or []),
        total_questions=exam.total_questions,
        distribution=Distribution(easy=exam.easy_questions, medium=exam.medium_questions, hard=exam.hard_questions),
        total_variations=exam.total_variations,
        passing_score=exam.passing_score,
        randomize_questions=exam.randomize_questions,
        randomize_alternatives=exam.randomize_alternatives,
        status=ExamStatus(exam.status),
        title=exam.title,
        expires_at=exam.expires_at,
    )


def variation_record(v: ExamVariation) -> VariationRecord:
    return VariationRecord(
        id=v.id,
        exam_id=v.exam_id,
        variation_number=v.variation_number,
        variation_letter=v.variation_letter,
        questions_order=list(v.questions_order or []),
        qr_payload=dict(v.qr_payload or {}),
        notes=list(v.notes or []),
        links=[QuestionLink(question_id=l.question_id, order=l.order, points=l.points) for l in v.links],
    )


def result_record(r: ExamResult) -> ResultRecord:
    return ResultRecord(
        id=r.id,
        exam_id=r.exam_id,
        variation_id=r.variation_id,
        answers=list(r.answers or []),
        correct_count=r.correct_count,
        total_questions=r.total_questions,
        score=r.score,
        percentage=r.percentage,
        is_passed=r.is_passed,
        details=[AnswerDetail.from_dict(d) for d in (r.details or [])],
        earned_points=r.earned_points or 0.0,
        total_points=r.total_points or 0.0,
        student_name=r.student_name,
        student_id=r.student_id,
        submission_key=r.submission_key,
        time_spent=r.time_spent,
        submitted_at=r.submitted_at,
        is_reviewed=r.is_reviewed,
        feedback=r.feedback,
    )


class SqlExamStore:
    def __init__(self, db: Session):
        self.db = db

    # ---------- unit of work ----------

    @contextmanager
    def transaction(self) -> Iterator["SqlExamStore"]:
        try:
            yield self
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    # ---------- question bank ----------

    def _check_owner_scope(self, subject_ids: Sequence[int], owner_id: str) -> None:
        owned = self.db.scalar(
            select(func.count(Subject.id)).where(Subject.id.in_(list(subject_ids)), Subject.owner_id == owner_id)
        )
        if not owned:
            raise NotFound(f"No subjects {list(subject_ids)} found for owner {owner_id}")

    def load_question_pool(self, subject_ids: Sequence[int], owner_id: str, difficulty: Difficulty) -> List[QuestionRecord]:
        """Active questions of one difficulty, least used and newest first."""
        self._check_owner_scope(subject_ids, owner_id)
        stmt = (
            select(Question)
            .where(
                Question.subject_id.in_(list(subject_ids)),
                Question.owner_id == owner_id,
                Question.difficulty == difficulty.value,
                Question.is_active.is_(True),
            )
            .order_by(Question.times_used.asc(), Question.created_at.desc(), Question.id.desc())
            .execution_options(populate_existing=True)
        )
        return [question_record(q) for q in self.db.scalars(stmt).all()]

    def count_available(self, subject_ids: Sequence[int], owner_id: str) -> Dict[Difficulty, int]:
        self._check_owner_scope(subject_ids, owner_id)
        rows = self.db.execute(
            select(Question.difficulty, func.count(Question.id))
            .where(
                Question.subject_id.in_(list(subject_ids)),
                Question.owner_id == owner_id,
                Question.is_active.is_(True),
            )
            .group_by(Question.difficulty)
        ).all()
        counts = {d: 0 for d in Difficulty}
        for label, n in rows:
            counts[Difficulty(label)] = int(n)
        return counts

    def increment_usage(self, question_ids: Iterable[int], delta: int = 1) -> None:
        ids = list(question_ids)
        if not ids or delta == 0:
            return
        self.db.execute(
            update(Question)
            .where(Question.id.in_(ids))
            .values(times_used=Question.times_used + delta)
            .execution_options(synchronize_session=False)
        )

    def record_question_outcomes(self, outcomes: Sequence[AnswerDetail]) -> None:
        """Fold each answer into the question's running average score."""
        by_value = {1.0: [o.question_id for o in outcomes if o.is_correct], 0.0: [o.question_id for o in outcomes if not o.is_correct]}
        for value, ids in by_value.items():
            if not ids:
                continue
            self.db.execute(
                update(Question)
                .where(Question.id.in_(ids))
                .values(
                    average_score=(func.coalesce(Question.average_score, 0.0) * Question.times_answered + value) / (Question.times_answered + 1),
                    times_answered=Question.times_answered + 1,
                )
                .execution_options(synchronize_session=False)
            )

    # ---------- exams ----------

    def _exam(self, exam_id: int) -> Exam:
        exam = self.db.get(Exam, exam_id)
        if not exam:
            raise NotFound(f"Exam {exam_id} not found")
        return exam

    def load_exam(self, exam_id: int) -> ExamConfig:
        return exam_config(self._exam(exam_id))

    def set_exam_status(self, exam_id: int, status: ExamStatus, published_at: Optional[datetime] = None) -> None:
        exam = self._exam(exam_id)
        exam.status = status.value
        if published_at is not None:
            exam.published_at = published_at
        self.db.flush()

    def duplicate_exam(self, exam_id: int, title: str) -> int:
        """Copy an exam's configuration into a new draft; variations and results stay behind."""
        source = self._exam(exam_id)
        row = Exam(
            owner_id=source.owner_id,
            title=title,
            subject_ids=list(source.subject_ids or []),
            total_questions=source.total_questions,
            easy_questions=source.easy_questions,
            medium_questions=source.medium_questions,
            hard_questions=source.hard_questions,
            total_variations=source.total_variations,
            passing_score=source.passing_score,
            randomize_questions=source.randomize_questions,
            randomize_alternatives=source.randomize_alternatives,
            status=ExamStatus.DRAFT.value,
            expires_at=source.expires_at,
        )
        self.db.add(row)
        self.db.flush()
        return row.id

    # ---------- variations ----------

    def persist_variation(self, exam_id: int, variation_number: int, variation_letter: str,
                          questions_order: List[int], qr_payload: dict, notes: List[str]) -> int:
        row = ExamVariation(
            exam_id=exam_id, variation_number=variation_number, variation_letter=variation_letter,
            questions_order=list(questions_order), qr_payload=dict(qr_payload), notes=list(notes),
        )
        self.db.add(row)
        self.db.flush()
        return row.id

    def update_qr_payload(self, variation_id: int, qr_payload: dict) -> None:
        row = self.db.get(ExamVariation, variation_id)
        if not row:
            raise NotFound(f"Variation {variation_id} not found")
        row.qr_payload = dict(qr_payload)
        self.db.flush()

    def persist_question_links(self, exam_id: int, variation_id: int, links: Sequence[QuestionLink]) -> None:
        self.db.add_all([
            ExamQuestion(exam_id=exam_id, variation_id=variation_id, question_id=l.question_id, order=l.order, points=l.points)
            for l in links
        ])
        self.db.flush()

    def list_variations(self, exam_id: int) -> List[VariationRecord]:
        rows = self.db.scalars(
            select(ExamVariation).where(ExamVariation.exam_id == exam_id).order_by(ExamVariation.variation_number)
        ).all()
        return [variation_record(v) for v in rows]

    def delete_variations(self, exam_id: int) -> List[VariationRecord]:
        """Remove every variation of an exam with its question links; returns what was removed."""
        removed = self.list_variations(exam_id)
        if not removed:
            return removed
        ids = [v.id for v in removed]
        self.db.execute(delete(ExamQuestion).where(ExamQuestion.variation_id.in_(ids)).execution_options(synchronize_session=False))
        self.db.execute(delete(ExamVariation).where(ExamVariation.id.in_(ids)).execution_options(synchronize_session=False))
        self.db.expire_all()
        return removed

    def release_usage(self, variations: Sequence[VariationRecord]) -> None:
        """Undo the usage increments of removed variations, one batch per distinct delta."""
        counts = Counter(qid for v in variations for qid in v.questions_order)
        by_delta: Dict[int, List[int]] = {}
        for qid, n in counts.items():
            by_delta.setdefault(n, []).append(qid)
        for n, ids in by_delta.items():
            self.increment_usage(ids, -n)

    def load_variation(self, exam_id: int, variation_id: int) -> VariationRecord:
        row = self.db.scalar(select(ExamVariation).where(ExamVariation.id == variation_id, ExamVariation.exam_id == exam_id))
        if not row:
            raise NotFound(f"Variation {variation_id} not found for exam {exam_id}")
        record = variation_record(row)
        questions = {q.id: q for q in self.db.scalars(select(Question).where(Question.id.in_(record.questions_order)).execution_options(populate_existing=True)).all()}
        missing = [qid for qid in record.questions_order if qid not in questions]
        if missing:
            raise NotFound(f"Questions {missing} of variation {variation_id} no longer exist")
        record.questions = [question_record(questions[qid]) for qid in record.questions_order]
        return record

    # ---------- results ----------

    def has_results(self, exam_id: int) -> bool:
        return bool(self.db.scalar(select(func.count(ExamResult.id)).where(ExamResult.exam_id == exam_id)))

    def find_result_by_key(self, exam_id: int, submission_key: str) -> Optional[ResultRecord]:
        row = self.db.scalar(
            select(ExamResult).where(ExamResult.exam_id == exam_id, ExamResult.submission_key == submission_key)
        )
        return result_record(row) if row else None

    def persist_result(self, result: ResultRecord, started_at: Optional[datetime] = None) -> int:
        row = ExamResult(
            exam_id=result.exam_id,
            variation_id=result.variation_id,
            submission_key=result.submission_key,
            student_name=result.student_name,
            student_id=result.student_id,
            answers=list(result.answers),
            correct_count=result.correct_count,
            total_questions=result.total_questions,
            score=result.score,
            percentage=result.percentage,
            earned_points=result.earned_points,
            total_points=result.total_points,
            is_passed=result.is_passed,
            details=[d.to_dict() for d in result.details],
            time_spent=result.time_spent,
            started_at=started_at,
            submitted_at=result.submitted_at or utc_now(),
        )
        self.db.add(row)
        self.db.flush()
        return row.id

    def load_results(self, exam_id: int, variation_id: Optional[int] = None, passed: Optional[bool] = None) -> List[ResultRecord]:
        stmt = select(ExamResult).where(ExamResult.exam_id == exam_id)
        if variation_id is not None:
            stmt = stmt.where(ExamResult.variation_id == variation_id)
        if passed is not None:
            stmt = stmt.where(ExamResult.is_passed.is_(passed))
        rows = self.db.scalars(stmt.order_by(ExamResult.submitted_at.desc(), ExamResult.id.desc())).all()
        return [result_record(r) for r in rows]

    def get_result(self, result_id: int) -> Optional[ResultRecord]:
        row = self.db.get(ExamResult, result_id)
        return result_record(row) if row else None

    def mark_reviewed(self, result_id: int, reviewer: str, feedback: Optional[str]) -> ResultRecord:
        row = self.db.get(ExamResult, result_id)
        if not row:
            raise NotFound(f"Result {result_id} not found")
        row.is_reviewed = True
        row.reviewed_by = reviewer
        row.reviewed_at = utc_now()
        if feedback:
            row.feedback = feedback
        self.db.flush()
        return result_record(row)
