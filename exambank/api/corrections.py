from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from exambank.analytics.statistics import export_results
from exambank.api.exams import load_owned_exam
from exambank.core.auth import TokenData, require_staff
from exambank.core.database import get_db
from exambank.models.domain import SubmissionMetadata, utc_now
from exambank.services.errors import NotFound
from exambank.services.scoring import ScoringEngine, add_review_feedback
from exambank.services.store import SqlExamStore

router = APIRouter()


class SubmissionIn(BaseModel):
    answers: List[Optional[int]]
    student_name: str = Field(default="Anonymous", max_length=100)
    student_id: Optional[str] = Field(default=None, max_length=50)
    submission_key: Optional[str] = Field(default=None, max_length=100)
    time_spent: Optional[int] = Field(default=None, ge=0)
    started_at: Optional[datetime] = None


class ReviewIn(BaseModel):
    feedback: Optional[str] = None


@router.post("/exams/{exam_id}/variations/{variation_id}/results", status_code=201)
def submit(exam_id: int, variation_id: int, payload: SubmissionIn,
           user: TokenData = Depends(require_staff), db: Session = Depends(get_db)):
    store = SqlExamStore(db)
    load_owned_exam(store, exam_id, user)
    metadata = SubmissionMetadata(
        student_name=payload.student_name, student_id=payload.student_id,
        submission_key=payload.submission_key, time_spent=payload.time_spent, started_at=payload.started_at,
    )
    return ScoringEngine(store).score_submission(exam_id, variation_id, payload.answers, metadata).to_dict()


@router.get("/exams/{exam_id}/results")
def list_results(exam_id: int, variation_id: Optional[int] = Query(default=None), passed: Optional[bool] = Query(default=None),
                 user: TokenData = Depends(require_staff), db: Session = Depends(get_db)):
    store = SqlExamStore(db)
    load_owned_exam(store, exam_id, user)
    results = store.load_results(exam_id, variation_id=variation_id, passed=passed)
    return {"exam_id": exam_id, "count": len(results), "results": [r.to_dict() for r in results]}


@router.get("/exams/{exam_id}/results/export")
def export(exam_id: int, user: TokenData = Depends(require_staff), db: Session = Depends(get_db)):
    store = SqlExamStore(db)
    load_owned_exam(store, exam_id, user)
    rows = export_results(store.load_results(exam_id), store.list_variations(exam_id))
    return {"exam_id": exam_id, "count": len(rows), "exported_at": utc_now().isoformat(), "results": rows}


@router.post("/results/{result_id}/review")
def review(result_id: int, payload: ReviewIn,
           user: TokenData = Depends(require_staff), db: Session = Depends(get_db)):
    store = SqlExamStore(db)
    existing = store.get_result(result_id)
    if existing is None:
        raise NotFound(f"Result {result_id} not found")
    load_owned_exam(store, existing.exam_id, user)
    return add_review_feedback(store, result_id, user.sub, payload.feedback).to_dict()
