from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from exambank.analytics.statistics import aggregate_statistics
from exambank.core.auth import TokenData, require_staff
from exambank.core.cache import cache_stats, get_cached_stats
from exambank.core.database import get_db
from exambank.models.domain import ExamConfig, VariationRecord
from exambank.services.generation import (
    VariationBuilder, check_availability, publish_exam, unpublish_exam, archive_exam, duplicate_exam,
)
from exambank.services.store import SqlExamStore

router = APIRouter()


class DuplicateIn(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)


def load_owned_exam(store: SqlExamStore, exam_id: int, user: TokenData) -> ExamConfig:
    exam = store.load_exam(exam_id)
    if exam.owner_id != user.sub and not user.is_admin:
        raise HTTPException(403, "Not the owner of this exam")
    return exam


def _exam_out(exam: ExamConfig) -> dict:
    return {
        "exam_id": exam.id,
        "title": exam.title,
        "status": exam.status.value,
        "total_questions": exam.total_questions,
        "total_variations": exam.total_variations,
        "distribution": exam.distribution.as_dict(),
        "passing_score": exam.passing_score,
    }


def _variation_out(v: VariationRecord) -> dict:
    return {
        "variation_id": v.id,
        "variation_number": v.variation_number,
        "variation_letter": v.variation_letter,
        "questions_order": v.questions_order,
        "qr_payload": v.qr_payload,
        "notes": v.notes,
        "links": [asdict(l) for l in v.links],
    }


@router.get("/{exam_id}/availability")
def availability(exam_id: int, user: TokenData = Depends(require_staff), db: Session = Depends(get_db)):
    store = SqlExamStore(db)
    exam = load_owned_exam(store, exam_id, user)
    return check_availability(store, exam.subject_ids, exam.owner_id, exam.distribution).to_dict()


@router.post("/{exam_id}/variations", status_code=201)
def generate(exam_id: int, user: TokenData = Depends(require_staff), db: Session = Depends(get_db)):
    store = SqlExamStore(db)
    load_owned_exam(store, exam_id, user)
    variations = VariationBuilder(store).generate(exam_id)
    return {"exam_id": exam_id, "count": len(variations), "variations": [_variation_out(v) for v in variations]}


@router.get("/{exam_id}/variations")
def list_variations(exam_id: int, user: TokenData = Depends(require_staff), db: Session = Depends(get_db)):
    store = SqlExamStore(db)
    load_owned_exam(store, exam_id, user)
    return {"exam_id": exam_id, "variations": [_variation_out(v) for v in store.list_variations(exam_id)]}


@router.post("/{exam_id}/publish")
def publish(exam_id: int, user: TokenData = Depends(require_staff), db: Session = Depends(get_db)):
    store = SqlExamStore(db)
    load_owned_exam(store, exam_id, user)
    return _exam_out(publish_exam(store, exam_id))


@router.post("/{exam_id}/unpublish")
def unpublish(exam_id: int, user: TokenData = Depends(require_staff), db: Session = Depends(get_db)):
    store = SqlExamStore(db)
    load_owned_exam(store, exam_id, user)
    return _exam_out(unpublish_exam(store, exam_id))


@router.post("/{exam_id}/archive")
def archive(exam_id: int, user: TokenData = Depends(require_staff), db: Session = Depends(get_db)):
    store = SqlExamStore(db)
    load_owned_exam(store, exam_id, user)
    return _exam_out(archive_exam(store, exam_id))


@router.post("/{exam_id}/duplicate", status_code=201)
def duplicate(exam_id: int, payload: Optional[DuplicateIn] = None,
              user: TokenData = Depends(require_staff), db: Session = Depends(get_db)):
    store = SqlExamStore(db)
    load_owned_exam(store, exam_id, user)
    return _exam_out(duplicate_exam(store, exam_id, payload.title if payload else None))


@router.get("/{exam_id}/statistics")
def statistics(exam_id: int, user: TokenData = Depends(require_staff), db: Session = Depends(get_db)):
    store = SqlExamStore(db)
    load_owned_exam(store, exam_id, user)
    cached = get_cached_stats(exam_id)
    if cached:
        return cached
    stats = aggregate_statistics(exam_id, store.load_results(exam_id), store.list_variations(exam_id))
    cache_stats(exam_id, stats)
    return stats
