from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, model_validator
from sqlalchemy import select
from sqlalchemy.orm import Session

from exambank.core.auth import TokenData, require_staff
from exambank.core.config import settings
from exambank.core.database import get_db
from exambank.models.domain import Difficulty, Distribution, ExamConfig, utc_now
from exambank.models.orm import Exam, Question, Subject

router = APIRouter()


class SubjectCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None


class AlternativeIn(BaseModel):
    text: str = Field(min_length=1)
    explanation: Optional[str] = None


class QuestionCreate(BaseModel):
    subject_id: int
    text: str = Field(min_length=1)
    alternatives: List[AlternativeIn] = Field(min_length=2, max_length=10)
    correct_answer: int = Field(ge=0)
    difficulty: Difficulty = Difficulty.MEDIUM
    points: Optional[float] = Field(default=None, gt=0)
    tags: List[str] = []

    @model_validator(mode="after")
    def correct_answer_in_range(self):
        if self.correct_answer >= len(self.alternatives):
            raise ValueError("correct_answer must index one of the alternatives")
        return self


class DistributionIn(BaseModel):
    easy: int = Field(ge=0, default=0)
    medium: int = Field(ge=0, default=0)
    hard: int = Field(ge=0, default=0)


class ExamCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    subject_ids: List[int] = Field(min_length=1)
    total_questions: int
    distribution: DistributionIn
    total_variations: int = 1
    passing_score: float = settings.DEFAULT_PASSING_SCORE
    randomize_questions: bool = True
    randomize_alternatives: bool = True
    expires_at: Optional[datetime] = None


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _owned_subjects(db: Session, subject_ids: List[int], owner_id: str) -> List[Subject]:
    rows = db.scalars(select(Subject).where(Subject.id.in_(subject_ids), Subject.owner_id == owner_id)).all()
    if len(rows) != len(set(subject_ids)):
        raise HTTPException(404, "Subject not found")
    return rows


@router.post("/subjects", status_code=201)
def create_subject(payload: SubjectCreate, user: TokenData = Depends(require_staff), db: Session = Depends(get_db)):
    if db.scalar(select(Subject).where(Subject.owner_id == user.sub, Subject.name == payload.name)):
        raise HTTPException(409, "Subject already exists")
    s = Subject(owner_id=user.sub, name=payload.name, description=payload.description)
    db.add(s)
    db.commit()
    return {"subject_id": s.id, "name": s.name}


@router.post("/questions", status_code=201)
def create_question(payload: QuestionCreate, user: TokenData = Depends(require_staff), db: Session = Depends(get_db)):
    _owned_subjects(db, [payload.subject_id], user.sub)
    q = Question(
        subject_id=payload.subject_id, owner_id=user.sub, text=payload.text,
        alternatives=[a.model_dump() for a in payload.alternatives], correct_answer=payload.correct_answer,
        difficulty=payload.difficulty.value, points=payload.points, tags=payload.tags,
        times_used=0, times_answered=0, is_active=True, created_at=utc_now(),
    )
    db.add(q)
    db.commit()
    return {"question_id": q.id, "difficulty": q.difficulty}


@router.post("/exams", status_code=201)
def create_exam(payload: ExamCreate, user: TokenData = Depends(require_staff), db: Session = Depends(get_db)):
    _owned_subjects(db, payload.subject_ids, user.sub)
    distribution = Distribution(**payload.distribution.model_dump())
    expires_at = _naive_utc(payload.expires_at)
    config = ExamConfig(
        id=None, owner_id=user.sub, subject_ids=payload.subject_ids, total_questions=payload.total_questions,
        distribution=distribution, total_variations=payload.total_variations, passing_score=payload.passing_score,
        randomize_questions=payload.randomize_questions, randomize_alternatives=payload.randomize_alternatives,
        title=payload.title, expires_at=expires_at,
    )
    config.validate(settings.MAX_EXAM_VARIATIONS, settings.MAX_QUESTIONS_PER_EXAM, now=utc_now())
    exam = Exam(
        owner_id=user.sub, title=payload.title, subject_ids=payload.subject_ids, total_questions=payload.total_questions,
        easy_questions=distribution.easy, medium_questions=distribution.medium, hard_questions=distribution.hard,
        total_variations=payload.total_variations, passing_score=payload.passing_score,
        randomize_questions=payload.randomize_questions, randomize_alternatives=payload.randomize_alternatives,
        status=config.status.value, expires_at=expires_at,
    )
    db.add(exam)
    db.commit()
    return {"exam_id": exam.id, "status": exam.status}
