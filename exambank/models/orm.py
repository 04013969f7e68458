from datetime import datetime
from typing import List, Optional
from sqlalchemy import Integer, String, Text, Boolean, Float, ForeignKey, JSON, DateTime, UniqueConstraint, Index, func
from sqlalchemy.orm import Mapped, mapped_column, relationship
from exambank.core.database import Base


class Subject(Base):
    __tablename__ = "subjects"
    __table_args__ = (UniqueConstraint("owner_id", "name", name="uq_subject_owner_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(255), index=True)
    name: Mapped[str] = mapped_column(String(100))
    description: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())

    questions: Mapped[List["Question"]] = relationship(back_populates="subject")


class Question(Base):
    __tablename__ = "questions"
    __table_args__ = (
        Index("idx_questions_pool", "subject_id", "owner_id", "difficulty", "is_active"),
        Index("idx_questions_times_used", "times_used"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    subject_id: Mapped[int] = mapped_column(Integer, ForeignKey("subjects.id", ondelete="CASCADE"))
    owner_id: Mapped[str] = mapped_column(String(255))
    text: Mapped[str] = mapped_column(Text)
    # [{"text": ..., "explanation": ...}, ...]
    alternatives: Mapped[list] = mapped_column(JSON)
    correct_answer: Mapped[int] = mapped_column(Integer)
    difficulty: Mapped[str] = mapped_column(String(10))
    points: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    tags: Mapped[list] = mapped_column(JSON, default=list)
    times_used: Mapped[int] = mapped_column(Integer, default=0)
    times_answered: Mapped[int] = mapped_column(Integer, default=0)
    average_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())

    subject: Mapped["Subject"] = relationship(back_populates="questions")


class Exam(Base):
    __tablename__ = "exams"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(255), index=True)
    title: Mapped[str] = mapped_column(String(200))
    subject_ids: Mapped[list] = mapped_column(JSON)
    total_questions: Mapped[int] = mapped_column(Integer)
    easy_questions: Mapped[int] = mapped_column(Integer, default=0)
    medium_questions: Mapped[int] = mapped_column(Integer, default=0)
    hard_questions: Mapped[int] = mapped_column(Integer, default=0)
    total_variations: Mapped[int] = mapped_column(Integer, default=1)
    passing_score: Mapped[float] = mapped_column(Float, default=6.0)
    randomize_questions: Mapped[bool] = mapped_column(Boolean, default=True)
    randomize_alternatives: Mapped[bool] = mapped_column(Boolean, default=True)
    status: Mapped[str] = mapped_column(String(20), default="draft")
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())

    variations: Mapped[List["ExamVariation"]] = relationship(back_populates="exam", cascade="all, delete-orphan")


class ExamVariation(Base):
    __tablename__ = "exam_variations"
    __table_args__ = (UniqueConstraint("exam_id", "variation_number", name="uq_exam_variation_number"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    exam_id: Mapped[int] = mapped_column(Integer, ForeignKey("exams.id", ondelete="CASCADE"), index=True)
    variation_number: Mapped[int] = mapped_column(Integer)
    variation_letter: Mapped[str] = mapped_column(String(4))
    questions_order: Mapped[list] = mapped_column(JSON)
    qr_payload: Mapped[dict] = mapped_column(JSON, default=dict)
    notes: Mapped[list] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())

    exam: Mapped["Exam"] = relationship(back_populates="variations")
    links: Mapped[List["ExamQuestion"]] = relationship(back_populates="variation", cascade="all, delete-orphan", order_by="ExamQuestion.order")


class ExamQuestion(Base):
    __tablename__ = "exam_questions"
    __table_args__ = (
        UniqueConstraint("variation_id", "order", name="uq_exam_question_order"),
        UniqueConstraint("variation_id", "question_id", name="uq_exam_question_question"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    exam_id: Mapped[int] = mapped_column(Integer, ForeignKey("exams.id", ondelete="CASCADE"), index=True)
    variation_id: Mapped[int] = mapped_column(Integer, ForeignKey("exam_variations.id", ondelete="CASCADE"))
    question_id: Mapped[int] = mapped_column(Integer, ForeignKey("questions.id"))
    order: Mapped[int] = mapped_column(Integer)
    points: Mapped[float] = mapped_column(Float, default=1.0)

    variation: Mapped["ExamVariation"] = relationship(back_populates="links")


class ExamResult(Base):
    __tablename__ = "exam_results"
    __table_args__ = (
        Index("idx_results_exam_variation", "exam_id", "variation_id"),
        UniqueConstraint("exam_id", "submission_key", name="uq_result_exam_submission_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    exam_id: Mapped[int] = mapped_column(Integer, ForeignKey("exams.id"))
    variation_id: Mapped[int] = mapped_column(Integer, ForeignKey("exam_variations.id"))
    submission_key: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    student_name: Mapped[str] = mapped_column(String(100), default="Anonymous")
    student_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    answers: Mapped[list] = mapped_column(JSON)
    correct_count: Mapped[int] = mapped_column(Integer)
    total_questions: Mapped[int] = mapped_column(Integer)
    score: Mapped[float] = mapped_column(Float)
    percentage: Mapped[float] = mapped_column(Float)
    earned_points: Mapped[float] = mapped_column(Float, default=0.0)
    total_points: Mapped[float] = mapped_column(Float, default=0.0)
    is_passed: Mapped[bool] = mapped_column(Boolean)
    details: Mapped[list] = mapped_column(JSON)
    time_spent: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())
    is_reviewed: Mapped[bool] = mapped_column(Boolean, default=False)
    reviewed_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    feedback: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
