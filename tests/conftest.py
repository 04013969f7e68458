import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["STATS_CACHE_ENABLED"] = "false"

from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from exambank.core.database import init_db
from exambank.models.orm import Exam, Question, Subject
from exambank.services.store import SqlExamStore

OWNER = "teacher-1"


@pytest.fixture
def engine():
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool, future=True)
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


@pytest.fixture
def db(session_factory):
    s = session_factory()
    yield s
    s.close()


@pytest.fixture
def store(db):
    return SqlExamStore(db)


class Bank:
    """Seeds subjects, questions and exams straight through the ORM."""

    def __init__(self, db):
        self.db = db
        self.clock = datetime(2024, 1, 1, 8, 0, 0)

    def subject(self, name="Mathematics", owner=OWNER) -> Subject:
        s = Subject(owner_id=owner, name=name, description=None, created_at=self.clock)
        self.db.add(s)
        self.db.commit()
        return s

    def questions(self, subject, difficulty, n, correct=0, points=None, owner=OWNER):
        rows = []
        for i in range(n):
            self.clock += timedelta(minutes=1)
            q = Question(
                subject_id=subject.id, owner_id=owner, text=f"{difficulty} question {i + 1}",
                alternatives=[{"text": f"option {k}"} for k in range(4)], correct_answer=correct,
                difficulty=difficulty, points=points, tags=[], times_used=0, times_answered=0,
                is_active=True, created_at=self.clock,
            )
            self.db.add(q)
            rows.append(q)
        self.db.commit()
        return rows

    def exam(self, subjects, easy=0, medium=0, hard=0, variations=1, passing_score=6.0,
             randomize_questions=True, status="draft", owner=OWNER) -> Exam:
        e = Exam(
            owner_id=owner, title="Midterm", subject_ids=[s.id for s in subjects],
            total_questions=easy + medium + hard, easy_questions=easy, medium_questions=medium, hard_questions=hard,
            total_variations=variations, passing_score=passing_score, randomize_questions=randomize_questions,
            randomize_alternatives=True, status=status, created_at=self.clock,
        )
        self.db.add(e)
        self.db.commit()
        return e


@pytest.fixture
def bank(db):
    return Bank(db)


@pytest.fixture
def stocked(bank):
    """Scenario A bank: ten questions of each difficulty in one subject."""
    subject = bank.subject()
    for difficulty in ("easy", "medium", "hard"):
        bank.questions(subject, difficulty, 10)
    return subject
