"""
Plain records the generation, scoring and statistics code works on.

The ORM rows in ``exambank.models.orm`` are converted into these at the
store boundary, so the algorithms never touch a session.
"""
import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from exambank.services.errors import ValidationError


def utc_now() -> datetime:
    """Current UTC time as a naive datetime, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Difficulty(str, enum.Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class ExamStatus(str, enum.Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    UNPUBLISHED = "unpublished"
    ARCHIVED = "archived"


# Point value used for a question link when the question carries none.
DEFAULT_POINTS: Dict[Difficulty, float] = {
    Difficulty.EASY: 1.0,
    Difficulty.MEDIUM: 2.0,
    Difficulty.HARD: 3.0,
}


@dataclass
class Alternative:
    text: str
    explanation: Optional[str] = None


@dataclass
class QuestionRecord:
    """A question bank entry as seen by the selector and the scorer."""
    id: int
    text: str
    alternatives: List[Alternative]
    correct_answer: int
    difficulty: Difficulty
    points: Optional[float] = None
    times_used: int = 0
    created_at: Optional[datetime] = None
    is_active: bool = True

    def resolved_points(self) -> float:
        return float(self.points) if self.points else DEFAULT_POINTS[self.difficulty]


@dataclass
class Distribution:
    """Target number of questions per difficulty."""
    easy: int = 0
    medium: int = 0
    hard: int = 0

    @property
    def total(self) -> int:
        return self.easy + self.medium + self.hard

    def count_for(self, difficulty: Difficulty) -> int:
        return getattr(self, difficulty.value)

    def as_dict(self) -> Dict[str, int]:
        return {d.value: self.count_for(d) for d in Difficulty}


@dataclass
class ExamConfig:
    id: Optional[int]
    owner_id: str
    subject_ids: List[int]
    total_questions: int
    distribution: Distribution
    total_variations: int = 1
    passing_score: float = 6.0
    randomize_questions: bool = True
    randomize_alternatives: bool = True
    status: ExamStatus = ExamStatus.DRAFT
    title: str = ""
    expires_at: Optional[datetime] = None

    def validate(self, max_variations: int = 50, max_questions: int = 100, now: Optional[datetime] = None) -> None:
        """Raise ValidationError describing every broken rule of the configuration."""
        problems = []
        if not self.subject_ids:
            problems.append("At least one subject is required")
        if not 1 <= self.total_questions <= max_questions:
            problems.append(f"totalQuestions must be between 1 and {max_questions}")
        counts = self.distribution.as_dict()
        if any(c < 0 for c in counts.values()):
            problems.append("Question counts per difficulty cannot be negative")
        if self.distribution.total != self.total_questions:
            problems.append("Questions distribution must sum to total questions")
        if not 1 <= self.total_variations <= max_variations:
            problems.append(f"totalVariations must be between 1 and {max_variations}")
        if not 0 <= self.passing_score <= 10:
            problems.append("passingScore must be between 0 and 10")
        if self.expires_at is not None and now is not None and self.expires_at <= now:
            problems.append("expiresAt must be in the future")
        if problems:
            raise ValidationError("Invalid exam configuration", problems=problems)


@dataclass
class QuestionLink:
    question_id: int
    order: int  # 1-based position in the variation
    points: float


@dataclass
class VariationRecord:
    id: Optional[int]
    exam_id: int
    variation_number: int
    variation_letter: str
    questions_order: List[int]
    qr_payload: dict = field(default_factory=dict)
    notes: List[str] = field(default_factory=list)
    links: List[QuestionLink] = field(default_factory=list)
    # Filled by load_variation, in questions_order order.
    questions: List[QuestionRecord] = field(default_factory=list)

    def answer_key(self) -> List[int]:
        return [q.correct_answer for q in self.questions]


@dataclass
class AnswerDetail:
    question_id: int
    submitted_answer: Optional[int]
    is_correct: bool
    difficulty: Difficulty
    correct_answer: int
    points: float
    max_points: float

    def to_dict(self) -> dict:
        return {
            "question_id": self.question_id,
            "submitted_answer": self.submitted_answer,
            "is_correct": self.is_correct,
            "difficulty": self.difficulty.value,
            "correct_answer": self.correct_answer,
            "points": self.points,
            "max_points": self.max_points,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AnswerDetail":
        return cls(
            question_id=data["question_id"],
            submitted_answer=data.get("submitted_answer"),
            is_correct=bool(data["is_correct"]),
            difficulty=Difficulty(data["difficulty"]),
            correct_answer=data.get("correct_answer", -1),
            points=float(data.get("points", 0.0)),
            max_points=float(data.get("max_points", 0.0)),
        )


@dataclass
class SubmissionMetadata:
    student_name: str = "Anonymous"
    student_id: Optional[str] = None
    submission_key: Optional[str] = None
    time_spent: Optional[int] = None  # seconds
    started_at: Optional[datetime] = None


@dataclass
class ResultRecord:
    id: Optional[int]
    exam_id: int
    variation_id: int
    answers: List[Optional[int]]
    correct_count: int
    total_questions: int
    score: float
    percentage: float
    is_passed: bool
    details: List[AnswerDetail]
    earned_points: float = 0.0
    total_points: float = 0.0
    student_name: str = "Anonymous"
    student_id: Optional[str] = None
    submission_key: Optional[str] = None
    time_spent: Optional[int] = None
    submitted_at: Optional[datetime] = None
    is_reviewed: bool = False
    feedback: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "exam_id": self.exam_id,
            "variation_id": self.variation_id,
            "answers": list(self.answers),
            "correct_count": self.correct_count,
            "total_questions": self.total_questions,
            "score": self.score,
            "percentage": self.percentage,
            "is_passed": self.is_passed,
            "earned_points": self.earned_points,
            "total_points": self.total_points,
            "student_name": self.student_name,
            "student_id": self.student_id,
            "time_spent": self.time_spent,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "is_reviewed": self.is_reviewed,
            "feedback": self.feedback,
            "details": [d.to_dict() for d in self.details],
        }
