"""
Variation Builder and exam lifecycle.

``VariationBuilder.generate`` replaces every variation of an exam in a single
store transaction: old variations are removed (releasing their usage
counts), a fresh pool index is built, and each variation is selected,
shuffled, persisted, linked and counted. Any error, including the
wall-clock budget running out, rolls the whole run back.
"""
import logging
import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence

from exambank.core.config import settings
from exambank.models.domain import (
    Difficulty, Distribution, ExamConfig, ExamStatus, QuestionLink, QuestionRecord, VariationRecord, utc_now,
)
from exambank.services.errors import GenerationTimeout, InsufficientQuestions, ValidationError
from exambank.services.pool import PoolIndex
from exambank.services.selector import VariationSelector

logger = logging.getLogger(__name__)

QR_TYPE = "exam_access"


def variation_letter(index: int) -> str:
    """0 -> A, 25 -> Z, 26 -> AA, spreadsheet style."""
    letters = ""
    n = index + 1
    while n > 0:
        n, rem = divmod(n - 1, 26)
        letters = chr(ord("A") + rem) + letters
    return letters


def build_qr_payload(exam_id: int, variation_id: Optional[int], letter: str, timestamp: str) -> dict:
    return {
        "examId": exam_id,
        "variationId": variation_id,
        "variationLetter": letter,
        "type": QR_TYPE,
        "timestamp": timestamp,
    }


def suggest_redistribution(distribution: Distribution, available: Dict[str, int]) -> List[dict]:
    """Alternative distributions the author could switch to after a shortfall."""
    suggestions = []
    total = distribution.total
    pool_total = sum(available.get(d.value, 0) for d in Difficulty)

    if pool_total >= total and pool_total > 0:
        shares = {d.value: total * available.get(d.value, 0) / pool_total for d in Difficulty}
        proposal = {d: int(s) for d, s in shares.items()}
        remainder = total - sum(proposal.values())
        # largest remainder first; floor(share) < share <= available, so +1 stays in bounds
        for d in sorted(shares, key=lambda d: shares[d] - proposal[d], reverse=True)[:remainder]:
            proposal[d] += 1
        suggestions.append({"type": "proportional", "distribution": proposal, "total": total})

    capped = {d.value: min(distribution.count_for(d), available.get(d.value, 0)) for d in Difficulty}
    if sum(capped.values()) > 0:
        suggestions.append({"type": "use_available", "distribution": capped, "total": sum(capped.values())})
    return suggestions


@dataclass
class AvailabilityReport:
    can_create: bool
    required: Dict[str, int]
    available: Dict[str, int]
    missing: Dict[str, int] = field(default_factory=dict)
    suggestions: List[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "can_create": self.can_create,
            "required": self.required,
            "available": self.available,
            "missing": self.missing,
            "suggestions": self.suggestions,
        }

    def to_error(self) -> InsufficientQuestions:
        return InsufficientQuestions(required=self.required, available=self.available, suggestions=self.suggestions)


def check_availability(store, subject_ids: Sequence[int], owner_id: str, distribution: Distribution) -> AvailabilityReport:
    counts = store.count_available(subject_ids, owner_id)
    required = distribution.as_dict()
    available = {d.value: counts.get(d, 0) for d in Difficulty}
    missing = {d: required[d] - available[d] for d in required if required[d] > available[d]}
    if not missing:
        return AvailabilityReport(can_create=True, required=required, available=available)
    return AvailabilityReport(
        can_create=False, required=required, available=available, missing=missing,
        suggestions=suggest_redistribution(distribution, available),
    )


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class VariationBuilder:
    def __init__(
        self,
        store,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = _utc_now,
        timeout_seconds: Optional[float] = None,
        max_attempts: Optional[int] = None,
        randomize_ratio: Optional[float] = None,
    ):
        self.store = store
        self.rng = rng or random.Random(settings.GENERATION_SEED)
        self.clock = clock
        self.now = now
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.GENERATION_TIMEOUT_SECONDS
        self.selector = VariationSelector(
            self.rng,
            max_attempts=max_attempts if max_attempts is not None else settings.SELECTION_MAX_ATTEMPTS,
            randomize_ratio=randomize_ratio if randomize_ratio is not None else settings.SELECTION_RANDOMIZE_RATIO,
        )

    def _check_budget(self, started: float, exam_id: int) -> None:
        elapsed = self.clock() - started
        if elapsed > self.timeout_seconds:
            logger.warning(f"Generation for exam {exam_id} exceeded {self.timeout_seconds}s budget, rolling back")
            raise GenerationTimeout(elapsed=elapsed, budget=self.timeout_seconds)

    def _select_variation(self, index: PoolIndex, exam: ExamConfig, i: int, used_signatures: set):
        questions: List[QuestionRecord] = []
        notes: List[str] = []
        for difficulty in Difficulty:
            outcome = self.selector.select(
                index.pool(difficulty), exam.distribution.count_for(difficulty), i, used_signatures, difficulty,
            )
            questions.extend(outcome.questions)
            notes.extend(outcome.notes)
        if exam.randomize_questions:
            self.rng.shuffle(questions)
        return questions, notes

    def generate(self, exam_id: int) -> List[VariationRecord]:
        exam = self.store.load_exam(exam_id)
        if exam.status == ExamStatus.PUBLISHED:
            raise ValidationError("Cannot regenerate variations of a published exam")
        if exam.status == ExamStatus.ARCHIVED:
            raise ValidationError("Archived exams cannot be regenerated")
        exam.validate(max_variations=settings.MAX_EXAM_VARIATIONS, max_questions=settings.MAX_QUESTIONS_PER_EXAM)

        report = check_availability(self.store, exam.subject_ids, exam.owner_id, exam.distribution)
        if not report.can_create:
            logger.info(f"Exam {exam_id} cannot be generated, missing {report.missing}")
            raise report.to_error()

        logger.info(f"Generating {exam.total_variations} variations for exam {exam_id}")
        started = self.clock()
        variations: List[VariationRecord] = []
        with self.store.transaction():
            if self.store.has_results(exam_id):
                raise ValidationError("Cannot regenerate variations of an exam that already has results")
            removed = self.store.delete_variations(exam_id)
            self.store.release_usage(removed)

            index = PoolIndex.build(self.store, exam.subject_ids, exam.owner_id, self.rng)
            index.ensure_covers(exam.distribution)

            used_signatures: set = set()
            for i in range(exam.total_variations):
                self._check_budget(started, exam_id)
                questions, notes = self._select_variation(index, exam, i, used_signatures)
                letter = variation_letter(i)
                order = [q.id for q in questions]
                timestamp = self.now().isoformat()

                variation_id = self.store.persist_variation(
                    exam_id, i + 1, letter, order, build_qr_payload(exam_id, None, letter, timestamp), notes,
                )
                qr_payload = build_qr_payload(exam_id, variation_id, letter, timestamp)
                self.store.update_qr_payload(variation_id, qr_payload)

                links = [QuestionLink(question_id=q.id, order=pos + 1, points=q.resolved_points()) for pos, q in enumerate(questions)]
                self.store.persist_question_links(exam_id, variation_id, links)
                self.store.increment_usage(order, 1)

                variations.append(VariationRecord(
                    id=variation_id, exam_id=exam_id, variation_number=i + 1, variation_letter=letter,
                    questions_order=order, qr_payload=qr_payload, notes=notes, links=links, questions=questions,
                ))
        logger.info(f"Generated {len(variations)} variations for exam {exam_id} in {self.clock() - started:.3f}s")
        return variations


def generate_variations(store, exam_id: int, rng: Optional[random.Random] = None) -> List[VariationRecord]:
    return VariationBuilder(store, rng=rng).generate(exam_id)


def publish_exam(store, exam_id: int, builder: Optional[VariationBuilder] = None) -> ExamConfig:
    """Publish an exam, generating its variations first when it has none."""
    exam = store.load_exam(exam_id)
    if exam.status == ExamStatus.PUBLISHED:
        raise ValidationError("Exam is already published")
    if exam.status == ExamStatus.ARCHIVED:
        raise ValidationError("Archived exams cannot be published")
    if not store.list_variations(exam_id):
        (builder or VariationBuilder(store)).generate(exam_id)
    with store.transaction():
        store.set_exam_status(exam_id, ExamStatus.PUBLISHED, published_at=utc_now())
    logger.info(f"Exam {exam_id} published")
    return store.load_exam(exam_id)


def unpublish_exam(store, exam_id: int) -> ExamConfig:
    exam = store.load_exam(exam_id)
    if exam.status != ExamStatus.PUBLISHED:
        raise ValidationError("Only published exams can be unpublished")
    if store.has_results(exam_id):
        raise ValidationError("Cannot unpublish an exam that already has results")
    with store.transaction():
        store.set_exam_status(exam_id, ExamStatus.UNPUBLISHED)
    logger.info(f"Exam {exam_id} unpublished")
    return store.load_exam(exam_id)


def archive_exam(store, exam_id: int) -> ExamConfig:
    exam = store.load_exam(exam_id)
    if exam.status == ExamStatus.ARCHIVED:
        raise ValidationError("Exam is already archived")
    with store.transaction():
        store.set_exam_status(exam_id, ExamStatus.ARCHIVED)
    logger.info(f"Exam {exam_id} archived")
    return store.load_exam(exam_id)


def duplicate_exam(store, exam_id: int, title: Optional[str] = None) -> ExamConfig:
    """Copy an exam as a new draft without its variations or results."""
    exam = store.load_exam(exam_id)
    with store.transaction():
        new_id = store.duplicate_exam(exam_id, title or f"{exam.title} (Copy)")
    logger.info(f"Exam {exam_id} duplicated as {new_id}")
    return store.load_exam(new_id)
