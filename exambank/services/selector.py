"""
Variation Selector.

For variation ``i`` the pick starts at a rotation of ``i * count`` through the
ordered pool, shifts by ``count // 2`` on every retry and, when the pool is
comfortably larger than the pick, swaps part of it for random members. A
pick is accepted as soon as its combination signature has not been used by
an earlier variation of the same exam. When every attempt collides, the
last pick is kept and a note is recorded.
"""
import logging
import random
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Set

from exambank.models.domain import Difficulty, QuestionRecord
from exambank.services.errors import InsufficientQuestions

logger = logging.getLogger(__name__)

SIGNATURE_SEPARATOR = ","


def combination_signature(question_ids: Sequence[int]) -> str:
    return SIGNATURE_SEPARATOR.join(str(qid) for qid in sorted(question_ids))


@dataclass
class SelectionOutcome:
    questions: List[QuestionRecord]
    signature: str
    attempts: int
    fallback: bool = False
    notes: List[str] = field(default_factory=list)


class VariationSelector:
    def __init__(self, rng: random.Random, max_attempts: int = 10, randomize_ratio: float = 0.3):
        self.rng = rng
        self.max_attempts = max_attempts
        self.randomize_ratio = randomize_ratio

    def _walk(self, pool_size: int, start: int, count: int) -> List[int]:
        picked: List[int] = []
        seen: Set[int] = set()
        idx = start
        for _ in range(pool_size):
            if idx not in seen:
                seen.add(idx)
                picked.append(idx)
                if len(picked) == count:
                    break
            idx = (idx + 1) % pool_size
        return picked

    def _randomize(self, picked: List[int], pool_size: int, count: int) -> List[int]:
        replacements = int(count * self.randomize_ratio)
        for _ in range(replacements):
            position = self.rng.randrange(count)
            candidate = self.rng.randrange(pool_size)
            if candidate in picked:
                continue
            picked[position] = candidate
        return picked

    def select(self, pool: Sequence[QuestionRecord], count: int, variation_index: int,
               used_signatures: Set[str], difficulty: Optional[Difficulty] = None) -> SelectionOutcome:
        """
        Pick ``count`` distinct questions from ``pool`` for one variation.

        The accepted signature is added to ``used_signatures``.
        """
        pool_size = len(pool)
        if count == 0 or pool_size == 0:
            return SelectionOutcome(questions=[], signature="", attempts=0)
        if count > pool_size:
            raise InsufficientQuestions(
                required={difficulty.value if difficulty else "pool": count},
                available={difficulty.value if difficulty else "pool": pool_size},
            )

        base_offset = (variation_index * count) % pool_size
        picked: List[int] = []
        signature = ""
        for attempt in range(self.max_attempts):
            attempt_offset = (attempt * (count // 2)) % pool_size
            start = (base_offset + attempt_offset) % pool_size
            picked = self._walk(pool_size, start, count)
            if pool_size > 2 * count:
                picked = self._randomize(picked, pool_size, count)
            signature = combination_signature([pool[i].id for i in picked])
            if signature not in used_signatures:
                used_signatures.add(signature)
                return SelectionOutcome(questions=[pool[i] for i in picked], signature=signature, attempts=attempt + 1)

        label = difficulty.value if difficulty else "pool"
        note = f"variation {variation_index + 1}: {label} selection repeats an earlier combination after {self.max_attempts} attempts"
        logger.warning(f"Selector fallback - {note}")
        used_signatures.add(signature)
        return SelectionOutcome(
            questions=[pool[i] for i in picked], signature=signature,
            attempts=self.max_attempts, fallback=True, notes=[note],
        )
