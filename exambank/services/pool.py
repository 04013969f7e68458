"""
Question Pool Index: candidate questions per difficulty for one generation run.
"""
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Sequence

from exambank.models.domain import Difficulty, Distribution, QuestionRecord
from exambank.services.errors import InsufficientQuestions

logger = logging.getLogger(__name__)


def _created_key(q: QuestionRecord) -> float:
    return q.created_at.timestamp() if isinstance(q.created_at, datetime) else 0.0


def order_pool(questions: Sequence[QuestionRecord], rng: random.Random) -> List[QuestionRecord]:
    """Least used first, then newest first; exact ties broken by a permutation drawn from rng."""
    permutation = list(range(len(questions)))
    rng.shuffle(permutation)
    tiebreak = {q.id: permutation[i] for i, q in enumerate(questions)}
    return sorted(questions, key=lambda q: (q.times_used, -_created_key(q), tiebreak[q.id]))


@dataclass
class PoolIndex:
    """Ordered pools keyed by difficulty, built once per generation run."""
    pools: Dict[Difficulty, List[QuestionRecord]] = field(default_factory=dict)

    @classmethod
    def build(cls, store, subject_ids: Sequence[int], owner_id: str, rng: random.Random) -> "PoolIndex":
        pools = {}
        for difficulty in Difficulty:
            pools[difficulty] = order_pool(store.load_question_pool(subject_ids, owner_id, difficulty), rng)
        logger.debug(f"Pool index built: {{{', '.join(f'{d.value}: {len(p)}' for d, p in pools.items())}}}")
        return cls(pools=pools)

    def pool(self, difficulty: Difficulty) -> List[QuestionRecord]:
        return self.pools.get(difficulty, [])

    def sizes(self) -> Dict[str, int]:
        return {d.value: len(self.pool(d)) for d in Difficulty}

    def ensure_covers(self, distribution: Distribution) -> None:
        required = distribution.as_dict()
        available = self.sizes()
        if any(required[d] > available[d] for d in required):
            raise InsufficientQuestions(required=required, available=available)
