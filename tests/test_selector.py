import logging
import random

import pytest

from exambank.models.domain import Difficulty, QuestionRecord
from exambank.services.errors import InsufficientQuestions
from exambank.services.selector import VariationSelector, combination_signature


def make_pool(n, start=1):
    return [QuestionRecord(id=i, text="", alternatives=[], correct_answer=0, difficulty=Difficulty.EASY)
            for i in range(start, start + n)]


def ids(outcome):
    return [x.id for x in outcome.questions]


def test_signature_is_sorted_ids():
    assert combination_signature([12, 3, 7]) == "3,7,12"


def test_empty_count_or_pool():
    selector = VariationSelector(random.Random(0))
    assert selector.select(make_pool(5), 0, 0, set()).questions == []
    assert selector.select([], 3, 0, set()).questions == []


def test_count_larger_than_pool_is_rejected():
    selector = VariationSelector(random.Random(0))
    with pytest.raises(InsufficientQuestions) as err:
        selector.select(make_pool(2), 5, 0, set(), Difficulty.EASY)
    assert err.value.missing == {"easy": 3}


def test_rotation_spreads_variations_across_pool():
    # pool <= 2*count: no random replacement, pure rotation
    pool = make_pool(8)
    selector = VariationSelector(random.Random(0))
    used = set()
    first = selector.select(pool, 4, 0, used)
    second = selector.select(pool, 4, 1, used)
    assert ids(first) == [1, 2, 3, 4]
    assert ids(second) == [5, 6, 7, 8]
    assert used == {"1,2,3,4", "5,6,7,8"}


def test_retry_shifts_by_half_count():
    pool = make_pool(8)
    selector = VariationSelector(random.Random(0))
    used = {"1,2,3,4"}
    outcome = selector.select(pool, 4, 0, used)
    assert outcome.attempts == 2
    assert ids(outcome) == [3, 4, 5, 6]
    assert not outcome.fallback


def test_walk_wraps_around_pool():
    pool = make_pool(5)
    outcome = VariationSelector(random.Random(0)).select(pool, 3, 1, set())
    assert ids(outcome) == [4, 5, 1]


@pytest.mark.parametrize("pool_size,count", [(3, 3), (7, 3), (10, 5), (30, 5), (31, 10), (100, 7)])
def test_picks_never_repeat_a_question(pool_size, count):
    pool = make_pool(pool_size)
    selector = VariationSelector(random.Random(pool_size * count))
    used = set()
    for i in range(25):
        picked = ids(selector.select(pool, count, i, used))
        assert len(picked) == count
        assert len(set(picked)) == count


def test_exhausted_attempts_fall_back_to_last_pick(caplog):
    pool = make_pool(3)
    selector = VariationSelector(random.Random(0))
    used = set()
    selector.select(pool, 3, 0, used)
    with caplog.at_level(logging.WARNING, logger="exambank.services.selector"):
        outcome = selector.select(pool, 3, 1, used, Difficulty.HARD)
    assert outcome.fallback
    assert outcome.attempts == 10
    assert sorted(ids(outcome)) == [1, 2, 3]
    assert outcome.notes and "hard" in outcome.notes[0]
    assert "fallback" in caplog.text


def test_large_pool_gives_distinct_signatures():
    pool = make_pool(40)
    selector = VariationSelector(random.Random(7))
    used = set()
    signatures = [selector.select(pool, 10, i, used).signature for i in range(30)]
    assert len(set(signatures)) == len(signatures)
