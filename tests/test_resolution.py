import itertools
import random

import pytest

from emuident.core.models import MatchMethod, MatchRecord
from emuident.matching.resolution import compare, method_priority, rank, resolve_best


def _rec(id, confidence=50, method=MatchMethod.NAME_FUZZY, confirmed=False, rejected=False, created_at=0.0):
    return MatchRecord(
        unit_id=1, game_id=id, method=method, confidence=confidence,
        confirmed=confirmed, rejected=rejected, created_at=created_at, id=id,
    )


def test_confirmed_beats_higher_confidence():
    confirmed = _rec(1, confidence=40, confirmed=True)
    strong = _rec(2, confidence=100, method=MatchMethod.HASH)

    assert resolve_best([strong, confirmed]) is confirmed
    assert compare(confirmed, strong) == 1


def test_confidence_then_method_then_recency():
    hash_match = _rec(1, confidence=90, method=MatchMethod.HASH)
    name_match = _rec(2, confidence=90, method=MatchMethod.NAME_EXACT, created_at=99.0)
    newer_name = _rec(3, confidence=90, method=MatchMethod.NAME_EXACT, created_at=100.0)

    assert rank([name_match, newer_name, hash_match]) == [hash_match, newer_name, name_match]


def test_manual_outranks_hash():
    assert method_priority(MatchMethod.MANUAL) > method_priority(MatchMethod.HASH)
    assert method_priority("name-exact") == method_priority(MatchMethod.NAME_FUZZY)
    assert method_priority("bogus") == 0
    assert method_priority(MatchMethod.NONE) == 0


def test_id_breaks_remaining_ties():
    a = _rec(1)
    b = _rec(2)
    assert resolve_best([a, b]) is b
    assert compare(a, b) == -1


def test_rejected_record_can_be_superseded():
    rejected = _rec(1, confidence=90, rejected=True)
    later = _rec(2, confidence=95)
    assert resolve_best([rejected, later]) is later


def test_empty():
    assert resolve_best([]) is None
    assert rank([]) == []


def test_compare_same_record():
    a = _rec(1)
    assert compare(a, a) == 0


@pytest.mark.parametrize("seed", range(5))
def test_order_is_total_and_input_independent(seed):
    rng = random.Random(seed)
    methods = list(MatchMethod)
    records = [
        _rec(
            i,
            confidence=rng.choice([30, 70, 90, 100]),
            method=rng.choice(methods),
            confirmed=rng.random() < 0.2,
            created_at=float(rng.choice([1, 2, 3])),
        )
        for i in range(1, 9)
    ]

    best = resolve_best(records)
    for perm in itertools.islice(itertools.permutations(records), 50):
        assert resolve_best(perm) is best
    for a, b in itertools.combinations(records, 2):
        assert compare(a, b) == -compare(b, a) != 0
