"""Best-match resolution between competing match records of one unit.

The ordering is a strict total order:

1. confirmed records before unconfirmed ones,
2. higher confidence,
3. method priority (manual > hash > name > anything else),
4. the most recently created record, then the highest id.

The store only persists records; every read path that needs "the" match
for a unit goes through :func:`resolve_best`.
"""

from __future__ import annotations

from typing import Iterable, Optional

from emuident.core.models import MatchMethod, MatchRecord

METHOD_PRIORITY = {
    MatchMethod.MANUAL: 3,
    MatchMethod.HASH: 2,
    MatchMethod.NAME_EXACT: 1,
    MatchMethod.NAME_FUZZY: 1,
}


def method_priority(method) -> int:
    try:
        method = MatchMethod(method)
    except ValueError:
        return 0
    return METHOD_PRIORITY.get(method, 0)


def match_sort_key(record: MatchRecord) -> tuple:
    """Key where a larger value means a better match."""
    return (
        1 if record.confirmed else 0,
        record.confidence,
        method_priority(record.method),
        record.created_at,
        record.id if record.id is not None else -1,
    )


def compare(a: MatchRecord, b: MatchRecord) -> int:
    """1 when ``a`` wins, -1 when ``b`` wins, 0 only for the same record."""
    ka, kb = match_sort_key(a), match_sort_key(b)
    if ka > kb:
        return 1
    if ka < kb:
        return -1
    return 0


def rank(records: Iterable[MatchRecord]) -> list[MatchRecord]:
    """Records best first."""
    return sorted(records, key=match_sort_key, reverse=True)


def resolve_best(records: Iterable[MatchRecord]) -> Optional[MatchRecord]:
    best = None
    for record in records:
        if best is None or match_sort_key(record) > match_sort_key(best):
            best = record
    return best
