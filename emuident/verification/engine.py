"""Integrity classification of logical units against a checksum catalog.

:func:`verify` is a pure function. It reads the unit and the catalog index
and returns a new :class:`VerificationResult`; the same index can be shared
by any number of threads.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, Optional

from emuident.core.models import (
    CatalogEntry,
    HashAlgorithm,
    HashSet,
    LogicalUnit,
    VerificationResult,
    VerificationStatus,
)
from emuident.core.systems import preferred_hash
from emuident.verification.catalog import CatalogIndex

# Used when the system's preferred digest is empty
FALLBACK_ORDER = (HashAlgorithm.CRC32, HashAlgorithm.SHA1, HashAlgorithm.MD5)

# Statuses that count as a failed verification in summaries
FAILED_STATUSES = frozenset(
    {VerificationStatus.MISMATCH, VerificationStatus.CORRUPT, VerificationStatus.HASH_MISSING}
)


def select_algorithm(hashes: HashSet, preferred: HashAlgorithm) -> Optional[HashAlgorithm]:
    if hashes.get(preferred):
        return preferred
    for algo in FALLBACK_ORDER:
        if hashes.get(algo):
            return algo
    return None


def _pick(entries: tuple[CatalogEntry, ...], unit: LogicalUnit) -> CatalogEntry:
    """Prefer the entry named like the unit's primary file."""
    name = unit.primary.name.lower()
    for entry in entries:
        if entry.name.lower() == name:
            return entry
    return entries[0]


def _find(hashes: HashSet, index: CatalogIndex, first: HashAlgorithm):
    order = (first,) + tuple(a for a in FALLBACK_ORDER if a is not first)
    for algo in order:
        found = index.lookup(algo, hashes.get(algo))
        if found:
            return algo, found
    return None, ()


def verify(
    unit: LogicalUnit,
    index: CatalogIndex,
    preferred: Optional[HashAlgorithm] = None,
) -> VerificationResult:
    """Classify ``unit`` against ``index``.

    Exactly one status comes back for every input:

    * ``HashMissing``: nothing was hashed.
    * ``Verified``: a raw digest is listed in the catalog.
    * ``HeaderMismatch``: only the headerless digest is listed.
    * ``Mismatch``: the file name matches a catalog title but no digest does.
    * ``NotInCatalog``: neither digests nor title are known.
    """
    hashes = unit.hashes
    if hashes is None or not hashes.calculated:
        return VerificationResult(VerificationStatus.HASH_MISSING, detail="no hashes computed")

    if preferred is None:
        preferred = preferred_hash(unit.system)
    algo = select_algorithm(hashes, preferred)

    found_algo, entries = _find(hashes, index, algo)
    if entries:
        entry = _pick(entries, unit)
        detail = f"catalog status: {entry.status}" if entry.status and entry.status != "verified" else ""
        return VerificationResult(VerificationStatus.VERIFIED, entry, found_algo, detail)

    stripped = unit.headerless_hashes
    if stripped is not None and stripped.calculated:
        found_algo, entries = _find(stripped, index, algo)
        if entries:
            return VerificationResult(
                VerificationStatus.HEADER_MISMATCH,
                _pick(entries, unit),
                found_algo,
                f"data matches after removing a {unit.header_size}-byte header",
            )

    titled = index.entries_for_title(unit.primary.name) or index.entries_for_title(unit.base_title)
    if titled:
        return VerificationResult(
            VerificationStatus.MISMATCH,
            _pick(titled, unit),
            algo,
            f"{algo.display_name} {hashes.get(algo)} does not match any dump of {titled[0].title}",
        )

    return VerificationResult(VerificationStatus.NOT_IN_CATALOG, None, algo)


def corrupt(reason: str) -> VerificationResult:
    """Result for a unit whose content could not be read to the end."""
    return VerificationResult(VerificationStatus.CORRUPT, detail=reason)


@dataclass
class VerificationSummary:
    """Order-independent fold of verification results."""

    counts: Counter = field(default_factory=Counter)
    failures: dict[str, VerificationResult] = field(default_factory=dict)

    def add(self, key: str, result: VerificationResult) -> "VerificationSummary":
        self.counts[result.status] += 1
        if result.status in FAILED_STATUSES:
            self.failures[key] = result
        return self

    @classmethod
    def fold(cls, results: Iterable[tuple[str, VerificationResult]]) -> "VerificationSummary":
        summary = cls()
        for key, result in results:
            summary.add(key, result)
        return summary

    def merge(self, other: "VerificationSummary") -> "VerificationSummary":
        return VerificationSummary(self.counts + other.counts, {**self.failures, **other.failures})

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def count(self, status: VerificationStatus) -> int:
        return self.counts.get(status, 0)

    def as_dict(self) -> dict[str, int]:
        return {status.value: self.counts.get(status, 0) for status in VerificationStatus}
