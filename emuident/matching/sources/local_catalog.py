from __future__ import annotations

from typing import Optional

from emuident.config import CONFIDENCE_HASH
from emuident.core.models import HashSet, MatchCandidate, MatchMethod
from emuident.matching.sources.base import IdentitySource
from emuident.verification.catalog import CatalogIndex, CatalogRegistry

REGION_TAG_HINTS = (
    "USA", "Europe", "Japan", "World", "Korea", "China", "Brazil",
    "Australia", "Germany", "France", "Spain", "Italy", "Asia",
)


def region_of(title: str) -> Optional[str]:
    """Region named in the first parenthesised tag of a catalog title."""
    start = title.find("(")
    end = title.find(")", start + 1)
    if start < 0 or end < 0:
        return None
    tag = title[start + 1:end]
    parts = [p.strip() for p in tag.split(",")]
    if parts and all(p in REGION_TAG_HINTS for p in parts):
        return tag
    return None


class LocalCatalogSource(IdentitySource):
    """Identity from the offline checksum catalogs already loaded in memory."""

    name = "local"
    supports_hash_lookup = True
    supports_name_search = True

    def __init__(self, registry: CatalogRegistry, priority: int = 100, **kwargs):
        kwargs.setdefault("interval", 0.0)
        super().__init__(priority=priority, **kwargs)
        self.registry = registry

    def describe(self) -> str:
        return f"Offline catalogs ({len(self.registry.systems())} loaded)"

    def _indexes(self, system: Optional[str]) -> list[tuple[str, CatalogIndex]]:
        if system:
            index = self.registry.ensure(system)
            return [(system, index)] if index is not None else []
        return [(s, self.registry.get(s)) for s in self.registry.systems()]

    def lookup_by_hash(self, hashes: HashSet, system: Optional[str] = None) -> Optional[MatchCandidate]:
        for sys_name, index in self._indexes(system):
            algo, entries = index.lookup_hashes(hashes)
            if not entries:
                continue
            entry = entries[0]
            return MatchCandidate(
                source=self.name,
                title=entry.title,
                method=MatchMethod.HASH,
                source_id=entry.get(algo),
                system=sys_name,
                region=region_of(entry.title),
                score=1.0,
                confidence=CONFIDENCE_HASH,
            )
        return None

    def search_by_name(self, title: str, system: Optional[str] = None) -> list[MatchCandidate]:
        results = []
        for sys_name, index in self._indexes(system):
            for found, score in index.search_titles(title):
                listed = index.entries_for_title(found)
                source_id = (listed[0].sha1 or listed[0].crc32) if listed else ""
                results.append(
                    MatchCandidate(
                        source=self.name,
                        title=found,
                        method=MatchMethod.NAME_EXACT if score >= 1.0 else MatchMethod.NAME_FUZZY,
                        source_id=source_id,
                        system=sys_name,
                        region=region_of(found),
                        score=score,
                    )
                )
        results.sort(key=lambda c: -c.score)
        return results
