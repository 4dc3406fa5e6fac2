from __future__ import annotations

import concurrent.futures
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

from emuident.common.exceptions import SourceError, SourceTimeoutError
from emuident.config import CONFIDENCE_CONTAINS, CONFIDENCE_HASH
from emuident.core.models import GameRecord, LogicalUnit, MatchCandidate, MatchMethod
from emuident.core.naming import clean_title
from emuident.logging_cfg import get_logger
from emuident.matching.similarity import MatchEngine
from emuident.matching.sources.base import IdentitySource, SourceRegistry


@dataclass
class SourceFailure:
    source: str
    operation: str
    reason: str


def by_priority(sources: Iterable[IdentitySource]) -> list[IdentitySource]:
    """Sources in descending priority; equal priorities keep their order."""
    return sorted(sources, key=lambda s: -s.priority)


class MatchOrchestrator:
    """Queries identity sources in priority order and grades what they return.

    Hash lookups run first across every source that supports them. When none
    yields a titled candidate, name search runs with the unit's base title.
    The first source with a titled answer wins; fields are never merged
    across sources during identification (see :meth:`enrich`).

    Sources are held in a :class:`SourceRegistry`; a registry passed in is
    shared, so sources registered on it later are queried too.
    """

    def __init__(self, sources: Iterable[IdentitySource] = (), engine: Optional[MatchEngine] = None):
        self.sources = sources if isinstance(sources, SourceRegistry) else SourceRegistry(sources)
        self.engine = engine or MatchEngine()
        self.failures: list[SourceFailure] = []
        self.logger = get_logger("matching.orchestrator")

    def _call(self, source: IdentitySource, operation: str, fn: Callable[..., Any], *args) -> Any:
        """Run one paced source call bounded by the source's timeout.

        A source failure is recorded and ``None`` returned so the caller can
        move on to the next source.
        """
        source.limiter.wait()
        executor = concurrent.futures.ThreadPoolExecutor(max_workers=1)
        try:
            future = executor.submit(fn, *args)
            try:
                return future.result(timeout=source.timeout)
            except concurrent.futures.TimeoutError as e:
                source.reset_session()
                raise SourceTimeoutError(source.name, source.timeout) from e
        except SourceError as e:
            self.logger.info("%s %s skipped: %s", source.name, operation, e)
            self.failures.append(SourceFailure(source.name, operation, str(e)))
        except Exception as e:
            self.logger.warning("%s %s failed: %s", source.name, operation, e)
            self.failures.append(SourceFailure(source.name, operation, str(e)))
        finally:
            # a timed out call keeps its thread; nobody waits for it
            executor.shutdown(wait=False)
        return None

    def _usable(self, sources: list[IdentitySource], capability: str) -> list[IdentitySource]:
        usable = []
        for source in sources:
            if not getattr(source, capability):
                continue
            if not source.is_available():
                reason = "requires authentication" if source.requires_auth else "not available"
                self.logger.debug("Skipping %s: %s", source.name, reason)
                continue
            usable.append(source)
        return usable

    def _best_named(self, query: str, results: Optional[list]) -> Optional[MatchCandidate]:
        best = None
        for candidate in results or []:
            if not candidate.title or not candidate.title.strip():
                continue
            method, confidence = self.engine.grade(query, candidate.title)
            if best is None or confidence > best.confidence:
                candidate.method = method
                candidate.confidence = confidence
                best = candidate
        return best

    def identify(
        self, unit: LogicalUnit, sources: Optional[Iterable[IdentitySource]] = None
    ) -> Optional[MatchCandidate]:
        """Best candidate for ``unit`` or ``None`` when no source knows it."""
        ordered = by_priority(sources) if sources is not None else list(self.sources)
        self.failures = []

        if unit.hashes is not None and unit.hashes.calculated:
            for source in self._usable(ordered, "supports_hash_lookup"):
                candidate = self._call(source, "hash lookup", source.lookup_by_hash, unit.hashes, unit.system)
                if candidate is not None and candidate.title and candidate.title.strip():
                    candidate.method = MatchMethod.HASH
                    candidate.confidence = CONFIDENCE_HASH
                    if candidate.system is None:
                        candidate.system = unit.system
                    self.logger.info("%s: %s matched %s by hash", unit.primary.name, source.name, candidate.title)
                    return candidate

        query = clean_title(unit.base_title)
        if not query:
            return None
        for source in self._usable(ordered, "supports_name_search"):
            results = self._call(source, "name search", source.search_by_name, query, unit.system)
            best = self._best_named(query, results)
            if best is not None:
                if best.system is None:
                    best.system = unit.system
                self.logger.info(
                    "%s: %s matched %s by name (%d)", unit.primary.name, source.name, best.title, best.confidence
                )
                return best

        self.logger.debug("%s: no source produced a match", unit.primary.name)
        return None

    def enrich(self, game: GameRecord, sources: Optional[Iterable[IdentitySource]] = None) -> list[str]:
        """Fill empty metadata fields of ``game`` from a secondary source.

        The title and the source the game was matched from never change.
        Returns the names of the fields that were filled.
        """
        missing = game.missing_fields()
        if not missing:
            return []
        ordered = by_priority(sources) if sources is not None else list(self.sources)
        self.failures = []

        for source in self._usable(ordered, "supports_name_search"):
            if source.name == game.source:
                continue
            results = self._call(source, "enrichment", source.search_by_name, game.title, game.system)
            best = self._best_named(game.title, results)
            if best is None or best.confidence < CONFIDENCE_CONTAINS:
                continue

            filled = []
            for name in missing:
                value = getattr(best, name, None)
                if value not in (None, ""):
                    setattr(game, name, value)
                    filled.append(name)
            if filled:
                self.logger.info("Enriched %s from %s: %s", game.title, source.name, ", ".join(filled))
            return filled
        return []
