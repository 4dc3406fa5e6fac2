from __future__ import annotations

import logging
import os
import threading
import time
from pathlib import Path
from typing import Any, Iterable, Optional

import psutil

from emuident.common.events import ProgressListener, StageProgress, bus
from emuident.common.exceptions import DirectoryReadError, EntryNotFoundError, WorkflowCancelledError
from emuident.common.types import WorkerResult
from emuident.core.archive import ArchiveHandler, ZipArchiveHandler
from emuident.core.config_manager import ConfigManager
from emuident.core.grouper import FileSetGrouper
from emuident.core.models import GameRecord, LogicalUnit, MatchCandidate, MatchMethod, MatchRecord
from emuident.core.pipeline import HashingPipeline
from emuident.core.session import Session
from emuident.library import IdentityStore
from emuident.logging_cfg import get_logger, log_call, set_correlation_id
from emuident.matching.orchestrator import MatchOrchestrator
from emuident.matching.sources import (
    HasheousSource,
    IdentitySource,
    LocalCatalogSource,
    SourceRegistry,
    TheGamesDBSource,
)
from emuident.verification.catalog import CatalogRegistry
from emuident.verification.engine import VerificationSummary


class Orchestrator:
    """Top-level workflows: scan, hash, verify, identify and persist.

    Every workflow returns a :class:`WorkerResult` summary, even when most
    units fail. Only catalog-load, database-initialisation and settings errors
    escape.
    """

    def __init__(
        self,
        session: Session,
        settings: Optional[ConfigManager] = None,
        store: Optional[IdentityStore] = None,
        registry: Optional[CatalogRegistry] = None,
        sources: Optional[Iterable[IdentitySource]] = None,
        archive_handler: Optional[ArchiveHandler] = None,
    ):
        self.session = session
        self.settings = settings or ConfigManager(session.settings_path)
        self.logger = get_logger("core.orchestrator")

        self.db = store or IdentityStore(session.db_path)
        dats_dir = self.settings.get("dats_dir") or session.base_path / "dats"
        self.registry = registry or CatalogRegistry(Path(dats_dir))

        handler = archive_handler or ZipArchiveHandler()
        self.grouper = FileSetGrouper(self.settings.get("extensions"), handler)
        self.pipeline = HashingPipeline(self.settings.get("hash_workers"), handler)
        self.sources = SourceRegistry(sources) if sources is not None else self.build_sources()
        self.matcher = MatchOrchestrator(self.sources)

        # corrupt units of the last hash run, by key
        self._corrupt: dict[str, str] = {}

        # Telemetry
        self._start_time: Optional[float] = None
        self._items_processed = 0

    def build_sources(self) -> SourceRegistry:
        """Registry of the identity sources enabled in the settings."""
        factories = {
            "local": lambda opts: LocalCatalogSource(self.registry, **opts),
            "hasheous": lambda opts: HasheousSource(api_key=opts.pop("api_key", None) or None, **opts),
            "thegamesdb": lambda opts: TheGamesDBSource(api_key=opts.pop("api_key", None) or None, **opts),
        }
        sources = SourceRegistry()
        for name, factory in factories.items():
            opts = self.settings.source_settings(name)
            if not opts.pop("enabled", True):
                self.logger.info("Source %s disabled in settings", name)
                continue
            kwargs = {k: opts[k] for k in ("priority", "interval", "timeout", "api_key") if k in opts}
            sources.register(factory(kwargs))
        return sources

    def get_telemetry(self) -> dict[str, Any]:
        """Current performance figures."""
        elapsed = time.time() - self._start_time if self._start_time else 0
        speed = self._items_processed / elapsed if elapsed > 0 else 0
        try:
            mem = psutil.Process(os.getpid()).memory_info().rss / 1024 / 1024
        except psutil.Error:
            mem = 0
        return {
            "speed": f"{speed:.1f} it/s",
            "memory": f"{mem:.1f} MB",
            "uptime": f"{elapsed:.0f}s",
        }

    def _begin(self, task_name: str) -> str:
        cid = set_correlation_id()
        if self._start_time is None:
            self._start_time = time.time()
        bus.emit("task_started", name=task_name, correlation_id=cid)
        return cid

    def _finish(self, result: WorkerResult):
        self._items_processed += result.total_items
        bus.emit("task_finished", name=result.task_name, result=result)

    def _stage(self, name: str, listener, cancel_event) -> StageProgress:
        return StageProgress(name, listener=listener, event_bus=bus, cancel_event=cancel_event)

    # --- Workflow: scan ---

    @log_call(level=logging.INFO)
    def scan_library(
        self,
        root: Optional[Path] = None,
        cancel_event: Optional[threading.Event] = None,
        listener: Optional[ProgressListener] = None,
    ) -> tuple[WorkerResult, list[LogicalUnit]]:
        """Group the files under ``root`` into units and record them."""
        self._begin("scan")
        root = Path(root).expanduser().resolve() if root else self.session.base_path
        result = WorkerResult(task_name="scan")
        start = time.perf_counter()

        try:
            with self._stage("scan", listener, cancel_event) as progress:
                units = self.grouper.scan(root, cancel_event=cancel_event, progress=progress)
        except WorkflowCancelledError:
            self.logger.warning("Scan of %s cancelled", root)
            result.cancelled = True
            units = []
        except DirectoryReadError as e:
            self.logger.warning("Scan of %s aborted: %s", root, e)
            result.add_item_result(e.path, "failed", error=str(e), outcome="unreadable")
            units = []

        for unit in units:
            self.db.upsert_unit(unit)
            result.add_item_result(
                unit.key,
                "success",
                system=unit.system,
                outcome="grouped",
                files=len(unit.files),
                unresolved=list(unit.unresolved),
            )
            if unit.unresolved:
                self.logger.warning(
                    "%s references missing files: %s", unit.primary.name, ", ".join(unit.unresolved)
                )
        result.duration_ms = (time.perf_counter() - start) * 1000
        self._finish(result)
        return result, units

    # --- Workflow: hash ---

    @log_call(level=logging.INFO)
    def hash_library(
        self,
        units: Iterable[LogicalUnit],
        force: bool = False,
        cancel_event: Optional[threading.Event] = None,
        listener: Optional[ProgressListener] = None,
    ) -> WorkerResult:
        """Hash units whose stored hashes are missing or stale."""
        self._begin("hash")
        units = list(units)
        pending = []
        cached = []
        for unit in units:
            if unit.id is None:
                self.db.upsert_unit(unit)
            if not force and self.db.load_hashes(unit):
                cached.append(unit)
            else:
                pending.append(unit)

        result = self.pipeline.hash_units(
            pending, cancel_event, self._stage("hash", listener, cancel_event)
        )
        for unit in cached:
            self._corrupt.pop(unit.key, None)
            result.add_item_result(unit.key, "skipped", system=unit.system, outcome="cached")

        for item in result.processed_items:
            if item.metadata.get("outcome") == "corrupt":
                self._corrupt[item.key] = item.error_message or "read error"
            else:
                self._corrupt.pop(item.key, None)
        for unit in pending:
            if unit.hashes is not None:
                self.db.save_hashes(unit)

        self._finish(result)
        return result

    # --- Workflow: verify ---

    @log_call(level=logging.INFO)
    def verify_library(
        self,
        units: Iterable[LogicalUnit],
        cancel_event: Optional[threading.Event] = None,
        listener: Optional[ProgressListener] = None,
    ) -> tuple[WorkerResult, VerificationSummary]:
        """Verify units against their system catalogs and store the results.

        Raises:
            CatalogLoadError: a catalog that exists on disk cannot be loaded.
        """
        self._begin("verify")
        units = list(units)
        result, verdicts = self.pipeline.verify_units(
            units,
            self.registry,
            self._corrupt,
            cancel_event,
            self._stage("verify", listener, cancel_event),
        )
        for unit in units:
            verdict = verdicts.get(unit.key)
            if verdict is None:
                continue
            if unit.id is None:
                self.db.upsert_unit(unit)
            self.db.save_verification(unit.id, verdict)

        summary = VerificationSummary.fold(verdicts.items())
        self.logger.info("Verification: %s", summary.as_dict())
        self._finish(result)
        return result, summary

    # --- Workflow: identify ---

    def _persist_match(self, unit: LogicalUnit, candidate: MatchCandidate) -> MatchRecord:
        if unit.id is None:
            self.db.upsert_unit(unit)
        return self.db.record_candidate(unit.id, candidate)

    @log_call(level=logging.INFO)
    def identify_library(
        self,
        units: Iterable[LogicalUnit],
        enrich: bool = False,
        force: bool = False,
        cancel_event: Optional[threading.Event] = None,
        listener: Optional[ProgressListener] = None,
    ) -> WorkerResult:
        """Identify units one by one and record every proposed match.

        Hash-lookup answers are cached per hash and system, so a later run
        does not query the sources again for the same dump unless ``force``.
        """
        self._begin("identify")
        units = list(units)

        def lookup(unit: LogicalUnit) -> Optional[MatchCandidate]:
            if force or unit.hashes is None or not unit.hashes.calculated:
                return None
            candidate = self.db.get_cached_candidate(unit.hashes, unit.system)
            if candidate is not None:
                self.logger.debug("%s: cached answer from %s", unit.primary.name, candidate.source)
            return candidate

        def on_match(unit: LogicalUnit, candidate: MatchCandidate):
            if candidate.method is MatchMethod.HASH:
                self.db.cache_candidate(unit.hashes, unit.system, candidate)
            record = self._persist_match(unit, candidate)
            if enrich:
                self.enrich_game(record.game_id)

        result, _ = self.pipeline.match_units(
            units,
            self.matcher,
            cancel_event,
            self._stage("identify", listener, cancel_event),
            on_match,
            lookup,
        )
        self._finish(result)
        return result

    def enrich_game(self, game_id: int) -> list[str]:
        game = self.db.get_game(game_id)
        if game is None:
            raise EntryNotFoundError(str(game_id), "games")
        filled = self.matcher.enrich(game)
        if filled:
            self.db.update_game(game)
        return filled

    # --- Workflow: everything ---

    def run_all(
        self,
        root: Optional[Path] = None,
        identify: bool = True,
        cancel_event: Optional[threading.Event] = None,
        listener: Optional[ProgressListener] = None,
    ) -> dict[str, Any]:
        """Scan, hash, verify and (optionally) identify in one go."""
        results: dict[str, Any] = {}
        results["scan"], units = self.scan_library(root, cancel_event, listener)
        results["hash"] = self.hash_library(units, cancel_event=cancel_event, listener=listener)
        results["verify"], results["summary"] = self.verify_library(units, cancel_event, listener)
        if identify:
            results["identify"] = self.identify_library(units, cancel_event=cancel_event, listener=listener)
        return results

    # --- User decisions ---

    def _unit_id(self, key_or_path: str | Path) -> int:
        key = str(key_or_path)
        unit_id = self.db.find_unit_id(key)
        if unit_id is None:
            unit_id = self.db.find_unit_id(str(Path(key).expanduser().resolve()))
        if unit_id is None:
            raise EntryNotFoundError(key, "files")
        return unit_id

    def confirm(self, key_or_path: str | Path) -> MatchRecord:
        set_correlation_id()
        return self.db.confirm(self._unit_id(key_or_path))

    def reject(self, key_or_path: str | Path) -> MatchRecord:
        set_correlation_id()
        return self.db.reject(self._unit_id(key_or_path))

    def describe(self, key_or_path: str | Path) -> dict[str, Any]:
        """Everything stored about one unit, for display."""
        unit_id = self._unit_id(key_or_path)
        stored = self.db.get_unit(unit_id)
        matches = self.db.get_matches(unit_id)
        games: dict[int, Optional[GameRecord]] = {m.game_id: self.db.get_game(m.game_id) for m in matches}
        return {
            "unit": stored,
            "verification": self.db.get_verification(unit_id),
            "matches": matches,
            "games": games,
            "resolved": self.db.get_resolved_match(unit_id),
            "actions": self.db.get_actions(unit_id),
        }
