from __future__ import annotations

import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, Mapping, Optional

from emuident.common.events import StageProgress
from emuident.common.exceptions import EmuIdentError, HashError
from emuident.common.types import WorkerResult
from emuident.config import HASH_BLOCK_SIZE, MAX_HASH_WORKERS
from emuident.core.archive import ArchiveHandler, extracted
from emuident.core.headers import detect_header
from emuident.core.models import LogicalUnit, MatchCandidate, VerificationResult
from emuident.logging_cfg import get_logger
from emuident.matching.orchestrator import MatchOrchestrator
from emuident.verification import engine
from emuident.verification.catalog import CatalogRegistry
from emuident.verification.hasher import hash_with_header

CANCELLED = "cancelled"


def default_workers() -> int:
    """Worker count: the CPUs available, capped to keep disks from thrashing."""
    return max(1, min(os.cpu_count() or 1, MAX_HASH_WORKERS))


class HashingPipeline:
    """Hash, verify and match stages over a list of logical units.

    Hashing and verification fan out over a bounded thread pool; each worker
    owns one unit at a time and reports into a :class:`WorkerResult`, whose
    lock is the only shared state. Matching runs sequentially so every
    identity source sees calls at its own pace.

    The cancel flag is checked before a unit starts, never in the middle of
    one.
    """

    def __init__(
        self,
        max_workers: Optional[int] = None,
        archive_handler: Optional[ArchiveHandler] = None,
        block_size: int = HASH_BLOCK_SIZE,
    ):
        self.max_workers = max_workers or default_workers()
        self.archive_handler = archive_handler
        self.block_size = block_size
        self.logger = get_logger("core.pipeline")

    # --- hashing ---

    def hash_unit(self, unit: LogicalUnit) -> LogicalUnit:
        """Hash ``unit``'s primary file, plus its headerless data when a header is found.

        Raises:
            FileReadError / FileNotFoundError: the file could not be opened.
            HashError: reading failed part way through.
            ExtractionError: an archive member could not be extracted.
        """
        primary = unit.primary
        if primary.is_archive_member and self.archive_handler is None:
            raise EmuIdentError(f"No archive handler for {primary.container}")

        with extracted(self.archive_handler, primary) as path:
            header = detect_header(path)
            raw, stripped = hash_with_header(path, header.size, self.block_size)

        unit.hashes = raw
        unit.headerless_hashes = stripped
        unit.header_size = header.size
        if header.has_header:
            self.logger.debug("%s: %s header, %d bytes", primary.name, header.kind, header.size)
        return unit

    def _run_pool(
        self,
        units: list[LogicalUnit],
        task: Callable[[LogicalUnit], None],
        result: WorkerResult,
        cancel_event: Optional[threading.Event],
    ):
        def guarded(unit: LogicalUnit):
            if cancel_event is not None and cancel_event.is_set():
                result.add_item_result(unit.key, "skipped", system=unit.system, outcome=CANCELLED)
                return
            task(unit)

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = [executor.submit(guarded, unit) for unit in units]
            for future in futures:
                # task() records its own failures; this only surfaces bugs
                future.result()
        result.cancelled = bool(cancel_event is not None and cancel_event.is_set())

    def hash_units(
        self,
        units: Iterable[LogicalUnit],
        cancel_event: Optional[threading.Event] = None,
        progress: Optional[StageProgress] = None,
    ) -> WorkerResult:
        units = list(units)
        result = WorkerResult(task_name="hash")
        start = time.perf_counter()
        if progress is not None:
            progress.start(len(units))

        def task(unit: LogicalUnit):
            t0 = time.perf_counter()
            status, outcome, error = "success", "hashed", None
            try:
                self.hash_unit(unit)
            except HashError as e:
                status, outcome, error = "failed", "corrupt", str(e)
            except (EmuIdentError, OSError) as e:
                status, outcome, error = "failed", "unreadable", str(e)
            except Exception as e:
                self.logger.warning("Unexpected error hashing %s", unit.key, exc_info=True)
                status, outcome, error = "failed", "error", str(e)
            if error:
                self.logger.warning("Could not hash %s: %s", unit.key, error)
            result.add_item_result(
                unit.key,
                status,
                (time.perf_counter() - t0) * 1000,
                system=unit.system,
                error=error,
                outcome=outcome,
            )
            if progress is not None:
                progress.advance(message=unit.primary.name)

        self._run_pool(units, task, result, cancel_event)
        result.duration_ms = (time.perf_counter() - start) * 1000
        if progress is not None:
            progress.finish(cancelled=result.cancelled)
        self.logger.info("%s", result)
        return result

    # --- verification ---

    def verify_units(
        self,
        units: Iterable[LogicalUnit],
        registry: CatalogRegistry,
        corrupt: Optional[Mapping[str, str]] = None,
        cancel_event: Optional[threading.Event] = None,
        progress: Optional[StageProgress] = None,
    ) -> tuple[WorkerResult, dict[str, VerificationResult]]:
        """Classify every unit against its system's catalog.

        Catalogs are loaded before the fan-out, so workers only read the
        registry. A :class:`CatalogLoadError` stops the stage.

        ``corrupt`` maps unit keys to the reason their hashing broke off.
        """
        units = list(units)
        corrupt = corrupt or {}
        for system in sorted({u.system for u in units if u.system}):
            registry.ensure(system)

        result = WorkerResult(task_name="verify")
        verdicts: dict[str, VerificationResult] = {}
        lock = threading.Lock()
        start = time.perf_counter()
        if progress is not None:
            progress.start(len(units))

        def task(unit: LogicalUnit):
            index = registry.get(unit.system)
            try:
                if unit.key in corrupt:
                    verdict = engine.corrupt(corrupt[unit.key])
                elif index is None:
                    verdict = None
                else:
                    verdict = engine.verify(unit, index)
            except Exception as e:
                self.logger.warning("Could not verify %s", unit.key, exc_info=True)
                result.add_item_result(unit.key, "failed", system=unit.system, error=str(e), outcome="error")
                if progress is not None:
                    progress.advance(message=unit.primary.name)
                return

            if verdict is None:
                result.add_item_result(
                    unit.key, "skipped", system=unit.system,
                    error=f"no catalog for {unit.system or 'unknown system'}",
                    outcome="NoCatalog",
                )
            else:
                with lock:
                    verdicts[unit.key] = verdict
                failed = verdict.status in engine.FAILED_STATUSES
                result.add_item_result(
                    unit.key, "failed" if failed else "success", system=unit.system,
                    error=(verdict.detail or verdict.status.value) if failed else None,
                    outcome=verdict.status.value,
                )
            if progress is not None:
                progress.advance(message=unit.primary.name)

        self._run_pool(units, task, result, cancel_event)
        result.duration_ms = (time.perf_counter() - start) * 1000
        if progress is not None:
            progress.finish(cancelled=result.cancelled)
        self.logger.info("%s", result)
        return result, verdicts

    # --- matching ---

    def match_units(
        self,
        units: Iterable[LogicalUnit],
        matcher: MatchOrchestrator,
        cancel_event: Optional[threading.Event] = None,
        progress: Optional[StageProgress] = None,
        on_match: Optional[Callable[[LogicalUnit, MatchCandidate], None]] = None,
        lookup: Optional[Callable[[LogicalUnit], Optional[MatchCandidate]]] = None,
    ) -> tuple[WorkerResult, dict[str, MatchCandidate]]:
        """Identify units one after another.

        ``lookup`` is asked first; when it knows the unit the sources are not
        queried and the item is reported as ``cached``.
        """
        units = list(units)
        result = WorkerResult(task_name="identify")
        matches: dict[str, MatchCandidate] = {}
        start = time.perf_counter()
        if progress is not None:
            progress.start(len(units))

        for unit in units:
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                break
            t0 = time.perf_counter()
            cached = False
            try:
                candidate = lookup(unit) if lookup is not None else None
                cached = candidate is not None
                if not cached:
                    candidate = matcher.identify(unit)
                if candidate is not None and on_match is not None:
                    on_match(unit, candidate)
            except Exception as e:
                self.logger.warning("Could not identify %s: %s", unit.key, e)
                result.add_item_result(
                    unit.key, "failed", (time.perf_counter() - t0) * 1000,
                    system=unit.system, error=str(e), outcome="error",
                )
            else:
                duration = (time.perf_counter() - t0) * 1000
                if candidate is None:
                    reasons = "; ".join(f"{f.source}: {f.reason}" for f in matcher.failures)
                    result.add_item_result(
                        unit.key, "skipped", duration, system=unit.system,
                        error=reasons or None, outcome="unmatched",
                    )
                else:
                    matches[unit.key] = candidate
                    result.add_item_result(
                        unit.key, "success", duration, system=unit.system,
                        outcome="cached" if cached else candidate.method.value,
                        title=candidate.title,
                        source=candidate.source, confidence=candidate.confidence,
                    )
            if progress is not None:
                progress.advance(message=unit.primary.name)

        result.duration_ms = (time.perf_counter() - start) * 1000
        if progress is not None:
            progress.finish(cancelled=result.cancelled)
        self.logger.info("%s", result)
        return result, matches
