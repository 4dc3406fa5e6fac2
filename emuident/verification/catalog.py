from __future__ import annotations

import re
import threading
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from emuident.common.exceptions import CatalogLoadError, CatalogParseError
from emuident.core.models import CatalogEntry, CatalogHeader, HashAlgorithm, HashSet, normalize_hash
from emuident.core.naming import title_key
from emuident.core.systems import get_system
from emuident.logging_cfg import get_logger
from emuident.verification.dat_parser import CatalogParseResult, parse_dat_file

logger = get_logger("verification.catalog")

CATALOG_SUFFIXES = (".dat", ".xml")
CATALOG_SUBDIRS = ("no-intro", "redump")

_SPACES = re.compile(r"\s+")


def exact_title_key(name: str) -> str:
    """Case-insensitive key that keeps region and revision tags."""
    return _SPACES.sub(" ", name).strip().lower()


_EXTENSION = re.compile(r"\.[A-Za-z0-9]{1,4}$")


def _stem(name: str) -> str:
    """Name without a trailing file extension ("Dr. Mario" is left alone)."""
    return _EXTENSION.sub("", name)


def _freeze(index: dict) -> Mapping[str, tuple]:
    return MappingProxyType({k: tuple(v) for k, v in index.items()})


class CatalogIndex:
    """Read-only view of one catalog, indexed by every hash and by title.

    Built once and never mutated, so it can be shared between threads.
    Reloading a catalog builds a new index (see :class:`CatalogRegistry`).
    """

    def __init__(self, header: CatalogHeader, entries: Iterable[CatalogEntry]):
        self.header = header
        self.entries: tuple[CatalogEntry, ...] = tuple(entries)

        by_hash: dict[HashAlgorithm, dict[str, list]] = {a: {} for a in HashAlgorithm}
        by_title: dict[str, list] = {}
        by_loose_title: dict[str, list] = {}
        for entry in self.entries:
            for algo in HashAlgorithm:
                value = entry.get(algo)
                if value:
                    by_hash[algo].setdefault(value, []).append(entry)
            for name in {entry.title, _stem(entry.name)}:
                if name:
                    by_title.setdefault(exact_title_key(name), []).append(entry)
            by_loose_title.setdefault(title_key(entry.title), []).append(entry)

        self._by_hash = MappingProxyType({a: _freeze(v) for a, v in by_hash.items()})
        self._by_title = _freeze(by_title)
        self._by_loose_title = _freeze(by_loose_title)

    @classmethod
    def from_result(cls, result: CatalogParseResult) -> "CatalogIndex":
        return cls(result.header, result.entries)

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def name(self) -> str:
        return self.header.name

    def lookup(self, algo: HashAlgorithm, value: str) -> tuple[CatalogEntry, ...]:
        value = normalize_hash(value)
        if not value:
            return ()
        return self._by_hash[algo].get(value, ())

    def lookup_hashes(self, hashes: HashSet) -> tuple[Optional[HashAlgorithm], tuple[CatalogEntry, ...]]:
        """First algorithm (SHA1, MD5, CRC32) with a hit, and its entries."""
        for algo in (HashAlgorithm.SHA1, HashAlgorithm.MD5, HashAlgorithm.CRC32):
            found = self.lookup(algo, hashes.get(algo))
            if found:
                return algo, found
        return None, ()

    def entries_for_title(self, name: str) -> tuple[CatalogEntry, ...]:
        """Entries whose game title or file name (without extension) equals ``name``."""
        return self._by_title.get(exact_title_key(_stem(name)), ())

    def search_titles(self, query: str, limit: int = 10) -> list[tuple[str, float]]:
        """Titles matching ``query`` as ``(title, score)``: exact 1.0, prefix 0.9, substring 0.7."""
        q = title_key(query)
        if not q:
            return []
        scored: dict[str, float] = {}
        for key, entries in self._by_loose_title.items():
            if key == q:
                score = 1.0
            elif key.startswith(q):
                score = 0.9
            elif q in key:
                score = 0.7
            else:
                continue
            for entry in entries:
                scored[entry.title] = max(scored.get(entry.title, 0.0), score)
        ranked = sorted(scored.items(), key=lambda kv: (-kv[1], kv[0]))
        return ranked[:limit]


def _matches_dat_name(stem: str, dat_name: str) -> bool:
    if stem == dat_name:
        return True
    if not stem.startswith(dat_name):
        return False
    rest = stem[len(dat_name):]
    return rest.startswith((" (", " - ", " [", "_("))


def find_dat_for_system(dats_root: Path, system_name: str) -> Optional[Path]:
    """
    Find the best matching DAT file for a given system name.
    Searches in root, no-intro and redump subfolders; the newest name wins.
    """
    sysdef = get_system(system_name)
    if sysdef is None:
        return None

    search_dirs = [dats_root]
    search_dirs.extend(dats_root / sub for sub in CATALOG_SUBDIRS)

    candidates = []
    for source_dir in search_dirs:
        if not source_dir.is_dir():
            continue
        for dat_file in source_dir.iterdir():
            if dat_file.suffix.lower() not in CATALOG_SUFFIXES or not dat_file.is_file():
                continue
            if any(_matches_dat_name(dat_file.stem, kw) for kw in sysdef.dat_names):
                candidates.append(dat_file)

    if not candidates:
        return None

    # Sorting by name puts the newest date first for "Name (YYYYMMDD...)" files
    candidates.sort(key=lambda p: p.name, reverse=True)
    return candidates[0]


class CatalogRegistry:
    """Per-system catalog indexes.

    ``get`` returns the current index object; callers keep using it for the
    duration of a run. ``load`` builds a fresh index first and then swaps the
    reference, so a reader never sees a half-built index.
    """

    def __init__(self, dats_root: Optional[Path] = None):
        self.dats_root = Path(dats_root) if dats_root else None
        self._lock = threading.Lock()
        self._indexes: Mapping[str, CatalogIndex] = MappingProxyType({})
        self._paths: dict[str, Path] = {}

    def get(self, system: Optional[str]) -> Optional[CatalogIndex]:
        if not system:
            return None
        return self._indexes.get(system.lower())

    def systems(self) -> list[str]:
        return sorted(self._indexes)

    def all(self) -> list[CatalogIndex]:
        return list(self._indexes.values())

    def install(self, system: str, index: CatalogIndex) -> None:
        with self._lock:
            updated = dict(self._indexes)
            updated[system.lower()] = index
            self._indexes = MappingProxyType(updated)

    def load(self, system: str, path: Path, strict: bool = False) -> CatalogIndex:
        """Parse ``path`` and make it the catalog for ``system``.

        Raises:
            CatalogLoadError: the catalog is unreadable or unparseable.
        """
        try:
            result = parse_dat_file(path, strict=strict)
        except CatalogParseError as e:
            raise CatalogLoadError(str(path), str(e)) from e
        index = CatalogIndex.from_result(result)
        self.install(system, index)
        self._paths[system.lower()] = Path(path)
        logger.info("Catalog for %s: %s (%d entries)", system, Path(path).name, len(index))
        return index

    def ensure(self, system: Optional[str]) -> Optional[CatalogIndex]:
        """Current index for ``system``, loading it from ``dats_root`` on first use."""
        if not system:
            return None
        index = self.get(system)
        if index is not None or self.dats_root is None:
            return index
        path = find_dat_for_system(self.dats_root, system)
        if path is None:
            logger.debug("No catalog found for %s under %s", system, self.dats_root)
            return None
        return self.load(system, path)

    def reload(self, system: str) -> Optional[CatalogIndex]:
        path = self._paths.get(system.lower())
        if path is None:
            return self.ensure(system)
        return self.load(system, path)
