from __future__ import annotations

import os
import posixpath
import re
import threading
from pathlib import Path
from typing import Callable, Iterable, Optional

from emuident.config import ARCHIVE_EXTENSIONS, DEFAULT_EXTENSIONS, EXCLUDE_MARKER, MANIFEST_EXTENSIONS
from emuident.common.events import StageProgress
from emuident.common.exceptions import (
    DirectoryReadError,
    ManifestParseError,
    WorkflowCancelledError,
)
from emuident.core.archive import ArchiveHandler
from emuident.core.models import LogicalUnit, RawFile
from emuident.core.naming import base_title
from emuident.core.systems import rank_systems
from emuident.logging_cfg import get_logger

CUE_FILE_LINE = re.compile(r'^\s*FILE\s+(?:"([^"]+)"|(\S+))', re.IGNORECASE)

# manifest extension -> data extensions linked by same directory + base name
SAME_NAME_RULES = {
    ".cue": (".bin", ".img"),
    ".ccd": (".img", ".sub"),
    ".mds": (".mdf",),
}


def parse_cue(text: str) -> list[str]:
    """Track filenames referenced by ``FILE`` lines of a cue sheet."""
    names = []
    for line in text.splitlines():
        m = CUE_FILE_LINE.match(line)
        if m:
            names.append(m.group(1) or m.group(2))
    return names


def parse_gdi(text: str) -> list[str]:
    """Track filenames of a GD-ROM descriptor.

    The first line holds the track count. Every following line is
    ``<track> <lba> <type> <sector size> <file> <offset>``, where the file
    name may be quoted and contain spaces.
    """
    names = []
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    for line in lines[1:]:
        name = ""
        if '"' in line:
            start = line.index('"') + 1
            end = line.find('"', start)
            if end > start:
                name = line[start:end]
        if not name:
            parts = line.split()
            for part in parts:
                if "." in part and not part[0].isdigit():
                    name = part
                    break
            if not name and len(parts) >= 5:
                name = parts[4]
        if name:
            names.append(name)
    return names


def parse_m3u(text: str) -> list[str]:
    return [
        line.strip()
        for line in text.splitlines()
        if line.strip() and not line.lstrip().startswith("#")
    ]


_PARSERS = {".cue": parse_cue, ".gdi": parse_gdi, ".m3u": parse_m3u}


class FileSetGrouper:
    """Turns a directory tree into logical units.

    The tree is walked once, in sorted order, keeping files whose extension
    is allowed. Manifests (cue, gdi, ccd, mds, m3u) are then linked to their
    data files. A data file claimed by two manifests stays with the first one
    in walk order. Files nobody claims become single-file units.
    """

    def __init__(
        self,
        extensions: Optional[Iterable[str]] = None,
        archive_handler: Optional[ArchiveHandler] = None,
        exclude_marker: str = EXCLUDE_MARKER,
    ):
        exts = DEFAULT_EXTENSIONS if extensions is None else extensions
        self.extensions = frozenset(
            e.lower() if e.startswith(".") else f".{e.lower()}" for e in exts
        )
        self.archive_handler = archive_handler
        self.exclude_marker = exclude_marker
        self.logger = get_logger("core.grouper")

    # --- first pass ---

    def walk(
        self,
        root: Path,
        excluded: Optional[set[Path]] = None,
        cancel_event: Optional[threading.Event] = None,
        on_file: Optional[Callable[[RawFile], None]] = None,
    ) -> list[RawFile]:
        """Collect candidate files under ``root``.

        ``excluded`` is owned by the caller: directories already in it are
        skipped and directories holding the exclude marker are added to it.

        Raises:
            DirectoryReadError: ``root`` or one of its subdirectories cannot be listed.
            WorkflowCancelledError: ``cancel_event`` was set.
        """
        root = Path(root)
        if excluded is None:
            excluded = set()
        if not root.is_dir():
            raise DirectoryReadError(str(root), "not a directory")

        files: list[RawFile] = []
        pending = [root]
        while pending:
            if cancel_event is not None and cancel_event.is_set():
                raise WorkflowCancelledError("scan")
            directory = pending.pop()
            if directory in excluded:
                continue
            try:
                with os.scandir(directory) as it:
                    entries = sorted(it, key=lambda e: e.name)
            except OSError as e:
                raise DirectoryReadError(str(directory), str(e)) from e

            if any(e.name == self.exclude_marker for e in entries):
                self.logger.info("Skipping excluded directory %s", directory)
                excluded.add(directory)
                continue

            subdirs = []
            for entry in entries:
                path = Path(entry.path)
                if entry.is_dir(follow_symlinks=False):
                    subdirs.append(path)
                    continue
                if not entry.is_file():
                    continue
                ext = path.suffix.lower()
                if ext in ARCHIVE_EXTENSIONS and self.archive_handler is not None:
                    new = self._archive_members(path)
                elif ext in self.extensions:
                    try:
                        new = [RawFile.from_path(path)]
                    except OSError as e:
                        self.logger.warning("Cannot stat %s: %s", path, e)
                        continue
                else:
                    continue
                for raw in new:
                    files.append(raw)
                    if on_file is not None:
                        on_file(raw)
            # depth-first, alphabetical
            pending.extend(reversed(subdirs))
        return files

    def _archive_members(self, container: Path) -> list[RawFile]:
        if not self.archive_handler.can_handle(container):
            self.logger.debug("No archive handler for %s", container)
            return []
        try:
            members = self.archive_handler.list_members(container)
        except Exception as e:
            self.logger.warning("Could not list archive %s: %s", container, e)
            return []
        out = []
        for m in sorted(members, key=lambda m: m.internal_path):
            if posixpath.splitext(m.internal_path)[1].lower() in self.extensions:
                out.append(RawFile.archive_member(container, m.internal_path, m.size, m.mtime))
        return out

    # --- second pass ---

    @staticmethod
    def _location(f: RawFile) -> tuple:
        if f.is_archive_member:
            return (str(f.container), posixpath.dirname(f.internal_path))
        return (None, os.path.normpath(str(f.path.parent)))

    @classmethod
    def _stem_key(cls, f: RawFile) -> tuple:
        return cls._location(f) + (posixpath.splitext(f.name)[0],)

    @classmethod
    def _ref_key(cls, manifest: RawFile, name: str) -> tuple:
        container, directory = cls._location(manifest)
        name = name.replace("\\", "/")
        if container is not None:
            return (container, posixpath.normpath(posixpath.join(directory, name)))
        return (None, os.path.normpath(os.path.join(directory, name)))

    @classmethod
    def _file_key(cls, f: RawFile) -> tuple:
        if f.is_archive_member:
            return (str(f.container), posixpath.normpath(f.internal_path))
        return (None, os.path.normpath(str(f.path)))

    def read_manifest(self, manifest: RawFile) -> list[str]:
        """Track names listed inside a text manifest.

        Raises:
            ManifestParseError: the manifest could not be read.
        """
        parser = _PARSERS.get(manifest.extension)
        if parser is None or manifest.is_archive_member:
            return []
        try:
            text = manifest.path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise ManifestParseError(str(manifest.path), str(e)) from e
        return parser(text)

    def group(self, files: list[RawFile]) -> list[LogicalUnit]:
        by_file = {self._file_key(f): f for f in files}
        by_stem: dict[tuple, list[RawFile]] = {}
        for f in files:
            by_stem.setdefault(self._stem_key(f), []).append(f)

        owner: dict[str, str] = {}  # file key -> manifest key
        linked: dict[str, list[RawFile]] = {}
        unresolved: dict[str, list[str]] = {}

        def claim(manifest: RawFile, target: RawFile) -> bool:
            if target.key == manifest.key or target.key in owner:
                return False
            owner[target.key] = manifest.key
            group = linked.setdefault(manifest.key, [])
            group.append(target)
            # a claimed manifest brings its own tracks along
            for track in linked.pop(target.key, []):
                owner[track.key] = manifest.key
                group.append(track)
            return True

        # m3u playlists last so they can absorb complete disc units
        manifests = [f for f in files if f.extension in MANIFEST_EXTENSIONS]
        manifests.sort(key=lambda f: f.extension == ".m3u")

        for manifest in manifests:
            if manifest.key in owner:
                continue
            try:
                names = self.read_manifest(manifest)
            except ManifestParseError as e:
                self.logger.warning("%s; keeping it as a single-file unit", e)
                continue

            for name in names:
                target = by_file.get(self._ref_key(manifest, name))
                if target is None:
                    unresolved.setdefault(manifest.key, []).append(name)
                    self.logger.debug("%s references missing track %s", manifest.name, name)
                    continue
                claim(manifest, target)

            for ext in SAME_NAME_RULES.get(manifest.extension, ()):
                stem = self._stem_key(manifest)
                for candidate in by_stem.get(stem, []):
                    if candidate.extension == ext:
                        claim(manifest, candidate)

        units = []
        for f in files:
            if f.key in owner:
                continue
            ranked = tuple(rank_systems(f.path, f.extension))
            units.append(
                LogicalUnit(
                    primary=f,
                    base_title=base_title(f.name),
                    linked=linked.get(f.key, []),
                    system=ranked[0] if ranked else None,
                    system_candidates=ranked,
                    unresolved=unresolved.get(f.key, []),
                )
            )
        return units

    def scan(
        self,
        root: Path,
        excluded: Optional[set[Path]] = None,
        cancel_event: Optional[threading.Event] = None,
        progress: Optional[StageProgress] = None,
    ) -> list[LogicalUnit]:
        """Walk ``root`` and return its logical units in walk order."""
        on_file = None
        if progress is not None:
            on_file = lambda raw: progress.advance(message=raw.name)  # noqa: E731
        files = self.walk(root, excluded, cancel_event, on_file)
        units = self.group(files)
        self.logger.info(
            "Grouped %d files under %s into %d units", len(files), root, len(units)
        )
        return units
