"""Interface to the archive collaborator.

The pipeline never runs compression tools itself. It asks an object
implementing :class:`ArchiveHandler` to list or extract members and gets
plain records back.
"""

from __future__ import annotations

import datetime
import shutil
import tempfile
import zipfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional, Protocol

from emuident.common.exceptions import ExtractionError
from emuident.core.models import RawFile


@dataclass(frozen=True)
class ArchiveMember:
    internal_path: str
    size: int
    mtime: float = 0.0


@dataclass
class ExtractionResult:
    success: bool
    paths: list[Path] = field(default_factory=list)
    error: Optional[str] = None


class ArchiveHandler(Protocol):
    def can_handle(self, container: Path) -> bool: ...

    def list_members(self, container: Path) -> list[ArchiveMember]: ...

    def extract(self, container: Path, members: list[str], dest: Path) -> ExtractionResult: ...


class ZipArchiveHandler:
    """Handler for ``.zip`` containers backed by :mod:`zipfile`."""

    def can_handle(self, container: Path) -> bool:
        return container.suffix.lower() == ".zip"

    def list_members(self, container: Path) -> list[ArchiveMember]:
        with zipfile.ZipFile(container) as zf:
            members = []
            for info in zf.infolist():
                if info.is_dir():
                    continue
                mtime = 0.0
                try:
                    mtime = datetime.datetime(*info.date_time).timestamp()
                except (ValueError, OverflowError):
                    pass
                members.append(ArchiveMember(info.filename, info.file_size, mtime))
            return members

    def extract(self, container: Path, members: list[str], dest: Path) -> ExtractionResult:
        try:
            with zipfile.ZipFile(container) as zf:
                paths = [Path(zf.extract(m, dest)) for m in members]
        except (OSError, KeyError, zipfile.BadZipFile) as e:
            return ExtractionResult(False, error=str(e))
        return ExtractionResult(True, paths)


@contextmanager
def extracted(handler: ArchiveHandler, member: RawFile) -> Iterator[Path]:
    """Extract one archive member to a scratch directory for the duration of the block."""
    if not member.is_archive_member:
        yield member.path
        return

    scratch = Path(tempfile.mkdtemp(prefix="emuident-"))
    try:
        result = handler.extract(member.container, [member.internal_path], scratch)
        if not result.success or not result.paths:
            raise ExtractionError(
                str(member.container), member.internal_path, result.error or "no output"
            )
        yield result.paths[0]
    finally:
        shutil.rmtree(scratch, ignore_errors=True)
