"""Domain records shared by every stage of the identification pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional


class HashAlgorithm(str, Enum):
    CRC32 = "crc32"
    MD5 = "md5"
    SHA1 = "sha1"

    @property
    def hex_length(self) -> int:
        return HASH_LENGTHS[self]

    @property
    def display_name(self) -> str:
        return self.value.upper()


HASH_LENGTHS = {
    HashAlgorithm.CRC32: 8,
    HashAlgorithm.MD5: 32,
    HashAlgorithm.SHA1: 40,
}

_HEX = frozenset("0123456789abcdef")


def normalize_hash(value: Optional[str]) -> str:
    """Lower-case and trim a hex digest; ``None`` becomes ``""``."""
    if not value:
        return ""
    return value.strip().lower()


def detect_algorithm(value: str) -> Optional[HashAlgorithm]:
    """Infer the algorithm of a hex digest from its length alone."""
    value = normalize_hash(value)
    if not value or not set(value) <= _HEX:
        return None
    for algo, length in HASH_LENGTHS.items():
        if len(value) == length:
            return algo
    return None


def display_hash(value: str) -> str:
    """Human-facing form of a digest (upper-case hex)."""
    return normalize_hash(value).upper()


class MatchMethod(str, Enum):
    HASH = "hash"
    NAME_EXACT = "name-exact"
    NAME_FUZZY = "name-fuzzy"
    MANUAL = "manual"
    NONE = "none"


class VerificationStatus(str, Enum):
    VERIFIED = "Verified"
    MISMATCH = "Mismatch"
    NOT_IN_CATALOG = "NotInCatalog"
    HASH_MISSING = "HashMissing"
    CORRUPT = "Corrupt"
    HEADER_MISMATCH = "HeaderMismatch"


@dataclass(frozen=True)
class RawFile:
    """One physical file, on disk or inside an archive."""

    path: Path
    size: int
    extension: str
    mtime: float
    container: Optional[Path] = None
    internal_path: Optional[str] = None

    @classmethod
    def from_path(cls, path: Path) -> "RawFile":
        st = path.stat()
        return cls(
            path=path,
            size=st.st_size,
            extension=path.suffix.lower(),
            mtime=st.st_mtime,
        )

    @classmethod
    def archive_member(
        cls, container: Path, internal_path: str, size: int, mtime: float
    ) -> "RawFile":
        return cls(
            path=container / internal_path,
            size=size,
            extension=os.path.splitext(internal_path)[1].lower(),
            mtime=mtime,
            container=container,
            internal_path=internal_path,
        )

    @property
    def is_archive_member(self) -> bool:
        return self.container is not None

    @property
    def key(self) -> str:
        """Unique identity of the file: container plus inner path for members."""
        if self.container is not None:
            return f"{self.container}!{self.internal_path}"
        return str(self.path)

    @property
    def name(self) -> str:
        if self.internal_path is not None:
            return Path(self.internal_path).name
        return self.path.name


@dataclass(frozen=True)
class HashSet:
    """Digests of a unit's primary content.

    Values are stored lower-case; an empty string means "not computed".
    """

    crc32: str = ""
    md5: str = ""
    sha1: str = ""
    header_stripped: bool = False

    def __post_init__(self):
        for algo in HashAlgorithm:
            value = normalize_hash(getattr(self, algo.value))
            if value and len(value) != algo.hex_length:
                raise ValueError(
                    f"{algo.display_name} must be {algo.hex_length} hex chars, got {value!r}"
                )
            object.__setattr__(self, algo.value, value)

    @property
    def calculated(self) -> bool:
        return bool(self.crc32 or self.md5 or self.sha1)

    def get(self, algo: HashAlgorithm) -> str:
        return getattr(self, algo.value)

    def items(self) -> Iterator[tuple[HashAlgorithm, str]]:
        for algo in HashAlgorithm:
            value = self.get(algo)
            if value:
                yield algo, value


@dataclass
class LogicalUnit:
    """A game image as the user thinks of it: a primary file plus linked tracks."""

    primary: RawFile
    base_title: str
    linked: list[RawFile] = field(default_factory=list)
    system: Optional[str] = None
    system_candidates: tuple[str, ...] = ()
    unresolved: list[str] = field(default_factory=list)
    id: Optional[int] = None
    hashes: Optional[HashSet] = None
    headerless_hashes: Optional[HashSet] = None
    header_size: int = 0

    @property
    def key(self) -> str:
        return self.primary.key

    @property
    def files(self) -> list[RawFile]:
        return [self.primary, *self.linked]

    def members(self) -> Iterator[tuple[RawFile, bool]]:
        """Yield ``(file, is_primary)`` for every member."""
        yield self.primary, True
        for f in self.linked:
            yield f, False

    @property
    def total_size(self) -> int:
        return sum(f.size for f in self.files)


@dataclass(frozen=True)
class CatalogHeader:
    name: str = ""
    description: str = ""
    version: str = ""
    author: str = ""
    category: str = ""
    url: str = ""
    homepage: str = ""
    date: Optional[date] = None
    source: str = "unknown"


@dataclass(frozen=True)
class CatalogEntry:
    """One authoritative ROM/disk record from a checksum catalog."""

    title: str
    name: str
    size: int = 0
    crc32: str = ""
    md5: str = ""
    sha1: str = ""
    status: str = ""
    serial: str = ""

    def get(self, algo: HashAlgorithm) -> str:
        return getattr(self, algo.value)


@dataclass
class MatchCandidate:
    """A proposed identity returned by one source."""

    source: str
    title: str
    method: MatchMethod
    source_id: str = ""
    system: Optional[str] = None
    region: Optional[str] = None
    publisher: Optional[str] = None
    developer: Optional[str] = None
    genre: Optional[str] = None
    rating: Optional[float] = None
    release_date: Optional[str] = None
    description: Optional[str] = None
    score: float = 0.0
    confidence: int = 0


@dataclass
class GameRecord:
    title: str
    system: Optional[str] = None
    region: Optional[str] = None
    publisher: Optional[str] = None
    developer: Optional[str] = None
    genre: Optional[str] = None
    rating: Optional[float] = None
    release_date: Optional[str] = None
    description: Optional[str] = None
    source: str = ""
    source_id: str = ""
    id: Optional[int] = None

    ENRICHABLE_FIELDS = (
        "region",
        "publisher",
        "developer",
        "genre",
        "rating",
        "release_date",
        "description",
    )

    @classmethod
    def from_candidate(cls, candidate: MatchCandidate) -> "GameRecord":
        return cls(
            title=candidate.title,
            system=candidate.system,
            region=candidate.region,
            publisher=candidate.publisher,
            developer=candidate.developer,
            genre=candidate.genre,
            rating=candidate.rating,
            release_date=candidate.release_date,
            description=candidate.description,
            source=candidate.source,
            source_id=candidate.source_id,
        )

    def missing_fields(self) -> list[str]:
        return [f for f in self.ENRICHABLE_FIELDS if getattr(self, f) in (None, "")]


@dataclass
class MatchRecord:
    """Persisted identity for a unit. Several may exist; one resolves as best."""

    unit_id: int
    game_id: int
    method: MatchMethod
    confidence: int
    confirmed: bool = False
    rejected: bool = False
    created_at: float = 0.0
    id: Optional[int] = None


@dataclass(frozen=True)
class VerificationResult:
    status: VerificationStatus
    entry: Optional[CatalogEntry] = None
    hash_type: Optional[HashAlgorithm] = None
    detail: str = ""
