from __future__ import annotations

import time
from pathlib import Path
from typing import Optional

from emuident.core.models import HashSet, LogicalUnit, MatchCandidate, MatchMethod, RawFile
from emuident.matching.sources.base import IdentitySource

# "123456789" check values
CHECK_DATA = b"123456789"
CHECK_CRC32 = "cbf43926"
CHECK_MD5 = "25f9e794323b453885f5181f1b624d0b"
CHECK_SHA1 = "f7c3bc1d808e04732adf679965ccc34ca7ae3441"

EMPTY_CRC32 = "00000000"
EMPTY_MD5 = "d41d8cd98f00b204e9800998ecf8427e"
EMPTY_SHA1 = "da39a3ee5e6b4b0d3255bfef95601890afd80709"


def write_dat(path: Path, games: list[tuple[str, list[dict]]], name: str = "Nintendo - Game Boy",
              description: str = "No-Intro Game Boy", date: str = "20240101") -> Path:
    """Write a small Logiqx catalog; each rom dict holds its XML attributes."""
    lines = [
        '<?xml version="1.0"?>',
        "<datafile>",
        "  <header>",
        f"    <name>{name}</name>",
        f"    <description>{description}</description>",
        "    <version>20240101-000000</version>",
        f"    <date>{date}</date>",
        "  </header>",
    ]
    for title, roms in games:
        lines.append(f'  <game name="{title}">')
        for rom in roms:
            attrs = " ".join(f'{k}="{v}"' for k, v in rom.items())
            lines.append(f"    <rom {attrs}/>")
        lines.append("  </game>")
    lines.append("</datafile>")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def make_unit(path: str = "/roms/Game (USA).gb", system: Optional[str] = "gb",
              hashes: Optional[HashSet] = None, size: int = 9, title: Optional[str] = None) -> LogicalUnit:
    p = Path(path)
    raw = RawFile(path=p, size=size, extension=p.suffix.lower(), mtime=time.time())
    return LogicalUnit(
        primary=raw,
        base_title=title if title is not None else p.stem,
        system=system,
        hashes=hashes,
    )


class FakeSource(IdentitySource):
    """In-memory source driven by canned answers."""

    def __init__(self, name: str, priority: int = 0, hash_answer=None, name_answer=None,
                 available: bool = True, error: Optional[Exception] = None, timeout: float = 5.0,
                 delay: float = 0.0, hash_lookup: bool = True, name_search: bool = True):
        self.name = name
        self.supports_hash_lookup = hash_lookup
        self.supports_name_search = name_search
        super().__init__(priority=priority, interval=0.0, timeout=timeout)
        self.hash_answer = hash_answer
        self.name_answer = name_answer
        self.available = available
        self.error = error
        self.delay = delay
        self.calls: list[tuple] = []

    def describe(self) -> str:
        return f"fake {self.name}"

    def is_available(self) -> bool:
        return self.available

    def _maybe_fail(self):
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error

    def lookup_by_hash(self, hashes, system=None):
        self.calls.append(("hash", hashes, system))
        self._maybe_fail()
        return self.hash_answer

    def search_by_name(self, title, system=None):
        self.calls.append(("name", title, system))
        self._maybe_fail()
        return list(self.name_answer or [])


def candidate(title: str, source: str = "fake", **kwargs) -> MatchCandidate:
    kwargs.setdefault("method", MatchMethod.NAME_FUZZY)
    return MatchCandidate(source=source, title=title, **kwargs)


class FakeClock:
    """Monotonic clock whose sleeps only move time forward."""

    def __init__(self):
        self.now = 100.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds
