"""Title helpers: base titles for units and normalized keys for lookups."""

from __future__ import annotations

import re
from pathlib import PurePath

# (Disc 1), [CD2], (Disk A of B), (Side B), (Part 3 of 4)
DISC_PATTERN = re.compile(
    r"\s*[\(\[]\s*(?:Disc|CD|Disk|Part|Side)\s*[0-9A-Z]+(?:\s*of\s*[0-9A-Z]+)?\s*[\)\]]",
    re.IGNORECASE,
)
# (Track 01), [Track 2], or a bare trailing "Track 03"
TRACK_PATTERN = re.compile(
    r"\s*(?:[\(\[]\s*Track\s*\d+\s*[\)\]]|\bTrack\s*\d+\s*$)", re.IGNORECASE
)
TAG_PATTERN = re.compile(r"\s*(?:\([^)]*\)|\[[^\]]*\])")
_SPACES = re.compile(r"\s+")
_NON_ALNUM = re.compile(r"[^a-z0-9 ]+")


def base_title(filename: str) -> str:
    """Filename without extension and without disc/track markers.

    Region and revision tags are kept: ``"Game (USA) (Disc 2).cue"`` gives
    ``"Game (USA)"``.
    """
    stem = PurePath(filename).stem
    title = DISC_PATTERN.sub("", stem)
    title = TRACK_PATTERN.sub("", title)
    title = _SPACES.sub(" ", title).strip(" -_")
    return title or stem


def clean_title(name: str) -> str:
    """Readable search title: tags removed, separators turned into spaces."""
    title = TAG_PATTERN.sub("", name)
    title = title.replace("_", " ").replace(".", " ")
    return _SPACES.sub(" ", title).strip()


def title_key(name: str) -> str:
    """Case- and punctuation-insensitive key used to compare titles."""
    key = clean_title(name).lower()
    key = _NON_ALNUM.sub(" ", key)
    return _SPACES.sub(" ", key).strip()
