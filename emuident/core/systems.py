"""Known systems and best-effort detection of a file's system.

An extension such as ``.iso`` or ``.bin`` belongs to several systems. Those
cases are resolved by :func:`rank_systems`, which returns every candidate
ordered by how likely it is rather than a single answer.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Optional

from emuident.config import EXT_TO_SYSTEMS
from emuident.core.models import HashAlgorithm


@dataclass(frozen=True)
class SystemDef:
    name: str
    display_name: str
    preferred_hash: HashAlgorithm
    multi_file: bool = False
    # Substrings of the canonical No-Intro / Redump DAT names
    dat_names: tuple[str, ...] = ()
    # Folder names that hint at this system
    keywords: tuple[str, ...] = field(default=())


def _cart(name, display, dat, *keywords) -> SystemDef:
    return SystemDef(name, display, HashAlgorithm.CRC32, False, (dat,), (name, *keywords))


def _disc(name, display, dat, *keywords, preferred=HashAlgorithm.SHA1) -> SystemDef:
    return SystemDef(name, display, preferred, True, (dat,), (name, *keywords))


SYSTEMS: dict[str, SystemDef] = {
    s.name: s
    for s in (
        _cart("nes", "Nintendo Entertainment System", "Nintendo - Nintendo Entertainment System", "famicom", "nintendo entertainment system"),
        _cart("fds", "Famicom Disk System", "Nintendo - Family Computer Disk System", "famicom disk system"),
        _cart("snes", "Super Nintendo", "Nintendo - Super Nintendo Entertainment System", "super nintendo", "super famicom", "sfc"),
        _cart("n64", "Nintendo 64", "Nintendo - Nintendo 64", "nintendo 64"),
        _cart("gb", "Game Boy", "Nintendo - Game Boy", "game boy", "gameboy"),
        _cart("gbc", "Game Boy Color", "Nintendo - Game Boy Color", "game boy color", "gameboy color"),
        _cart("gba", "Game Boy Advance", "Nintendo - Game Boy Advance", "game boy advance", "gameboy advance"),
        _cart("nds", "Nintendo DS", "Nintendo - Nintendo DS", "ds", "nintendo ds"),
        _cart("3ds", "Nintendo 3DS", "Nintendo - Nintendo 3DS", "nintendo 3ds"),
        _cart("megadrive", "Mega Drive / Genesis", "Sega - Mega Drive - Genesis", "genesis", "mega drive", "md"),
        _cart("mastersystem", "Master System", "Sega - Master System - Mark III", "master system", "sms"),
        _cart("gamegear", "Game Gear", "Sega - Game Gear", "game gear", "gg"),
        _cart("32x", "Sega 32X", "Sega - 32X", "sega 32x"),
        _cart("atari2600", "Atari 2600", "Atari - 2600", "2600", "atari 2600"),
        _cart("atari7800", "Atari 7800", "Atari - 7800", "7800", "atari 7800"),
        _cart("lynx", "Atari Lynx", "Atari - Lynx", "atari lynx"),
        _cart("pce", "PC Engine / TurboGrafx-16", "NEC - PC Engine - TurboGrafx-16", "pc engine", "turbografx", "tg16"),
        _disc("psx", "PlayStation", "Sony - PlayStation", "ps1", "playstation", "playstation 1"),
        _disc("ps2", "PlayStation 2", "Sony - PlayStation 2", "playstation 2"),
        _disc("psp", "PlayStation Portable", "Sony - PlayStation Portable", "playstation portable"),
        _disc("saturn", "Sega Saturn", "Sega - Saturn", "sega saturn"),
        _disc("segacd", "Sega CD / Mega-CD", "Sega - Mega-CD - Sega CD", "sega cd", "mega cd", "megacd"),
        _disc("dreamcast", "Dreamcast", "Sega - Dreamcast", "dc"),
        _disc("pcecd", "PC Engine CD", "NEC - PC Engine CD - TurboGrafx-CD", "pc engine cd", "turbografx cd"),
        _disc("gamecube", "GameCube", "Nintendo - GameCube", "gc", "ngc", preferred=HashAlgorithm.MD5),
        _disc("wii", "Wii", "Nintendo - Wii", preferred=HashAlgorithm.MD5),
        _disc("3do", "3DO", "Panasonic - 3DO Interactive Multiplayer", "panasonic 3do"),
    )
}

DEFAULT_HASH = HashAlgorithm.MD5

_TOKEN = re.compile(r"[a-z0-9]+")


def get_system(name: Optional[str]) -> Optional[SystemDef]:
    if not name:
        return None
    return SYSTEMS.get(name.lower())


def preferred_hash(system: Optional[str]) -> HashAlgorithm:
    sysdef = get_system(system)
    return sysdef.preferred_hash if sysdef else DEFAULT_HASH


def _folder_phrase(folder: str) -> str:
    return " " + " ".join(_TOKEN.findall(folder.lower())) + " "


def _keyword_score(sysdef: SystemDef, phrase: str) -> int:
    """Length of the longest keyword of ``sysdef`` found in ``phrase`` (0 if none)."""
    best = 0
    for kw in sysdef.keywords:
        token = " " + " ".join(_TOKEN.findall(kw.lower())) + " "
        if token.strip() and token in phrase:
            best = max(best, len(token))
    return best


def rank_systems(path: PurePath | str, extension: Optional[str] = None) -> list[str]:
    """Candidate systems for ``path``, most likely first.

    Candidates come from the extension table. The nearest parent folder whose
    name mentions a candidate (e.g. ``PS2/`` or ``Sony - PlayStation/``)
    promotes the matching systems, longest keyword first; the remaining
    candidates keep the table's priority order.
    """
    path = PurePath(path)
    ext = (extension or path.suffix).lower()
    candidates = list(EXT_TO_SYSTEMS.get(ext, ()))
    if len(candidates) <= 1:
        return candidates

    for folder in reversed(path.parent.parts):
        phrase = _folder_phrase(folder)
        scored = []
        for index, name in enumerate(candidates):
            sysdef = SYSTEMS.get(name)
            score = _keyword_score(sysdef, phrase) if sysdef else 0
            if score:
                scored.append((-score, index, name))
        if scored:
            promoted = [name for _, _, name in sorted(scored)]
            return promoted + [c for c in candidates if c not in promoted]

    return candidates
