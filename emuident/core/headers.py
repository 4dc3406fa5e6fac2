"""Detection of emulator-specific headers prepended to ROM data.

Catalogs such as No-Intro list the hash of the headerless data, so the hasher
is told how many leading bytes to skip. Detection is a pure lookup over the
first bytes of the file, its extension and its size.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from emuident.common.exceptions import FileReadError

# Longest header we look for (SMC copier header)
PROBE_SIZE = 512

SNES_MIN_ROM_SIZE = 0x40000


@dataclass(frozen=True)
class HeaderInfo:
    size: int = 0
    kind: str = ""
    system_hint: Optional[str] = None

    @property
    def has_header(self) -> bool:
        return self.size > 0


NO_HEADER = HeaderInfo()


def _nes(data: bytes) -> HeaderInfo:
    if len(data) < 16 or data[:4] != b"NES\x1a":
        return NO_HEADER
    # NES 2.0: bits 2-3 of flags 7 equal 0b10
    kind = "NES2.0" if (data[7] & 0x0C) == 0x08 else "iNES"
    return HeaderInfo(16, kind, "nes")


def _fds(data: bytes) -> HeaderInfo:
    if len(data) < 16 or data[:4] != b"FDS\x1a":
        return NO_HEADER
    return HeaderInfo(16, "fwNES", "fds")


def _lynx(data: bytes) -> HeaderInfo:
    if len(data) < 64 or data[:4] != b"LYNX":
        return NO_HEADER
    return HeaderInfo(64, "Lynx", "lynx")


def _a78(data: bytes) -> HeaderInfo:
    if len(data) < 128 or data[1:10] != b"ATARI7800":
        return NO_HEADER
    return HeaderInfo(128, "A78", "atari7800")


def _snes(file_size: int) -> HeaderInfo:
    rom_size = file_size - 512
    if rom_size >= SNES_MIN_ROM_SIZE and (rom_size & (rom_size - 1)) == 0:
        return HeaderInfo(512, "SMC", "snes")
    return NO_HEADER


_BY_EXTENSION = {
    ".nes": _nes,
    ".unf": _nes,
    ".fds": _fds,
    ".lnx": _lynx,
    ".a78": _a78,
}


def detect_header_bytes(data: bytes, extension: str, file_size: int) -> HeaderInfo:
    """Classify a header from the leading bytes of a file.

    ``data`` should hold at least :data:`PROBE_SIZE` bytes when the file is
    that large. Unknown extensions fall back to magic-byte sniffing.
    """
    ext = extension.lower()
    if ext and not ext.startswith("."):
        ext = "." + ext

    if ext in (".smc", ".sfc"):
        return _snes(file_size)

    detector = _BY_EXTENSION.get(ext)
    if detector is not None:
        return detector(data)

    for sniff in (_nes, _lynx, _fds):
        info = sniff(data)
        if info.has_header:
            return info
    return NO_HEADER


def detect_header(path: Path) -> HeaderInfo:
    """Read the start of ``path`` and detect its header."""
    path = Path(path)
    try:
        with open(path, "rb") as f:
            data = f.read(PROBE_SIZE)
        size = path.stat().st_size
    except OSError as e:
        raise FileReadError(str(path), f"Could not read header of {path}: {e}") from e
    return detect_header_bytes(data, path.suffix, size)
