"""Configuration and constants for the emuident package."""
from __future__ import annotations

from typing import Dict, FrozenSet

# Default base directory for a collection
BASE_DEFAULT = "./games"

# Database and settings filenames (relative to the base directory)
DB_FILENAME = "emuident.db"
SETTINGS_FILENAME = "settings.json"
LOG_FILENAME = "emuident.log"

# A directory holding this file is skipped by the grouper
EXCLUDE_MARKER = ".emuidentignore"

# Hashing
HASH_BLOCK_SIZE = 1024 * 1024
MAX_HASH_WORKERS = 4

# Identity sources
DEFAULT_SOURCE_INTERVAL_S = 1.0
DEFAULT_SOURCE_TIMEOUT_S = 10.0

# Cached hash-lookup answers expire after a day
METADATA_CACHE_TTL_S = 24 * 60 * 60

# Confidence levels (0-100)
CONFIDENCE_HASH = 100
CONFIDENCE_USER_CONFIRMED = 100
CONFIDENCE_EXACT_NAME = 90
CONFIDENCE_CONTAINS = 70
CONFIDENCE_FUZZY_MIN = 30
CONFIDENCE_FUZZY_MAX = 65

# Extensions for table-of-contents / manifest formats and their data tracks
MANIFEST_EXTENSIONS: FrozenSet[str] = frozenset({".cue", ".gdi", ".ccd", ".mds", ".m3u"})

ARCHIVE_EXTENSIONS: FrozenSet[str] = frozenset({".zip", ".7z", ".rar"})

# Extension -> candidate systems. Order is the fallback priority for ambiguous
# extensions; folder keywords re-rank it (see core.systems.rank_systems).
EXT_TO_SYSTEMS: Dict[str, tuple[str, ...]] = {
    # Nintendo
    ".nes": ("nes",),
    ".unf": ("nes",),
    ".fds": ("fds",),
    ".sfc": ("snes",),
    ".smc": ("snes",),
    ".z64": ("n64",),
    ".n64": ("n64",),
    ".v64": ("n64",),
    ".gb": ("gb",),
    ".gbc": ("gbc",),
    ".gba": ("gba",),
    ".nds": ("nds",),
    ".3ds": ("3ds",),
    ".gcm": ("gamecube",),
    ".rvz": ("gamecube", "wii"),
    ".wbfs": ("wii",),
    # Sony
    ".iso": ("ps2", "psx", "psp", "gamecube", "wii", "saturn", "segacd", "3do"),
    ".bin": ("psx", "saturn", "segacd", "megadrive", "atari2600"),
    ".img": ("psx", "saturn", "segacd"),
    ".cue": ("psx", "saturn", "segacd", "pcecd", "ps2"),
    ".ccd": ("psx", "saturn", "segacd"),
    ".mds": ("psx", "ps2", "saturn"),
    ".chd": ("psx", "ps2", "dreamcast", "saturn", "segacd", "pcecd"),
    ".m3u": ("psx", "saturn", "segacd", "dreamcast"),
    ".cso": ("psp",),
    ".pbp": ("psp",),
    # Sega
    ".md": ("megadrive",),
    ".gen": ("megadrive",),
    ".smd": ("megadrive",),
    ".sms": ("mastersystem",),
    ".gg": ("gamegear",),
    ".32x": ("32x",),
    ".gdi": ("dreamcast",),
    ".cdi": ("dreamcast",),
    # Atari
    ".a26": ("atari2600",),
    ".a78": ("atari7800",),
    ".lnx": ("lynx",),
    # NEC
    ".pce": ("pce",),
}

# Extension allow-list used by the grouper when none is configured
DEFAULT_EXTENSIONS: FrozenSet[str] = frozenset(EXT_TO_SYSTEMS) | {".sub", ".mdf"}
