"""Checksum catalog (DAT) parsing.

Logiqx XML catalogs are read as a stream: the file is fed to an
``XMLPullParser`` line by line so memory stays flat on large Redump/No-Intro
sets and every event can be tied to a line number. When the markup is broken
the parser falls back to parsing each ``<game>``/``<machine>`` block on its
own, so one damaged entry does not hide the rest of the catalog. Plain-text
ClrMamePro catalogs are recognised and parsed into the same result.
"""

import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Iterable, List, Optional

from emuident.common.exceptions import CatalogLoadError, CatalogParseError
from emuident.core.models import (
    HASH_LENGTHS,
    CatalogEntry,
    CatalogHeader,
    HashAlgorithm,
    detect_algorithm,
    normalize_hash,
)
from emuident.logging_cfg import get_logger

logger = get_logger("verification.dat_parser")

ENTRY_TAGS = ("game", "machine")
MEMBER_TAGS = ("rom", "disk")
HEADER_FIELDS = ("name", "description", "version", "author", "category", "url", "homepage", "date")

# (label, substrings) checked in order against header name + description
SOURCE_MARKERS = (
    ("no-intro", ("no-intro", "nointro")),
    ("redump", ("redump",)),
    ("tosec", ("tosec",)),
    ("gametdb", ("gametdb",)),
)

_BLOCK = re.compile(r"<(game|machine)\b[^>]*?(?:/>|>.*?</\1\s*>)", re.DOTALL)
_HEADER_BLOCK = re.compile(r"<header\b.*?</header\s*>", re.DOTALL)


@dataclass
class CatalogParseResult:
    header: CatalogHeader
    entries: List[CatalogEntry] = field(default_factory=list)
    errors: List[CatalogParseError] = field(default_factory=list)
    format: str = "logiqx"

    @property
    def titles(self) -> List[str]:
        return list(dict.fromkeys(e.title for e in self.entries))


def detect_source(name: str, description: str = "") -> str:
    """Best-effort provenance label from the catalog header."""
    haystack = f"{name} {description}".lower()
    for label, markers in SOURCE_MARKERS:
        if any(m in haystack for m in markers):
            return label
    return "unknown"


def parse_catalog_date(value: Optional[str]) -> Optional[date]:
    """ISO-8601 first, then ``yyyyMMdd`` (optionally followed by a time)."""
    if not value:
        return None
    value = value.strip()
    try:
        return datetime.fromisoformat(value).date()
    except ValueError:
        pass
    try:
        return datetime.strptime(value[:8], "%Y%m%d").date()
    except ValueError:
        return None


def _build_header(values: dict) -> CatalogHeader:
    name = values.get("name", "")
    description = values.get("description", "")
    return CatalogHeader(
        name=name,
        description=description,
        version=values.get("version", ""),
        author=values.get("author", ""),
        category=values.get("category", ""),
        url=values.get("url", ""),
        homepage=values.get("homepage", ""),
        date=parse_catalog_date(values.get("date")),
        source=detect_source(name, description),
    )


class _EntryErrors:
    def __init__(self, origin: str, errors: List[CatalogParseError]):
        self.origin = origin
        self.errors = errors

    def add(self, reason: str, line: Optional[int]):
        err = CatalogParseError(self.origin, reason, line)
        logger.warning("%s", err)
        self.errors.append(err)


def _clean_hash(algo: HashAlgorithm, raw: Optional[str], errors: _EntryErrors, line) -> str:
    value = normalize_hash(raw)
    if value and detect_algorithm(value) is not algo:
        errors.add(
            f"invalid {algo.value} {raw!r} (expected {HASH_LENGTHS[algo]} hex chars)", line
        )
        return ""
    return value


def _entries_from_element(game: ET.Element, errors: _EntryErrors, line: Optional[int]) -> List[CatalogEntry]:
    title = (game.get("name") or "").strip()
    if not title:
        errors.add(f"<{game.tag}> without a name skipped", line)
        return []

    entries = []
    for member in game:
        if member.tag not in MEMBER_TAGS:
            continue
        size_str = member.get("size", "0") or "0"
        try:
            size = int(size_str)
        except ValueError:
            errors.add(f"invalid size {size_str!r} in {title}", line)
            size = 0
        entries.append(
            CatalogEntry(
                title=title,
                name=(member.get("name") or "").strip(),
                size=size,
                crc32=_clean_hash(HashAlgorithm.CRC32, member.get("crc"), errors, line),
                md5=_clean_hash(HashAlgorithm.MD5, member.get("md5"), errors, line),
                sha1=_clean_hash(HashAlgorithm.SHA1, member.get("sha1"), errors, line),
                status=(member.get("status") or "").strip().lower(),
                serial=(member.get("serial") or game.get("serial") or "").strip(),
            )
        )
    return entries


def _header_values(header: ET.Element) -> dict:
    values = {}
    for child in header:
        if child.tag in HEADER_FIELDS and child.text:
            values[child.tag] = child.text.strip()
    return values


def _parse_xml_stream(lines: Iterable[str], origin: str) -> CatalogParseResult:
    """Stream parse; raises :class:`CatalogParseError` on broken markup."""
    parser = ET.XMLPullParser(events=("start", "end"))
    result = CatalogParseResult(header=CatalogHeader())
    errors = _EntryErrors(origin, result.errors)
    depth = 0
    root: Optional[ET.Element] = None
    root_seen = False
    line_no = 0

    def drain():
        nonlocal depth, root, root_seen
        for event, elem in parser.read_events():
            if event == "start":
                depth += 1
                if not root_seen:
                    root_seen = True
                    root = elem
                    if elem.tag != "datafile":
                        logger.warning(
                            "%s: unexpected root element <%s>, continuing", origin, elem.tag
                        )
                continue

            depth -= 1
            if elem.tag == "header" and depth == 1:
                result.header = _build_header(_header_values(elem))
                root.remove(elem)
            elif elem.tag in ENTRY_TAGS and depth == 1:
                result.entries.extend(_entries_from_element(elem, errors, line_no))
                root.remove(elem)

    try:
        for line in lines:
            line_no += 1
            parser.feed(line)
            drain()
        parser.close()
        drain()
    except ET.ParseError as e:
        line = e.position[0] if getattr(e, "position", None) else line_no
        raise CatalogParseError(origin, str(e), line) from e

    if not root_seen:
        raise CatalogParseError(origin, "no XML content", line_no or None)
    return result


def _recover_xml(text: str, origin: str, first_error: CatalogParseError) -> CatalogParseResult:
    """Parse each entry block separately after the stream parser gave up."""
    result = CatalogParseResult(header=CatalogHeader())
    result.errors.append(first_error)
    errors = _EntryErrors(origin, result.errors)

    header_match = _HEADER_BLOCK.search(text)
    if header_match:
        try:
            result.header = _build_header(_header_values(ET.fromstring(header_match.group(0))))
        except ET.ParseError as e:
            errors.add(f"unreadable header: {e}", text.count("\n", 0, header_match.start()) + 1)

    for m in _BLOCK.finditer(text):
        line = text.count("\n", 0, m.start()) + 1
        try:
            elem = ET.fromstring(m.group(0))
        except ET.ParseError as e:
            inner = e.position[0] - 1 if getattr(e, "position", None) else 0
            errors.add(f"malformed <{m.group(1)}> skipped: {e}", line + inner)
            continue
        result.entries.extend(_entries_from_element(elem, errors, line))

    if not result.entries:
        raise first_error
    logger.warning(
        "%s: recovered %d entries from damaged catalog (%d errors)",
        origin,
        len(result.entries),
        len(result.errors),
    )
    return result


def parse_catalog_text(text: str, origin: str = "<string>", strict: bool = False) -> CatalogParseResult:
    """Parse Logiqx XML held in memory.

    With ``strict`` the first markup error raises; otherwise intact entries
    are recovered and the errors are listed in the result.
    """
    try:
        return _parse_xml_stream(text.splitlines(keepends=True), origin)
    except CatalogParseError as e:
        if strict:
            raise
        logger.warning("%s; trying per-entry recovery", e)
        return _recover_xml(text, origin, e)


def parse_xml_catalog(path: Path, strict: bool = False) -> CatalogParseResult:
    path = Path(path)
    origin = str(path)
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            return _parse_xml_stream(f, origin)
    except OSError as e:
        raise CatalogLoadError(origin, str(e)) from e
    except CatalogParseError as e:
        if strict:
            raise
        logger.warning("%s; trying per-entry recovery", e)
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError as read_err:
            raise CatalogLoadError(origin, str(read_err)) from read_err
        return _recover_xml(text, origin, e)


def _looks_like_xml(path: Path) -> bool:
    with open(path, "rb") as f:
        head = f.read(512)
    head = head.lstrip(b"\xef\xbb\xbf \t\r\n")
    return head.startswith(b"<")


def parse_dat_file(dat_path: Path, strict: bool = False) -> CatalogParseResult:
    """Parse a catalog file, XML or ClrMamePro text.

    Raises:
        CatalogLoadError: the file cannot be read.
        CatalogParseError: XML markup is broken beyond recovery (or ``strict``).
    """
    dat_path = Path(dat_path)
    try:
        is_xml = _looks_like_xml(dat_path)
    except OSError as e:
        raise CatalogLoadError(str(dat_path), str(e)) from e

    if is_xml:
        result = parse_xml_catalog(dat_path, strict=strict)
    else:
        result = _parse_clrmamepro(dat_path)
    logger.info(
        "Parsed catalog %s: %s %s (%s), %d entries",
        dat_path.name,
        result.header.name or "?",
        result.header.version,
        result.header.source,
        len(result.entries),
    )
    return result


# --- ClrMamePro text format ---

_CMP_QUOTED = r'\s+"([^"]*)"'
_CMP_BARE = r"\s+([^\s)]+)"


def _cmp_field(block: str, name: str) -> Optional[str]:
    m = re.search(rf"\b{name}{_CMP_QUOTED}", block) or re.search(rf"\b{name}{_CMP_BARE}", block)
    return m.group(1) if m else None


def _balanced_blocks(content: str, keyword: str):
    """Yield (offset, body) for every ``keyword ( ... )`` with balanced parentheses."""
    for match in re.finditer(rf"\b{keyword}\s*\(", content):
        start = match.end()
        depth = 1
        end = start
        in_quotes = False
        while depth > 0 and end < len(content):
            ch = content[end]
            if ch == '"':
                in_quotes = not in_quotes
            elif not in_quotes:
                if ch == "(":
                    depth += 1
                elif ch == ")":
                    depth -= 1
            end += 1
        if depth == 0:
            yield match.start(), content[start:end - 1]


def _parse_clrmamepro(dat_path: Path) -> CatalogParseResult:
    try:
        content = dat_path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        raise CatalogLoadError(str(dat_path), str(e)) from e

    result = CatalogParseResult(header=CatalogHeader(), format="clrmamepro")
    errors = _EntryErrors(str(dat_path), result.errors)

    for _, header_block in _balanced_blocks(content, "clrmamepro"):
        values = {}
        for key in HEADER_FIELDS:
            value = _cmp_field(header_block, key)
            if value is not None:
                values[key] = value
        result.header = _build_header(values)
        break

    for keyword in ENTRY_TAGS:
        for offset, game_block in _balanced_blocks(content, keyword):
            line = content.count("\n", 0, offset) + 1
            title = (_cmp_field(game_block, "name") or "").strip()
            if not title:
                errors.add(f"{keyword} block without a name skipped", line)
                continue
            for member in MEMBER_TAGS:
                for _, rom_block in _balanced_blocks(game_block, member):
                    size_str = _cmp_field(rom_block, "size") or "0"
                    try:
                        size = int(size_str)
                    except ValueError:
                        errors.add(f"invalid size {size_str!r} in {title}", line)
                        size = 0
                    result.entries.append(
                        CatalogEntry(
                            title=title,
                            name=(_cmp_field(rom_block, "name") or "").strip(),
                            size=size,
                            crc32=_clean_hash(HashAlgorithm.CRC32, _cmp_field(rom_block, "crc"), errors, line),
                            md5=_clean_hash(HashAlgorithm.MD5, _cmp_field(rom_block, "md5"), errors, line),
                            sha1=_clean_hash(HashAlgorithm.SHA1, _cmp_field(rom_block, "sha1"), errors, line),
                            status=(_cmp_field(rom_block, "flags") or "").strip().lower(),
                            serial=(_cmp_field(rom_block, "serial") or _cmp_field(game_block, "serial") or "").strip(),
                        )
                    )
    return result
