import json
import sqlite3
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import List, Optional

from emuident.common.exceptions import DatabaseInitializationError, EntryNotFoundError
from emuident.config import CONFIDENCE_USER_CONFIRMED, METADATA_CACHE_TTL_S
from emuident.core.models import (
    CatalogEntry,
    GameRecord,
    HashAlgorithm,
    HashSet,
    LogicalUnit,
    MatchCandidate,
    MatchMethod,
    MatchRecord,
    VerificationResult,
    VerificationStatus,
)
from emuident.logging_cfg import get_logger
from emuident.matching.resolution import rank, resolve_best

logger = get_logger("library")

_GAME_COLUMNS = (
    "title, system, region, publisher, developer, genre, rating, "
    "release_date, description, source, source_id"
)


@dataclass
class StoredUnit:
    id: int
    key: str
    path: str
    container: Optional[str]
    internal_path: Optional[str]
    system: Optional[str]
    base_title: str
    size: int
    mtime: float
    members: list
    hashes: Optional[HashSet]
    headerless_hashes: Optional[HashSet]
    header_size: int
    hash_calculated: bool


def _hashset(crc32, md5, sha1, header_stripped=False) -> Optional[HashSet]:
    if not (crc32 or md5 or sha1):
        return None
    return HashSet(crc32 or "", md5 or "", sha1 or "", header_stripped)


def _method(value) -> MatchMethod:
    try:
        return MatchMethod(value)
    except ValueError:
        return MatchMethod.NONE


def _match_from_row(row) -> MatchRecord:
    mid, file_id, game_id, method, confidence, confirmed, rejected, created_at = row
    return MatchRecord(
        unit_id=file_id,
        game_id=game_id,
        method=_method(method),
        confidence=confidence,
        confirmed=bool(confirmed),
        rejected=bool(rejected),
        created_at=created_at,
        id=mid,
    )


class IdentityStore:
    """SQLite persistence for units, games, matches and verification results.

    Stored hashes are a cache: a unit is re-hashed whenever the file on disk
    no longer agrees with the recorded size and modification time.
    """

    def __init__(self, db_path: Path = Path("emuident.db")):
        self.db_path = db_path
        self._init_db()

    def _init_db(self):
        try:
            with sqlite3.connect(self.db_path) as conn:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS files (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        key TEXT UNIQUE NOT NULL,
                        path TEXT,
                        container TEXT,
                        internal_path TEXT,
                        system TEXT,
                        base_title TEXT,
                        size INTEGER,
                        mtime REAL,
                        members TEXT,
                        crc32 TEXT,
                        md5 TEXT,
                        sha1 TEXT,
                        header_size INTEGER DEFAULT 0,
                        headerless_crc32 TEXT,
                        headerless_md5 TEXT,
                        headerless_sha1 TEXT,
                        hash_calculated INTEGER DEFAULT 0
                    )
                """)
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS games (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        title TEXT NOT NULL,
                        system TEXT,
                        region TEXT,
                        publisher TEXT,
                        developer TEXT,
                        genre TEXT,
                        rating REAL,
                        release_date TEXT,
                        description TEXT,
                        source TEXT,
                        source_id TEXT
                    )
                """)
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS matches (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        file_id INTEGER NOT NULL REFERENCES files(id),
                        game_id INTEGER NOT NULL REFERENCES games(id),
                        method TEXT,
                        confidence INTEGER,
                        confirmed INTEGER DEFAULT 0,
                        rejected INTEGER DEFAULT 0,
                        created_at REAL,
                        UNIQUE(file_id, game_id, method)
                    )
                """)
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS verification_results (
                        file_id INTEGER PRIMARY KEY REFERENCES files(id),
                        status TEXT,
                        entry_title TEXT,
                        entry_name TEXT,
                        hash_type TEXT,
                        detail TEXT,
                        verified_at REAL
                    )
                """)
                # Audit trail of user decisions
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS library_actions (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        file_id INTEGER,
                        action TEXT,
                        detail TEXT,
                        ts REAL
                    )
                """)
                # Source answers to hash lookups, by strongest hash and system
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS metadata_cache (
                        hash_key TEXT NOT NULL,
                        system TEXT NOT NULL DEFAULT '',
                        source TEXT,
                        payload TEXT,
                        cached_at REAL,
                        PRIMARY KEY (hash_key, system)
                    )
                """)
                conn.execute("CREATE INDEX IF NOT EXISTS idx_matches_file ON matches(file_id)")
                conn.commit()
        except sqlite3.Error as e:
            logger.error("Cannot initialise database %s: %s", self.db_path, e)
            raise DatabaseInitializationError(str(self.db_path), str(e)) from e

    # --- units ---

    def upsert_unit(self, unit: LogicalUnit) -> int:
        """Insert or refresh ``unit`` and return its id (also set on the unit).

        When the primary file's size or mtime changed since the last run,
        the stored hashes are dropped.
        """
        primary = unit.primary
        members = [f.key for f in unit.linked]
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT id, size, mtime FROM files WHERE key = ?", (unit.key,)
            ).fetchone()
            if row is None:
                cur = conn.execute(
                    """
                    INSERT INTO files
                    (key, path, container, internal_path, system, base_title,
                     size, mtime, members)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        unit.key,
                        str(primary.path),
                        str(primary.container) if primary.container else None,
                        primary.internal_path,
                        unit.system,
                        unit.base_title,
                        primary.size,
                        primary.mtime,
                        json.dumps(members),
                    ),
                )
                unit_id = cur.lastrowid
            else:
                unit_id, size, mtime = row
                changed = size != primary.size or mtime != primary.mtime
                conn.execute(
                    """
                    UPDATE files SET system = ?, base_title = ?, size = ?,
                    mtime = ?, members = ? WHERE id = ?
                    """,
                    (unit.system, unit.base_title, primary.size, primary.mtime,
                     json.dumps(members), unit_id),
                )
                if changed:
                    logger.info("%s changed on disk; stored hashes dropped", unit.key)
                    self._clear_hashes(conn, unit_id)
            conn.commit()
        unit.id = unit_id
        return unit_id

    @staticmethod
    def _clear_hashes(conn, unit_id: int):
        conn.execute(
            """
            UPDATE files SET crc32 = NULL, md5 = NULL, sha1 = NULL,
            headerless_crc32 = NULL, headerless_md5 = NULL, headerless_sha1 = NULL,
            header_size = 0, hash_calculated = 0 WHERE id = ?
            """,
            (unit_id,),
        )

    def get_unit(self, unit_id: int) -> Optional[StoredUnit]:
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute(
                """
                SELECT id, key, path, container, internal_path, system, base_title,
                size, mtime, members, crc32, md5, sha1, header_size,
                headerless_crc32, headerless_md5, headerless_sha1, hash_calculated
                FROM files WHERE id = ?
                """,
                (unit_id,),
            ).fetchone()
        if row is None:
            return None
        return StoredUnit(
            id=row[0],
            key=row[1],
            path=row[2],
            container=row[3],
            internal_path=row[4],
            system=row[5],
            base_title=row[6],
            size=row[7],
            mtime=row[8],
            members=json.loads(row[9]) if row[9] else [],
            hashes=_hashset(row[10], row[11], row[12]),
            headerless_hashes=_hashset(row[14], row[15], row[16], True),
            header_size=row[13] or 0,
            hash_calculated=bool(row[17]),
        )

    def find_unit_id(self, key: str) -> Optional[int]:
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute("SELECT id FROM files WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def list_units(self, system: Optional[str] = None) -> List[StoredUnit]:
        with sqlite3.connect(self.db_path) as conn:
            if system:
                ids = conn.execute(
                    "SELECT id FROM files WHERE system = ? ORDER BY path", (system,)
                ).fetchall()
            else:
                ids = conn.execute("SELECT id FROM files ORDER BY path").fetchall()
        return [self.get_unit(r[0]) for r in ids]

    def remove_unit(self, unit_id: int):
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("DELETE FROM matches WHERE file_id = ?", (unit_id,))
            conn.execute("DELETE FROM verification_results WHERE file_id = ?", (unit_id,))
            conn.execute("DELETE FROM files WHERE id = ?", (unit_id,))
            conn.commit()

    def get_total_count(self) -> int:
        with sqlite3.connect(self.db_path) as conn:
            return conn.execute("SELECT COUNT(*) FROM files").fetchone()[0]

    # --- hashes ---

    @staticmethod
    def _current_stat(stored: StoredUnit) -> Optional[tuple]:
        """(size, mtime) of the stored primary file as it is on disk now."""
        if stored.container:
            # archive members are checked through their container
            path = Path(stored.container)
            return (stored.size, stored.mtime) if path.exists() else None
        path = Path(stored.path)
        try:
            st = path.stat()
        except OSError:
            return None
        return st.st_size, st.st_mtime

    def needs_hashing(self, unit: LogicalUnit) -> bool:
        """True unless stored hashes exist and still describe the file on disk."""
        unit_id = unit.id if unit.id is not None else self.find_unit_id(unit.key)
        if unit_id is None:
            return True
        stored = self.get_unit(unit_id)
        if stored is None or not stored.hash_calculated or stored.hashes is None:
            return True
        current = self._current_stat(stored)
        if current is None:
            return True
        return current != (stored.size, stored.mtime)

    def load_hashes(self, unit: LogicalUnit) -> bool:
        """Attach stored hashes to ``unit`` when they are still valid."""
        if self.needs_hashing(unit):
            return False
        stored = self.get_unit(unit.id if unit.id is not None else self.find_unit_id(unit.key))
        unit.id = stored.id
        unit.hashes = stored.hashes
        unit.headerless_hashes = stored.headerless_hashes
        unit.header_size = stored.header_size
        return True

    def save_hashes(self, unit: LogicalUnit):
        if unit.id is None:
            self.upsert_unit(unit)
        raw = unit.hashes or HashSet()
        stripped = unit.headerless_hashes or HashSet()
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                UPDATE files SET crc32 = ?, md5 = ?, sha1 = ?, header_size = ?,
                headerless_crc32 = ?, headerless_md5 = ?, headerless_sha1 = ?,
                hash_calculated = ? WHERE id = ?
                """,
                (
                    raw.crc32 or None,
                    raw.md5 or None,
                    raw.sha1 or None,
                    unit.header_size,
                    stripped.crc32 or None,
                    stripped.md5 or None,
                    stripped.sha1 or None,
                    1 if raw.calculated else 0,
                    unit.id,
                ),
            )
            conn.commit()

    def find_units_by_hash(self, value: str) -> List[int]:
        """Ids of units whose CRC32, MD5 or SHA1 equals ``value``."""
        if not value:
            return []
        value = value.strip().lower()
        with sqlite3.connect(self.db_path) as conn:
            cur = conn.execute(
                "SELECT id FROM files WHERE crc32 = ? OR md5 = ? OR sha1 = ?",
                (value, value, value),
            )
            return [r[0] for r in cur.fetchall()]

    # --- games & matches ---

    def add_game(self, game: GameRecord) -> int:
        """Store ``game`` (reusing an identical existing row) and return its id."""
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute(
                """
                SELECT id FROM games WHERE title = ? AND IFNULL(system, '') = ?
                AND IFNULL(source, '') = ? AND IFNULL(source_id, '') = ?
                """,
                (game.title, game.system or "", game.source or "", game.source_id or ""),
            ).fetchone()
            if row:
                game.id = row[0]
                return game.id
            cur = conn.execute(
                f"INSERT INTO games ({_GAME_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    game.title,
                    game.system,
                    game.region,
                    game.publisher,
                    game.developer,
                    game.genre,
                    game.rating,
                    game.release_date,
                    game.description,
                    game.source,
                    game.source_id,
                ),
            )
            conn.commit()
            game.id = cur.lastrowid
            return game.id

    def update_game(self, game: GameRecord):
        if game.id is None:
            raise EntryNotFoundError(game.title, "games")
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                UPDATE games SET region = ?, publisher = ?, developer = ?, genre = ?,
                rating = ?, release_date = ?, description = ? WHERE id = ?
                """,
                (
                    game.region,
                    game.publisher,
                    game.developer,
                    game.genre,
                    game.rating,
                    game.release_date,
                    game.description,
                    game.id,
                ),
            )
            conn.commit()

    def get_game(self, game_id: int) -> Optional[GameRecord]:
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute(
                f"SELECT {_GAME_COLUMNS}, id FROM games WHERE id = ?", (game_id,)
            ).fetchone()
        if row is None:
            return None
        return GameRecord(*row)

    def add_match(
        self,
        unit_id: int,
        game_id: int,
        method: MatchMethod,
        confidence: int,
        created_at: Optional[float] = None,
    ) -> MatchRecord:
        """Record a proposed match.

        Re-proposing the same game by the same method refreshes its
        confidence and creation time but keeps the user's confirm/reject
        state.
        """
        if created_at is None:
            created_at = time.time()
        method = MatchMethod(method)
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO matches (file_id, game_id, method, confidence, created_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(file_id, game_id, method) DO UPDATE SET
                confidence = CASE WHEN confirmed = 1 THEN confidence ELSE excluded.confidence END,
                created_at = excluded.created_at
                """,
                (unit_id, game_id, method.value, int(confidence), created_at),
            )
            conn.commit()
            row = conn.execute(
                """
                SELECT id, file_id, game_id, method, confidence, confirmed, rejected, created_at
                FROM matches WHERE file_id = ? AND game_id = ? AND method = ?
                """,
                (unit_id, game_id, method.value),
            ).fetchone()
        return _match_from_row(row)

    def record_candidate(self, unit_id: int, candidate: MatchCandidate) -> MatchRecord:
        game_id = self.add_game(GameRecord.from_candidate(candidate))
        return self.add_match(unit_id, game_id, candidate.method, candidate.confidence)

    def get_matches(self, unit_id: int) -> List[MatchRecord]:
        """All match records of a unit, best first."""
        with sqlite3.connect(self.db_path) as conn:
            cur = conn.execute(
                """
                SELECT id, file_id, game_id, method, confidence, confirmed, rejected, created_at
                FROM matches WHERE file_id = ?
                """,
                (unit_id,),
            )
            records = [_match_from_row(r) for r in cur.fetchall()]
        return rank(records)

    def get_resolved_match(self, unit_id: int) -> Optional[MatchRecord]:
        return resolve_best(self.get_matches(unit_id))

    def _set_state(self, record: MatchRecord):
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                "UPDATE matches SET confidence = ?, confirmed = ?, rejected = ? WHERE id = ?",
                (record.confidence, int(record.confirmed), int(record.rejected), record.id),
            )
            conn.commit()

    def confirm(self, unit_id: int) -> MatchRecord:
        """Confirm the currently resolved match of a unit.

        Raises:
            EntryNotFoundError: the unit has no match to confirm.
        """
        record = self.get_resolved_match(unit_id)
        if record is None:
            raise EntryNotFoundError(str(unit_id), "matches")
        record.confirmed = True
        record.rejected = False
        record.confidence = CONFIDENCE_USER_CONFIRMED
        self._set_state(record)
        self.record_action(unit_id, "CONFIRMED", f"match={record.id} game={record.game_id}")
        return record

    def reject(self, unit_id: int) -> MatchRecord:
        """Reject the currently resolved match; the record is kept.

        Raises:
            EntryNotFoundError: the unit has no match to reject.
        """
        record = self.get_resolved_match(unit_id)
        if record is None:
            raise EntryNotFoundError(str(unit_id), "matches")
        record.confirmed = False
        record.rejected = True
        self._set_state(record)
        self.record_action(unit_id, "REJECTED", f"match={record.id} game={record.game_id}")
        return record

    # --- metadata cache ---

    @staticmethod
    def _cache_key(hashes: HashSet) -> Optional[str]:
        for algo in (HashAlgorithm.SHA1, HashAlgorithm.MD5, HashAlgorithm.CRC32):
            value = hashes.get(algo)
            if value:
                return f"{algo.value}:{value}"
        return None

    def cache_candidate(self, hashes: HashSet, system: Optional[str], candidate: MatchCandidate) -> bool:
        """Remember a source's answer for ``hashes``.

        An existing entry is kept, so its age keeps counting from the first
        lookup. Returns whether a new entry was written.
        """
        key = self._cache_key(hashes)
        if key is None:
            return False
        payload = asdict(candidate)
        payload["method"] = candidate.method.value
        with sqlite3.connect(self.db_path) as conn:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO metadata_cache (hash_key, system, source, payload, cached_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (key, system or "", candidate.source, json.dumps(payload), time.time()),
            )
            conn.commit()
            return cur.rowcount > 0

    def get_cached_candidate(
        self, hashes: HashSet, system: Optional[str], max_age: float = METADATA_CACHE_TTL_S
    ) -> Optional[MatchCandidate]:
        """Cached answer for ``hashes``; entries older than ``max_age`` are dropped."""
        key = self._cache_key(hashes)
        if key is None:
            return None
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT payload, cached_at FROM metadata_cache WHERE hash_key = ? AND system = ?",
                (key, system or ""),
            ).fetchone()
            if row is None:
                return None
            payload, cached_at = row
            if time.time() - cached_at > max_age:
                conn.execute(
                    "DELETE FROM metadata_cache WHERE hash_key = ? AND system = ?",
                    (key, system or ""),
                )
                conn.commit()
                return None
        data = json.loads(payload)
        data["method"] = _method(data.get("method"))
        try:
            return MatchCandidate(**data)
        except TypeError as e:
            logger.warning("Ignoring unreadable cache entry %s: %s", key, e)
            return None

    def clear_cache(self, max_age: Optional[float] = None) -> int:
        """Drop cache entries older than ``max_age`` seconds (all when ``None``)."""
        with sqlite3.connect(self.db_path) as conn:
            if max_age is None:
                cur = conn.execute("DELETE FROM metadata_cache")
            else:
                cur = conn.execute(
                    "DELETE FROM metadata_cache WHERE cached_at < ?", (time.time() - max_age,)
                )
            conn.commit()
            return cur.rowcount

    # --- verification ---

    def save_verification(self, unit_id: int, result: VerificationResult):
        entry = result.entry
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO verification_results
                (file_id, status, entry_title, entry_name, hash_type, detail, verified_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    unit_id,
                    result.status.value,
                    entry.title if entry else None,
                    entry.name if entry else None,
                    result.hash_type.value if result.hash_type else None,
                    result.detail,
                    time.time(),
                ),
            )
            conn.commit()

    def get_verification(self, unit_id: int) -> Optional[VerificationResult]:
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute(
                """
                SELECT status, entry_title, entry_name, hash_type, detail
                FROM verification_results WHERE file_id = ?
                """,
                (unit_id,),
            ).fetchone()
        if row is None:
            return None
        status, title, name, hash_type, detail = row
        entry = CatalogEntry(title=title, name=name or "") if title else None
        return VerificationResult(
            VerificationStatus(status),
            entry,
            HashAlgorithm(hash_type) if hash_type else None,
            detail or "",
        )

    def get_count_by_status(self) -> dict[str, int]:
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute(
                "SELECT status, COUNT(*) FROM verification_results GROUP BY status"
            )
            return dict(cursor.fetchall())

    # --- audit ---

    def record_action(self, unit_id: Optional[int], action: str, detail: Optional[str] = None):
        """Append an audit record, e.g. CONFIRMED or REJECTED."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                "INSERT INTO library_actions (file_id, action, detail, ts) VALUES (?, ?, ?, ?)",
                (unit_id, action, detail, time.time()),
            )
            conn.commit()

    def get_actions(self, unit_id: Optional[int] = None, limit: int = 100) -> list[tuple]:
        """Recent actions as ``(file_id, action, detail, ts)``, newest first."""
        with sqlite3.connect(self.db_path) as conn:
            if unit_id is None:
                cur = conn.execute(
                    "SELECT file_id, action, detail, ts FROM library_actions "
                    "ORDER BY id DESC LIMIT ?",
                    (limit,),
                )
            else:
                cur = conn.execute(
                    "SELECT file_id, action, detail, ts FROM library_actions "
                    "WHERE file_id = ? ORDER BY id DESC LIMIT ?",
                    (unit_id, limit),
                )
            return cur.fetchall()
