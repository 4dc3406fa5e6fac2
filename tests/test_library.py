import os
import sqlite3

import pytest

from emuident.common.exceptions import DatabaseInitializationError, EntryNotFoundError
from emuident.core.models import (
    CatalogEntry,
    GameRecord,
    HashAlgorithm,
    HashSet,
    LogicalUnit,
    MatchMethod,
    RawFile,
    VerificationResult,
    VerificationStatus,
)
from emuident.library import IdentityStore
from tests.helpers import CHECK_CRC32, CHECK_DATA, CHECK_MD5, CHECK_SHA1, candidate


@pytest.fixture
def rom(tmp_path):
    path = tmp_path / "Tetris (World).gb"
    path.write_bytes(CHECK_DATA)
    return path


@pytest.fixture
def unit(rom):
    return LogicalUnit(primary=RawFile.from_path(rom), base_title="Tetris (World)", system="gb")


def _store_match(store, unit, title="Tetris", method=MatchMethod.HASH, confidence=100, source="local"):
    store.upsert_unit(unit)
    return store.record_candidate(
        unit.id, candidate(title, source=source, method=method, confidence=confidence)
    )


class TestUnits:
    def test_upsert_assigns_id(self, store, unit):
        unit_id = store.upsert_unit(unit)

        assert unit.id == unit_id
        assert store.upsert_unit(unit) == unit_id
        assert store.get_total_count() == 1
        assert store.find_unit_id(unit.key) == unit_id

    def test_get_unit(self, store, unit):
        store.upsert_unit(unit)
        stored = store.get_unit(unit.id)

        assert stored.key == unit.key
        assert stored.system == "gb"
        assert stored.size == len(CHECK_DATA)
        assert stored.hashes is None
        assert not stored.hash_calculated

    def test_list_and_remove(self, store, unit):
        store.upsert_unit(unit)
        assert [u.id for u in store.list_units("gb")] == [unit.id]
        assert store.list_units("snes") == []

        store.remove_unit(unit.id)

        assert store.get_unit(unit.id) is None

    def test_unusable_path_raises_initialization_error(self, tmp_path):
        with pytest.raises(DatabaseInitializationError):
            IdentityStore(tmp_path / "missing-dir" / "x.db")


class TestHashCache:
    def test_needs_hashing_until_saved(self, store, unit):
        assert store.needs_hashing(unit)
        store.upsert_unit(unit)
        assert store.needs_hashing(unit)

        unit.hashes = HashSet(CHECK_CRC32, CHECK_MD5, CHECK_SHA1)
        store.save_hashes(unit)

        assert not store.needs_hashing(unit)

    def test_changed_file_needs_rehash(self, store, unit, rom):
        unit.hashes = HashSet(crc32=CHECK_CRC32)
        store.save_hashes(unit)
        st = rom.stat()
        os.utime(rom, (st.st_atime, st.st_mtime + 10))

        assert store.needs_hashing(unit)

    def test_upsert_of_changed_file_drops_hashes(self, store, unit, rom):
        unit.hashes = HashSet(crc32=CHECK_CRC32)
        store.save_hashes(unit)
        rom.write_bytes(CHECK_DATA + b"more")

        fresh = LogicalUnit(primary=RawFile.from_path(rom), base_title="Tetris (World)", system="gb")
        store.upsert_unit(fresh)

        assert store.get_unit(fresh.id).hashes is None

    def test_deleted_file_needs_rehash(self, store, unit, rom):
        unit.hashes = HashSet(crc32=CHECK_CRC32)
        store.save_hashes(unit)
        rom.unlink()

        assert store.needs_hashing(unit)

    def test_load_hashes(self, store, unit):
        unit.hashes = HashSet(CHECK_CRC32, CHECK_MD5, CHECK_SHA1)
        unit.headerless_hashes = HashSet(crc32="7b5e9e81", header_stripped=True)
        unit.header_size = 16
        store.save_hashes(unit)

        again = LogicalUnit(primary=unit.primary, base_title=unit.base_title)

        assert store.load_hashes(again)
        assert again.hashes.sha1 == CHECK_SHA1
        assert again.headerless_hashes.crc32 == "7b5e9e81"
        assert again.header_size == 16

    def test_find_units_by_hash(self, store, unit):
        unit.hashes = HashSet(crc32=CHECK_CRC32)
        store.save_hashes(unit)

        assert store.find_units_by_hash(CHECK_CRC32.upper()) == [unit.id]
        assert store.find_units_by_hash("") == []


class TestMatches:
    def test_record_candidate_creates_game(self, store, unit):
        record = _store_match(store, unit)

        game = store.get_game(record.game_id)
        assert game.title == "Tetris"
        assert game.source == "local"
        assert record.method is MatchMethod.HASH

    def test_same_game_reused(self, store, unit):
        first = _store_match(store, unit)
        second = _store_match(store, unit, method=MatchMethod.NAME_EXACT, confidence=90)

        assert first.game_id == second.game_id
        assert len(store.get_matches(unit.id)) == 2

    def test_resolved_match_is_best(self, store, unit):
        _store_match(store, unit, title="Tetris DX", method=MatchMethod.NAME_FUZZY, confidence=70)
        best = _store_match(store, unit, title="Tetris", method=MatchMethod.HASH, confidence=100)

        assert store.get_resolved_match(unit.id).id == best.id
        assert store.get_matches(unit.id)[0].id == best.id

    def test_confirm_then_reject(self, store, unit):
        _store_match(store, unit, method=MatchMethod.NAME_FUZZY, confidence=55)

        confirmed = store.confirm(unit.id)
        assert confirmed.confirmed
        assert not confirmed.rejected
        assert confirmed.confidence == 100

        rejected = store.reject(unit.id)
        assert rejected.id == confirmed.id
        assert rejected.rejected
        assert not rejected.confirmed

        kept = store.get_matches(unit.id)
        assert len(kept) == 1
        assert kept[0].rejected

    def test_confirmed_lower_candidate_outranks_new_hash(self, store, unit):
        manual_pick = _store_match(store, unit, title="Tetris DX", method=MatchMethod.NAME_FUZZY, confidence=40)
        store.confirm(unit.id)
        _store_match(store, unit, title="Tetris", method=MatchMethod.HASH, confidence=100)

        assert store.get_resolved_match(unit.id).id == manual_pick.id

    def test_rejected_record_superseded_by_better_candidate(self, store, unit):
        _store_match(store, unit, title="Tetris DX", method=MatchMethod.NAME_FUZZY, confidence=60)
        store.reject(unit.id)
        better = _store_match(store, unit, title="Tetris", method=MatchMethod.NAME_EXACT, confidence=90)

        assert store.get_resolved_match(unit.id).id == better.id

    def test_reproposal_keeps_confirmed_confidence(self, store, unit):
        _store_match(store, unit, method=MatchMethod.NAME_FUZZY, confidence=50)
        store.confirm(unit.id)

        again = _store_match(store, unit, method=MatchMethod.NAME_FUZZY, confidence=50)

        assert again.confirmed
        assert again.confidence == 100

    def test_confirm_without_match(self, store, unit):
        store.upsert_unit(unit)
        with pytest.raises(EntryNotFoundError):
            store.confirm(unit.id)
        with pytest.raises(EntryNotFoundError):
            store.reject(unit.id)

    def test_update_game(self, store, unit):
        record = _store_match(store, unit)
        game = store.get_game(record.game_id)
        game.genre = "Puzzle"

        store.update_game(game)

        assert store.get_game(record.game_id).genre == "Puzzle"

    def test_update_game_without_id(self, store):
        with pytest.raises(EntryNotFoundError):
            store.update_game(GameRecord(title="Ghost"))

    def test_unknown_method_reads_as_none(self, store, unit):
        record = _store_match(store, unit)
        with sqlite3.connect(store.db_path) as conn:
            conn.execute("UPDATE matches SET method = 'legacy' WHERE id = ?", (record.id,))

        assert store.get_matches(unit.id)[0].method is MatchMethod.NONE


class TestVerificationAndAudit:
    def test_save_and_get_verification(self, store, unit):
        store.upsert_unit(unit)
        entry = CatalogEntry("Tetris (World)", "Tetris (World).gb", crc32=CHECK_CRC32)
        store.save_verification(
            unit.id, VerificationResult(VerificationStatus.VERIFIED, entry, HashAlgorithm.CRC32)
        )

        stored = store.get_verification(unit.id)

        assert stored.status is VerificationStatus.VERIFIED
        assert stored.entry.title == "Tetris (World)"
        assert stored.hash_type is HashAlgorithm.CRC32
        assert store.get_count_by_status() == {"Verified": 1}

    def test_verification_overwritten(self, store, unit):
        store.upsert_unit(unit)
        store.save_verification(unit.id, VerificationResult(VerificationStatus.HASH_MISSING))
        store.save_verification(unit.id, VerificationResult(VerificationStatus.CORRUPT, detail="EIO"))

        stored = store.get_verification(unit.id)
        assert stored.status is VerificationStatus.CORRUPT
        assert stored.detail == "EIO"
        assert stored.entry is None

    def test_actions_newest_first(self, store, unit):
        _store_match(store, unit)
        store.confirm(unit.id)
        store.reject(unit.id)

        actions = [a[1] for a in store.get_actions(unit.id)]

        assert actions == ["REJECTED", "CONFIRMED"]
        assert store.get_actions(limit=1)[0][1] == "REJECTED"


class TestMetadataCache:
    HASHES = HashSet(crc32=CHECK_CRC32, sha1=CHECK_SHA1)

    def _age(self, store, seconds):
        with sqlite3.connect(store.db_path) as conn:
            conn.execute("UPDATE metadata_cache SET cached_at = cached_at - ?", (seconds,))
            conn.commit()

    def test_cached_answer_round_trips(self, store):
        answer = candidate("Tetris (World)", source="hasheous", method=MatchMethod.HASH,
                           confidence=100, source_id="42", publisher="Nintendo")

        assert store.cache_candidate(self.HASHES, "gb", answer)
        cached = store.get_cached_candidate(self.HASHES, "gb")

        assert cached == answer
        assert cached.method is MatchMethod.HASH

    def test_keyed_by_system(self, store):
        store.cache_candidate(self.HASHES, "gb", candidate("Tetris", method=MatchMethod.HASH))

        assert store.get_cached_candidate(self.HASHES, "gbc") is None
        assert store.get_cached_candidate(HashSet(crc32=CHECK_CRC32), "gb") is None

    def test_first_answer_kept(self, store):
        store.cache_candidate(self.HASHES, "gb", candidate("First", method=MatchMethod.HASH))

        assert not store.cache_candidate(self.HASHES, "gb", candidate("Second", method=MatchMethod.HASH))
        assert store.get_cached_candidate(self.HASHES, "gb").title == "First"

    def test_expired_entry_dropped(self, store):
        store.cache_candidate(self.HASHES, None, candidate("Tetris", method=MatchMethod.HASH))
        self._age(store, 2 * 24 * 60 * 60)

        assert store.get_cached_candidate(self.HASHES, None) is None
        assert store.clear_cache() == 0

    def test_clear_cache(self, store):
        store.cache_candidate(self.HASHES, "gb", candidate("Old", method=MatchMethod.HASH))
        self._age(store, 3600)
        store.cache_candidate(HashSet(md5=CHECK_MD5), "gb", candidate("New", method=MatchMethod.HASH))

        assert store.clear_cache(max_age=60) == 1
        assert store.get_cached_candidate(HashSet(md5=CHECK_MD5), "gb").title == "New"

    def test_no_hashes_not_cached(self, store):
        assert not store.cache_candidate(HashSet(), "gb", candidate("Tetris"))
        assert store.get_cached_candidate(HashSet(), "gb") is None
