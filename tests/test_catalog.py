import pytest

from emuident.common.exceptions import CatalogLoadError
from emuident.core.models import CatalogEntry, CatalogHeader, HashAlgorithm, HashSet
from emuident.verification.catalog import CatalogIndex, CatalogRegistry, find_dat_for_system
from tests.helpers import CHECK_CRC32, CHECK_SHA1, write_dat


@pytest.fixture
def index():
    entries = [
        CatalogEntry("Tetris (World) (Rev 1)", "Tetris (World) (Rev 1).gb", 32768, crc32="46df91ad"),
        CatalogEntry("Tetris DX (World)", "Tetris DX (World).gbc", 524288, crc32="6761f0b1"),
        CatalogEntry("Super Mario Land (World)", "Super Mario Land (World).gb", 65536,
                     crc32="90776841", sha1=CHECK_SHA1),
    ]
    return CatalogIndex(CatalogHeader(name="Nintendo - Game Boy"), entries)


class TestCatalogIndex:
    def test_lookup_normalizes_case(self, index):
        found = index.lookup(HashAlgorithm.CRC32, "46DF91AD")
        assert [e.title for e in found] == ["Tetris (World) (Rev 1)"]

    def test_lookup_empty_value(self, index):
        assert index.lookup(HashAlgorithm.CRC32, "") == ()

    def test_lookup_hashes_prefers_sha1(self, index):
        algo, found = index.lookup_hashes(HashSet(crc32="00000000", sha1=CHECK_SHA1))
        assert algo is HashAlgorithm.SHA1
        assert found[0].title == "Super Mario Land (World)"

    def test_lookup_hashes_miss(self, index):
        assert index.lookup_hashes(HashSet(crc32=CHECK_CRC32)) == (None, ())

    def test_entries_for_title_by_title_and_file_name(self, index):
        assert index.entries_for_title("tetris (world) (rev 1)")
        assert index.entries_for_title("Tetris DX (World).gbc")
        assert index.entries_for_title("Tetris") == ()

    def test_search_titles_scores(self, index):
        results = dict(index.search_titles("Tetris"))
        assert results["Tetris (World) (Rev 1)"] == 1.0
        assert results["Tetris DX (World)"] == 0.9
        assert "Super Mario Land (World)" not in results

    def test_search_titles_substring(self, index):
        assert index.search_titles("mario land") == [("Super Mario Land (World)", 0.7)]

    def test_search_titles_empty_query(self, index):
        assert index.search_titles("(USA)") == []

    def test_len_and_name(self, index):
        assert len(index) == 3
        assert index.name == "Nintendo - Game Boy"


class TestFindDat:
    def test_newest_dated_file_wins(self, tmp_path):
        for name in (
            "Nintendo - Game Boy (20230101-000000).dat",
            "Nintendo - Game Boy (20240101-000000).dat",
            "Nintendo - Game Boy Color (20250101-000000).dat",
        ):
            (tmp_path / "no-intro").mkdir(exist_ok=True)
            (tmp_path / "no-intro" / name).write_text("<datafile/>")

        found = find_dat_for_system(tmp_path, "gb")

        assert found.name == "Nintendo - Game Boy (20240101-000000).dat"

    def test_unknown_system(self, tmp_path):
        assert find_dat_for_system(tmp_path, "vectrex") is None

    def test_nothing_on_disk(self, tmp_path):
        assert find_dat_for_system(tmp_path, "gba") is None


class TestCatalogRegistry:
    def test_ensure_loads_once(self, registry):
        first = registry.ensure("gb")
        assert first is not None
        assert len(first) == 2
        assert registry.ensure("GB") is first
        assert registry.systems() == ["gb"]

    def test_ensure_without_catalog(self, registry):
        assert registry.ensure("snes") is None
        assert registry.ensure(None) is None

    def test_reload_swaps_reference(self, registry, dats_dir):
        old = registry.ensure("gb")
        write_dat(
            dats_dir / "no-intro" / "Nintendo - Game Boy (20240101-000000).dat",
            [("Only Game (USA)", [{"name": "Only Game (USA).gb", "crc": "12345678"}])],
        )

        new = registry.reload("gb")

        assert new is not old
        assert len(old) == 2
        assert len(new) == 1
        assert registry.get("gb") is new

    def test_load_unparseable_is_load_error(self, tmp_path):
        bad = tmp_path / "bad.dat"
        bad.write_text("<datafile><game name=")

        with pytest.raises(CatalogLoadError):
            CatalogRegistry(tmp_path).load("gb", bad)

    def test_install(self, index):
        registry = CatalogRegistry()
        registry.install("GB", index)
        assert registry.get("gb") is index
        assert registry.all() == [index]
