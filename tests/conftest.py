import json

import pytest

from emuident.library import IdentityStore
from emuident.verification.catalog import CatalogRegistry
from tests.helpers import CHECK_CRC32, CHECK_DATA, CHECK_MD5, CHECK_SHA1, write_dat


@pytest.fixture
def dats_dir(tmp_path):
    """A dats/ folder holding a Game Boy catalog with the check-data dump."""
    root = tmp_path / "dats"
    write_dat(
        root / "no-intro" / "Nintendo - Game Boy (20240101-000000).dat",
        [
            (
                "Check Game (USA)",
                [{"name": "Check Game (USA).gb", "size": "9", "crc": CHECK_CRC32.upper(),
                  "md5": CHECK_MD5, "sha1": CHECK_SHA1}],
            ),
            (
                "Other Game (Europe)",
                [{"name": "Other Game (Europe).gb", "size": "4", "crc": "7b5e9e81"}],
            ),
        ],
    )
    return root


@pytest.fixture
def registry(dats_dir):
    return CatalogRegistry(dats_dir)


@pytest.fixture
def store(tmp_path):
    return IdentityStore(tmp_path / "emuident.db")


@pytest.fixture
def library(tmp_path):
    """Collection with a Game Boy catalog, one known dump and one unknown file."""
    base = tmp_path / "lib"
    write_dat(
        base / "dats" / "no-intro" / "Nintendo - Game Boy (20240101-000000).dat",
        [
            (
                "Check Game (USA)",
                [{"name": "Check Game (USA).gb", "size": "9", "crc": CHECK_CRC32,
                  "md5": CHECK_MD5, "sha1": CHECK_SHA1}],
            ),
        ],
    )
    roms = base / "roms"
    roms.mkdir()
    (roms / "Check Game (USA).gb").write_bytes(CHECK_DATA)
    (roms / "Mystery.gb").write_bytes(b"unknown dump")
    (roms / "notes.txt").write_text("not a game")
    # offline: only the local catalogs
    (base / "settings.json").write_text(json.dumps({
        "sources": {"hasheous": {"enabled": False}, "thegamesdb": {"enabled": False}},
    }))
    return base
