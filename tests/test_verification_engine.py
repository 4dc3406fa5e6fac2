import pytest

from emuident.core.models import (
    CatalogEntry,
    CatalogHeader,
    HashAlgorithm,
    HashSet,
    VerificationResult,
    VerificationStatus,
)
from emuident.verification import engine
from emuident.verification.catalog import CatalogIndex
from tests.helpers import CHECK_CRC32, CHECK_SHA1, make_unit


@pytest.fixture
def index():
    return CatalogIndex(
        CatalogHeader(name="Nintendo - Game Boy"),
        [
            CatalogEntry("Alpha (USA)", "Alpha (USA).gb", 4, crc32="7b5e9e81"),
            CatalogEntry("Beta (Japan)", "Beta (Japan).gb", 9, crc32=CHECK_CRC32, sha1=CHECK_SHA1),
            CatalogEntry("Gamma (Europe)", "Gamma (Europe).gb", 4, crc32="0badf00d", status="baddump"),
        ],
    )


def test_verified_by_crc(index):
    unit = make_unit("/roms/Alpha (USA).gb", hashes=HashSet(crc32="7b5e9e81"))

    result = engine.verify(unit, index)

    assert result.status is VerificationStatus.VERIFIED
    assert result.entry.title == "Alpha (USA)"
    assert result.hash_type is HashAlgorithm.CRC32


def test_one_digit_off_is_not_in_catalog(index):
    unit = make_unit("/roms/unknown.gb", hashes=HashSet(crc32="7b5e9e82"))

    result = engine.verify(unit, index)

    assert result.status is VerificationStatus.NOT_IN_CATALOG
    assert result.entry is None


def test_known_title_wrong_hash_is_mismatch(index):
    unit = make_unit("/roms/Alpha (USA).gb", hashes=HashSet(crc32="7b5e9e82"))

    result = engine.verify(unit, index)

    assert result.status is VerificationStatus.MISMATCH
    assert result.entry.title == "Alpha (USA)"
    assert "7b5e9e82" in result.detail


def test_headerless_match_is_header_mismatch(index):
    unit = make_unit("/roms/Beta.nes", system="nes", hashes=HashSet(crc32="11111111"))
    unit.headerless_hashes = HashSet(crc32=CHECK_CRC32, header_stripped=True)
    unit.header_size = 16

    result = engine.verify(unit, index)

    assert result.status is VerificationStatus.HEADER_MISMATCH
    assert result.entry.title == "Beta (Japan)"
    assert "16-byte" in result.detail


def test_no_hashes_is_hash_missing(index):
    assert engine.verify(make_unit(hashes=None), index).status is VerificationStatus.HASH_MISSING
    assert engine.verify(make_unit(hashes=HashSet()), index).status is VerificationStatus.HASH_MISSING


def test_falls_back_when_preferred_digest_missing(index):
    # psx prefers SHA1; only a CRC is known
    unit = make_unit("/roms/x.bin", system="psx", hashes=HashSet(crc32=CHECK_CRC32))

    result = engine.verify(unit, index)

    assert result.status is VerificationStatus.VERIFIED
    assert result.hash_type is HashAlgorithm.CRC32


def test_other_algorithm_hit(index):
    unit = make_unit("/roms/x.gb", hashes=HashSet(crc32="22222222", sha1=CHECK_SHA1))

    result = engine.verify(unit, index)

    assert result.status is VerificationStatus.VERIFIED
    assert result.hash_type is HashAlgorithm.SHA1


def test_catalog_status_in_detail(index):
    unit = make_unit("/roms/Gamma (Europe).gb", hashes=HashSet(crc32="0badf00d"))

    result = engine.verify(unit, index)

    assert result.status is VerificationStatus.VERIFIED
    assert "baddump" in result.detail


def test_corrupt():
    result = engine.corrupt("read error at 4096")
    assert result.status is VerificationStatus.CORRUPT
    assert result.detail == "read error at 4096"


class TestVerificationSummary:
    def test_fold_is_order_independent(self):
        results = [
            ("a", VerificationResult(VerificationStatus.VERIFIED)),
            ("b", VerificationResult(VerificationStatus.MISMATCH)),
            ("c", VerificationResult(VerificationStatus.VERIFIED)),
            ("d", VerificationResult(VerificationStatus.CORRUPT)),
        ]

        forward = engine.VerificationSummary.fold(results)
        backward = engine.VerificationSummary.fold(reversed(results))

        assert forward.as_dict() == backward.as_dict()
        assert forward.count(VerificationStatus.VERIFIED) == 2
        assert forward.total == 4
        assert set(forward.failures) == {"b", "d"}

    def test_merge(self):
        a = engine.VerificationSummary.fold([("a", VerificationResult(VerificationStatus.VERIFIED))])
        b = engine.VerificationSummary.fold([("b", VerificationResult(VerificationStatus.HASH_MISSING))])

        merged = a.merge(b)

        assert merged.total == 2
        assert list(merged.failures) == ["b"]

    def test_as_dict_lists_every_status(self):
        summary = engine.VerificationSummary()
        assert set(summary.as_dict()) == {s.value for s in VerificationStatus}
        assert summary.total == 0
