import pytest

from emuident.common.exceptions import FileReadError
from emuident.core.headers import detect_header, detect_header_bytes


def _ines(flags7=0):
    data = bytearray(b"NES\x1a" + b"\x00" * 12)
    data[7] = flags7
    return bytes(data)


@pytest.mark.parametrize(
    "data, ext, size, expected",
    [
        (_ines(), ".nes", 16 + 32768, (16, "iNES", "nes")),
        (_ines(0x08), ".nes", 16 + 32768, (16, "NES2.0", "nes")),
        (b"FDS\x1a" + b"\x00" * 12, ".fds", 16 + 65500, (16, "fwNES", "fds")),
        (b"LYNX" + b"\x00" * 60, ".lnx", 64 + 131072, (64, "Lynx", "lynx")),
        (b"\x01ATARI7800" + b"\x00" * 118, ".a78", 128 + 32768, (128, "A78", "atari7800")),
        (b"\x00" * 512, ".smc", 512 + 0x80000, (512, "SMC", "snes")),
    ],
)
def test_known_headers(data, ext, size, expected):
    info = detect_header_bytes(data, ext, size)
    assert (info.size, info.kind, info.system_hint) == expected
    assert info.has_header


@pytest.mark.parametrize(
    "data, ext, size",
    [
        (b"\x00" * 16, ".nes", 32768),
        (b"\x00" * 512, ".sfc", 0x80000),
        (b"\x00" * 512, ".smc", 512 + 1000),
        (b"NES", ".nes", 3),
        (b"\x00" * 64, ".gb", 32768),
    ],
)
def test_no_header(data, ext, size):
    assert not detect_header_bytes(data, ext, size).has_header


def test_unknown_extension_sniffs_magic():
    info = detect_header_bytes(_ines(), ".bin", 16 + 8192)
    assert info.system_hint == "nes"


def test_extension_without_dot():
    assert detect_header_bytes(_ines(), "NES", 16 + 8192).size == 16


def test_detect_header_reads_file(tmp_path):
    rom = tmp_path / "game.nes"
    rom.write_bytes(_ines() + b"\x00" * 8192)

    assert detect_header(rom).size == 16


def test_detect_header_missing_file(tmp_path):
    with pytest.raises(FileReadError):
        detect_header(tmp_path / "missing.nes")
