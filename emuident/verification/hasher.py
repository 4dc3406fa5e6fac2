import hashlib
import zlib
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from emuident.common.exceptions import FileNotFoundError, FileReadError, HashError
from emuident.config import HASH_BLOCK_SIZE
from emuident.core.models import HashSet

ALL_ALGORITHMS = ("crc32", "md5", "sha1")


def calculate_hashes(
    file_path: Path,
    algorithms: Tuple[str, ...] = ALL_ALGORITHMS,
    block_size: int = HASH_BLOCK_SIZE,
    header_size: int = 0,
    progress_cb: Optional[Callable[[float], None]] = None,
) -> Dict[str, str]:
    """
    Calculate hashes for a file.
    Supported algorithms: 'crc32', 'md5', 'sha1', 'sha256'.
    The first ``header_size`` bytes are left out of every digest.
    Returns a dictionary with algorithm names as keys and lower-case hex values.
    """
    return _stream_hashes(Path(file_path), algorithms, block_size, (header_size,), progress_cb)[0]


def _stream_hashes(
    file_path: Path,
    algorithms: Tuple[str, ...],
    block_size: int,
    offsets: Tuple[int, ...],
    progress_cb: Optional[Callable[[float], None]] = None,
) -> List[Dict[str, str]]:
    """One read of ``file_path`` feeding a digest set per start offset.

    Raises FileNotFoundError when the file is missing, FileReadError when it
    cannot be opened and HashError when the stream fails part way through.
    """
    if any(o < 0 for o in offsets):
        raise ValueError("header size must not be negative")
    try:
        total_size = file_path.stat().st_size
    except OSError as e:
        if not file_path.exists():
            raise FileNotFoundError(str(file_path)) from e
        raise FileReadError(str(file_path), f"Cannot stat {file_path}: {e}") from e

    sinks = [(offset, _init_hash_objects(algorithms)) for offset in offsets]
    position = 0

    try:
        f = open(file_path, "rb")
    except OSError as e:
        raise FileReadError(str(file_path), f"Cannot open {file_path}: {e}") from e

    with f:
        try:
            while True:
                chunk = f.read(block_size)
                if not chunk:
                    break
                end = position + len(chunk)
                for offset, objs in sinks:
                    if end > offset:
                        _update_hashes(objs, chunk[max(offset - position, 0):])
                position = end

                if progress_cb and total_size > 0:
                    progress_cb(position / total_size)
        except OSError as e:
            raise HashError(str(file_path), str(e)) from e

    return [_finalize_hashes(objs) for _, objs in sinks]


def _init_hash_objects(algorithms: Tuple[str, ...]) -> Dict:
    objs = {}
    for alg in algorithms:
        if alg == "crc32":
            objs["crc32"] = 0
        elif alg == "md5":
            objs["md5"] = hashlib.md5()
        elif alg == "sha1":
            objs["sha1"] = hashlib.sha1()
        elif alg == "sha256":
            objs["sha256"] = hashlib.sha256()
        else:
            raise ValueError(f"Unsupported hash algorithm: {alg}")
    return objs


def _update_hashes(objs: Dict, chunk: bytes):
    for alg, obj in objs.items():
        if alg == "crc32":
            objs["crc32"] = zlib.crc32(chunk, objs["crc32"])
        else:
            obj.update(chunk)


def _finalize_hashes(objs: Dict) -> Dict[str, str]:
    res = {}
    for alg, obj in objs.items():
        if alg == "crc32":
            res["crc32"] = f"{obj & 0xFFFFFFFF:08x}"
        else:
            res[alg] = obj.hexdigest()
    return res


def _to_hashset(values: Dict[str, str], header_stripped: bool) -> HashSet:
    return HashSet(
        crc32=values["crc32"],
        md5=values["md5"],
        sha1=values["sha1"],
        header_stripped=header_stripped,
    )


def hash_file(path: Path, header_size: int = 0, block_size: int = HASH_BLOCK_SIZE) -> HashSet:
    """CRC32, MD5 and SHA1 of ``path``, skipping ``header_size`` leading bytes.

    A zero-length file is valid input and yields the empty-input digests.
    """
    values = calculate_hashes(path, ALL_ALGORITHMS, block_size, header_size)
    return _to_hashset(values, header_size > 0)


def hash_with_header(
    path: Path,
    header_size: int,
    block_size: int = HASH_BLOCK_SIZE,
    progress_cb: Optional[Callable[[float], None]] = None,
) -> Tuple[HashSet, Optional[HashSet]]:
    """Raw digests and, when ``header_size`` is set, headerless digests.

    Both sets come out of a single read of the file.
    """
    if header_size <= 0:
        values = _stream_hashes(Path(path), ALL_ALGORITHMS, block_size, (0,), progress_cb)
        return _to_hashset(values[0], False), None
    raw, stripped = _stream_hashes(
        Path(path), ALL_ALGORITHMS, block_size, (0, header_size), progress_cb
    )
    return _to_hashset(raw, False), _to_hashset(stripped, True)
