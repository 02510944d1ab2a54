"""SHA-256 checksums for files and directory trees."""

import hashlib
import logging
import os
from pathlib import Path
from typing import Dict, List, Union

from turingpi.models.image import FileChecksum


logger = logging.getLogger(__name__)

CHUNK_SIZE = 32 * 1024
SIDECAR_SUFFIX = ".sha256"


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def compute_file_checksum(path: Union[str, Path]) -> FileChecksum:
    """Hash a file in 32 KiB chunks."""
    path = Path(path)
    digest = hashlib.sha256()
    with open(path, "rb") as handle:
        for chunk in iter(lambda: handle.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    info = path.stat()
    return FileChecksum(
        path=str(path),
        hash=digest.hexdigest(),
        size=info.st_size,
        modified=int(info.st_mtime),
    )


def verify_file_checksum(path: Union[str, Path], expected: FileChecksum) -> bool:
    """Whether ``path`` still has the expected size and digest."""
    actual = compute_file_checksum(path)
    if actual.size != expected.size:
        logger.debug(f"{path}: size {actual.size} != {expected.size}")
        return False
    return actual.hash == expected.hash


def directory_checksums(root: Union[str, Path]) -> Dict[str, FileChecksum]:
    """Checksums of every regular file below ``root``, keyed by relative path."""
    root = Path(root)
    checksums: Dict[str, FileChecksum] = {}
    for dirpath, _, filenames in os.walk(root):
        for filename in filenames:
            path = Path(dirpath) / filename
            if path.is_symlink() or not path.is_file():
                continue
            checksums[path.relative_to(root).as_posix()] = compute_file_checksum(path)
    return checksums


def verify_directory(root: Union[str, Path], expected: Dict[str, FileChecksum]) -> List[str]:
    """Compare a tree against recorded checksums; returns a list of problems."""
    actual = directory_checksums(root)
    problems: List[str] = []
    for relative in sorted(expected):
        if relative not in actual:
            problems.append(f"missing: {relative}")
        elif actual[relative].hash != expected[relative].hash:
            problems.append(f"modified: {relative}")
    for relative in sorted(set(actual) - set(expected)):
        problems.append(f"unexpected: {relative}")
    return problems


def write_checksum_file(path: Union[str, Path]) -> Path:
    """Write ``<path>.sha256`` in sha256sum format and return it."""
    path = Path(path)
    checksum = compute_file_checksum(path)
    sidecar = path.with_name(path.name + SIDECAR_SUFFIX)
    sidecar.write_text(f"{checksum.hash}  {path.name}\n")
    logger.info(f"Wrote checksum {checksum.hash[:16]}... to {sidecar}")
    return sidecar
