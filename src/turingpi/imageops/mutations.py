"""Filesystem mutations applied to a mounted image root."""

import asyncio
import logging
import os
import posixpath
import stat
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence, Union

from turingpi.errors import InputInvalid, MutationError, TuringPiError, VerificationMismatch
from turingpi.imageops.checksum import compute_file_checksum, sha256_bytes
from turingpi.models.mutation import ChmodOp, CopyLocalOp, MkdirOp, MutationOp, WriteOp

if TYPE_CHECKING:
    from turingpi.providers.base import BaseProvider


logger = logging.getLogger(__name__)


def image_path(mount_point: str, relative: str) -> str:
    """Join an image-relative path onto the mount point."""
    parts = PurePosixPath(relative.lstrip("/")).parts
    if not parts:
        raise InputInvalid(f"Empty image path: {relative!r}")
    if ".." in parts:
        raise InputInvalid(f"Image path escapes the mount point: {relative}")
    return posixpath.join(mount_point, *parts)


def source_mode(path: Path) -> int:
    return stat.S_IMODE(os.stat(path).st_mode)


class MutationPlanner:
    """Collects mutation ops in insertion order."""

    def __init__(self):
        self._ops: List[MutationOp] = []

    def write(self, path: str, content: Union[str, bytes], mode: int = 0o644) -> "MutationPlanner":
        if isinstance(content, str):
            content = content.encode()
        self._ops.append(WriteOp(path=path, content=content, mode=mode))
        return self

    def copy_local(self, source: Union[str, Path], path: str, mode: Optional[int] = None) -> "MutationPlanner":
        self._ops.append(CopyLocalOp(source=Path(source), path=path, mode=mode))
        return self

    def mkdir(self, path: str, mode: int = 0o755) -> "MutationPlanner":
        self._ops.append(MkdirOp(path=path, mode=mode))
        return self

    def chmod(self, path: str, mode: int) -> "MutationPlanner":
        self._ops.append(ChmodOp(path=path, mode=mode))
        return self

    def operations(self) -> List[MutationOp]:
        """Copy of the staged ops."""
        return list(self._ops)

    def __len__(self) -> int:
        return len(self._ops)


async def _execute(provider: "BaseProvider", mount_point: str, op: MutationOp) -> None:
    target = image_path(mount_point, op.path)
    match op:
        case WriteOp():
            await provider.write_file(target, op.content, op.mode)
        case CopyLocalOp():
            if not await asyncio.to_thread(op.source.is_file):
                raise InputInvalid(f"Local file not found: {op.source}")
            mode = op.mode if op.mode is not None else await asyncio.to_thread(source_mode, op.source)
            await provider.copy_local(op.source, target, mode)
        case MkdirOp():
            await provider.make_dir(target, op.mode)
        case ChmodOp():
            await provider.chmod(target, op.mode)
        case _:
            raise InputInvalid(f"Unknown mutation op: {op!r}")


@dataclass
class _Expected:
    digest: Optional[str] = None
    directory: bool = False
    mode: Optional[int] = None


async def _expected_state(ops: Sequence[MutationOp]) -> Dict[str, _Expected]:
    """Final state per path after replaying ops in order."""
    expected: Dict[str, _Expected] = {}
    for op in ops:
        key = op.path.lstrip("/")
        match op:
            case WriteOp():
                expected[key] = _Expected(digest=sha256_bytes(op.content), mode=op.mode)
            case CopyLocalOp():
                checksum = await asyncio.to_thread(compute_file_checksum, op.source)
                mode = op.mode if op.mode is not None else await asyncio.to_thread(source_mode, op.source)
                expected[key] = _Expected(digest=checksum.hash, mode=mode)
            case MkdirOp():
                expected[key] = _Expected(directory=True, mode=op.mode)
            case ChmodOp():
                entry = expected.setdefault(key, _Expected())
                entry.mode = op.mode
    return expected


async def verify_mutations(provider: "BaseProvider", mount_point: str, ops: Sequence[MutationOp]) -> None:
    """Read back every touched path and compare content and mode."""
    for relative, entry in (await _expected_state(ops)).items():
        target = image_path(mount_point, relative)
        if entry.directory:
            if not await provider.is_dir(target):
                raise VerificationMismatch(relative, "directory missing")
        elif entry.digest is not None:
            if not await provider.exists(target):
                raise VerificationMismatch(relative, "file missing")
            actual = sha256_bytes(await provider.read_file(target))
            if actual != entry.digest:
                raise VerificationMismatch(relative, f"content digest {actual[:12]} != {entry.digest[:12]}")
        if entry.mode is not None:
            mode = await provider.file_mode(target)
            if mode != entry.mode:
                raise VerificationMismatch(relative, f"mode {mode:o} != {entry.mode:o}")
    logger.debug(f"Verified {len(ops)} mutation(s)")


async def apply_mutations(
    provider: "BaseProvider",
    mount_point: str,
    ops: Sequence[MutationOp],
    verify: bool = False,
) -> None:
    """Apply ops strictly in order; the first failure aborts the batch."""
    for index, op in enumerate(ops):
        try:
            await _execute(provider, mount_point, op)
        except (TuringPiError, OSError) as e:
            raise MutationError(index, op.kind, e) from e
        logger.debug(f"Applied mutation #{index} {op.kind} {op.path}")

    if verify:
        await verify_mutations(provider, mount_point, ops)
