"""Shared fixtures: an in-process provider and a router that fakes block devices."""

import lzma
import os
import shutil
import stat
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest
from unittest.mock import MagicMock

from turingpi.containers.registry import ContainerRegistry
from turingpi.errors import ToolFailure
from turingpi.imageops.tempdir import TempDirManager
from turingpi.models.config import PipelineConfig
from turingpi.models.image import ImageLocation, PartitionEntry
from turingpi.providers.base import BaseProvider, ExecutionBackend
from turingpi.providers.router import ImageOpsRouter
from turingpi.utils.process import CommandResult


class LocalProvider(BaseProvider):
    """Provider that touches the local filesystem directly, without tools."""

    backend = ExecutionBackend.HOST

    def __init__(self):
        self.commands: List[List[str]] = []
        self.writes: List[Tuple[str, int]] = []

    def translate(self, host_path: Path) -> str:
        return str(host_path)

    async def run(self, argv, stage, timeout=None, check=True, text=True, elevate=True):
        self.commands.append(list(argv))
        if argv[:2] == ["rm", "-f"]:
            for path in argv[2:]:
                if os.path.lexists(path):
                    os.unlink(path)
        return CommandResult(returncode=0, stdout="" if text else b"")

    async def write_file(self, path: str, data: bytes, mode: int) -> None:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        os.chmod(target, mode)
        self.writes.append((path, mode))

    async def copy_local(self, source: Path, path: str, mode: int) -> None:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, target)
        os.chmod(target, mode)
        self.writes.append((path, mode))

    async def exists(self, path: str) -> bool:
        return os.path.exists(path)

    async def is_dir(self, path: str) -> bool:
        return os.path.isdir(path)

    async def is_block_device(self, path: str) -> bool:
        return True

    async def is_mountpoint(self, path: str) -> bool:
        return os.path.isdir(path)

    async def list_dir(self, path: str) -> List[str]:
        return sorted(os.listdir(path))

    async def read_file(self, path: str) -> bytes:
        return Path(path).read_bytes()

    async def file_mode(self, path: str) -> int:
        return stat.S_IMODE(os.stat(path).st_mode)

    async def make_dir(self, path: str, mode: Optional[int] = None) -> None:
        os.makedirs(path, exist_ok=True)
        if mode is not None:
            os.chmod(path, mode)

    async def chmod(self, path: str, mode: int) -> None:
        os.chmod(path, mode)

    async def remove(self, path: str, stage: str = "cleanup") -> None:
        shutil.rmtree(path, ignore_errors=True)


class FakeRouter(ImageOpsRouter):
    """Router whose block-device steps are simulated on a plain directory.

    ``fail_stage`` makes that primitive raise ToolFailure. ``before_network`` is
    awaited before network identity is applied. ``snapshot`` holds the image root
    as it looked when it was unmounted.
    """

    def __init__(self, netplan: bool = False, fail_stage: Optional[str] = None, before_network=None):
        super().__init__(LocalProvider(), PipelineConfig())
        self.netplan = netplan
        self.fail_stage = fail_stage
        self.before_network = before_network
        self.events: List[str] = []
        self.snapshot: Dict[str, bytes] = {}
        self.modes: Dict[str, int] = {}
        self.image: Optional[ImageLocation] = None

    def _maybe_fail(self, stage: str) -> None:
        if self.fail_stage == stage:
            raise ToolFailure(stage, [stage], 1, f"{stage} exploded")

    async def decompress(self, source: Path, dest_dir: Path) -> ImageLocation:
        self.events.append("decompress")
        self._maybe_fail("decompress")
        target = dest_dir / source.name[: -len(".xz")]
        target.write_bytes(lzma.decompress(source.read_bytes()))
        self.image = ImageLocation.host(target)
        return self.image

    async def discard(self, location: ImageLocation) -> None:
        self.events.append("discard")
        Path(location.path).unlink(missing_ok=True)

    async def map_partitions(self, image):
        self.events.append("map")
        self._maybe_fail("map")
        partitions = [PartitionEntry("loop0p1", 1024, 2048), PartitionEntry("loop0p2", 8192, 4096)]
        return partitions[1], partitions

    async def unmap_partitions(self, image) -> None:
        self.events.append("unmap")

    async def mount(self, device: str, mount_point: Path) -> str:
        self.events.append("mount")
        self._maybe_fail("mount")
        (mount_point / "etc").mkdir(parents=True)
        if self.netplan:
            (mount_point / "etc" / "netplan").mkdir()
        return str(mount_point)

    async def apply_network_identity(self, mount_point: str, job):
        if self.before_network is not None:
            await self.before_network()
        return await super().apply_network_identity(mount_point, job)

    async def unmount(self, mount_point: Path) -> None:
        self.events.append("unmount")
        for dirpath, _, filenames in os.walk(mount_point):
            for filename in filenames:
                path = Path(dirpath) / filename
                relative = path.relative_to(mount_point).as_posix()
                self.snapshot[relative] = path.read_bytes()
                self.modes[relative] = stat.S_IMODE(path.stat().st_mode)
        shutil.rmtree(mount_point)

    async def compress(self, image: ImageLocation, dest: Path, level: int) -> Path:
        self.events.append("compress")
        self._maybe_fail("compress")
        dest.write_bytes(lzma.compress(Path(image.path).read_bytes(), preset=level))
        return dest

    async def test_archive(self, path: Path) -> None:
        self.events.append("verify")
        lzma.decompress(path.read_bytes())


@pytest.fixture
def local_provider():
    """In-process provider."""
    return LocalProvider()


@pytest.fixture
def rootfs(tmp_path):
    """Empty image root with an etc directory."""
    root = tmp_path / "rootfs"
    (root / "etc").mkdir(parents=True)
    return root


@pytest.fixture
def source_image(tmp_path):
    """Small xz-compressed stand-in for a disk image."""
    source_dir = tmp_path / "src"
    source_dir.mkdir()
    path = source_dir / "ubuntu.img.xz"
    path.write_bytes(lzma.compress(b"\x00" * 4096 + b"raw disk image"))
    return path


@pytest.fixture
def temp_manager(tmp_path):
    """Initialized temp manager rooted in tmp_path."""
    manager = TempDirManager(max_age=3600, sweep_interval=3600)
    manager.initialize(tmp_path / "work")
    yield manager
    manager.shutdown()


@pytest.fixture
def registry():
    """Registry without process hooks and with a mocked docker client."""
    registry = ContainerRegistry(
        client_factory=MagicMock,
        stop_grace=0,
        cleanup_timeout=2.0,
        sweep_timeout=5.0,
        install_hooks=False,
    )
    yield registry
    registry._finalizer.detach()
