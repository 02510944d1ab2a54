"""Image pipeline primitives routed to the host or the worker container."""

import asyncio
import logging
import posixpath
import shlex
from pathlib import Path
from typing import List, Sequence, Tuple

from turingpi.errors import InputInvalid, ToolFailure, UnsupportedLayout, VerificationMismatch
from turingpi.imageops.mutations import apply_mutations
from turingpi.imageops.network import NetworkFamily, apply_network_identity
from turingpi.imageops.partitions import parse_mapping_output, select_root
from turingpi.models.config import PipelineConfig
from turingpi.models.image import ImageLocation, PartitionEntry
from turingpi.models.job import COMPRESSED_SUFFIX, PreparationJob
from turingpi.models.mutation import MutationOp
from turingpi.providers.base import BaseProvider, ExecutionBackend
from turingpi.utils.platform import has_disk_budget, host_supports_image_ops


logger = logging.getLogger(__name__)

# Container-local scratch for images too large to land on the host
CONTAINER_SCRATCH = "/var/tmp/turingpi"


def use_host_backend(config: PipelineConfig) -> bool:
    """Whether image tooling should run directly on this host."""
    if config.force_container:
        logger.info("Container execution forced by configuration")
        return False
    return host_supports_image_ops()


class ImageOpsRouter:
    """Same contract for every primitive regardless of backend."""

    def __init__(self, provider: BaseProvider, config: PipelineConfig):
        """Initialize router over a provider."""
        self.provider = provider
        self.config = config

    @property
    def backend(self) -> ExecutionBackend:
        return self.provider.backend

    def tool_path(self, location: ImageLocation) -> str:
        """Path of ``location`` as the backend's tools see it."""
        if location.on_host:
            return self.provider.translate(Path(location.path))
        if self.backend is not ExecutionBackend.CONTAINER:
            raise InputInvalid(f"{location} is container-resident and cannot be used on the host")
        return location.path

    async def decompress(self, source: Path, dest_dir: Path) -> ImageLocation:
        """Decompress ``source`` next to the workspace.

        When routed through the container and the host cannot hold the raw
        image, the result stays inside the container.
        """
        name = source.name
        if name.endswith(COMPRESSED_SUFFIX):
            name = name[: -len(COMPRESSED_SUFFIX)]
        target = ImageLocation.host(dest_dir / name)

        if self.backend is ExecutionBackend.CONTAINER:
            compressed_size = await asyncio.to_thread(lambda: source.stat().st_size)
            required = int(compressed_size * self.config.decompress_ratio)
            if not await asyncio.to_thread(has_disk_budget, dest_dir, required):
                logger.info(f"Not enough host space for ~{required} bytes; keeping image in the container")
                await self.provider.run(["mkdir", "-p", CONTAINER_SCRATCH], stage="decompress")
                target = ImageLocation.container(posixpath.join(CONTAINER_SCRATCH, name))

        src = self.provider.translate(source)
        dst = self.tool_path(target)
        logger.info(f"Decompressing {source} to {target}")
        await self.provider.run(
            ["sh", "-c", f"xz --decompress --keep --stdout {shlex.quote(src)} > {shlex.quote(dst)}"],
            stage="decompress",
            elevate=False,
        )
        return target

    async def compress(self, image: ImageLocation, dest: Path, level: int) -> Path:
        """Recompress ``image`` to the host path ``dest``."""
        src = self.tool_path(image)
        dst = self.provider.translate(dest)
        logger.info(f"Compressing {image} to {dest} (level {level})")
        await self.provider.run(
            ["sh", "-c", f"xz --compress --keep --stdout -{level} {shlex.quote(src)} > {shlex.quote(dst)}"],
            stage="compress",
            elevate=False,
        )

        size = await asyncio.to_thread(lambda: dest.stat().st_size if dest.exists() else 0)
        if size <= 0:
            raise VerificationMismatch(str(dest), "compressed output is missing or empty")
        return dest

    async def test_archive(self, path: Path) -> None:
        """Integrity-test an xz file."""
        await self.provider.run(["xz", "--test", self.provider.translate(path)], stage="verify", elevate=False)

    async def discard(self, location: ImageLocation) -> None:
        """Delete an intermediate image."""
        await self.provider.run(["rm", "-f", self.tool_path(location)], stage="cleanup", elevate=False)

    async def map_partitions(self, image: ImageLocation) -> Tuple[PartitionEntry, List[PartitionEntry]]:
        """Map image partitions; returns (root, all partitions)."""
        path = self.tool_path(image)
        result = await self.provider.run(["kpartx", "-av", path], stage="map")
        partitions = parse_mapping_output(result.stdout)
        try:
            root = select_root(partitions, self.config.root_strategy)
        except UnsupportedLayout:
            logger.error(f"Unsupported partition layout in {image}: {result.stdout.strip()!r}")
            await self.unmap_partitions(image)
            raise
        logger.info(f"Mapped {len(partitions)} partition(s); root is {root.device}")
        return root, partitions

    async def unmap_partitions(self, image: ImageLocation) -> None:
        """Remove partition mappings and detach leftover loop devices."""
        path = self.tool_path(image)
        await self.provider.run(["kpartx", "-d", path], stage="unmap")

        result = await self.provider.run(["losetup", "-j", path], stage="unmap", check=False)
        for line in result.stdout.splitlines():
            device = line.split(":", 1)[0].strip()
            if device.startswith("/dev/loop"):
                logger.warning(f"Loop device {device} still attached to {path}, detaching")
                await self.provider.run(["losetup", "-d", device], stage="unmap")

    async def _wait_for_device(self, device: str) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.device_wait
        while not await self.provider.is_block_device(device):
            if loop.time() >= deadline:
                raise ToolFailure("mount", ["test", "-b", device], 1, f"{device} did not appear")
            await asyncio.sleep(0.5)

    async def mount(self, device: str, mount_point: Path) -> str:
        """Mount ``device``; returns the mount point as the tools see it."""
        target = self.provider.translate(mount_point)
        await self.provider.run(["mkdir", "-p", target], stage="mount")
        await self._wait_for_device(device)
        await self.provider.run(["mount", device, target], stage="mount")

        if not await self.provider.is_mountpoint(target):
            raise ToolFailure("mount", ["mountpoint", "-q", target], 1, f"{target} is not a mount point")
        logger.info(f"Mounted {device} on {target}")
        return target

    async def unmount(self, mount_point: Path) -> None:
        """Unmount, retrying lazily once. A no-op when nothing is mounted."""
        target = self.provider.translate(mount_point)
        if not await self.provider.is_mountpoint(target):
            logger.debug(f"{target} is not mounted")
            return
        try:
            await self.provider.run(["umount", target], stage="unmount")
        except ToolFailure as e:
            logger.warning(f"Unmount of {target} failed ({e.stderr_tail}); retrying lazily")
            await self.provider.run(["umount", "-l", target], stage="unmount")
        logger.info(f"Unmounted {target}")

    async def apply_mutations(self, mount_point: str, ops: Sequence[MutationOp], verify: bool = False) -> None:
        await apply_mutations(self.provider, mount_point, ops, verify)

    async def apply_network_identity(self, mount_point: str, job: PreparationJob) -> NetworkFamily:
        return await apply_network_identity(self.provider, mount_point, job)
