"""Image preparation pipeline.

decompress -> map -> mount -> network identity -> mutations -> unmount ->
unmap -> recompress -> move into place. Every acquired resource is pushed on
a release stack and released in reverse order on any exit path.
"""

import asyncio
import logging
import os
from functools import partial
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from turingpi.containers.registry import ContainerRegistry, get_registry
from turingpi.containers.session import ContainerSession
from turingpi.errors import InputInvalid, OperationCancelled, PipelineError
from turingpi.imageops.checksum import write_checksum_file
from turingpi.imageops.tempdir import TempDirManager, get_temp_manager
from turingpi.models.config import TuringPiConfig
from turingpi.models.container import ContainerSpec
from turingpi.models.image import MountSession
from turingpi.models.job import PreparationJob
from turingpi.providers.container import ContainerProvider
from turingpi.providers.host import HostProvider
from turingpi.providers.router import ImageOpsRouter, use_host_backend


logger = logging.getLogger(__name__)

Release = Callable[[], Awaitable[None]]
RouterFactory = Callable[[Path, Optional[ContainerSession]], ImageOpsRouter]

WORKSPACE_PREFIX = "turingpi-image-"
MOUNT_DIR = "mnt"


class ReleaseStack:
    """Named async release callbacks, unwound last-in first-out."""

    def __init__(self):
        self._entries: List[Tuple[str, Release]] = []

    def push(self, label: str, release: Release) -> None:
        self._entries.append((label, release))

    def labels(self) -> List[str]:
        return [label for label, _ in self._entries]

    def __len__(self) -> int:
        return len(self._entries)

    async def pop(self, label: str) -> None:
        """Release the top entry, which must be ``label``; errors propagate."""
        if not self._entries or self._entries[-1][0] != label:
            raise RuntimeError(f"Release order violated: expected {label}, stack is {self.labels()}")
        _, release = self._entries.pop()
        await release()

    async def unwind(self) -> List[BaseException]:
        """Release everything; returns the errors instead of raising them."""
        errors: List[BaseException] = []
        while self._entries:
            label, release = self._entries.pop()
            try:
                await release()
                logger.debug(f"Released {label}")
            except Exception as e:
                logger.error(f"Failed to release {label}: {e}")
                errors.append(e)
        return errors


class ImagePipeline:
    """Prepares one node image from a PreparationJob."""

    def __init__(
        self,
        job: Union[PreparationJob, Dict[str, Any]],
        config: Optional[TuringPiConfig] = None,
        registry: Optional[ContainerRegistry] = None,
        temp_manager: Optional[TempDirManager] = None,
        session_factory: Optional[Callable[..., Awaitable[ContainerSession]]] = None,
        router_factory: Optional[RouterFactory] = None,
        use_host: Optional[bool] = None,
    ):
        """Initialize pipeline; dict jobs are validated here."""
        self.job = job if isinstance(job, PreparationJob) else PreparationJob.parse(job)
        self.config = config or TuringPiConfig()
        self.registry = registry
        self.temp_manager = temp_manager
        self.session_factory = session_factory or ContainerSession.acquire
        self.router_factory = router_factory
        self.use_host = use_host
        self.stage = "validate"
        self.session: Optional[ContainerSession] = None
        self.workspace: Optional[Path] = None
        self.mount_session: Optional[MountSession] = None
        self._signal: Optional[int] = None

    @property
    def output_dir(self) -> Path:
        return Path(self.job.output_dir or self.config.paths.output_dir).expanduser()

    @property
    def final_path(self) -> Path:
        return self.output_dir / self.job.artefact_name

    @property
    def compression_level(self) -> int:
        if self.job.compression_level is not None:
            return self.job.compression_level
        return self.config.pipeline.compression_level

    def _validate(self) -> None:
        source = self.job.source_image
        if not source.is_file():
            raise InputInvalid(f"Source image not found: {source}")

    async def run(self) -> Path:
        """Run the pipeline and return the final artefact path."""
        await asyncio.to_thread(self._validate)

        final = self.final_path
        if await asyncio.to_thread(final.exists):
            logger.info(f"Using cached image {final}")
            return final

        registry = self.registry or get_registry(self.config.docker)
        task = asyncio.current_task()
        loop = asyncio.get_running_loop()

        def on_signal(signum: int) -> None:
            self._signal = signum
            loop.call_soon_threadsafe(task.cancel)

        registry.add_cancel_listener(on_signal)
        stack = ReleaseStack()
        try:
            result = await self._run(stack, registry, final)
        except asyncio.CancelledError:
            logger.warning(f"Pipeline cancelled during stage '{self.stage}', releasing resources")
            await stack.unwind()
            if self._signal is not None:
                task.uncancel()
                raise OperationCancelled(self._signal) from None
            raise
        except Exception as e:
            logger.error(f"Pipeline failed during stage '{self.stage}': {e}")
            errors = await stack.unwind()
            raise PipelineError(self.stage, e, errors) from e
        finally:
            registry.remove_cancel_listener(on_signal)

        for error in await stack.unwind():
            logger.warning(f"Release after success failed: {error}")
        logger.info(f"Prepared image {result}")
        return result

    async def _run(self, stack: ReleaseStack, registry: ContainerRegistry, final: Path) -> Path:
        job = self.job

        self.stage = "workspace"
        temp_manager = self.temp_manager or get_temp_manager(
            job.temp_dir or self.config.paths.temp_dir,
            max_age=self.config.temp.max_age,
            sweep_interval=self.config.temp.sweep_interval,
        )
        workspace = await asyncio.to_thread(temp_manager.create, WORKSPACE_PREFIX)
        self.workspace = workspace
        stack.push("workspace", partial(self._release_workspace, temp_manager, workspace))

        output_dir = self.output_dir
        await asyncio.to_thread(output_dir.mkdir, parents=True, exist_ok=True)

        self.stage = "executor"
        router = await self._open_router(stack, registry, workspace, output_dir)

        self.stage = "decompress"
        image = await router.decompress(job.source_image, workspace)
        if not job.keep_intermediate:
            stack.push("decompressed image", partial(router.discard, image))

        self.stage = "map"
        root, partitions = await router.map_partitions(image)
        stack.push("partition mappings", partial(router.unmap_partitions, image))

        self.stage = "mount"
        mount_point = workspace / MOUNT_DIR
        mount_path = await router.mount(root.device_path, mount_point)
        stack.push("mount", partial(router.unmount, mount_point))
        self.mount_session = MountSession(
            image=image,
            root_device=root.device_path,
            mount_point=mount_path,
            partitions=partitions,
        )

        self.stage = "network"
        await router.apply_network_identity(mount_path, job)

        if job.mutations:
            self.stage = "mutate"
            await router.apply_mutations(mount_path, job.mutations, verify=job.verify_checksums)

        self.stage = "unmount"
        await stack.pop("mount")
        self.stage = "unmap"
        await stack.pop("partition mappings")
        self.mount_session = None

        self.stage = "compress"
        staging = output_dir / f".{job.artefact_name}.partial"
        stack.push("partial output", partial(self._remove_file, staging))
        await router.compress(image, staging, self.compression_level)

        if job.verify_checksums:
            self.stage = "verify"
            await router.test_archive(staging)

        self.stage = "finalize"
        await asyncio.to_thread(os.replace, staging, final)
        if job.verify_checksums:
            await asyncio.to_thread(write_checksum_file, final)
        return final

    def _use_host(self) -> bool:
        if self.use_host is not None:
            return self.use_host
        return use_host_backend(self.config.pipeline)

    async def _open_router(
        self,
        stack: ReleaseStack,
        registry: ContainerRegistry,
        workspace: Path,
        output_dir: Path,
    ) -> ImageOpsRouter:
        """Pick host or container execution, acquiring a session if needed."""
        if not self._use_host():
            docker_config = self.config.docker
            spec = ContainerSpec.for_worker(
                source_dir=str(self.job.source_image.parent.resolve()),
                temp_dir=str(workspace.resolve()),
                output_dir=str(output_dir.resolve()),
                image=docker_config.worker_image,
                name=docker_config.name_prefix,
                privileged=True,
            )
            self.session = await self.session_factory(spec, registry=registry, config=docker_config)
            stack.push("container session", self.session.close)

        if self.router_factory is not None:
            return self.router_factory(workspace, self.session)

        if self.session is not None:
            provider = ContainerProvider(self.session)
        else:
            provider = HostProvider(
                scratch_dir=workspace / ".staging",
                command_timeout=self.config.docker.command_timeout,
            )
        logger.info(f"Running image operations on the {provider.backend.value}")
        return ImageOpsRouter(provider, self.config.pipeline)

    async def _release_workspace(self, temp_manager: TempDirManager, workspace: Path) -> None:
        if self.job.keep_intermediate:
            await asyncio.to_thread(temp_manager.release, workspace)
        else:
            await asyncio.to_thread(temp_manager.cleanup, workspace)

    @staticmethod
    async def _remove_file(path: Path) -> None:
        await asyncio.to_thread(path.unlink, missing_ok=True)


async def prepare_image(
    job: Union[PreparationJob, Dict[str, Any]],
    config: Optional[TuringPiConfig] = None,
    **kwargs: Any,
) -> Path:
    """Prepare a node image and return the path of the final artefact."""
    return await ImagePipeline(job, config=config, **kwargs).run()
