"""Long-lived worker container session."""

import asyncio
import io
import logging
import posixpath
import secrets
import subprocess
import tarfile
import time
import weakref
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import docker
from docker.errors import APIError, DockerException, NotFound

from turingpi.containers.endpoint import connect_client
from turingpi.containers.images import ensure_image
from turingpi.containers.registry import ContainerRegistry, get_registry
from turingpi.errors import ContainerLifecycleError, NotReady, SessionClosed
from turingpi.models.config import DockerConfig
from turingpi.models.container import ContainerRecord, ContainerSpec, ContainerState
from turingpi.utils.process import CommandResult


logger = logging.getLogger(__name__)

KEEPALIVE_COMMAND = ["sleep", "infinity"]
MANAGED_LABEL = {"created_by": "turingpi"}


def unique_container_name(prefix: str) -> str:
    """Suffix ``prefix`` with a timestamp and random token."""
    return f"{prefix}-{time.time_ns()}-{secrets.token_hex(4)}"


def _find_container(client: docker.DockerClient, name: str):
    # The name filter matches substrings, so compare exactly
    for container in client.containers.list(all=True, filters={"name": name}):
        if container.name == name:
            return container
    return None


def _create_args(spec: ContainerSpec, name: str) -> Dict[str, Any]:
    return {
        "image": spec.image,
        "command": KEEPALIVE_COMMAND,
        "name": name,
        "working_dir": spec.working_dir,
        "volumes": {
            mount.host_path: {
                "bind": mount.container_path,
                "mode": "ro" if mount.read_only else "rw",
            }
            for mount in spec.mounts
        },
        "privileged": spec.privileged,
        "network_disabled": spec.network_disabled,
        "labels": dict(MANAGED_LABEL),
    }


def _create_or_attach(client: docker.DockerClient, spec: ContainerSpec, name: str):
    """Adopt a running container with this name or create a fresh one."""
    try:
        existing = _find_container(client, name)
        if existing is not None:
            if existing.status == "running":
                logger.info(f"Adopting running container {name}")
                return existing
            logger.info(f"Removing {existing.status} container {name} before recreating")
            existing.remove(force=True)
    except DockerException as e:
        raise ContainerLifecycleError("inspect", name, str(e)) from e

    try:
        return client.containers.create(**_create_args(spec, name))
    except APIError as e:
        if e.status_code != 409:
            raise ContainerLifecycleError("create", name, str(e)) from e
        logger.warning(f"Name conflict while creating {name}, looking it up again")
        try:
            existing = _find_container(client, name)
        except DockerException:
            existing = None
        if existing is not None and existing.status == "running":
            logger.info(f"Adopting container {name} created concurrently")
            return existing
        raise ContainerLifecycleError("create", name, str(e)) from e
    except DockerException as e:
        raise ContainerLifecycleError("create", name, str(e)) from e


def _tar_file(host_path: Path, arcname: str) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as archive:
        archive.add(str(host_path), arcname=arcname)
    return buffer.getvalue()


def _tar_bytes(data: bytes, arcname: str, mode: int) -> bytes:
    buffer = io.BytesIO()
    info = tarfile.TarInfo(arcname)
    info.size = len(data)
    info.mode = mode
    info.mtime = int(time.time())
    with tarfile.open(fileobj=buffer, mode="w") as archive:
        archive.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def _finalize_session(container_id: str, registry: ContainerRegistry) -> None:
    logger.warning(f"Container session {container_id[:12]} dropped without close(); destroying")
    registry.destroy(container_id)


class ContainerSession:
    """A named worker container that accepts exec and file copies.

    One session belongs to one pipeline. ``exec`` and ``copy_in`` may run
    concurrently; start and close transitions are serialized.
    """

    def __init__(
        self,
        client: docker.DockerClient,
        container,
        spec: ContainerSpec,
        registry: ContainerRegistry,
        config: DockerConfig,
    ):
        """Wrap an existing, registered container."""
        self._client = client
        self._container = container
        self.spec = spec
        self.registry = registry
        self.config = config
        self.id: str = container.id
        self.name: str = container.name
        self.created_at = datetime.now(timezone.utc)
        self.state = ContainerState.PROVISIONING
        self._closed = False
        self._lock = asyncio.Lock()
        self._finalizer = weakref.finalize(self, _finalize_session, self.id, registry)

    @classmethod
    async def acquire(
        cls,
        spec: ContainerSpec,
        registry: Optional[ContainerRegistry] = None,
        config: Optional[DockerConfig] = None,
        client: Optional[docker.DockerClient] = None,
    ) -> "ContainerSession":
        """Connect, ensure the image, create or adopt, start and register."""
        config = config or DockerConfig()
        registry = registry or get_registry(config)
        if client is None:
            client = await connect_client(config.api_timeout)
        registry.bind_client(client)

        await ensure_image(client, spec.image, config)

        name = unique_container_name(spec.name) if spec.unique_name else spec.name
        container = await asyncio.to_thread(_create_or_attach, client, spec, name)
        registry.register(container.id)

        session = cls(client, container, spec, registry, config)
        try:
            await session._start()
            await session._run_init_commands()
        except BaseException:
            logger.error(f"Provisioning of container {name} failed, destroying it")
            session._closed = True
            session._finalizer.detach()
            await asyncio.to_thread(registry.destroy, container.id)
            session.state = ContainerState.REMOVED
            raise

        logger.info(f"Container session {name} ({container.id[:12]}) ready")
        return session

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def record(self) -> ContainerRecord:
        return ContainerRecord(id=self.id, name=self.name, spec=self.spec, created_at=self.created_at)

    def _ensure_open(self) -> None:
        if self._closed:
            raise SessionClosed(f"Container session {self.name} is closed")

    async def _start(self) -> None:
        try:
            await asyncio.to_thread(self._container.reload)
            if self._container.status != "running":
                await asyncio.to_thread(self._container.start)
                await asyncio.to_thread(self._container.reload)
        except DockerException as e:
            raise ContainerLifecycleError("start", self.name, str(e)) from e

        if self._container.status != "running":
            raise ContainerLifecycleError(
                "start", self.name, f"container is {self._container.status}"
            )
        self.state = ContainerState.RUNNING

        for mount in self._container.attrs.get("Mounts") or []:
            logger.debug(
                f"{self.name}: {mount.get('Source')} -> {mount.get('Destination')} "
                f"(rw={mount.get('RW')})"
            )

    async def _run_init_commands(self) -> None:
        for argv in self.spec.init_commands:
            await self.exec(argv, timeout=self.config.init_timeout)

    async def _ensure_running(self) -> None:
        """Start the container once if it is not running."""
        try:
            await asyncio.to_thread(self._container.reload)
        except DockerException as e:
            raise NotReady(f"Container {self.name} cannot be inspected: {e}") from e
        if self._container.status == "running":
            return

        async with self._lock:
            self._ensure_open()
            try:
                await asyncio.to_thread(self._container.reload)
            except DockerException as e:
                raise NotReady(f"Container {self.name} cannot be inspected: {e}") from e
            status = self._container.status
            if status == "running":
                return
            self.state = ContainerState.STOPPED
            logger.warning(f"Container {self.name} is {status}, attempting a single start")
            try:
                await asyncio.to_thread(self._container.start)
                await asyncio.to_thread(self._container.reload)
            except DockerException as e:
                raise NotReady(f"Container {self.name} could not be started: {e}") from e
            if self._container.status != "running":
                raise NotReady(f"Container {self.name} is {self._container.status}")
            self.state = ContainerState.RUNNING

    async def exec(
        self,
        argv: List[str],
        timeout: Optional[float] = None,
        check: bool = True,
        text: bool = True,
    ) -> CommandResult:
        """Run ``argv`` in the container without a shell.

        Raises subprocess.CalledProcessError on a non-zero exit when
        ``check`` is set; the error carries stdout captured so far and
        stderr. Raises subprocess.TimeoutExpired when the command outlives
        ``timeout``.
        """
        self._ensure_open()
        await self._ensure_running()
        logger.debug(f"[{self.name}] exec: {' '.join(argv)}")

        try:
            exit_code, output = await asyncio.wait_for(
                asyncio.to_thread(
                    self._container.exec_run,
                    argv,
                    stdout=True,
                    stderr=True,
                    demux=True,
                    workdir=self.spec.working_dir,
                ),
                timeout=timeout or self.config.command_timeout,
            )
        except asyncio.TimeoutError:
            # exec_run cannot be interrupted; the command dies with the container
            logger.warning(f"[{self.name}] exec timed out: {' '.join(argv)}")
            raise subprocess.TimeoutExpired(argv, timeout or self.config.command_timeout)
        except DockerException as e:
            raise ContainerLifecycleError("exec in", self.name, str(e)) from e

        raw_stdout, raw_stderr = output if output else (None, None)
        stdout: Union[str, bytes] = raw_stdout or b""
        if text:
            stdout = stdout.decode(errors="replace")
        result = CommandResult(
            returncode=exit_code,
            stdout=stdout,
            stderr=(raw_stderr or b"").decode(errors="replace"),
        )

        if check and exit_code != 0:
            error = subprocess.CalledProcessError(exit_code, argv)
            error.stdout = result.stdout
            error.stderr = result.stderr
            raise error

        return result

    async def _put_archive(self, container_dir: str, data: bytes) -> None:
        try:
            ok = await asyncio.to_thread(self._container.put_archive, container_dir, data)
        except DockerException as e:
            raise ContainerLifecycleError("copy into", self.name, str(e)) from e
        if not ok:
            raise ContainerLifecycleError("copy into", self.name, f"put_archive to {container_dir} refused")

    async def copy_in(self, host_path: Union[str, Path], container_path: str) -> None:
        """Stream a host file to ``container_path``."""
        self._ensure_open()
        host_path = Path(host_path)
        directory, arcname = posixpath.split(container_path)
        data = await asyncio.to_thread(_tar_file, host_path, arcname)
        await self._put_archive(directory or "/", data)
        logger.debug(f"Copied {host_path} to {self.name}:{container_path}")

    async def copy_bytes_in(self, data: bytes, container_path: str, mode: int = 0o644) -> None:
        """Write ``data`` to ``container_path`` with ``mode``."""
        self._ensure_open()
        directory, arcname = posixpath.split(container_path)
        await self._put_archive(directory or "/", _tar_bytes(data, arcname, mode))

    async def close(self) -> None:
        """Stop, force-remove and unregister the container."""
        async with self._lock:
            if self._closed:
                return
            self._closed = True
            self._finalizer.detach()

            try:
                await asyncio.to_thread(self._container.stop, timeout=self.config.stop_grace)
            except NotFound:
                pass
            except DockerException as e:
                logger.warning(f"Stop of container {self.name} failed, removing anyway: {e}")
            self.state = ContainerState.STOPPED

            try:
                await asyncio.to_thread(self._container.remove, force=True)
            except NotFound:
                logger.debug(f"Container {self.name} was already removed")
            except DockerException as e:
                # Still tracked, so the registry sweep retries it
                raise ContainerLifecycleError("remove", self.name, str(e)) from e

            self.state = ContainerState.REMOVED
            self.registry.unregister(self.id)
            logger.info(f"Closed container session {self.name}")

    async def __aenter__(self) -> "ContainerSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
