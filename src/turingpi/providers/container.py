"""Worker container execution provider."""

import logging
import os
import posixpath
import shlex
import subprocess
import uuid
from pathlib import Path
from typing import List, Optional

from turingpi.containers.session import ContainerSession
from turingpi.errors import InputInvalid, ToolFailure
from turingpi.providers.base import BaseProvider, ExecutionBackend
from turingpi.utils.process import CommandResult


logger = logging.getLogger(__name__)

STAGING_DIR = "/var/tmp/turingpi-staging"


class ContainerProvider(BaseProvider):
    """Runs tools inside a worker container session."""

    backend = ExecutionBackend.CONTAINER

    def __init__(self, session: ContainerSession):
        """Initialize container provider."""
        self.session = session
        # Longest host prefix first so nested mounts win
        self._mounts = sorted(
            ((os.path.realpath(mount.host_path), mount.container_path) for mount in session.spec.mounts),
            key=lambda pair: len(pair[0]),
            reverse=True,
        )
        self._staging_ready = False

    def translate(self, host_path: Path) -> str:
        """Map a host path onto the container's bind mounts."""
        resolved = os.path.realpath(str(host_path))
        for base, container_path in self._mounts:
            if resolved == base or resolved.startswith(base.rstrip(os.sep) + os.sep):
                relative = os.path.relpath(resolved, base)
                if relative == ".":
                    return container_path
                return posixpath.join(container_path, *Path(relative).parts)
        raise InputInvalid(f"{host_path} is not visible inside container {self.session.name}")

    async def run(
        self,
        argv: List[str],
        stage: str,
        timeout: Optional[float] = None,
        check: bool = True,
        text: bool = True,
        elevate: bool = True,
    ) -> CommandResult:
        """Run a tool in the container; the container already runs as root."""
        try:
            return await self.session.exec(argv, timeout=timeout, check=check, text=text)
        except subprocess.CalledProcessError as e:
            raise self.tool_failure(stage, argv, e) from e
        except subprocess.TimeoutExpired as e:
            raise ToolFailure(stage, argv, -1, f"timed out after {e.timeout}s") from e

    async def _staging_path(self) -> str:
        if not self._staging_ready:
            await self.run(["mkdir", "-p", STAGING_DIR], stage="write")
            self._staging_ready = True
        return posixpath.join(STAGING_DIR, uuid.uuid4().hex)

    async def _move_into_place(self, staged: str, path: str, mode: int) -> None:
        parent = posixpath.dirname(path) or "/"
        script = " && ".join([
            f"mkdir -p {shlex.quote(parent)}",
            f"mv -f {shlex.quote(staged)} {shlex.quote(path)}",
            f"chown 0:0 {shlex.quote(path)}",
            f"chmod {mode:o} {shlex.quote(path)}",
        ])
        await self.run(["sh", "-c", script], stage="write")

    async def write_file(self, path: str, data: bytes, mode: int) -> None:
        staged = await self._staging_path()
        await self.session.copy_bytes_in(data, staged, mode)
        await self._move_into_place(staged, path, mode)
        logger.debug(f"[{self.session.name}] wrote {len(data)} bytes to {path} ({mode:o})")

    async def copy_local(self, source: Path, path: str, mode: int) -> None:
        staged = await self._staging_path()
        await self.session.copy_in(source, staged)
        await self._move_into_place(staged, path, mode)
        logger.debug(f"[{self.session.name}] copied {source} to {path} ({mode:o})")
