"""Base execution provider interface."""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import List, Optional

from turingpi.errors import ToolFailure
from turingpi.utils.process import CommandResult


logger = logging.getLogger(__name__)


class ExecutionBackend(Enum):
    """Where privileged tools run."""
    HOST = "host"
    CONTAINER = "container"


class BaseProvider(ABC):
    """Runs image tooling somewhere and moves files into a mounted image.

    All paths handed to a provider are paths as its tools see them; use
    :meth:`translate` to turn a host path into one.
    """

    backend: ExecutionBackend

    @abstractmethod
    async def run(
        self,
        argv: List[str],
        stage: str,
        timeout: Optional[float] = None,
        check: bool = True,
        text: bool = True,
        elevate: bool = True,
    ) -> CommandResult:
        """Run a tool; a non-zero exit raises ToolFailure when ``check`` is set."""
        pass

    @abstractmethod
    async def write_file(self, path: str, data: bytes, mode: int) -> None:
        """Write ``data`` to ``path`` with ``mode`` using the privileged move strategy."""
        pass

    @abstractmethod
    async def copy_local(self, source: Path, path: str, mode: int) -> None:
        """Copy the host file ``source`` to ``path`` with ``mode``."""
        pass

    @abstractmethod
    def translate(self, host_path: Path) -> str:
        """Return ``host_path`` as the provider's tools see it."""
        pass

    async def _probe(self, argv: List[str]) -> bool:
        result = await self.run(argv, stage="probe", check=False)
        return result.returncode == 0

    async def exists(self, path: str) -> bool:
        return await self._probe(["test", "-e", path])

    async def is_dir(self, path: str) -> bool:
        return await self._probe(["test", "-d", path])

    async def is_block_device(self, path: str) -> bool:
        return await self._probe(["test", "-b", path])

    async def is_mountpoint(self, path: str) -> bool:
        return await self._probe(["mountpoint", "-q", path])

    async def list_dir(self, path: str) -> List[str]:
        """Entry names in ``path``, sorted."""
        result = await self.run(["ls", "-1A", path], stage="probe")
        return sorted(line for line in result.stdout.splitlines() if line)

    async def read_file(self, path: str) -> bytes:
        result = await self.run(["cat", path], stage="read", text=False)
        return result.stdout

    async def file_mode(self, path: str) -> int:
        """Permission bits of ``path``."""
        result = await self.run(["stat", "-c", "%a", path], stage="stat")
        return int(result.stdout.strip(), 8)

    async def make_dir(self, path: str, mode: Optional[int] = None) -> None:
        await self.run(["mkdir", "-p", path], stage="mkdir")
        if mode is not None:
            await self.chmod(path, mode)

    async def chmod(self, path: str, mode: int) -> None:
        await self.run(["chmod", f"{mode:o}", path], stage="chmod")

    async def remove(self, path: str, stage: str = "cleanup") -> None:
        await self.run(["rm", "-rf", path], stage=stage)

    @staticmethod
    def tool_failure(stage: str, argv: List[str], error) -> ToolFailure:
        """Convert a CalledProcessError into a ToolFailure."""
        return ToolFailure(stage, argv, error.returncode, getattr(error, "stderr", "") or "")
