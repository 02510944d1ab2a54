"""Direct host execution provider."""

import asyncio
import logging
import os
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import List, Optional

from turingpi.errors import ToolFailure
from turingpi.providers.base import BaseProvider, ExecutionBackend
from turingpi.utils.platform import is_root
from turingpi.utils.process import CommandResult, run_command


logger = logging.getLogger(__name__)


class HostProvider(BaseProvider):
    """Runs tools on the Linux host, elevating with sudo when not root."""

    backend = ExecutionBackend.HOST

    def __init__(self, scratch_dir: Path, use_sudo: Optional[bool] = None, command_timeout: float = 600):
        """Initialize host provider.

        ``scratch_dir`` holds staged files before they are moved into place.
        """
        self.scratch_dir = Path(scratch_dir)
        self.use_sudo = (not is_root()) if use_sudo is None else use_sudo
        self.command_timeout = command_timeout

    def translate(self, host_path: Path) -> str:
        return str(host_path)

    async def run(
        self,
        argv: List[str],
        stage: str,
        timeout: Optional[float] = None,
        check: bool = True,
        text: bool = True,
        elevate: bool = True,
    ) -> CommandResult:
        """Run a tool on the host."""
        cmd = ["sudo", "-n", *argv] if (elevate and self.use_sudo) else list(argv)
        try:
            return await run_command(
                cmd,
                check=check,
                timeout=timeout or self.command_timeout,
                text=text,
            )
        except subprocess.CalledProcessError as e:
            raise self.tool_failure(stage, argv, e) from e
        except subprocess.TimeoutExpired as e:
            raise ToolFailure(stage, argv, -1, f"timed out after {e.timeout}s") from e
        except FileNotFoundError as e:
            raise ToolFailure(stage, argv, 127, str(e)) from e

    async def _move_into_place(self, staged: Path, path: str, mode: int) -> None:
        """Move a staged file to ``path`` as root."""
        try:
            await self.run(["mkdir", "-p", os.path.dirname(path) or "/"], stage="write")
            await self.run(["mv", "-f", str(staged), path], stage="write")
            await self.run(["chown", "0:0", path], stage="write")
            await self.run(["chmod", f"{mode:o}", path], stage="write")
        finally:
            if await asyncio.to_thread(staged.exists):
                await asyncio.to_thread(staged.unlink)

    def _stage(self, data: Optional[bytes], source: Optional[Path], mode: int) -> Path:
        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(prefix=".stage-", dir=self.scratch_dir)
        os.close(fd)
        staged = Path(name)
        if source is not None:
            shutil.copyfile(source, staged)
        else:
            staged.write_bytes(data or b"")
        os.chmod(staged, mode)
        return staged

    async def write_file(self, path: str, data: bytes, mode: int) -> None:
        staged = await asyncio.to_thread(self._stage, data, None, mode)
        await self._move_into_place(staged, path, mode)
        logger.debug(f"Wrote {len(data)} bytes to {path} ({mode:o})")

    async def copy_local(self, source: Path, path: str, mode: int) -> None:
        staged = await asyncio.to_thread(self._stage, None, Path(source), mode)
        await self._move_into_place(staged, path, mode)
        logger.debug(f"Copied {source} to {path} ({mode:o})")
