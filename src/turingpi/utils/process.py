"""Async subprocess helpers."""

import asyncio
import logging
import subprocess
from typing import List, Optional, Union
from dataclasses import dataclass


logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Result from running a command."""
    returncode: int
    stdout: Union[str, bytes] = ""
    stderr: str = ""


async def run_command(
    cmd: List[str],
    check: bool = True,
    capture_output: bool = True,
    timeout: Optional[float] = None,
    input: Optional[bytes] = None,
    text: bool = True,
    **kwargs
) -> CommandResult:
    """Run a command asynchronously.

    The child is killed if the wait times out or the calling task is
    cancelled. With ``text=False`` stdout is returned as bytes.
    """
    logger.debug(f"Running command: {' '.join(cmd)}")

    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdin=asyncio.subprocess.PIPE if input is not None else None,
        stdout=asyncio.subprocess.PIPE if capture_output else None,
        stderr=asyncio.subprocess.PIPE if capture_output else None,
        **kwargs
    )

    try:
        stdout, stderr = await asyncio.wait_for(
            process.communicate(input=input),
            timeout=timeout
        )
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise subprocess.TimeoutExpired(cmd, timeout)
    except asyncio.CancelledError:
        process.kill()
        await process.wait()
        raise

    if text:
        out: Union[str, bytes] = stdout.decode(errors="replace") if stdout else ""
    else:
        out = stdout or b""

    result = CommandResult(
        returncode=process.returncode,
        stdout=out,
        stderr=stderr.decode(errors="replace") if stderr else "",
    )

    if check and process.returncode != 0:
        error = subprocess.CalledProcessError(
            process.returncode, cmd
        )
        error.stdout = result.stdout
        error.stderr = result.stderr
        raise error

    return result
