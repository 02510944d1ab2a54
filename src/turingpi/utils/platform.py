"""Host capability probes."""

import logging
import os
import platform
import shutil
from pathlib import Path
from typing import Iterable, List


logger = logging.getLogger(__name__)

# Tools the image pipeline needs when running directly on the host
IMAGE_TOOLS = ("xz", "kpartx", "losetup", "mount", "umount", "mountpoint")


def host_is_linux() -> bool:
    """Whether the host runs Linux."""
    return platform.system() == "Linux"


def is_root() -> bool:
    """Whether the current process runs as root."""
    return hasattr(os, "geteuid") and os.geteuid() == 0


def missing_tools(tools: Iterable[str] = IMAGE_TOOLS) -> List[str]:
    """Return the tools not found on PATH."""
    missing = [tool for tool in tools if shutil.which(tool) is None]
    if not is_root() and shutil.which("sudo") is None:
        missing.append("sudo")
    return missing


def host_supports_image_ops() -> bool:
    """Whether image operations can run directly on this host."""
    if not host_is_linux():
        logger.debug(f"Host OS {platform.system()} lacks loop device tooling")
        return False
    missing = missing_tools()
    if missing:
        logger.info(f"Host is missing tools: {', '.join(missing)}")
        return False
    return True


def has_disk_budget(directory: Path, required: int) -> bool:
    """Whether ``directory`` has at least ``required`` free bytes."""
    try:
        free = shutil.disk_usage(directory).free
    except OSError as e:
        logger.warning(f"Cannot read free space of {directory}: {e}")
        return False
    logger.debug(f"{directory}: {free} bytes free, {required} required")
    return free >= required
