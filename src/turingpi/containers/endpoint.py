"""Container daemon endpoint discovery."""

import asyncio
import logging
import os
import subprocess
from typing import Callable, List, Optional, Tuple

import docker
from docker.errors import DockerException

from turingpi.errors import DaemonUnavailable
from turingpi.utils.process import run_command


logger = logging.getLogger(__name__)


async def _docker_cli(args: List[str], timeout: float = 10) -> Optional[str]:
    """Run a docker CLI query, returning stripped stdout or None."""
    try:
        result = await run_command(["docker", *args], timeout=timeout)
    except (OSError, subprocess.CalledProcessError, subprocess.TimeoutExpired) as e:
        logger.debug(f"docker {' '.join(args)} failed: {e}")
        return None
    return result.stdout.strip() or None


async def context_host() -> Optional[str]:
    """Return the endpoint host of the active docker context."""
    name = await _docker_cli(["context", "show"])
    candidates = [name] if name else []
    if "default" not in candidates:
        candidates.append("default")

    for candidate in candidates:
        host = await _docker_cli([
            "context", "inspect", candidate, "--format", "{{.Endpoints.docker.Host}}"
        ])
        if host:
            logger.debug(f"Docker context '{candidate}' points at {host}")
            return host
    return None


def _ping(factory: Callable[[], docker.DockerClient]) -> docker.DockerClient:
    client = factory()
    try:
        client.ping()
    except DockerException:
        client.close()
        raise
    return client


async def connect_client(api_timeout: int = 60) -> docker.DockerClient:
    """Connect to the docker daemon.

    Tries the active context's host, then DOCKER_HOST, then the SDK
    defaults. When every attempt fails, the error hint tells a missing
    daemon apart from a CLI that works while the SDK cannot connect.
    """
    attempts: List[Tuple[str, Callable[[], docker.DockerClient]]] = []

    host = await context_host()
    if host:
        attempts.append((
            f"context host {host}",
            lambda: docker.DockerClient(base_url=host, timeout=api_timeout),
        ))

    env_host = os.environ.get("DOCKER_HOST")
    if env_host and env_host != host:
        attempts.append((
            f"DOCKER_HOST {env_host}",
            lambda: docker.DockerClient(base_url=env_host, timeout=api_timeout),
        ))

    attempts.append(("SDK defaults", lambda: docker.from_env(timeout=api_timeout)))

    last_error: Optional[Exception] = None
    for label, factory in attempts:
        logger.info(f"Connecting to docker via {label}")
        try:
            client = await asyncio.to_thread(_ping, factory)
        except DockerException as e:
            logger.warning(f"Docker connection via {label} failed: {e}")
            last_error = e
            continue
        logger.debug(f"Connected to docker via {label}")
        return client

    if await _docker_cli(["version", "--format", "{{.Server.Version}}"]):
        raise DaemonUnavailable(
            "Docker CLI is available but the SDK connection failed; "
            "check your docker context configuration (docker context ls)",
            hint=DaemonUnavailable.CONTEXT_MISCONFIGURED,
        ) from last_error

    raise DaemonUnavailable(
        "Failed to connect to the docker daemon; ensure Docker is installed and running",
        hint=DaemonUnavailable.DAEMON_MISSING,
    ) from last_error
