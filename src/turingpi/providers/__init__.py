"""Execution providers: run image tooling on the host or in a worker container."""

from turingpi.providers.base import BaseProvider, ExecutionBackend
from turingpi.providers.host import HostProvider
from turingpi.providers.container import ContainerProvider
from turingpi.providers.router import ImageOpsRouter, use_host_backend

__all__ = [
    "BaseProvider",
    "ExecutionBackend",
    "HostProvider",
    "ContainerProvider",
    "ImageOpsRouter",
    "use_host_backend",
]
