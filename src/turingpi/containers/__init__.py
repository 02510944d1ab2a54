"""Worker container lifecycle: registry, session and daemon access."""

from turingpi.containers.registry import ContainerRegistry, get_registry, reset_registry
from turingpi.containers.session import ContainerSession, unique_container_name

__all__ = [
    "ContainerRegistry",
    "get_registry",
    "reset_registry",
    "ContainerSession",
    "unique_container_name",
]
