"""Runtime records for image preparation."""

from dataclasses import dataclass, field
from typing import List, Literal


@dataclass(frozen=True)
class ImageLocation:
    """Where an image file lives.

    ``host`` paths are host filesystem paths. ``container`` paths only exist
    inside the worker container; stages handed one must stay in the container
    until the image is repacked.
    """
    path: str
    kind: Literal["host", "container"] = "host"

    @property
    def on_host(self) -> bool:
        return self.kind == "host"

    @classmethod
    def host(cls, path) -> "ImageLocation":
        return cls(path=str(path), kind="host")

    @classmethod
    def container(cls, path: str) -> "ImageLocation":
        return cls(path=path, kind="container")

    def __str__(self) -> str:
        return self.path if self.on_host else f"container:{self.path}"


@dataclass(frozen=True)
class PartitionEntry:
    """One partition mapping reported by kpartx."""
    device: str
    size: int = 0
    start: int = 0

    @property
    def device_path(self) -> str:
        return f"/dev/mapper/{self.device}"


@dataclass
class MountSession:
    """A mapped and mounted image root."""
    image: ImageLocation
    root_device: str
    mount_point: str
    partitions: List[PartitionEntry] = field(default_factory=list)


@dataclass(frozen=True)
class FileChecksum:
    """SHA-256 digest of a file."""
    path: str
    hash: str
    size: int
    modified: int
