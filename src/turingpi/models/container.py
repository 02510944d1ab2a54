"""Worker container models."""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional
from pydantic import BaseModel, Field, validator

from turingpi.models.config import WORKER_IMAGE


MountRole = Literal["source", "temp", "output", "extra"]

# Container-side paths per mount role
STANDARD_LAYOUT = {"source": "/source", "temp": "/tmp", "output": "/output"}
PRIVILEGED_LAYOUT = {"source": "/images", "temp": "/tmp", "output": "/prepared-images"}


class ContainerState(Enum):
    """Worker container lifecycle state."""
    PROVISIONING = "provisioning"
    RUNNING = "running"
    STOPPED = "stopped"
    REMOVED = "removed"


class MountSpec(BaseModel):
    """Host directory bound into the container."""
    host_path: str = Field(..., description="Absolute host directory")
    container_path: str = Field(..., description="Absolute path inside the container")
    read_only: bool = Field(default=False)
    role: MountRole = Field(default="extra")

    class Config:
        """Pydantic config."""
        extra = "forbid"


class ContainerSpec(BaseModel):
    """Worker container specification."""
    image: str = Field(..., description="Image name to use")
    name: str = Field(..., description="Container name")
    unique_name: bool = Field(default=False, description="Suffix the name with a unique token")
    working_dir: str = Field(default="/workspace")
    mounts: List[MountSpec] = Field(default_factory=list)
    init_commands: List[List[str]] = Field(default_factory=list)
    network_disabled: bool = Field(default=False)
    privileged: bool = Field(default=False)

    class Config:
        """Pydantic config."""
        extra = "forbid"

    @validator("privileged", always=True)
    def validate_privileged(cls, v, values):
        """The tooling image needs privileges and the standard mounts."""
        if values.get("image") != WORKER_IMAGE:
            return v
        if not v:
            raise ValueError(f"Image {WORKER_IMAGE} requires privileged=True")
        mounts = values.get("mounts") or []
        roles = {mount.role: mount for mount in mounts}
        missing = [role for role in ("source", "temp", "output") if role not in roles]
        if missing:
            raise ValueError(f"Image {WORKER_IMAGE} requires mounts for: {', '.join(missing)}")
        if not roles["source"].read_only:
            raise ValueError("Source mount must be read-only")
        return v

    @classmethod
    def for_worker(
        cls,
        source_dir: str,
        temp_dir: str,
        output_dir: str,
        image: str = WORKER_IMAGE,
        name: str = WORKER_IMAGE,
        privileged: Optional[bool] = None,
    ) -> "ContainerSpec":
        """Build the standard worker spec for an image preparation run."""
        if privileged is None:
            privileged = image == WORKER_IMAGE
        layout = PRIVILEGED_LAYOUT if privileged else STANDARD_LAYOUT
        mounts = [
            MountSpec(host_path=source_dir, container_path=layout["source"], read_only=True, role="source"),
            MountSpec(host_path=temp_dir, container_path=layout["temp"], role="temp"),
            MountSpec(host_path=output_dir, container_path=layout["output"], role="output"),
        ]
        return cls(
            image=image,
            name=name,
            unique_name=True,
            mounts=mounts,
            network_disabled=True,
            privileged=privileged,
        )

    def mount_for(self, role: str) -> MountSpec:
        """Return the mount with the given role."""
        for mount in self.mounts:
            if mount.role == role:
                return mount
        raise KeyError(role)


class ContainerRecord(BaseModel):
    """A container created by this process."""
    id: str
    name: str
    spec: ContainerSpec
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
