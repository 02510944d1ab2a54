"""Preparation job model."""

import re
from ipaddress import IPv4Address
from pathlib import Path
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, ValidationError, validator

from turingpi.errors import InputInvalid
from turingpi.models.mutation import MutationOp


COMPRESSED_SUFFIX = ".xz"
IMAGE_SUFFIX = ".img.xz"

# RFC 1123 label
HOSTNAME_PATTERN = re.compile(r"^[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?$")


class PreparationJob(BaseModel):
    """Everything needed to prepare one node image."""
    source_image: Path = Field(..., description="Compressed source image (.xz)")
    node: int = Field(..., ge=1, le=4, description="Node slot on the board")
    ip_address: IPv4Address
    prefix_length: int = Field(..., ge=1, le=32)
    gateway: IPv4Address
    dns: List[str] = Field(..., min_length=1)
    hostname: Optional[str] = Field(default=None, description="Defaults to node<N>")
    output_dir: Optional[Path] = Field(default=None, description="Defaults to the configured output dir")
    temp_dir: Optional[Path] = Field(default=None)
    keep_intermediate: bool = Field(default=False)
    verify_checksums: bool = Field(default=False)
    compression_level: Optional[int] = Field(default=None, ge=0, le=9)
    mutations: List[MutationOp] = Field(default_factory=list)

    class Config:
        """Pydantic config."""
        extra = "forbid"

    @validator("source_image")
    def validate_source_image(cls, v):
        """Source must be an xz stream."""
        if v.suffix != COMPRESSED_SUFFIX:
            raise ValueError(f"Source image must end in {COMPRESSED_SUFFIX}: {v}")
        return v

    @validator("dns")
    def validate_dns(cls, v):
        """At least one non-blank DNS entry."""
        entries = [entry.strip() for entry in v if entry and entry.strip()]
        if not entries:
            raise ValueError("At least one DNS server is required")
        return entries

    @validator("hostname", always=True)
    def default_hostname(cls, v, values):
        """Default hostname from node index."""
        if v is not None and v.strip():
            hostname = v.strip()
            if not HOSTNAME_PATTERN.match(hostname):
                raise ValueError(f"Hostname must be a single DNS label: {hostname!r}")
            return hostname
        node = values.get("node")
        if node is None:
            raise ValueError("Hostname cannot be derived without a valid node index")
        return f"node{node}"

    @property
    def artefact_name(self) -> str:
        """Final artefact filename."""
        return f"{self.hostname}{IMAGE_SUFFIX}"

    @classmethod
    def parse(cls, data: Dict[str, Any]) -> "PreparationJob":
        """Validate raw input, raising InputInvalid on failure."""
        try:
            return cls(**data)
        except ValidationError as e:
            raise InputInvalid(str(e)) from e
