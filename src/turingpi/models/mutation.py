"""Filesystem mutation op models."""

from pathlib import Path
from typing import Annotated, Literal, Optional, Union
from pydantic import BaseModel, Field


class WriteOp(BaseModel):
    """Write bytes to a path inside the image."""
    kind: Literal["write"] = "write"
    path: str = Field(..., description="Path relative to the image root")
    content: bytes
    mode: int = Field(default=0o644, ge=0, le=0o7777)


class CopyLocalOp(BaseModel):
    """Copy a host file into the image."""
    kind: Literal["copy_local"] = "copy_local"
    source: Path = Field(..., description="Host file to copy")
    path: str = Field(..., description="Destination relative to the image root")
    mode: Optional[int] = Field(default=None, ge=0, le=0o7777, description="Defaults to the source mode")


class MkdirOp(BaseModel):
    """Create a directory (and parents) inside the image."""
    kind: Literal["mkdir"] = "mkdir"
    path: str
    mode: int = Field(default=0o755, ge=0, le=0o7777)


class ChmodOp(BaseModel):
    """Change the mode of an existing path inside the image."""
    kind: Literal["chmod"] = "chmod"
    path: str
    mode: int = Field(..., ge=0, le=0o7777)


MutationOp = Annotated[
    Union[WriteOp, CopyLocalOp, MkdirOp, ChmodOp],
    Field(discriminator="kind"),
]
