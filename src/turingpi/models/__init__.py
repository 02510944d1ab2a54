"""Pydantic models and runtime records."""

from turingpi.models.config import (
    TuringPiConfig,
    DockerConfig,
    PathsConfig,
    TempConfig,
    PipelineConfig,
    WORKER_IMAGE,
)
from turingpi.models.container import ContainerSpec, ContainerState, ContainerRecord, MountSpec
from turingpi.models.image import FileChecksum, ImageLocation, MountSession, PartitionEntry
from turingpi.models.job import PreparationJob
from turingpi.models.mutation import ChmodOp, CopyLocalOp, MkdirOp, MutationOp, WriteOp

__all__ = [
    "TuringPiConfig",
    "DockerConfig",
    "PathsConfig",
    "TempConfig",
    "PipelineConfig",
    "WORKER_IMAGE",
    "ContainerSpec",
    "ContainerState",
    "ContainerRecord",
    "MountSpec",
    "FileChecksum",
    "ImageLocation",
    "MountSession",
    "PartitionEntry",
    "PreparationJob",
    "ChmodOp",
    "CopyLocalOp",
    "MkdirOp",
    "MutationOp",
    "WriteOp",
]
