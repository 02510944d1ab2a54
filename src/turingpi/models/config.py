"""Configuration models."""

import os
from pathlib import Path
from typing import Literal, Optional
from pydantic import BaseModel, Field, validator


WORKER_IMAGE = "turingpi-prepare"


def default_output_dir() -> Path:
    """Return <user cache>/turingpi/images."""
    cache_home = os.environ.get("XDG_CACHE_HOME")
    base = Path(cache_home) if cache_home else Path.home() / ".cache"
    return base / "turingpi" / "images"


class DockerConfig(BaseModel):
    """Worker container settings."""
    worker_image: str = Field(default=WORKER_IMAGE)
    base_image: str = Field(default="ubuntu:22.04")
    name_prefix: str = Field(default="turingpi-prepare")
    stop_grace: int = Field(default=5, ge=0, description="Seconds given to stop before kill")
    cleanup_timeout: float = Field(default=10.0, gt=0, description="Deadline per container cleanup")
    sweep_timeout: float = Field(default=30.0, gt=0, description="Ceiling for a full registry sweep")
    init_timeout: float = Field(default=60.0, gt=0)
    command_timeout: float = Field(default=600.0, gt=0)
    api_timeout: int = Field(default=60, gt=0)


class PathsConfig(BaseModel):
    """Filesystem locations."""
    output_dir: Path = Field(default_factory=default_output_dir)
    temp_dir: Optional[Path] = Field(default=None, description="Base for scoped workspaces")


class TempConfig(BaseModel):
    """Temporary workspace sweeping."""
    max_age: float = Field(default=24 * 3600, gt=0, description="Seconds before an entry expires")
    sweep_interval: float = Field(default=3600, gt=0)


class PipelineConfig(BaseModel):
    """Image pipeline tuning."""
    compression_level: int = Field(default=6, ge=0, le=9)
    root_strategy: Literal["second", "largest"] = Field(default="second")
    decompress_ratio: float = Field(default=4.0, gt=1.0, description="Expected raw/compressed size ratio")
    device_wait: float = Field(default=10.0, ge=0)
    force_container: bool = Field(default=False)


class TuringPiConfig(BaseModel):
    """Main configuration model."""
    docker: DockerConfig = Field(default_factory=DockerConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    temp: TempConfig = Field(default_factory=TempConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    log_level: str = Field(default="INFO")

    class Config:
        """Pydantic config."""
        extra = "ignore"

    @validator("log_level")
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()

    @classmethod
    def from_env(cls) -> "TuringPiConfig":
        """Build a config from defaults and TURINGPI_* overrides."""
        config = cls(log_level=os.environ.get("TURINGPI_LOG_LEVEL", "INFO"))

        output_dir = os.environ.get("TURINGPI_OUTPUT_DIR")
        if output_dir:
            config.paths.output_dir = Path(output_dir).expanduser()

        temp_dir = os.environ.get("TURINGPI_TEMP_DIR")
        if temp_dir:
            config.paths.temp_dir = Path(temp_dir).expanduser()

        worker_image = os.environ.get("TURINGPI_WORKER_IMAGE")
        if worker_image:
            config.docker.worker_image = worker_image

        force = os.environ.get("TURINGPI_FORCE_CONTAINER", "")
        if force.lower() in ("1", "true", "yes"):
            config.pipeline.force_container = True

        return config
