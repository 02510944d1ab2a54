"""Tests for configuration models."""

import pytest
from pathlib import Path
from pydantic import ValidationError

from turingpi.models.config import (
    DockerConfig,
    PipelineConfig,
    TuringPiConfig,
    WORKER_IMAGE,
    default_output_dir,
)


class TestTuringPiConfig:
    """Test TuringPiConfig model."""

    def test_default_values(self):
        """Test default configuration values."""
        config = TuringPiConfig()

        assert config.log_level == "INFO"
        assert config.docker.worker_image == WORKER_IMAGE
        assert config.docker.stop_grace == 5
        assert config.docker.cleanup_timeout == 10.0
        assert config.pipeline.compression_level == 6
        assert config.pipeline.root_strategy == "second"
        assert config.pipeline.force_container is False
        assert config.paths.temp_dir is None

    def test_log_level_validation(self):
        """Test log level validation."""
        for level in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
            assert TuringPiConfig(log_level=level).log_level == level

        assert TuringPiConfig(log_level="debug").log_level == "DEBUG"

        with pytest.raises(ValidationError) as exc_info:
            TuringPiConfig(log_level="LOUD")

        assert "log_level" in str(exc_info.value)

    def test_from_env_overrides(self, monkeypatch, tmp_path):
        """Test TURINGPI_* environment overrides."""
        monkeypatch.setenv("TURINGPI_LOG_LEVEL", "warning")
        monkeypatch.setenv("TURINGPI_OUTPUT_DIR", str(tmp_path / "out"))
        monkeypatch.setenv("TURINGPI_TEMP_DIR", str(tmp_path / "tmp"))
        monkeypatch.setenv("TURINGPI_WORKER_IMAGE", "custom-worker")
        monkeypatch.setenv("TURINGPI_FORCE_CONTAINER", "yes")

        config = TuringPiConfig.from_env()

        assert config.log_level == "WARNING"
        assert config.paths.output_dir == tmp_path / "out"
        assert config.paths.temp_dir == tmp_path / "tmp"
        assert config.docker.worker_image == "custom-worker"
        assert config.pipeline.force_container is True

    def test_from_env_defaults(self, monkeypatch):
        """Test from_env without overrides."""
        for name in ("TURINGPI_LOG_LEVEL", "TURINGPI_OUTPUT_DIR", "TURINGPI_TEMP_DIR",
                     "TURINGPI_WORKER_IMAGE", "TURINGPI_FORCE_CONTAINER"):
            monkeypatch.delenv(name, raising=False)

        config = TuringPiConfig.from_env()

        assert config.docker.worker_image == WORKER_IMAGE
        assert config.pipeline.force_container is False


class TestDefaults:
    """Test default paths and bounds."""

    def test_output_dir_uses_xdg_cache(self, monkeypatch, tmp_path):
        """Test the output dir honours XDG_CACHE_HOME."""
        monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path))
        assert default_output_dir() == tmp_path / "turingpi" / "images"

    def test_output_dir_falls_back_to_home(self, monkeypatch):
        """Test the output dir without XDG_CACHE_HOME."""
        monkeypatch.delenv("XDG_CACHE_HOME", raising=False)
        assert default_output_dir() == Path.home() / ".cache" / "turingpi" / "images"

    def test_pipeline_bounds(self):
        """Test pipeline field validation."""
        with pytest.raises(ValidationError):
            PipelineConfig(compression_level=10)
        with pytest.raises(ValidationError):
            PipelineConfig(root_strategy="first")
        with pytest.raises(ValidationError):
            PipelineConfig(decompress_ratio=1.0)

    def test_docker_timeouts_positive(self):
        """Test docker timeouts must be positive."""
        with pytest.raises(ValidationError):
            DockerConfig(cleanup_timeout=0)
        with pytest.raises(ValidationError):
            DockerConfig(stop_grace=-1)
