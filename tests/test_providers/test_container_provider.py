"""Tests for the worker container provider."""

import subprocess
from pathlib import Path

import pytest
from unittest.mock import AsyncMock, MagicMock

from turingpi.errors import InputInvalid, ToolFailure
from turingpi.models.container import ContainerSpec
from turingpi.providers.base import ExecutionBackend
from turingpi.providers.container import STAGING_DIR, ContainerProvider
from turingpi.utils.process import CommandResult


@pytest.fixture
def session():
    """Mocked session with the privileged worker mounts."""
    session = MagicMock()
    session.name = "turingpi-prepare-1"
    session.spec = ContainerSpec.for_worker("/data", "/data/work", "/srv/images")
    session.exec = AsyncMock(return_value=CommandResult(returncode=0))
    session.copy_bytes_in = AsyncMock()
    session.copy_in = AsyncMock()
    return session


@pytest.fixture
def provider(session):
    """Container provider over the mocked session."""
    return ContainerProvider(session)


class TestTranslate:
    """Test host to container path mapping."""

    def test_nested_mount_wins(self, provider):
        """Test the longest host prefix is used."""
        assert provider.translate(Path("/data/work/mnt")) == "/tmp/mnt"
        assert provider.translate(Path("/data/ubuntu.img.xz")) == "/images/ubuntu.img.xz"

    def test_mount_root(self, provider):
        """Test a mount root maps to the container path."""
        assert provider.translate(Path("/srv/images")) == "/prepared-images"

    def test_prefix_is_not_a_parent(self, provider):
        """Test sibling directories sharing a prefix are not mapped."""
        with pytest.raises(InputInvalid):
            provider.translate(Path("/srv/images-old/node1.img.xz"))

    def test_unmapped_path(self, provider):
        """Test paths outside the mounts are rejected."""
        with pytest.raises(InputInvalid):
            provider.translate(Path("/etc/passwd"))

    def test_symlinked_workspace(self, session, tmp_path):
        """Test paths reached through a symlink map onto resolved mounts."""
        real = tmp_path / "real"
        for name in ("src", "ws", "out"):
            (real / name).mkdir(parents=True)
        link = tmp_path / "link"
        link.symlink_to(real, target_is_directory=True)
        session.spec = ContainerSpec.for_worker(
            str((link / "src").resolve()),
            str((link / "ws").resolve()),
            str((link / "out").resolve()),
        )
        provider = ContainerProvider(session)

        assert provider.translate(link / "ws" / "ubuntu.img") == "/tmp/ubuntu.img"
        assert provider.translate(link / "out" / "node1.img.xz") == "/prepared-images/node1.img.xz"

    def test_unresolved_mount_paths(self, session, tmp_path):
        """Test mounts given through a symlink still match resolved paths."""
        real = tmp_path / "real"
        (real / "src").mkdir(parents=True)
        link = tmp_path / "link"
        link.symlink_to(real, target_is_directory=True)
        session.spec = ContainerSpec.for_worker(str(link / "src"), str(tmp_path / "w"), str(tmp_path / "o"))
        provider = ContainerProvider(session)

        assert provider.translate(real / "src" / "ubuntu.img.xz") == "/images/ubuntu.img.xz"


@pytest.mark.asyncio
class TestContainerProvider:
    """Test container provider execution."""

    async def test_run_passes_argv(self, provider, session):
        """Test commands run through the session without a shell."""
        await provider.run(["kpartx", "-av", "/tmp/ubuntu.img"], stage="map")

        session.exec.assert_awaited_once_with(
            ["kpartx", "-av", "/tmp/ubuntu.img"], timeout=None, check=True, text=True
        )
        assert provider.backend is ExecutionBackend.CONTAINER

    async def test_timeout_becomes_tool_failure(self, provider, session):
        """Test an exec timeout maps to ToolFailure with exit code -1."""
        session.exec.side_effect = subprocess.TimeoutExpired(["kpartx"], 60)

        with pytest.raises(ToolFailure) as exc_info:
            await provider.run(["kpartx", "-av", "/tmp/ubuntu.img"], stage="map")

        assert exc_info.value.stage == "map"
        assert exc_info.value.exit_code == -1

    async def test_failure_becomes_tool_failure(self, provider, session):
        """Test CalledProcessError from exec maps to ToolFailure."""
        error = subprocess.CalledProcessError(1, ["kpartx"])
        error.stderr = "read error"
        session.exec.side_effect = error

        with pytest.raises(ToolFailure) as exc_info:
            await provider.run(["kpartx", "-av", "/tmp/ubuntu.img"], stage="map")

        assert exc_info.value.stage == "map"
        assert exc_info.value.stderr == "read error"

    async def test_write_file_stages_then_moves(self, provider, session):
        """Test writes go through the staging dir and a root-owned move."""
        await provider.write_file("/tmp/mnt/etc/netplan/01-netcfg.yaml", b"network: {}\n", 0o600)
        await provider.write_file("/tmp/mnt/etc/hostname", b"node1\n", 0o644)

        data, staged, mode = session.copy_bytes_in.call_args_list[0][0]
        assert data == b"network: {}\n"
        assert staged.startswith(STAGING_DIR + "/")
        assert mode == 0o600

        argvs = [c[0][0] for c in session.exec.call_args_list]
        assert argvs[0] == ["mkdir", "-p", STAGING_DIR]
        assert argvs[1][:2] == ["sh", "-c"]
        script = argvs[1][2]
        assert f"mv -f {staged} /tmp/mnt/etc/netplan/01-netcfg.yaml" in script
        assert "chown 0:0 /tmp/mnt/etc/netplan/01-netcfg.yaml" in script
        assert "chmod 600 /tmp/mnt/etc/netplan/01-netcfg.yaml" in script
        # staging dir is created once
        assert argvs.count(["mkdir", "-p", STAGING_DIR]) == 1

    async def test_copy_local(self, provider, session, tmp_path):
        """Test host files are copied in then moved."""
        source = tmp_path / "id_ed25519.pub"
        source.write_text("ssh-ed25519 AAAA")

        await provider.copy_local(source, "/tmp/mnt/root/.ssh/authorized_keys", 0o600)

        host_path, staged = session.copy_in.call_args[0]
        assert host_path == source
        script = session.exec.call_args[0][0][2]
        assert f"mv -f {staged} /tmp/mnt/root/.ssh/authorized_keys" in script
        assert "mkdir -p /tmp/mnt/root/.ssh" in script
