"""Tests for network identity injection."""

import pytest
from ruamel.yaml import YAML

from turingpi.errors import UnsupportedPrefix
from turingpi.imageops.network import (
    NetworkFamily,
    apply_network_identity,
    clean_dns,
    netmask_for_prefix,
    render_hosts,
    render_netplan,
)
from turingpi.models.job import PreparationJob


def _job(**overrides):
    data = {
        "source_image": "./src/ubuntu.img.xz",
        "node": 2,
        "ip_address": "192.168.1.102",
        "prefix_length": 24,
        "gateway": "192.168.1.1",
        "dns": ["8.8.8.8", "1.1.1.1"],
    }
    data.update(overrides)
    return PreparationJob.parse(data)


def _load_yaml(path):
    return YAML(typ="safe").load(path.read_text())


class TestRendering:
    """Test pure rendering helpers."""

    @pytest.mark.parametrize("prefix,netmask", [
        (8, "255.0.0.0"),
        (16, "255.255.0.0"),
        (24, "255.255.255.0"),
    ])
    def test_netmasks(self, prefix, netmask):
        """Test the supported prefix table."""
        assert netmask_for_prefix(prefix) == netmask

    @pytest.mark.parametrize("prefix", [0, 12, 23, 25, 32])
    def test_unsupported_prefix(self, prefix):
        """Test other prefixes are rejected."""
        with pytest.raises(UnsupportedPrefix) as exc_info:
            netmask_for_prefix(prefix)
        assert exc_info.value.prefix == prefix

    def test_clean_dns(self):
        """Test comma lists, quotes and brackets are stripped."""
        assert clean_dns(["[8.8.8.8, 1.1.1.1]", " '9.9.9.9' ", ""]) == ["8.8.8.8", "1.1.1.1", "9.9.9.9"]

    def test_hosts(self):
        """Test hosts maps the hostname and keeps the IPv6 block."""
        hosts = render_hosts("node3")

        assert "127.0.0.1 localhost\n" in hosts
        assert "127.0.1.1 node3\n" in hosts
        assert "::1     ip6-localhost ip6-loopback" in hosts

    def test_netplan_document(self):
        """Test the netplan document structure."""
        document = YAML(typ="safe").load(render_netplan("10.0.0.5", 16, "10.0.0.1", ["10.0.0.1"]))

        eth0 = document["network"]["ethernets"]["eth0"]
        assert document["network"]["version"] == 2
        assert eth0["dhcp4"] is False
        assert eth0["addresses"] == ["10.0.0.5/16"]
        assert eth0["gateway4"] == "10.0.0.1"
        assert eth0["nameservers"]["addresses"] == ["10.0.0.1"]


@pytest.mark.asyncio
class TestApplyNetworkIdentity:
    """Test writing network files into an image root."""

    async def test_netplan_family(self, local_provider, rootfs):
        """Test a netplan image gets hostname, hosts and a netplan file."""
        (rootfs / "etc" / "netplan").mkdir()

        family = await apply_network_identity(local_provider, str(rootfs), _job())

        assert family is NetworkFamily.NETPLAN
        assert (rootfs / "etc" / "hostname").read_text() == "node2\n"
        assert "127.0.1.1 node2" in (rootfs / "etc" / "hosts").read_text()

        netplan = rootfs / "etc" / "netplan" / "01-netcfg.yaml"
        eth0 = _load_yaml(netplan)["network"]["ethernets"]["eth0"]
        assert eth0["addresses"] == ["192.168.1.102/24"]
        assert eth0["gateway4"] == "192.168.1.1"
        assert eth0["nameservers"]["addresses"] == ["8.8.8.8", "1.1.1.1"]
        assert (str(netplan), 0o600) in local_provider.writes
        assert not (rootfs / "etc" / "network").exists()

    async def test_existing_netplan_file_replaced(self, local_provider, rootfs):
        """Test the first existing netplan file is the one rewritten."""
        netplan_dir = rootfs / "etc" / "netplan"
        netplan_dir.mkdir()
        (netplan_dir / "README").write_text("not yaml")
        (netplan_dir / "50-cloud-init.yaml").write_text("network: {version: 2}\n")

        await apply_network_identity(local_provider, str(rootfs), _job())

        assert sorted(p.name for p in netplan_dir.iterdir()) == ["50-cloud-init.yaml", "README"]
        eth0 = _load_yaml(netplan_dir / "50-cloud-init.yaml")["network"]["ethernets"]["eth0"]
        assert eth0["addresses"] == ["192.168.1.102/24"]

    async def test_interfaces_family(self, local_provider, rootfs):
        """Test a legacy image gets /etc/network/interfaces and resolv.conf."""
        family = await apply_network_identity(local_provider, str(rootfs), _job())

        assert family is NetworkFamily.INTERFACES
        interfaces = (rootfs / "etc" / "network" / "interfaces").read_text()
        assert "address 192.168.1.102" in interfaces
        assert "netmask 255.255.255.0" in interfaces
        assert "gateway 192.168.1.1" in interfaces
        assert "dns-nameservers 8.8.8.8 1.1.1.1" in interfaces
        assert (rootfs / "etc" / "resolv.conf").read_text() == "nameserver 8.8.8.8\nnameserver 1.1.1.1\n"

    async def test_dangling_resolv_conf_replaced(self, local_provider, rootfs):
        """Test a dangling resolv.conf symlink is replaced by a file."""
        resolv = rootfs / "etc" / "resolv.conf"
        resolv.symlink_to("/run/systemd/resolve/stub-resolv.conf")

        await apply_network_identity(local_provider, str(rootfs), _job(dns=["9.9.9.9"]))

        assert not resolv.is_symlink()
        assert resolv.read_text() == "nameserver 9.9.9.9\n"

    async def test_unsupported_prefix_writes_nothing(self, local_provider, rootfs):
        """Test an unsupported prefix fails before any file is written."""
        (rootfs / "etc" / "netplan").mkdir()

        with pytest.raises(UnsupportedPrefix):
            await apply_network_identity(local_provider, str(rootfs), _job(prefix_length=23))

        assert local_provider.writes == []
        assert [p.name for p in (rootfs / "etc").iterdir()] == ["netplan"]

    async def test_custom_hostname_and_verify(self, local_provider, rootfs):
        """Test an explicit hostname with read-back verification."""
        await apply_network_identity(
            local_provider, str(rootfs), _job(hostname="edge-1", verify_checksums=True)
        )

        assert (rootfs / "etc" / "hostname").read_text() == "edge-1\n"
