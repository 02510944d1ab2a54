"""Per-node network identity written into a mounted image."""

import io
import logging
from enum import Enum
from typing import TYPE_CHECKING, Iterable, List

from ruamel.yaml import YAML

from turingpi.errors import TuringPiError, UnsupportedPrefix
from turingpi.imageops.mutations import MutationPlanner, apply_mutations, image_path
from turingpi.models.job import PreparationJob

if TYPE_CHECKING:
    from turingpi.providers.base import BaseProvider
from turingpi.utils.templates import render_template


logger = logging.getLogger(__name__)

NETMASKS = {
    8: "255.0.0.0",
    16: "255.255.0.0",
    24: "255.255.255.0",
}

INTERFACE = "eth0"
NETPLAN_DIR = "etc/netplan"
NETPLAN_DEFAULT = "etc/netplan/01-netcfg.yaml"

HOSTS_TEMPLATE = """\
127.0.0.1 localhost
127.0.1.1 {{ hostname }}

# The following lines are desirable for IPv6 capable hosts
::1     ip6-localhost ip6-loopback
fe00::0 ip6-localnet
ff00::0 ip6-mcastprefix
ff02::1 ip6-allnodes
ff02::2 ip6-allrouters
"""

INTERFACES_TEMPLATE = """\
auto lo
iface lo inet loopback

auto {{ interface }}
iface {{ interface }} inet static
    address {{ address }}
    netmask {{ netmask }}
    gateway {{ gateway }}
    dns-nameservers {{ dns | join(' ') }}
"""


class NetworkFamily(Enum):
    """Network configuration style of the image."""
    NETPLAN = "netplan"
    INTERFACES = "interfaces"


def netmask_for_prefix(prefix: int) -> str:
    """Dotted netmask for a supported prefix length."""
    try:
        return NETMASKS[prefix]
    except KeyError:
        raise UnsupportedPrefix(prefix) from None


def clean_dns(entries: Iterable[str]) -> List[str]:
    """Split comma lists and strip quotes, brackets and whitespace."""
    cleaned: List[str] = []
    for entry in entries:
        for part in str(entry).split(","):
            part = part.strip().strip("[]\"'").strip()
            if part:
                cleaned.append(part)
    return cleaned


def render_hostname(hostname: str) -> str:
    return f"{hostname}\n"


def render_hosts(hostname: str) -> str:
    return render_template(HOSTS_TEMPLATE, hostname=hostname)


def render_interfaces(address: str, netmask: str, gateway: str, dns: List[str]) -> str:
    return render_template(
        INTERFACES_TEMPLATE,
        interface=INTERFACE,
        address=address,
        netmask=netmask,
        gateway=gateway,
        dns=dns,
    )


def render_resolv_conf(dns: List[str]) -> str:
    return "".join(f"nameserver {server}\n" for server in dns)


def render_netplan(address: str, prefix: int, gateway: str, dns: List[str]) -> str:
    """Netplan v2 document for a single static interface."""
    document = {
        "network": {
            "version": 2,
            "ethernets": {
                INTERFACE: {
                    "dhcp4": False,
                    "addresses": [f"{address}/{prefix}"],
                    "gateway4": gateway,
                    "nameservers": {"addresses": list(dns)},
                },
            },
        },
    }
    yaml = YAML()
    yaml.default_flow_style = False
    stream = io.StringIO()
    yaml.dump(document, stream)
    return stream.getvalue()


async def detect_family(provider: "BaseProvider", mount_point: str) -> NetworkFamily:
    """Netplan when /etc/netplan exists in the image, otherwise interfaces."""
    if await provider.is_dir(image_path(mount_point, NETPLAN_DIR)):
        return NetworkFamily.NETPLAN
    return NetworkFamily.INTERFACES


async def _netplan_target(provider: "BaseProvider", mount_point: str) -> str:
    """First existing netplan file, or the default one."""
    entries = await provider.list_dir(image_path(mount_point, NETPLAN_DIR))
    for name in entries:
        if name.endswith((".yaml", ".yml")):
            return f"{NETPLAN_DIR}/{name}"
    return NETPLAN_DEFAULT


async def apply_network_identity(
    provider: "BaseProvider",
    mount_point: str,
    job: PreparationJob,
) -> NetworkFamily:
    """Write hostname, hosts and the static network config for ``job``.

    The prefix is checked before anything is written.
    """
    netmask = netmask_for_prefix(job.prefix_length)
    dns = clean_dns(job.dns)
    address = str(job.ip_address)
    gateway = str(job.gateway)

    family = await detect_family(provider, mount_point)
    logger.info(f"Applying {family.value} network identity {address}/{job.prefix_length} for {job.hostname}")

    planner = MutationPlanner()
    planner.write("etc/hostname", render_hostname(job.hostname), mode=0o644)
    planner.write("etc/hosts", render_hosts(job.hostname), mode=0o644)

    if family is NetworkFamily.NETPLAN:
        target = await _netplan_target(provider, mount_point)
        planner.write(target, render_netplan(address, job.prefix_length, gateway, dns), mode=0o600)
    else:
        planner.mkdir("etc/network", mode=0o755)
        planner.write(
            "etc/network/interfaces",
            render_interfaces(address, netmask, gateway, dns),
            mode=0o644,
        )

    await apply_mutations(provider, mount_point, planner.operations(), verify=job.verify_checksums)

    if family is NetworkFamily.INTERFACES:
        await _write_resolv_conf(provider, mount_point, dns)

    return family


async def _write_resolv_conf(provider: "BaseProvider", mount_point: str, dns: List[str]) -> None:
    # Non-fatal; replaces a dangling /run symlink if present
    target = image_path(mount_point, "etc/resolv.conf")
    try:
        await provider.run(["rm", "-f", target], stage="network")
        await provider.write_file(target, render_resolv_conf(dns).encode(), 0o644)
    except TuringPiError as e:
        logger.warning(f"Could not write resolv.conf: {e}")
