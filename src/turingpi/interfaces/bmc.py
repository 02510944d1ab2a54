"""Board management controller command surface."""

from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional


class PowerState(Enum):
    """Node power state as reported by the BMC."""
    ON = "on"
    OFF = "off"


class UsbMode(Enum):
    """USB routing mode for a node."""
    HOST = "host"
    DEVICE = "device"
    FLASH = "flash"


class NodeMode(Enum):
    """Boot mode a node can be put in."""
    NORMAL = "normal"
    MSD = "msd"


class BMCController(ABC):
    """Remote control of the board management controller.

    Implementations wrap a remote shell against the BMC host and issue the
    BMC tool's textual commands. Node indexes are 1-based.
    """

    @abstractmethod
    async def power_status(self) -> Dict[int, PowerState]:
        """Power state of every node."""
        pass

    @abstractmethod
    async def power_on(self, node: int) -> None:
        pass

    @abstractmethod
    async def power_off(self, node: int) -> None:
        pass

    @abstractmethod
    async def reset(self, node: int) -> None:
        pass

    @abstractmethod
    async def info(self) -> Dict[str, Any]:
        """BMC version and board information."""
        pass

    @abstractmethod
    async def reboot(self) -> None:
        """Reboot the BMC itself."""
        pass

    @abstractmethod
    async def firmware_upgrade(self, firmware: Path) -> None:
        pass

    @abstractmethod
    async def usb_get(self) -> Dict[str, Any]:
        """Current USB routing."""
        pass

    @abstractmethod
    async def usb_set(self, node: int, mode: UsbMode, bmc_side: bool = False) -> None:
        pass

    @abstractmethod
    async def eth_reset(self) -> None:
        """Reset the on-board ethernet switch."""
        pass

    @abstractmethod
    async def set_node_mode(self, node: int, mode: NodeMode) -> None:
        pass

    @abstractmethod
    async def flash_node(self, node: int, image: Path) -> None:
        pass

    @abstractmethod
    async def uart_read(self, node: int) -> str:
        pass

    @abstractmethod
    async def uart_send(self, node: int, data: str) -> None:
        pass

    @abstractmethod
    async def expect_send(
        self,
        node: int,
        steps: List[tuple],
        timeout: Optional[float] = None,
    ) -> str:
        """Run an (expect, send) dialog over the node UART."""
        pass

    @abstractmethod
    async def upload(self, local_path: Path, remote_path: str) -> None:
        pass

    @abstractmethod
    async def raw(self, command: str) -> str:
        """Run a raw BMC shell command and return its output."""
        pass
