"""Interfaces the image core expects from board and node collaborators."""

from turingpi.interfaces.bmc import BMCController, NodeMode, PowerState, UsbMode
from turingpi.interfaces.node import NodeShell, RetryPolicy, retry_async

__all__ = [
    "BMCController",
    "NodeMode",
    "PowerState",
    "UsbMode",
    "NodeShell",
    "RetryPolicy",
    "retry_async",
]
