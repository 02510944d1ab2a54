"""Node shell surface and its retry policy."""

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Tuple, Type, TypeVar
from pydantic import BaseModel, Field


logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy(BaseModel):
    """How often and how patiently to retry a node operation."""
    attempts: int = Field(default=3, ge=1)
    initial_delay: float = Field(default=1.0, ge=0)
    delay_increment: float = Field(default=1.0, ge=0)

    def delays(self) -> List[float]:
        """Waits between consecutive attempts."""
        return [self.initial_delay + i * self.delay_increment for i in range(self.attempts - 1)]


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    retry_on: Tuple[Type[BaseException], ...] = (OSError, asyncio.TimeoutError),
    description: str = "operation",
) -> T:
    """Run ``operation`` until it succeeds or the policy is exhausted."""
    policy = policy or RetryPolicy()
    for attempt, delay in enumerate(policy.delays(), start=1):
        try:
            return await operation()
        except retry_on as e:
            logger.warning(
                f"{description} failed (attempt {attempt}/{policy.attempts}): {e}; "
                f"retrying in {delay:.1f}s"
            )
            await asyncio.sleep(delay)
    return await operation()


class NodeShell(ABC):
    """Interactive remote shell on a compute node."""

    retry_policy: RetryPolicy = RetryPolicy()

    @abstractmethod
    async def exec(self, command: str, timeout: Optional[float] = None) -> Tuple[int, str, str]:
        """Run a command; returns (exit code, stdout, stderr)."""
        pass

    @abstractmethod
    async def expect_send(self, steps: List[Tuple[str, str]], timeout: Optional[float] = None) -> str:
        """Drive an interactive dialog of (expected text, reply) pairs."""
        pass

    @abstractmethod
    async def copy_to(self, local_path: Path, remote_path: str) -> None:
        pass

    @abstractmethod
    async def copy_from(self, remote_path: str, local_path: Path) -> None:
        pass
