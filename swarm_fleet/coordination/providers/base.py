"""Cloud provider boundary for swarm nodes.

Defines the interface and data structures the node lifecycle needs from a
cloud provider: describe one instance, terminate one instance.

Key concepts:
- ProviderInstanceState: Unified enum for instance states across all providers
- InstanceInfo: Dataclass containing instance information from provider API
- CloudProvider: Abstract base class for provider-specific implementations
- DEAD_STATES: States in which an instance no longer backs a worker
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class ProviderInstanceState(Enum):
    """Unified instance state across all cloud providers.

    Each provider maps their specific state strings to these canonical states.
    """

    RUNNING = "running"
    STARTING = "starting"
    STOPPING = "stopping"
    STOPPED = "stopped"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"
    UNKNOWN = "unknown"


DEAD_STATES: frozenset[ProviderInstanceState] = frozenset({
    ProviderInstanceState.SHUTTING_DOWN,
    ProviderInstanceState.TERMINATED,
})


@dataclass
class InstanceInfo:
    """Information about a cloud provider instance.

    Returned by CloudProvider.describe_instance().
    """

    instance_id: str
    state: ProviderInstanceState
    provider: str  # "aws", "lambda"

    # Launch time, used for billing-period arithmetic
    launched_at: Optional[datetime] = None

    public_ip: Optional[str] = None
    private_ip: Optional[str] = None
    instance_type: Optional[str] = None

    # Raw provider response (for debugging)
    raw_data: dict = field(default_factory=dict)

    @property
    def is_alive(self) -> bool:
        """Whether the instance can still back a worker node."""
        return self.state not in DEAD_STATES

    def uptime_seconds(self, now: float | None = None) -> float | None:
        """Seconds since launch, or None if the provider gave no launch time."""
        if self.launched_at is None:
            return None
        now = time.time() if now is None else now
        return max(0.0, now - self.launched_at.timestamp())

    def __str__(self) -> str:
        return f"{self.instance_id} ({self.provider}): {self.state.value}"


class CloudProvider(ABC):
    """Abstract base class for provider-specific implementations.

    Implementations raise ProviderError for API failures; they do not
    swallow errors, the node lifecycle decides how to handle them.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Short provider name (e.g., "aws")."""
        ...

    @abstractmethod
    async def describe_instance(self, instance_id: str) -> InstanceInfo | None:
        """Return current information about an instance.

        Returns:
            InstanceInfo, or None if the provider does not know the instance.

        Raises:
            ProviderError: If the provider API call failed.
        """
        ...

    @abstractmethod
    async def terminate_instance(self, instance_id: str) -> None:
        """Request termination of an instance.

        Raises:
            ProviderError: If the provider API call failed.
        """
        ...

    async def is_instance_alive(self, instance_id: str) -> bool:
        """Liveness probe: False if the instance is gone or shutting down.

        Raises:
            ProviderError: If the provider API call failed.
        """
        info = await self.describe_instance(instance_id)
        if info is None:
            logger.debug(f"{self.name} does not know instance {instance_id}")
            return False
        return info.is_alive

    async def close(self) -> None:
        """Release any held resources (HTTP sessions, ...)."""
        return None
