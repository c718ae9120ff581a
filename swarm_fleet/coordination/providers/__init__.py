"""Cloud provider adapters for swarm nodes.

Usage:
    from swarm_fleet.coordination.providers import AWSProvider

    provider = AWSProvider()
    alive = await provider.is_instance_alive("i-0123")
"""

from swarm_fleet.coordination.providers.base import (
    DEAD_STATES,
    CloudProvider,
    InstanceInfo,
    ProviderInstanceState,
)
from swarm_fleet.coordination.providers.aws_provider import AWSConfig, AWSProvider
from swarm_fleet.coordination.providers.lambda_provider import LambdaConfig, LambdaProvider

__all__ = [
    "DEAD_STATES",
    "CloudProvider",
    "InstanceInfo",
    "ProviderInstanceState",
    "AWSConfig",
    "AWSProvider",
    "LambdaConfig",
    "LambdaProvider",
]
