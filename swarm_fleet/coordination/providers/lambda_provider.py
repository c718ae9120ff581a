"""Lambda Labs cloud provider integration.

Implements the CloudProvider interface for Lambda Labs GPU cloud, so swarm
workers running on Lambda instances can be retired by the same retention
policy as EC2 ones.

API Documentation: https://cloud.lambdalabs.com/api/v1/docs
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Any

import aiohttp

from swarm_fleet.coordination.providers.base import (
    CloudProvider,
    InstanceInfo,
    ProviderInstanceState,
)
from swarm_fleet.utils.exceptions import PARSE_ERRORS, ProviderError

logger = logging.getLogger(__name__)


@dataclass
class LambdaConfig:
    """Configuration for Lambda Labs provider."""
    api_key: str | None = None
    api_base: str = "https://cloud.lambdalabs.com/api/v1"
    timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> "LambdaConfig":
        """Load configuration from environment variables."""
        return cls(
            api_key=os.environ.get("LAMBDA_API_KEY"),
        )


_STATUS_MAP = {
    "active": ProviderInstanceState.RUNNING,
    "booting": ProviderInstanceState.STARTING,
    "unhealthy": ProviderInstanceState.RUNNING,
    "terminating": ProviderInstanceState.SHUTTING_DOWN,
    "terminated": ProviderInstanceState.TERMINATED,
}


def _parse_instance_state(status: str) -> ProviderInstanceState:
    """Parse Lambda instance status to enum."""
    return _STATUS_MAP.get(status, ProviderInstanceState.UNKNOWN)


class LambdaProvider(CloudProvider):
    """Lambda Labs cloud provider implementation.

    Requires LAMBDA_API_KEY environment variable to be set.

    Lambda does not report a launch time, so uptime falls back to the
    node handle's creation time.
    """

    def __init__(self, config: LambdaConfig | None = None):
        self.config = config or LambdaConfig.from_env()
        self._session: aiohttp.ClientSession | None = None

    @property
    def name(self) -> str:
        return "lambda"

    def is_configured(self) -> bool:
        """Check if API key is set."""
        return bool(self.config.api_key)

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def _api_request(
        self,
        method: str,
        endpoint: str,
        json: dict | None = None,
        allow_not_found: bool = False,
    ) -> dict[str, Any] | None:
        """Make an authenticated API request.

        Returns None for a 404 when `allow_not_found` is set.
        """
        if not self.config.api_key:
            raise ProviderError("Lambda API key not configured")

        url = f"{self.config.api_base}{endpoint}"
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }

        session = await self._get_session()

        try:
            async with session.request(method, url, headers=headers, json=json) as resp:
                if resp.status == 404 and allow_not_found:
                    return None
                data = await resp.json()

                if resp.status >= 400:
                    error_msg = data.get("error", {}).get("message", str(data))
                    raise ProviderError(f"Lambda API error ({resp.status}): {error_msg}")

                return data

        except aiohttp.ClientError as e:
            raise ProviderError(f"Lambda API request failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise ProviderError(
                f"Lambda API request timed out after {self.config.timeout_seconds}s"
            ) from e
        except PARSE_ERRORS as e:
            raise ProviderError(f"Unparsable Lambda API response: {e}") from e

    async def describe_instance(self, instance_id: str) -> InstanceInfo | None:
        data = await self._api_request(
            "GET", f"/instances/{instance_id}", allow_not_found=True
        )
        if data is None:
            return None

        inst = data.get("data")
        if not inst:
            return None

        try:
            return InstanceInfo(
                instance_id=inst["id"],
                state=_parse_instance_state(inst.get("status", "unknown")),
                provider=self.name,
                public_ip=inst.get("ip"),
                private_ip=inst.get("private_ip"),
                instance_type=inst.get("instance_type", {}).get("name"),
                raw_data=inst,
            )
        except PARSE_ERRORS as e:
            raise ProviderError(
                f"Unexpected Lambda instance payload: {e}", instance_id
            ) from e

    async def terminate_instance(self, instance_id: str) -> None:
        data = await self._api_request(
            "POST",
            "/instance-operations/terminate",
            json={"instance_ids": [instance_id]},
        )
        terminated = (data or {}).get("data", {}).get("terminated_instances", [])
        if not any(t.get("id") == instance_id for t in terminated):
            raise ProviderError(
                f"Lambda did not confirm termination of {instance_id}", instance_id
            )
        logger.info(f"Terminated Lambda instance: {instance_id}")

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
