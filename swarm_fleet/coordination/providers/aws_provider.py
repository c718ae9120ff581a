"""Amazon EC2 provider backed by the aws CLI.

Runs `aws ec2 describe-instances` and `aws ec2 terminate-instances` as
asyncio subprocesses with JSON output. Credentials and region resolution are
left to the CLI (profiles, instance roles, AWS_* env vars).
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from swarm_fleet.coordination.providers.base import (
    CloudProvider,
    InstanceInfo,
    ProviderInstanceState,
)
from swarm_fleet.utils.exceptions import PARSE_ERRORS, PROCESS_ERRORS, ProviderError

logger = logging.getLogger(__name__)

EC2_STATE_MAP = {
    "pending": ProviderInstanceState.STARTING,
    "running": ProviderInstanceState.RUNNING,
    "stopping": ProviderInstanceState.STOPPING,
    "stopped": ProviderInstanceState.STOPPED,
    "shutting-down": ProviderInstanceState.SHUTTING_DOWN,
    "terminated": ProviderInstanceState.TERMINATED,
}


def _parse_instance_state(state: str) -> ProviderInstanceState:
    return EC2_STATE_MAP.get(state, ProviderInstanceState.UNKNOWN)


def _parse_launch_time(value: str | None) -> datetime | None:
    if not value:
        return None
    # aws cli emits e.g. "2026-01-05T10:15:00+00:00" or a trailing "Z"
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@dataclass
class AWSConfig:
    """Configuration for the EC2 provider."""
    region: str | None = None
    profile: str | None = None
    cli_path: str = "aws"
    timeout_seconds: float = 60.0

    @classmethod
    def from_env(cls) -> "AWSConfig":
        return cls(
            region=os.environ.get("AWS_REGION") or os.environ.get("AWS_DEFAULT_REGION"),
            profile=os.environ.get("AWS_PROFILE"),
        )


class AWSProvider(CloudProvider):
    """EC2 implementation of the cloud provider boundary."""

    def __init__(self, config: AWSConfig | None = None):
        self.config = config or AWSConfig.from_env()

    @property
    def name(self) -> str:
        return "aws"

    def _base_command(self) -> list[str]:
        cmd = [self.config.cli_path]
        if self.config.region:
            cmd += ["--region", self.config.region]
        if self.config.profile:
            cmd += ["--profile", self.config.profile]
        return cmd

    async def _run_aws(self, *args: str) -> dict[str, Any]:
        """Run an aws cli command and return its decoded JSON output.

        Raises:
            ProviderError: If the CLI is missing, times out, fails or
                prints something that is not JSON.
        """
        cmd = self._base_command() + list(args) + ["--output", "json"]
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except PROCESS_ERRORS as e:
            raise ProviderError(f"Failed to run aws cli: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(),
                timeout=self.config.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            await self._kill(proc)
            raise ProviderError(f"aws {' '.join(args[:2])} timed out") from e
        except PROCESS_ERRORS as e:
            await self._kill(proc)
            raise ProviderError(f"Failed to run aws cli: {e}") from e

        if proc.returncode != 0:
            error_msg = (
                stderr.decode(errors="replace").strip() if stderr else "Unknown error"
            )
            raise ProviderError(f"aws {' '.join(args[:2])} failed: {error_msg}")

        try:
            return json.loads(stdout.decode()) if stdout.strip() else {}
        except PARSE_ERRORS as e:
            raise ProviderError(f"Unparsable aws cli output: {e}") from e

    @staticmethod
    async def _kill(proc: asyncio.subprocess.Process) -> None:
        """Kill and reap a cli process that will not be waited for otherwise."""
        try:
            proc.kill()
            await proc.wait()
        except ProcessLookupError:
            # Already exited
            pass
        except OSError as e:
            logger.error(f"Error killing aws cli process: {e}")

    async def describe_instance(self, instance_id: str) -> InstanceInfo | None:
        try:
            data = await self._run_aws(
                "ec2", "describe-instances", "--instance-ids", instance_id
            )
        except ProviderError as e:
            # Instances purged after termination are reported as not found
            if "InvalidInstanceID.NotFound" in str(e):
                return None
            raise

        for reservation in data.get("Reservations", []):
            for inst in reservation.get("Instances", []):
                if inst.get("InstanceId") != instance_id:
                    continue
                try:
                    return InstanceInfo(
                        instance_id=instance_id,
                        state=_parse_instance_state(inst.get("State", {}).get("Name", "")),
                        provider=self.name,
                        launched_at=_parse_launch_time(inst.get("LaunchTime")),
                        public_ip=inst.get("PublicIpAddress"),
                        private_ip=inst.get("PrivateIpAddress"),
                        instance_type=inst.get("InstanceType"),
                        raw_data=inst,
                    )
                except PARSE_ERRORS as e:
                    raise ProviderError(
                        f"Unexpected EC2 instance payload: {e}", instance_id
                    ) from e
        return None

    async def terminate_instance(self, instance_id: str) -> None:
        data = await self._run_aws(
            "ec2", "terminate-instances", "--instance-ids", instance_id
        )
        changes = data.get("TerminatingInstances", [])
        if not any(c.get("InstanceId") == instance_id for c in changes):
            raise ProviderError(
                f"EC2 did not confirm termination of {instance_id}", instance_id
            )
        logger.info(f"Requested termination of EC2 instance {instance_id}")
