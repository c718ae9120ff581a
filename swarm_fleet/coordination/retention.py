"""Retention policy for on-demand swarm nodes.

Decides, on a periodic tick, whether an idle swarm node should be
terminated. `idle_termination_minutes` selects the strategy:

- 0: never terminate automatically
- >0: terminate after that many minutes of continuous idleness
- <0: terminate once the time left in the current billing period drops to
  abs(value) minutes or less, so already-paid time is used up first

Checks for one node never overlap: a check that finds another check of the
same node in flight returns immediately instead of waiting.

Usage:
    controller = RetentionController(RetentionConfig.from_env())
    controller.start(handle)
    while True:
        delay = await controller.check(handle)
        await asyncio.sleep(delay)
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from swarm_fleet.coordination.base_config import RetentionConfig
from swarm_fleet.metrics import record_retention_check
from swarm_fleet.utils.exceptions import (
    PROBE_ERRORS,
    ConfigParseError,
    TransientProbeFailure,
)

if TYPE_CHECKING:
    from swarm_fleet.coordination.node_handle import ManagedNode

logger = logging.getLogger(__name__)

# Fallback for a non-empty value that is not an integer
DEFAULT_IDLE_TERMINATION_MINUTES = 30


def _parse_minutes_strict(value: str) -> int:
    try:
        return int(value)
    except ValueError as e:
        raise ConfigParseError(f"Not an integer number of minutes: {value!r}") from e


def parse_idle_termination_minutes(value: str | int | None) -> int:
    """Parse the idle termination setting supplied at node definition time.

    None or blank means "never terminate" (0). A malformed non-empty value
    logs a warning and falls back to DEFAULT_IDLE_TERMINATION_MINUTES.
    """
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    if not value.strip():
        return 0
    try:
        return _parse_minutes_strict(value.strip())
    except ConfigParseError:
        logger.warning(
            f"Malformed idle termination value {value!r}, "
            f"using {DEFAULT_IDLE_TERMINATION_MINUTES} minutes"
        )
        return DEFAULT_IDLE_TERMINATION_MINUTES


@dataclass(frozen=True)
class RetentionPolicy:
    """Per-node idle termination setting, fixed when the node is created."""

    idle_termination_minutes: int = 0

    @classmethod
    def parse(cls, value: str | int | None) -> "RetentionPolicy":
        return cls(parse_idle_termination_minutes(value))

    @property
    def never_terminate(self) -> bool:
        return self.idle_termination_minutes == 0

    @property
    def uses_billing_period(self) -> bool:
        return self.idle_termination_minutes < 0

    def idle_expired(self, idle_seconds: float) -> bool:
        """Idle-minutes strategy: strictly longer than the allowance."""
        return idle_seconds > self.idle_termination_minutes * 60

    def billing_period_expiring(
        self, uptime_seconds: float, billing_period_seconds: int = 3600
    ) -> bool:
        """Billing-period strategy: few enough paid seconds are left."""
        return (
            free_seconds_left(uptime_seconds, billing_period_seconds)
            <= abs(self.idle_termination_minutes) * 60
        )


def free_seconds_left(uptime_seconds: float, billing_period_seconds: int = 3600) -> int:
    """Seconds remaining in the current billing period."""
    return billing_period_seconds - (int(uptime_seconds) % billing_period_seconds)


class RetentionController:
    """Periodic idle-termination decision for swarm nodes."""

    def __init__(
        self,
        config: RetentionConfig | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or RetentionConfig()
        self._clock = clock

    @property
    def next_check_delay(self) -> float:
        return self.config.check_interval_seconds

    async def check(self, node: ManagedNode) -> float:
        """Run one retention check.

        Returns:
            Seconds until the node should be checked again.
        """
        if not node.try_acquire_check():
            logger.debug(f"Retention check already running for {node.name}, skipping")
            record_retention_check("skipped_busy")
            return self.next_check_delay
        try:
            outcome = await self._check(node)
        finally:
            node.release_check()
        record_retention_check(outcome)
        return self.next_check_delay

    async def _check(self, node: ManagedNode) -> str:
        policy = node.policy
        if policy.never_terminate:
            return "never_terminate"

        worker = node.bound_worker
        if worker is None:
            logger.info(f"Swarm worker not attached yet: {node.name}")
            return "unattached"

        # A node still starting up looks idle; never idle it out
        if worker.is_offline:
            return "offline"
        if not worker.is_idle:
            return "not_idle"
        if self.config.disabled:
            return "disabled"

        idle_seconds = self._clock() - worker.idle_start_time

        if not policy.uses_billing_period:
            if policy.idle_expired(idle_seconds):
                logger.info(
                    f"Idle timeout of {worker.name} (and {node.name}) after "
                    f"{int(idle_seconds // 60)} idle minutes"
                )
                await node.idle_timeout()
                return "triggered"
            return "kept"

        try:
            uptime = await node.get_uptime()
        except (TransientProbeFailure, *PROBE_ERRORS) as e:
            logger.debug(
                f"Could not read uptime of {node.name}, will retry next check: {e}"
            )
            return "probe_failed"

        period = self.config.billing_period_seconds
        if policy.billing_period_expiring(uptime, period):
            logger.info(
                f"Idle timeout of {node.name} after {int(idle_seconds // 60)} idle "
                f"minutes, with {free_seconds_left(uptime, period) // 60} minutes "
                f"remaining in billing period"
            )
            await node.idle_timeout()
            return "triggered"
        return "kept"

    def start(self, node: ManagedNode) -> None:
        """Connect to a newly seen node as soon as possible."""
        logger.info(f"Start requested for {node.name}")
        node.connect()
