"""Launch-and-attach protocol for freshly provisioned instances.

A provisioned instance boots a swarm client that registers itself with the
build cluster, labelled with the marker label and its own instance id. The
controller polls cluster membership until that worker shows up, binds it to
the node handle and routes the node's channel to it.

The polling loop runs in the caller's task and may occupy it for
`max_attempts * poll_interval` seconds (200s by default).

Usage:
    controller = InstanceAttachmentController(registry)
    try:
        worker = await controller.attach(handle)
    except AttachmentTimeout:
        ...  # provisioning decides whether to retry or abandon
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from swarm_fleet.coordination.base_config import AttachmentConfig
from swarm_fleet.coordination.membership import (
    ClusterMembershipWatcher,
    ClusterRegistry,
    WorkerNode,
)
from swarm_fleet.metrics import record_attachment
from swarm_fleet.utils.exceptions import AttachmentTimeout, RegistryError

if TYPE_CHECKING:
    from swarm_fleet.coordination.node_handle import NodeHandle

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]


@dataclass
class AttachmentAttempt:
    """Ephemeral state of one attach call."""

    instance_id: str
    max_attempts: int
    count: int = 0
    total_delay: float = 0.0

    def record_poll(self) -> None:
        self.count += 1

    def record_delay(self, delay: float) -> None:
        self.total_delay += delay

    @property
    def elapsed_seconds(self) -> float:
        """Time spent waiting between polls."""
        return self.total_delay

    @property
    def exhausted(self) -> bool:
        return self.count >= self.max_attempts


class InstanceAttachmentController:
    """Matches a provisioned instance to the worker node it registers as."""

    def __init__(
        self,
        registry: ClusterRegistry,
        config: AttachmentConfig | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.registry = registry
        self.watcher = ClusterMembershipWatcher(registry)
        self.config = config or AttachmentConfig()
        self._sleep = sleep

    async def attach(
        self,
        node: NodeHandle,
        max_attempts: int | None = None,
        poll_interval: float | None = None,
    ) -> WorkerNode:
        """Wait for the node's worker to register, then bind it.

        Args:
            node: Handle of the freshly provisioned instance
            max_attempts: Membership polls before giving up
            poll_interval: Seconds to sleep after each unsuccessful poll

        Returns:
            The bound worker.

        Raises:
            AttachmentTimeout: No matching worker within the attempt budget.
            asyncio.CancelledError: Cancelled while waiting; nothing is bound.
        """
        if max_attempts is None:
            max_attempts = self.config.max_attempts
        if poll_interval is None:
            poll_interval = self.config.poll_interval_seconds

        attempt = AttachmentAttempt(node.instance_id, max_attempts)
        labels = (self.config.marker_label, node.instance_id)

        while not attempt.exhausted:
            attempt.record_poll()
            logger.info(
                f"Waiting for swarm worker of {node.instance_id} "
                f"(attempt {attempt.count}/{max_attempts})"
            )

            worker = await self._find_worker(node, labels)
            if worker is not None:
                await self._bind(node, worker)
                record_attachment("attached")
                return worker

            try:
                await self._sleep(poll_interval)
            except asyncio.CancelledError:
                logger.warning(f"Attachment of {node.instance_id} aborted while waiting")
                record_attachment("aborted")
                raise
            attempt.record_delay(poll_interval)

        record_attachment("timeout")
        logger.warning(
            f"No swarm worker registered for {node.instance_id} after "
            f"{attempt.count} attempts ({attempt.elapsed_seconds:.0f}s)"
        )
        raise AttachmentTimeout(node.instance_id, attempt)

    async def _find_worker(
        self, node: NodeHandle, labels: tuple[str, str]
    ) -> WorkerNode | None:
        try:
            matches = await self.watcher.find_workers(labels)
        except RegistryError as e:
            logger.warning(f"Could not list cluster workers for {node.instance_id}: {e}")
            return None

        if not matches:
            return None
        if len(matches) > 1:
            # Registry enumeration order decides; should never happen in practice
            logger.warning(
                f"{len(matches)} workers claim instance {node.instance_id}: "
                f"{[w.name for w in matches]}; using {matches[0].name}"
            )
        return matches[0]

    async def _bind(self, node: NodeHandle, worker: WorkerNode) -> None:
        logger.info(f"Got swarm worker {worker.name} for {node.instance_id}")
        # A concurrent attach of the same node may have bound it already
        if node.bound_worker is not worker:
            node.set_bound_worker(worker)
        try:
            await self.registry.bind_channel(node, worker)
        except RegistryError as e:
            logger.warning(f"Failed to bind channel of {node.name} to {worker.name}: {e}")
