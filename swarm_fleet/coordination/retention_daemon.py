"""Periodic driver for retention checks.

Runs one asyncio task per registered node. Each task starts the node once
(eager connect), then calls RetentionController.check on a fixed interval
until the node is terminated, removed from the daemon or the daemon stops.
Checks of different nodes run concurrently with no ordering between them.

Stopping the daemon or removing a node also cancels a background attachment
the node's start may have begun.

Usage:
    daemon = RetentionDaemon(RetentionController(RetentionConfig.from_env()))
    await daemon.start()
    daemon.add_node(handle)
    ...
    await daemon.stop()
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any

from swarm_fleet.coordination.attachment import SleepFunc
from swarm_fleet.coordination.retention import RetentionController

if TYPE_CHECKING:
    from swarm_fleet.coordination.node_handle import NodeHandle

logger = logging.getLogger(__name__)


class RetentionDaemon:
    """Shared scheduler invoking retention checks per node."""

    def __init__(
        self,
        controller: RetentionController,
        sleep: SleepFunc = asyncio.sleep,
        name: str | None = None,
    ):
        self.controller = controller
        self._sleep = sleep
        self._name = name or self.__class__.__name__
        self._running = False
        self._start_time: float = 0.0
        self._tasks: dict[str, asyncio.Task] = {}
        self._nodes: dict[str, NodeHandle] = {}
        self._checks_count = 0
        self._errors_count = 0
        self._last_error: str | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def node_ids(self) -> list[str]:
        return list(self._tasks)

    async def start(self) -> None:
        if self._running:
            return
        if not self.controller.config.enabled:
            logger.info(f"[{self._name}] Disabled by configuration, not starting")
            return
        self._running = True
        self._start_time = time.time()
        logger.info(
            f"[{self._name}] Started "
            f"(interval={self.controller.config.check_interval_seconds}s, "
            f"disabled={self.controller.config.disabled})"
        )

    async def stop(self) -> None:
        """Cancel every per-node loop and attachment, and wait for them to finish."""
        if not self._running:
            return
        self._running = False
        tasks = list(self._tasks.values())
        nodes = list(self._nodes.values())
        self._tasks.clear()
        self._nodes.clear()
        for task in tasks:
            task.cancel()
        for node in nodes:
            connect_task = node.cancel_connect()
            if connect_task is not None:
                tasks.append(connect_task)
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"[{self._name}] Stopped ({len(nodes)} nodes released)")

    def add_node(self, node: NodeHandle) -> asyncio.Task:
        """Begin periodic checks for a node. Idempotent per instance id."""
        if not self._running:
            raise RuntimeError(f"{self._name} is not running")
        task = self._tasks.get(node.instance_id)
        if task is None or task.done():
            task = asyncio.ensure_future(self._run_node(node))
            self._tasks[node.instance_id] = task
            self._nodes[node.instance_id] = node
        return task

    def remove_node(self, instance_id: str) -> None:
        task = self._tasks.pop(instance_id, None)
        node = self._nodes.pop(instance_id, None)
        if task is not None:
            task.cancel()
        if node is not None:
            node.cancel_connect()

    async def _run_node(self, node: NodeHandle) -> None:
        self.controller.start(node)
        try:
            while self._running and not node.terminated:
                try:
                    delay = await self.controller.check(node)
                    self._checks_count += 1
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    # One broken node must not stop the others
                    self._errors_count += 1
                    self._last_error = str(e)
                    logger.error(f"[{self._name}] Retention check of {node.name} failed: {e}")
                    delay = self.controller.config.error_backoff_seconds

                if node.terminated:
                    break
                await self._sleep(delay)
        finally:
            if self._tasks.get(node.instance_id) is asyncio.current_task():
                del self._tasks[node.instance_id]
                self._nodes.pop(node.instance_id, None)
        logger.info(f"[{self._name}] Stopped checking {node.name}")

    def get_stats(self) -> dict[str, Any]:
        uptime = time.time() - self._start_time if self._start_time else 0.0
        return {
            "name": self._name,
            "is_running": self._running,
            "uptime_seconds": round(uptime, 2),
            "nodes": len(self._tasks),
            "checks_count": self._checks_count,
            "errors_count": self._errors_count,
            "last_error": self._last_error,
        }
