"""In-memory cluster registry.

Implements the ClusterRegistry protocol with plain dicts, for local runs
and tests. Worker state is mutated directly through InMemoryWorker, the way
the cluster's job scheduler would.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from swarm_fleet.utils.exceptions import RegistryError

if TYPE_CHECKING:
    from swarm_fleet.coordination.membership import WorkerNode
    from swarm_fleet.coordination.node_handle import NodeHandle

logger = logging.getLogger(__name__)


@dataclass
class InMemoryWorker:
    """A registered swarm worker."""

    name: str
    labels: frozenset[str] = field(default_factory=frozenset)
    is_idle: bool = True
    is_offline: bool = False
    idle_start_time: float = field(default_factory=time.time)

    def start_job(self) -> None:
        self.is_idle = False

    def finish_job(self, now: float | None = None) -> None:
        self.is_idle = True
        self.idle_start_time = time.time() if now is None else now


class InMemoryClusterRegistry:
    """Dictionary-backed registry of workers and provisioned nodes."""

    def __init__(self, workers: Iterable[WorkerNode] = ()):
        self._workers: dict[str, WorkerNode] = {}
        self._nodes: dict[str, NodeHandle] = {}
        self.channels: dict[str, str] = {}
        for worker in workers:
            self.add_worker(worker)

    # Workers ------------------------------------------------------------------

    def add_worker(self, worker: WorkerNode) -> None:
        self._workers[worker.name] = worker

    def remove_worker(self, name: str) -> None:
        self._workers.pop(name, None)

    async def list_worker_nodes(self) -> Sequence[WorkerNode]:
        return list(self._workers.values())

    # Provisioned nodes ----------------------------------------------------------

    def add_node(self, node: NodeHandle) -> None:
        if node.instance_id in self._nodes:
            raise RegistryError(f"Node already registered: {node.instance_id}")
        self._nodes[node.instance_id] = node

    def replace_node(self, node: NodeHandle) -> None:
        """Swap in a reconfigured handle for the same instance."""
        if node.instance_id not in self._nodes:
            raise RegistryError(f"Unknown node: {node.instance_id}")
        self._nodes[node.instance_id] = node

    def get_node(self, instance_id: str) -> NodeHandle | None:
        return self._nodes.get(instance_id)

    @property
    def nodes(self) -> list[NodeHandle]:
        return list(self._nodes.values())

    async def remove_node(self, node: NodeHandle) -> None:
        if self._nodes.pop(node.instance_id, None) is None:
            logger.debug(f"Node {node.instance_id} was not registered")
        self.channels.pop(node.instance_id, None)

    async def bind_channel(self, node: NodeHandle, worker: WorkerNode) -> str:
        if worker.name not in self._workers:
            raise RegistryError(f"Worker {worker.name} left the cluster")
        self.channels[node.instance_id] = worker.name
        return worker.name
