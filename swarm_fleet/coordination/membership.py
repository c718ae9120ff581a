"""Cluster membership: the build cluster's view of its worker nodes.

The cluster registry itself (node bookkeeping, job dispatch, channel
transport) lives outside this package. This module defines the structural
protocols the lifecycle code needs from it and a watcher that answers
"which workers carry these labels right now".

Worker state (idle, offline, idle start) is mutated by the cluster's own
job scheduler. Everything read here is a snapshot that may already be stale.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from swarm_fleet.coordination.node_handle import NodeHandle

logger = logging.getLogger(__name__)


@runtime_checkable
class WorkerNode(Protocol):
    """A machine registered with the build cluster that can execute jobs."""

    @property
    def name(self) -> str:
        ...

    @property
    def labels(self) -> frozenset[str]:
        ...

    @property
    def is_idle(self) -> bool:
        """True when no job is currently executing."""
        ...

    @property
    def is_offline(self) -> bool:
        ...

    @property
    def idle_start_time(self) -> float:
        """Epoch seconds at which the worker last became idle."""
        ...


@runtime_checkable
class ClusterRegistry(Protocol):
    """Node registry of the build cluster."""

    async def list_worker_nodes(self) -> Sequence[WorkerNode]:
        """Return the workers currently known to the cluster.

        Raises:
            RegistryError: If the registry could not be read.
        """
        ...

    async def remove_node(self, node: NodeHandle) -> None:
        """Remove a provisioned node from the registry.

        Raises:
            RegistryError: If the node record could not be removed.
        """
        ...

    async def bind_channel(self, node: NodeHandle, worker: WorkerNode) -> Any:
        """Route the node's communication channel to the attached worker."""
        ...


def node_has_label(worker: WorkerNode, label: str) -> bool:
    """Case-insensitive label membership test."""
    wanted = label.lower()
    return any(atom.lower() == wanted for atom in worker.labels)


class ClusterMembershipWatcher:
    """Queries cluster membership and filters workers by label."""

    def __init__(self, registry: ClusterRegistry):
        self.registry = registry

    async def list_workers(self) -> list[WorkerNode]:
        """Snapshot of all workers in registry enumeration order."""
        return list(await self.registry.list_worker_nodes())

    async def find_workers(self, labels: Iterable[str]) -> list[WorkerNode]:
        """Return every worker carrying all of `labels`, in enumeration order."""
        wanted = list(labels)
        workers = await self.list_workers()
        matches = [
            worker for worker in workers
            if all(node_has_label(worker, label) for label in wanted)
        ]
        logger.debug(
            f"{len(matches)}/{len(workers)} workers match labels {wanted}"
        )
        return matches
