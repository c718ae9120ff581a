"""In-process handle for one provisioned on-demand swarm node.

A NodeHandle is created by provisioning right after the cloud instance
exists. It carries the instance id, descriptive metadata and the retention
policy, gets its worker bound exactly once by the attachment controller, and
tears everything down on termination.

Termination has two independent side effects, terminating the cloud instance
and removing the node from the cluster registry. A failure of one is logged
and never prevents or rolls back the other.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from swarm_fleet.coordination.membership import ClusterRegistry, WorkerNode
from swarm_fleet.coordination.providers.base import CloudProvider
from swarm_fleet.coordination.retention import (
    RetentionPolicy,
    parse_idle_termination_minutes,
)
from swarm_fleet.metrics import record_termination
from swarm_fleet.utils.exceptions import (
    NETWORK_ERRORS,
    AttachmentTimeout,
    ExceptionContext,
    ProviderError,
    RegistryError,
    TransientProbeFailure,
)

if TYPE_CHECKING:
    from swarm_fleet.coordination.attachment import InstanceAttachmentController

logger = logging.getLogger(__name__)

# Provider failures a teardown step logs instead of raising
PROVIDER_FAILURES: tuple[type[BaseException], ...] = (ProviderError, *NETWORK_ERRORS)

SWARM_CONTROLLER_LABEL = "swarm-controller"


@dataclass(frozen=True)
class NodeMetadata:
    """Descriptive node settings taken from the node definition."""

    description: str
    remote_fs: str = ""
    labels: str = SWARM_CONTROLLER_LABEL
    num_executors: int = 1
    launch_timeout: int = 0
    idle_termination_minutes: int = 0


@runtime_checkable
class ManagedNode(Protocol):
    """Capabilities the attachment and retention controllers rely on."""

    @property
    def instance_id(self) -> str:
        ...

    @property
    def name(self) -> str:
        ...

    @property
    def policy(self) -> RetentionPolicy:
        ...

    @property
    def bound_worker(self) -> WorkerNode | None:
        ...

    def set_bound_worker(self, worker: WorkerNode) -> None:
        ...

    def try_acquire_check(self) -> bool:
        ...

    def release_check(self) -> None:
        ...

    def connect(self) -> asyncio.Task | None:
        ...

    async def is_alive(self, force: bool = False) -> bool:
        ...

    async def get_uptime(self) -> float:
        ...

    async def idle_timeout(self) -> None:
        ...

    async def terminate(self, reason: str = "explicit") -> None:
        ...


class NodeHandle:
    """Proxy for a provisioned cloud instance and the worker it becomes."""

    def __init__(
        self,
        instance_id: str,
        metadata: NodeMetadata,
        provider: CloudProvider,
        registry: ClusterRegistry,
        attacher: InstanceAttachmentController | None = None,
        clock: Callable[[], float] = time.time,
        liveness_cache_seconds: float = 10.0,
    ):
        if not instance_id:
            raise ValueError("instance_id is required")
        self._instance_id = instance_id
        self.metadata = metadata
        self.provider = provider
        self.registry = registry
        self.attacher = attacher
        self.liveness_cache_seconds = liveness_cache_seconds
        self._clock = clock
        self._policy = RetentionPolicy(metadata.idle_termination_minutes)
        self._created_at = clock()

        self._bound_worker: WorkerNode | None = None
        # Thread-safe so checks driven from other threads share the same gate.
        # Acquired non-blocking only, so holding it across awaits cannot deadlock.
        self._check_lock = threading.Lock()
        self._connect_task: asyncio.Task | None = None
        self._terminated = False

        self._alive: bool | None = None
        self._alive_checked_at: float = 0.0
        self._launched_at: float | None = None

    @classmethod
    def create(
        cls,
        instance_id: str,
        description: str,
        provider: CloudProvider,
        registry: ClusterRegistry,
        idle_termination_minutes: str | None = None,
        **kwargs: Any,
    ) -> "NodeHandle":
        """Build a handle from raw node definition values.

        Extra keyword arguments are split between NodeMetadata fields and
        NodeHandle constructor options.
        """
        meta_fields = {f.name for f in dataclasses.fields(NodeMetadata)}
        meta_kwargs = {k: v for k, v in kwargs.items() if k in meta_fields}
        handle_kwargs = {k: v for k, v in kwargs.items() if k not in meta_fields}
        metadata = NodeMetadata(
            description=description,
            idle_termination_minutes=parse_idle_termination_minutes(idle_termination_minutes),
            **meta_kwargs,
        )
        return cls(instance_id, metadata, provider, registry, **handle_kwargs)

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    @property
    def instance_id(self) -> str:
        return self._instance_id

    @property
    def name(self) -> str:
        return f"{self.metadata.description} ({self._instance_id})"

    @property
    def policy(self) -> RetentionPolicy:
        return self._policy

    @property
    def created_at(self) -> float:
        return self._created_at

    @property
    def terminated(self) -> bool:
        """True once terminate() has run; the node is no longer checked."""
        return self._terminated

    def __repr__(self) -> str:
        return f"NodeHandle({self._instance_id!r}, bound={self._bound_worker is not None})"

    # -------------------------------------------------------------------------
    # Worker binding
    # -------------------------------------------------------------------------

    @property
    def bound_worker(self) -> WorkerNode | None:
        return self._bound_worker

    def set_bound_worker(self, worker: WorkerNode) -> None:
        if self._bound_worker is not None:
            raise RuntimeError(
                f"{self.name} is already bound to {self._bound_worker.name}"
            )
        self._bound_worker = worker

    def connect(self) -> asyncio.Task | None:
        """Start attaching in the background unless already attached or attaching.

        Must be called from a running event loop.
        """
        if self._bound_worker is not None:
            return None
        if self.attacher is None:
            logger.warning(f"No attachment controller configured for {self.name}")
            return None
        if self._connect_task is None or self._connect_task.done():
            self._connect_task = asyncio.ensure_future(self._attach())
        return self._connect_task

    async def _attach(self) -> WorkerNode | None:
        try:
            return await self.attacher.attach(self)
        except AttachmentTimeout as e:
            logger.warning(f"Attachment of {self.name} timed out: {e}")
            return None

    def cancel_connect(self) -> asyncio.Task | None:
        """Cancel a background attachment still in progress.

        Returns:
            The cancelled task so the caller can await it, or None if no
            attachment was running.
        """
        task = self._connect_task
        if task is None or task.done():
            return None
        task.cancel()
        return task

    # -------------------------------------------------------------------------
    # Retention check gate
    # -------------------------------------------------------------------------

    def try_acquire_check(self) -> bool:
        """Non-blocking: False if a retention check for this node is in flight."""
        return self._check_lock.acquire(blocking=False)

    def release_check(self) -> None:
        self._check_lock.release()

    # -------------------------------------------------------------------------
    # Cloud instance probes
    # -------------------------------------------------------------------------

    async def is_alive(self, force: bool = False) -> bool:
        """Whether the backing cloud instance still exists.

        Results are cached for `liveness_cache_seconds`; `force` bypasses the
        cache.

        Raises:
            ProviderError: If the provider could not be queried.
        """
        now = self._clock()
        if (
            not force
            and self._alive is not None
            and now - self._alive_checked_at < self.liveness_cache_seconds
        ):
            return self._alive

        info = await self.provider.describe_instance(self._instance_id)
        if info is not None and info.launched_at is not None:
            self._launched_at = info.launched_at.timestamp()
        self._alive = info is not None and info.is_alive
        self._alive_checked_at = now
        return self._alive

    async def get_uptime(self) -> float:
        """Seconds since the instance was launched.

        Falls back to the handle's creation time when the provider does not
        report a launch time.

        Raises:
            TransientProbeFailure: If the provider could not be queried.
        """
        if self._launched_at is None:
            try:
                await self.is_alive(force=True)
            except PROVIDER_FAILURES as e:
                raise TransientProbeFailure(
                    f"uptime of {self._instance_id} unavailable: {e}"
                ) from e
        launched_at = self._launched_at if self._launched_at is not None else self._created_at
        return max(0.0, self._clock() - launched_at)

    # -------------------------------------------------------------------------
    # Termination
    # -------------------------------------------------------------------------

    async def idle_timeout(self) -> None:
        logger.info(f"Instance idle time expired: {self._instance_id}")
        await self.terminate(reason="idle_timeout")

    async def terminate(self, reason: str = "explicit") -> None:
        """Terminate the cloud instance and remove the node from the cluster.

        Never raises for provider or registry failures. Registry removal runs
        even when the provider step fails with an unexpected error.
        """
        try:
            with ExceptionContext(
                f"terminate:{self._instance_id}", logger, PROVIDER_FAILURES
            ) as ctx:
                if not await self.is_alive(force=True):
                    # Killed externally, nothing to do on the provider side
                    logger.info(f"Instance already terminated: {self._instance_id}")
                    record_termination(reason, "already_dead")
                else:
                    await self.provider.terminate_instance(self._instance_id)
                    logger.info(f"Terminated instance: {self._instance_id}")
                    record_termination(reason, "instance_terminated")
            if ctx.caught is not None:
                record_termination(reason, "provider_error")
        finally:
            self.cancel_connect()
            await self._remove_from_registry(reason)
            self._terminated = True

    async def _remove_from_registry(self, reason: str) -> bool:
        with ExceptionContext(f"remove_node:{self._instance_id}", logger, (RegistryError,)) as ctx:
            await self.registry.remove_node(self)
        if ctx.caught is not None:
            record_termination(reason, "registry_error")
            return False
        record_termination(reason, "node_removed")
        return True

    # -------------------------------------------------------------------------
    # Reconfiguration
    # -------------------------------------------------------------------------

    async def reconfigure(self, update: Mapping[str, Any] | None) -> NodeHandle | None:
        """Apply a metadata update, unless the instance is already gone.

        Args:
            update: NodeMetadata field names mapped to new values

        Returns:
            The reconfigured handle, or None if no reconfiguration was
            performed (no update given, or the instance was terminated
            externally and the node has been removed).
        """
        if update is None:
            return None

        try:
            alive = await self.is_alive(force=True)
        except PROVIDER_FAILURES as e:
            logger.warning(f"Liveness probe failed while reconfiguring {self.name}: {e}")
            alive = True

        if not alive:
            logger.info(f"Instance terminated externally: {self._instance_id}")
            await self._remove_from_registry("external")
            return None

        changes = dict(update)
        if "idle_termination_minutes" in changes:
            changes["idle_termination_minutes"] = parse_idle_termination_minutes(
                changes["idle_termination_minutes"]
            )
        reconfigured = NodeHandle(
            self._instance_id,
            dataclasses.replace(self.metadata, **changes),
            self.provider,
            self.registry,
            attacher=self.attacher,
            clock=self._clock,
            liveness_cache_seconds=self.liveness_cache_seconds,
        )
        reconfigured._created_at = self._created_at
        reconfigured._launched_at = self._launched_at
        if self._bound_worker is not None:
            reconfigured.set_bound_worker(self._bound_worker)
        return reconfigured
