"""Shared pytest fixtures for coordination tests.

Provides a fake clock, a fake cloud provider, an in-memory registry and
factory functions for node handles and swarm workers.
"""

from collections.abc import Callable

import pytest

from swarm_fleet.coordination.base_config import AttachmentConfig, RetentionConfig
from swarm_fleet.coordination.in_memory_registry import InMemoryWorker
from swarm_fleet.coordination.node_handle import NodeHandle, NodeMetadata
from tests.fixtures.mocks import (
    FailingRegistry,
    FakeClock,
    FakeCloudProvider,
    RecordingSleep,
)

INSTANCE_ID = "i-0123"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def provider(clock) -> FakeCloudProvider:
    """Provider knowing one running instance launched 50 minutes ago."""
    provider = FakeCloudProvider()
    provider.add_instance(INSTANCE_ID, launched_at=clock() - 3000)
    return provider


@pytest.fixture
def registry() -> FailingRegistry:
    return FailingRegistry()


@pytest.fixture
def fake_sleep(clock) -> RecordingSleep:
    return RecordingSleep(clock=clock)


@pytest.fixture
def attachment_config() -> AttachmentConfig:
    return AttachmentConfig(max_attempts=20, poll_interval_seconds=10.0)


@pytest.fixture
def retention_config() -> RetentionConfig:
    return RetentionConfig(check_interval_seconds=60.0)


@pytest.fixture
def make_node(provider, registry, clock) -> Callable[..., NodeHandle]:
    """Factory for registered node handles.

    Example:
        node = make_node(idle_termination_minutes=-10)
    """

    def _make(
        instance_id: str = INSTANCE_ID,
        idle_termination_minutes: int = 30,
        register: bool = True,
        **kwargs,
    ) -> NodeHandle:
        metadata = NodeMetadata(
            description="Swarm builder",
            remote_fs="/home/build",
            idle_termination_minutes=idle_termination_minutes,
        )
        node = NodeHandle(
            instance_id, metadata, provider, registry, clock=clock, **kwargs
        )
        if register:
            registry.add_node(node)
        return node

    return _make


@pytest.fixture
def make_worker(clock) -> Callable[..., InMemoryWorker]:
    """Factory for swarm workers labelled for an instance."""

    def _make(
        instance_id: str = INSTANCE_ID,
        name: str | None = None,
        labels: tuple[str, ...] = ("swarm-role",),
        idle_minutes: float = 0.0,
        **kwargs,
    ) -> InMemoryWorker:
        return InMemoryWorker(
            name=name or f"swarm-{instance_id}",
            labels=frozenset((*labels, instance_id)),
            idle_start_time=clock() - idle_minutes * 60,
            **kwargs,
        )

    return _make
