"""Node lifecycle coordination for on-demand swarm nodes.

Usage:
    from swarm_fleet.coordination import (
        InstanceAttachmentController,
        NodeHandle,
        RetentionController,
        RetentionDaemon,
    )
"""

from swarm_fleet.coordination.attachment import (
    AttachmentAttempt,
    InstanceAttachmentController,
)
from swarm_fleet.coordination.base_config import (
    AttachmentConfig,
    BaseCoordinationConfig,
    RetentionConfig,
)
from swarm_fleet.coordination.in_memory_registry import (
    InMemoryClusterRegistry,
    InMemoryWorker,
)
from swarm_fleet.coordination.membership import (
    ClusterMembershipWatcher,
    ClusterRegistry,
    WorkerNode,
    node_has_label,
)
from swarm_fleet.coordination.node_handle import (
    ManagedNode,
    NodeHandle,
    NodeMetadata,
)
from swarm_fleet.coordination.retention import (
    RetentionController,
    RetentionPolicy,
    free_seconds_left,
    parse_idle_termination_minutes,
)
from swarm_fleet.coordination.retention_daemon import RetentionDaemon

__all__ = [
    # Attachment
    "AttachmentAttempt",
    "InstanceAttachmentController",
    # Config
    "AttachmentConfig",
    "BaseCoordinationConfig",
    "RetentionConfig",
    # Registry
    "ClusterMembershipWatcher",
    "ClusterRegistry",
    "InMemoryClusterRegistry",
    "InMemoryWorker",
    "WorkerNode",
    "node_has_label",
    # Nodes
    "ManagedNode",
    "NodeHandle",
    "NodeMetadata",
    # Retention
    "RetentionController",
    "RetentionDaemon",
    "RetentionPolicy",
    "free_seconds_left",
    "parse_idle_termination_minutes",
]
