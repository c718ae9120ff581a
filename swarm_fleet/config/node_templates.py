"""Swarm node templates loaded from YAML.

A template is the node definition provisioning uses when it creates a
NodeHandle for a new instance. Example file:

    templates:
      - name: linux-swarm
        description: Linux swarm builder
        remote_fs: /home/jenkins
        num_executors: 2
        idle_termination_minutes: "-10"
        launch_timeout: 300

`idle_termination_minutes` is kept as the raw string until a node is
created, where it goes through the usual parsing (blank means 0, malformed
means 30).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from swarm_fleet.coordination.node_handle import (
    SWARM_CONTROLLER_LABEL,
    NodeHandle,
    NodeMetadata,
)
from swarm_fleet.coordination.retention import parse_idle_termination_minutes
from swarm_fleet.utils.exceptions import PARSE_ERRORS, ConfigParseError

if TYPE_CHECKING:
    from swarm_fleet.coordination.membership import ClusterRegistry
    from swarm_fleet.coordination.providers.base import CloudProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NodeTemplate:
    """Definition of a swarm node kind."""

    name: str
    description: str
    remote_fs: str = ""
    labels: str = SWARM_CONTROLLER_LABEL
    num_executors: int = 1
    idle_termination_minutes: str | None = None
    launch_timeout: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NodeTemplate":
        idle = data.get("idle_termination_minutes")
        return cls(
            name=str(data["name"]),
            description=str(data.get("description", data["name"])),
            remote_fs=str(data.get("remote_fs", "")),
            labels=str(data.get("labels", SWARM_CONTROLLER_LABEL)),
            num_executors=int(data.get("num_executors", 1)),
            idle_termination_minutes=None if idle is None else str(idle),
            launch_timeout=int(data.get("launch_timeout", 0)),
        )

    def to_metadata(self) -> NodeMetadata:
        return NodeMetadata(
            description=self.description,
            remote_fs=self.remote_fs,
            labels=self.labels,
            num_executors=self.num_executors,
            launch_timeout=self.launch_timeout,
            idle_termination_minutes=parse_idle_termination_minutes(
                self.idle_termination_minutes
            ),
        )

    def create_node(
        self,
        instance_id: str,
        provider: CloudProvider,
        registry: ClusterRegistry,
        **kwargs: Any,
    ) -> NodeHandle:
        """Create the handle for a freshly provisioned instance."""
        return NodeHandle(instance_id, self.to_metadata(), provider, registry, **kwargs)


def parse_node_templates(data: Any) -> dict[str, NodeTemplate]:
    """Build templates from an already-decoded YAML document."""
    if not isinstance(data, dict) or not isinstance(data.get("templates"), list):
        raise ConfigParseError("Expected a mapping with a 'templates' list")

    templates: dict[str, NodeTemplate] = {}
    for index, entry in enumerate(data["templates"]):
        if not isinstance(entry, dict):
            raise ConfigParseError(f"Template #{index} is not a mapping")
        try:
            template = NodeTemplate.from_dict(entry)
        except PARSE_ERRORS as e:
            raise ConfigParseError(f"Invalid template #{index}: {e}") from e
        if template.name in templates:
            raise ConfigParseError(f"Duplicate template name: {template.name}")
        templates[template.name] = template
    return templates


def load_node_templates(path: Path | str) -> dict[str, NodeTemplate]:
    """Load node templates from a YAML file, keyed by template name.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigParseError: If the file is not a valid template document.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Template file not found: {path}")

    with open(path) as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigParseError(f"Invalid YAML in {path}: {e}") from e

    templates = parse_node_templates(data)
    logger.info(f"Loaded {len(templates)} node templates from {path}")
    return templates
