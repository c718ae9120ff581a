"""Node definition loading."""

from swarm_fleet.config.node_templates import (
    NodeTemplate,
    load_node_templates,
    parse_node_templates,
)

__all__ = ["NodeTemplate", "load_node_templates", "parse_node_templates"]
