"""On-demand swarm build nodes: attachment and idle retention.

Subpackages:
    coordination: attachment controller, node handle, retention policy,
        retention daemon, cloud provider adapters
    config: YAML node templates
    utils: exception taxonomy and helpers
"""

__version__ = "0.3.0"
