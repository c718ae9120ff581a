"""Prometheus metrics for swarm node lifecycle.

Usage:
    from swarm_fleet.metrics import record_attachment, record_termination

    record_attachment("attached")
    record_termination("idle_timeout", "terminated")
"""

from __future__ import annotations

import logging

from prometheus_client import Counter

logger = logging.getLogger(__name__)

# Attachment outcomes: attached, timeout, aborted
SWARM_ATTACHMENTS_TOTAL = Counter(
    "swarm_fleet_attachments_total",
    "Attach attempts of provisioned instances to swarm workers, by result.",
    ["result"],
)

# Retention check outcomes: skipped_busy, never_terminate, unattached,
# offline, not_idle, disabled, kept, probe_failed, triggered
SWARM_RETENTION_CHECKS_TOTAL = Counter(
    "swarm_fleet_retention_checks_total",
    "Retention policy checks, by outcome.",
    ["outcome"],
)

# Termination side effects: instance_terminated, already_dead, provider_error,
# node_removed, registry_error
SWARM_TERMINATIONS_TOTAL = Counter(
    "swarm_fleet_terminations_total",
    "Node termination side effects, by reason and result.",
    ["reason", "result"],
)


def record_attachment(result: str) -> None:
    """Record the outcome of an attach call."""
    try:
        SWARM_ATTACHMENTS_TOTAL.labels(result=result).inc()
    except Exception as e:
        logger.warning(f"Failed to record attachment metric: {e}")


def record_retention_check(outcome: str) -> None:
    """Record the outcome of one retention check."""
    try:
        SWARM_RETENTION_CHECKS_TOTAL.labels(outcome=outcome).inc()
    except Exception as e:
        logger.warning(f"Failed to record retention check metric: {e}")


def record_termination(reason: str, result: str) -> None:
    """Record one termination side effect.

    Args:
        reason: Why the node is going away (idle_timeout, explicit, external)
        result: What happened (instance_terminated, already_dead, ...)
    """
    try:
        SWARM_TERMINATIONS_TOTAL.labels(reason=reason, result=result).inc()
    except Exception as e:
        logger.warning(f"Failed to record termination metric: {e}")
