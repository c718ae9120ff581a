"""Exception types and narrow exception tuples for swarm node lifecycle code.

Domain exceptions describe the failure classes of the node lifecycle:

- AttachmentTimeout: no matching worker appeared within the attempt budget.
  The only exception surfaced to the provisioning caller.
- ProviderError: a cloud provider call (describe/terminate) failed.
- RegistryError: the cluster registry could not list/remove/bind a node.
- TransientProbeFailure: an uptime or liveness read was interrupted; the
  retention check skips the cycle and retries on the next tick.
- ConfigParseError: a configuration value could not be parsed.

The tuples below are for narrow `except` clauses, so programming errors
(NameError, AttributeError, ...) still bubble up.

Usage:
    from swarm_fleet.utils.exceptions import PROCESS_ERRORS, ProviderError

    try:
        await run_cli(args)
    except PROCESS_ERRORS as e:
        raise ProviderError(f"aws cli failed: {e}") from e
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from types import TracebackType

    from swarm_fleet.coordination.attachment import AttachmentAttempt

# =============================================================================
# Exception Type Tuples
# =============================================================================

# Use for: HTTP requests, socket operations, provider API calls
NETWORK_ERRORS: tuple[type[BaseException], ...] = (
    ConnectionError,
    TimeoutError,
    OSError,
    asyncio.TimeoutError,
)

# Use for: JSON decoding, config parsing, provider responses
PARSE_ERRORS: tuple[type[BaseException], ...] = (
    json.JSONDecodeError,
    KeyError,
    TypeError,
    ValueError,
)

# Use for: External command execution (aws cli)
PROCESS_ERRORS: tuple[type[BaseException], ...] = (
    OSError,
    PermissionError,
    FileNotFoundError,
)

# Interrupted reads during a retention check
PROBE_ERRORS: tuple[type[BaseException], ...] = (
    InterruptedError,
    OSError,
)


# =============================================================================
# Domain Exceptions
# =============================================================================


class SwarmFleetError(Exception):
    """Base class for all swarm node lifecycle errors."""


class ProviderError(SwarmFleetError):
    """A cloud provider API call failed."""

    def __init__(self, message: str, instance_id: str | None = None):
        super().__init__(message)
        self.instance_id = instance_id


class RegistryError(SwarmFleetError):
    """The cluster node registry rejected or failed an operation."""


class TransientProbeFailure(SwarmFleetError):
    """An uptime or liveness probe was interrupted and should be retried later."""


class ConfigParseError(SwarmFleetError, ValueError):
    """A configuration value could not be parsed."""


@dataclass(eq=False)
class AttachmentTimeout(SwarmFleetError):
    """Raised when no worker registered for an instance within the attempt budget."""

    instance_id: str
    attempt: AttachmentAttempt

    def __str__(self) -> str:
        return (
            f"No swarm worker registered for {self.instance_id} "
            f"(attempts={self.attempt.count}, "
            f"elapsed={self.attempt.elapsed_seconds:.1f}s)"
        )


# =============================================================================
# Utility Functions
# =============================================================================


def log_and_continue(
    e: BaseException,
    context: str,
    logger_instance: logging.Logger,
    level: int = logging.WARNING,
) -> None:
    """Log exception with context, allowing the caller to continue.

    Args:
        e: The exception that was caught
        context: Short description of the operation (e.g., "terminate:i-0123")
        logger_instance: Logger to use for logging
        level: Logging level (default: WARNING)
    """
    logger_instance.log(
        level,
        f"[{context}] Caught {type(e).__name__}: {e}",
    )


def is_transient_error(e: BaseException) -> bool:
    """Check if an exception is an interrupted read worth retrying next tick."""
    if isinstance(e, (TransientProbeFailure, InterruptedError)):
        return True
    if isinstance(e, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True
    if isinstance(e, OSError):
        import errno
        transient_codes = {
            errno.ECONNRESET,
            errno.ECONNREFUSED,
            errno.ETIMEDOUT,
            errno.EAGAIN,
            errno.EWOULDBLOCK,
            errno.EINTR,
        }
        return getattr(e, "errno", None) in transient_codes
    return False


class ExceptionContext:
    """Context manager that logs and suppresses a fixed set of exceptions.

    Usage:
        with ExceptionContext("remove_node:i-0123", logger, (RegistryError,)):
            registry.remove(handle)
        # RegistryError is logged and suppressed, anything else propagates

    After the block, ``caught`` holds the suppressed exception (or None).
    """

    def __init__(
        self,
        context: str,
        logger_instance: logging.Logger,
        exception_types: tuple[type[BaseException], ...],
        reraise: bool = False,
        level: int = logging.WARNING,
    ) -> None:
        self.context = context
        self.logger = logger_instance
        self.exception_types = exception_types
        self.reraise = reraise
        self.level = level
        self.caught: BaseException | None = None

    def __enter__(self) -> "ExceptionContext":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool:
        if exc_type is not None and issubclass(exc_type, self.exception_types):
            self.caught = exc_val
            log_and_continue(exc_val, self.context, self.logger, self.level)
            return not self.reraise
        return False
