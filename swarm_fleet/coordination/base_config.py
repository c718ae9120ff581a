"""Configuration classes for the swarm node lifecycle controllers.

Common configuration patterns shared by the retention and attachment
controllers: type-safe environment variable loading and a `from_env()`
factory per config.

Usage:
    from swarm_fleet.coordination.base_config import RetentionConfig

    config = RetentionConfig.from_env()
    if config.disabled:
        ...

Environment variables:
    SWARM_RETENTION_DISABLED: Suppress all idle-based termination (default: false)
    SWARM_RETENTION_CHECK_INTERVAL: Seconds between retention checks (default: 60)
    SWARM_RETENTION_ERROR_BACKOFF: Seconds to wait after a failed check loop (default: 60)
    SWARM_ATTACH_MAX_ATTEMPTS: Membership polls before giving up (default: 20)
    SWARM_ATTACH_POLL_INTERVAL: Seconds between membership polls (default: 10)
    SWARM_ATTACH_MARKER_LABEL: Label every swarm worker carries (default: swarm-role)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Any, ClassVar, TypeVar

T = TypeVar("T", bound="BaseCoordinationConfig")


@dataclass
class BaseCoordinationConfig:
    """Base configuration for lifecycle controllers.

    Subclasses should:
    1. Override `_env_prefix` for their specific env var namespace
    2. Add controller-specific fields as dataclass fields
    3. Implement `from_env()` classmethod using the helper methods
    """

    _env_prefix: ClassVar[str] = "SWARM"

    enabled: bool = True

    # Main cycle interval in seconds
    check_interval_seconds: float = 60.0

    # -------------------------------------------------------------------------
    # Environment Variable Helpers
    # -------------------------------------------------------------------------

    @classmethod
    def _make_env_key(cls, suffix: str) -> str:
        """Create full environment variable name from suffix."""
        return f"{cls._env_prefix}_{suffix}"

    @classmethod
    def _get_env_bool(cls, suffix: str, default: bool) -> bool:
        """Get boolean from environment variable.

        Recognizes: "true", "1", "yes", "on" as True (case-insensitive)
        """
        value = os.environ.get(cls._make_env_key(suffix))
        if value is None:
            return default
        return value.strip().lower() in ("true", "1", "yes", "on")

    @classmethod
    def _get_env_int(cls, suffix: str, default: int) -> int:
        value = os.environ.get(cls._make_env_key(suffix))
        if value is None:
            return default
        try:
            return int(value)
        except (ValueError, TypeError):
            return default

    @classmethod
    def _get_env_float(cls, suffix: str, default: float) -> float:
        value = os.environ.get(cls._make_env_key(suffix))
        if value is None:
            return default
        try:
            return float(value)
        except (ValueError, TypeError):
            return default

    @classmethod
    def _get_env_str(cls, suffix: str, default: str) -> str:
        value = os.environ.get(cls._make_env_key(suffix))
        if value is None:
            return default
        return value.strip()

    @classmethod
    def from_env(cls: type[T]) -> T:
        """Create config from environment variables.

        Subclasses override this to load their specific fields.
        """
        return cls(
            enabled=cls._get_env_bool("ENABLED", True),
            check_interval_seconds=cls._get_env_float("CHECK_INTERVAL", 60.0),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert config to dictionary for logging."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if not f.name.startswith("_")
        }


@dataclass
class RetentionConfig(BaseCoordinationConfig):
    """Configuration shared by every RetentionController check.

    `disabled` is the operational kill switch: when set, idle-based
    termination is suppressed for all nodes, while the offline and
    not-idle short-circuits still apply.
    """

    _env_prefix: ClassVar[str] = "SWARM_RETENTION"

    disabled: bool = False

    # Backoff after an unexpected error in a per-node check loop
    error_backoff_seconds: float = 60.0

    # Length of the provider's billing period
    billing_period_seconds: int = 3600

    @classmethod
    def from_env(cls) -> "RetentionConfig":
        return cls(
            enabled=cls._get_env_bool("ENABLED", True),
            check_interval_seconds=cls._get_env_float("CHECK_INTERVAL", 60.0),
            disabled=cls._get_env_bool("DISABLED", False),
            error_backoff_seconds=cls._get_env_float("ERROR_BACKOFF", 60.0),
        )


@dataclass
class AttachmentConfig(BaseCoordinationConfig):
    """Configuration for the launch-and-attach polling loop."""

    _env_prefix: ClassVar[str] = "SWARM_ATTACH"

    max_attempts: int = 20
    poll_interval_seconds: float = 10.0
    marker_label: str = "swarm-role"

    @property
    def max_wait_seconds(self) -> float:
        """Upper bound on time spent sleeping between polls."""
        return self.max_attempts * self.poll_interval_seconds

    @classmethod
    def from_env(cls) -> "AttachmentConfig":
        return cls(
            max_attempts=cls._get_env_int("MAX_ATTEMPTS", 20),
            poll_interval_seconds=cls._get_env_float("POLL_INTERVAL", 10.0),
            marker_label=cls._get_env_str("MARKER_LABEL", "swarm-role"),
        )
