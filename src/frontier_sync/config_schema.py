"""Unified configuration schema for frontier_sync.

Defines Pydantic models for the unified config structure with dedicated
sections for the remote host, the sync lock, sync policy, commit author
and logging.

Credentials are deliberately absent: they are supplied per call by the
authentication collaborator and never read from config files.

Usage:
    from frontier_sync.config_loader import load_hierarchical_config
    from frontier_sync.config_schema import build_config

    raw = load_hierarchical_config()
    unified = build_config(raw)
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class RemoteConfig(BaseModel):
    """Remote host settings used by the connectivity probe.

    The git remote itself is always ``origin`` and its URL lives in the
    repository configuration.
    """

    host_url: str = Field(
        default="https://gitlab.com",
        description="Git hosting server probed before fetching",
    )
    api_url: str | None = Field(
        default="https://api.frontierrnd.com",
        description="Backing API probed before fetching (None to skip)",
    )
    connectivity_timeout: float = Field(
        default=5.0,
        gt=0,
        le=120,
        description="Timeout in seconds for each connectivity probe",
    )
    check_connectivity: bool = Field(
        default=True,
        description="Probe host and API before any network operation",
    )

    model_config = {"frozen": True}

    @field_validator("host_url", "api_url")
    @classmethod
    def _require_http_scheme(cls, value: str | None) -> str | None:
        if value is None:
            return value
        value = value.strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError(
                f"Invalid URL '{value}': must start with http:// or https://"
            )
        return value.removesuffix("/")


class LockConfig(BaseModel):
    """Sync lock and heartbeat settings.

    Attributes:
        filename: Lock file name, created inside the workspace ``.git``.
        stale_after_seconds: Heartbeat age after which a lock is abandoned.
        stuck_after_seconds: Progress age after which a network phase is
            reported as stuck.  Keep-alives stop refreshing a stuck lock,
            so it goes stale ``stale_after_seconds`` later.
        heartbeat_interval_seconds: Keep-alive period while a sync runs.
            Must be shorter than ``stale_after_seconds``.
    """

    filename: str = Field(default="frontier-sync.lock")
    stale_after_seconds: float = Field(default=30.0, gt=0)
    stuck_after_seconds: float = Field(default=120.0, gt=0)
    heartbeat_interval_seconds: float = Field(default=5.0, gt=0)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _heartbeat_within_stale_window(self) -> LockConfig:
        if self.heartbeat_interval_seconds >= self.stale_after_seconds:
            raise ValueError(
                f"heartbeat_interval_seconds ({self.heartbeat_interval_seconds}) "
                f"must be less than stale_after_seconds ({self.stale_after_seconds})"
            )
        return self


class SyncConfig(BaseModel):
    """Sync policy settings."""

    commit_message: str = Field(
        default="Local changes",
        description="Message used when committing a dirty working copy",
    )
    auto_merge_clean_divergence: bool = Field(
        default=False,
        description=(
            "Finalize and push a merge when histories diverged without "
            "conflicting paths (default: report and leave unpushed)"
        ),
    )
    max_parallel_reads: int = Field(
        default=8,
        ge=1,
        le=64,
        description="Concurrent blob reads during conflict assembly (1-64)",
    )

    model_config = {"frozen": True}


class AuthorConfig(BaseModel):
    """Default commit author, used when the caller does not supply one."""

    name: str | None = None
    email: str | None = None

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Aggregates all config sections. Every section has sensible defaults,
    so ``UnifiedConfig()`` (zero-config) is always valid.
    """

    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    lock: LockConfig = Field(default_factory=LockConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    author: AuthorConfig = Field(default_factory=AuthorConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully; anything absent gets defaults.
    Unknown top-level sections are ignored with a warning.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    known = set(UnifiedConfig.model_fields)
    unknown = sorted(set(raw_data) - known)
    if unknown:
        logger.warning(
            "Ignoring unknown config sections: %s", ", ".join(unknown)
        )

    return UnifiedConfig(
        **{k: v for k, v in raw_data.items() if k in known}
    )
