"""Configuration management."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

from dotenv import dotenv_values


@dataclass(frozen=True)
class SyncSettings:
    """Tunables for the sync engine.

    Every field can be overridden with a ``SYNC_<FIELD_NAME>`` environment
    variable (e.g. ``SYNC_PAGE_SIZE=100``).
    """

    # Provider paging
    page_size: int = 200
    inter_page_delay_seconds: float = 0.1

    # Execution window
    host_limit_seconds: float = 300.0
    budget_fraction: float = 0.9
    safety_margin_seconds: float = 15.0

    # Retry / backoff
    max_retries: int = 3
    rate_limit_base_delay: float = 10.0
    rate_limit_max_delay: float = 40.0
    rate_limit_jitter: float = 1.0
    transient_base_delay: float = 5.0
    transient_max_delay: float = 30.0

    # Circuit breaker (per provider)
    breaker_failure_threshold: int = 5
    breaker_failure_window_seconds: float = 60.0
    breaker_initial_backoff_seconds: float = 30.0
    breaker_max_backoff_seconds: float = 300.0
    breaker_reset_after_seconds: float = 300.0
    breaker_trial_timeout_seconds: float = 60.0

    # Admission
    max_concurrent_syncs: int = 10
    queued_retry_seconds: float = 30.0

    # Progress and liveness
    progress_every_pages: int = 5
    stop_poll_every_pages: int = 3
    total_estimate_fallback: int = 10_000
    stuck_threshold_seconds: float = 600.0

    # Continuation
    max_continuations: int = 500
    dispatch_attempts: int = 3
    dispatch_base_delay: float = 1.0
    pending_resume_delay_seconds: float = 60.0

    @property
    def budget_seconds(self) -> float:
        """Wall-clock budget for one invocation."""
        return self.host_limit_seconds * self.budget_fraction

    @classmethod
    def from_mapping(cls, values: dict[str, Any]) -> SyncSettings:
        """Build settings from ``SYNC_*`` keys, ignoring unrelated keys.

        Args:
            values: Mapping of environment-style keys to string values.

        Returns:
            SyncSettings with overrides applied.

        Raises:
            ValueError: If an override cannot be converted to the field type.
        """
        overrides: dict[str, Any] = {}
        for f in fields(cls):
            raw = values.get(f"SYNC_{f.name.upper()}")
            if raw is None or raw == "":
                continue
            default = getattr(cls, f.name)
            try:
                overrides[f.name] = type(default)(raw)
            except ValueError as e:
                raise ValueError(f"Invalid value for SYNC_{f.name.upper()}: {raw!r}") from e
        return cls(**overrides)


@dataclass
class Config:
    """Application configuration."""

    database_url: str
    nylas_api_key: str | None = None
    nylas_api_uri: str = "https://api.us.nylas.com"
    # Base URL this service is reachable at, used for continuation self-calls
    self_base_url: str | None = None
    internal_secret: str | None = None
    attachment_processor_url: str | None = None
    environment: str = "development"
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    json_logs: bool = False
    sync: SyncSettings = field(default_factory=SyncSettings)

    @classmethod
    def from_env(cls, env_file: Path | None = None) -> Config:
        """Load configuration from environment and .env file.

        Args:
            env_file: Path to .env file. Ignored if it does not exist.

        Returns:
            Config instance with loaded values.

        Raises:
            ValueError: If required DATABASE_URL is not set.
        """
        config: dict[str, Any] = {}
        if env_file and env_file.exists():
            config = dict(dotenv_values(env_file))

        # Environment variables override .env file
        merged = {**config, **{k: v for k, v in os.environ.items() if v is not None}}

        database_url = merged.get("DATABASE_URL")
        if not database_url:
            raise ValueError("DATABASE_URL is required")

        return cls(
            database_url=database_url,
            nylas_api_key=merged.get("NYLAS_API_KEY"),
            nylas_api_uri=merged.get("NYLAS_API_URI") or "https://api.us.nylas.com",
            self_base_url=merged.get("SELF_BASE_URL"),
            internal_secret=merged.get("INTERNAL_SECRET"),
            attachment_processor_url=merged.get("ATTACHMENT_PROCESSOR_URL"),
            environment=merged.get("ENVIRONMENT") or "development",
            host=merged.get("HOST") or "0.0.0.0",
            port=int(merged.get("PORT") or 8000),
            log_level=(merged.get("LOG_LEVEL") or "INFO").upper(),
            json_logs=str(merged.get("JSON_LOGS", "")).lower() in ("1", "true", "yes"),
            sync=SyncSettings.from_mapping(merged),
        )

    def validate(self) -> list[str]:
        """Validate configuration.

        Returns:
            List of missing required field names.
        """
        missing = []
        if not self.database_url:
            missing.append("DATABASE_URL")
        if not self.nylas_api_key:
            missing.append("NYLAS_API_KEY")
        return missing

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    def has_self_dispatch(self) -> bool:
        """Check if continuation self-calls over HTTP are configured."""
        return bool(self.self_base_url and self.internal_secret)

    def with_sync(self, **overrides: Any) -> Config:
        """Create a new config with sync settings overridden.

        Args:
            **overrides: SyncSettings field values.

        Returns:
            New Config instance.
        """
        return replace(self, sync=replace(self.sync, **overrides))
