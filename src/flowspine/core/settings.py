"""Engine settings for flowspine.

Cache bounds, resource capacity, timeouts and retry pacing are read from the
environment (``FLOWSPINE_`` prefix) or a ``.env`` file, so a host process can
tune the engines without code changes. Engines take explicit constructor
arguments first and fall back to these values.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.

    - **Pydantic validation:** Type-checked at startup, not runtime
    - **Environment-driven:** Reads from env vars and .env files
    - **Sensible defaults:** Works out of the box for development

Examples:
    >>> from flowspine.core.settings import FlowSettings
    >>> settings = FlowSettings(cache_max_size=10)
    >>> settings.cache_max_size
    10

Tags:
    settings, configuration, pydantic, environment, flowspine

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FlowSettings(BaseSettings):
    """Settings shared by the flowspine engines.

    Fields
    ──────
    log_level                     : Structlog log level
    json_logs                     : Force JSON (True) / console (False) rendering
    cache_enabled                 : Store completed FlowResults in the ResultCache
    cache_max_size                : ResultCache capacity (entries)
    cache_ttl_seconds             : Per-entry TTL from insertion
    resource_capacity             : ResourceTracker capacity in bytes
    resource_warn_threshold       : Fraction of capacity that triggers a warning
    resource_evict_target         : Fraction of capacity eviction brings usage down to
    step_timeout_seconds          : GraphExecutor / StepChain default node timeout
    workflow_step_timeout_seconds : AsyncOrchestrator default step timeout
    retry_base_delay_seconds      : Backoff base (delay = base * 2**attempt)
    max_traversal_steps           : Upper bound on nodes visited per traversal
    """

    model_config = SettingsConfigDict(
        env_prefix="FLOWSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None

    # ── Cache ────────────────────────────────────────────────────
    cache_enabled: bool = True
    cache_max_size: int = Field(default=1000, ge=1)
    cache_ttl_seconds: float = Field(default=300.0, gt=0)

    # ── Resources ────────────────────────────────────────────────
    resource_capacity: int = Field(default=1024 * 1024 * 1024, gt=0)
    resource_warn_threshold: float = Field(default=0.8, gt=0, le=1)
    resource_evict_target: float = Field(default=0.7, gt=0, le=1)

    # ── Execution ────────────────────────────────────────────────
    step_timeout_seconds: float = Field(default=30.0, gt=0)
    workflow_step_timeout_seconds: float = Field(default=300.0, gt=0)
    retry_base_delay_seconds: float = Field(default=1.0, ge=0)
    max_traversal_steps: int = Field(default=1000, ge=1)


@lru_cache(maxsize=1)
def get_settings() -> FlowSettings:
    """Return the process-wide settings, loaded once."""
    return FlowSettings()


__all__ = ["FlowSettings", "get_settings"]
