"""YAML configuration for health-aware model routing.

Configuration Priority: Environment Variables > YAML > Defaults

Example YAML configuration (health_router.yaml):

    health_router:
      profiler:
        max_metrics_per_model: 1000
        retention_days: 30
        weights:
          success_rate: 40
          latency: 20
          feedback: 25
          hallucination: 15
      persistence:
        snapshot_path: ~/.health-router/model_health.json
        flush_delay_seconds: 5
      router:
        capability_weight: 50
        min_primary_health: 10
        strategy: balanced
      fallback:
        max_attempts: 3
        attempt_timeout_seconds: 30
        time_budget_seconds: 90
      capabilities:
        my-local-model:
          provider: ollama
          tier: fast
          supported_tasks: [chat, summarization]
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

logger = logging.getLogger(__name__)

DEFAULT_SNAPSHOT_PATH = Path.home() / ".health-router" / "model_health.json"


# =============================================================================
# Sub-configuration Models
# =============================================================================


class HealthScoreWeights(BaseModel):
    """Weights and normalisation constants for the composite health score."""

    success_rate: float = Field(default=40.0, ge=0.0)
    latency: float = Field(default=20.0, ge=0.0)
    feedback: float = Field(default=25.0, ge=0.0)
    hallucination: float = Field(default=15.0, ge=0.0)
    latency_ceiling_ms: float = Field(default=5000.0, gt=0.0)
    neutral_feedback: float = Field(default=3.0, ge=1.0, le=5.0)
    # renormalize: drop the feedback term when a model has never been rated
    # neutral: score the neutral feedback value literally
    missing_feedback: Literal["renormalize", "neutral"] = "renormalize"

    @model_validator(mode="after")
    def require_positive_total(self) -> "HealthScoreWeights":
        if self.success_rate + self.latency + self.feedback + self.hallucination <= 0:
            raise ValueError("health score weights must not all be zero")
        return self


class ProfilerConfig(BaseModel):
    """Configuration for metric retention and health aggregation."""

    max_metrics_per_model: int = Field(default=1000, ge=1)
    retention_days: float = Field(default=30.0, gt=0.0)
    healthy_threshold: float = Field(default=50.0, ge=0.0, le=100.0)
    weights: HealthScoreWeights = Field(default_factory=HealthScoreWeights)


class PersistenceConfig(BaseModel):
    """Configuration for the on-disk health snapshot."""

    enabled: bool = True
    snapshot_path: Path = Field(default=DEFAULT_SNAPSHOT_PATH)
    flush_delay_seconds: float = Field(default=5.0, ge=0.0)

    @field_validator("snapshot_path", mode="before")
    @classmethod
    def expand_user(cls, v: Any) -> Any:
        if isinstance(v, str):
            return Path(os.path.expanduser(v))
        return v


class RouterConfig(BaseModel):
    """Configuration for candidate ranking."""

    capability_weight: float = Field(default=50.0, ge=0.0)
    neutral_health_score: float = Field(default=50.0, ge=0.0, le=100.0)
    min_primary_health: float = Field(default=10.0, ge=0.0, le=100.0)
    unknown_capability_match: float = Field(default=0.5, ge=0.0, le=1.0)
    max_fallbacks: Optional[int] = Field(default=None, ge=0)
    # cost | speed | quality | balanced; None ranks on capability and health only
    strategy: Optional[Literal["cost", "speed", "quality", "balanced"]] = None


class FallbackConfig(BaseModel):
    """Configuration for fallback chain bounds."""

    max_attempts: int = Field(default=3, ge=1)
    attempt_timeout_seconds: float = Field(default=30.0, gt=0.0)
    time_budget_seconds: float = Field(default=90.0, gt=0.0)


class EnsembleConfig(BaseModel):
    """Configuration for parallel ensemble execution."""

    size: int = Field(default=3, ge=1)
    timeout_seconds: float = Field(default=30.0, gt=0.0)


class ModelCapabilityConfig(BaseModel):
    """Capability profile for a single model."""

    provider: str = "unknown"
    supported_tasks: List[str] = Field(default_factory=list)
    strengths: List[str] = Field(default_factory=list)
    weaknesses: List[str] = Field(default_factory=list)
    cost_per_token: Optional[float] = Field(default=None, ge=0.0)
    avg_latency_ms: Optional[float] = Field(default=None, ge=0.0)
    context_window: Optional[int] = Field(default=None, ge=1)
    tier: Optional[Literal["fast", "balanced", "smart", "creative"]] = None


# =============================================================================
# Main Configuration Model
# =============================================================================


class HealthRouterConfig(BaseModel):
    """Top-level configuration for the routing subsystem."""

    profiler: ProfilerConfig = Field(default_factory=ProfilerConfig)
    persistence: PersistenceConfig = Field(default_factory=PersistenceConfig)
    router: RouterConfig = Field(default_factory=RouterConfig)
    fallback: FallbackConfig = Field(default_factory=FallbackConfig)
    ensemble: EnsembleConfig = Field(default_factory=EnsembleConfig)
    capabilities: Dict[str, ModelCapabilityConfig] = Field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as a plain dict."""
        return self.model_dump(mode="json")


# =============================================================================
# Loading
# =============================================================================


def _substitute_env_vars(value: Any) -> Any:
    """Substitute ${VAR} references with environment values, recursively."""
    if isinstance(value, str):
        return re.sub(
            r"\$\{([^}]+)\}",
            lambda m: os.getenv(m.group(1), m.group(0)),
            value,
        )
    if isinstance(value, dict):
        return {k: _substitute_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_substitute_env_vars(v) for v in value]
    return value


def load_config(
    config_path: Optional[Path] = None,
    strict: bool = False,
) -> HealthRouterConfig:
    """Load configuration from a YAML file.

    Args:
        config_path: Path to YAML configuration file. If None, uses defaults.
        strict: If True, raise ValueError on validation errors. If False,
                fall back to defaults on errors.

    Returns:
        HealthRouterConfig object

    Raises:
        ValueError: If strict=True and configuration is invalid
    """
    if config_path is None or not config_path.exists():
        return HealthRouterConfig()

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)

        if raw_config is None:
            return HealthRouterConfig()

        raw_config = _substitute_env_vars(raw_config)
        section = raw_config.get("health_router", {}) or {}
        return HealthRouterConfig(**section)

    except yaml.YAMLError as e:
        if strict:
            raise ValueError(f"Invalid YAML: {e}")
        logger.warning(f"Ignoring invalid YAML in {config_path}: {e}")
        return HealthRouterConfig()
    except Exception as e:
        if strict:
            raise ValueError(f"Configuration error: {e}")
        logger.warning(f"Ignoring invalid configuration in {config_path}: {e}")
        return HealthRouterConfig()


def _find_config_file() -> Optional[Path]:
    """Find configuration file in standard locations.

    Search order:
    1. HEALTH_ROUTER_CONFIG environment variable
    2. ./health_router.yaml (current directory)
    3. ~/.config/health-router/health_router.yaml
    """
    env_path = os.getenv("HEALTH_ROUTER_CONFIG")
    if env_path:
        path = Path(env_path)
        if path.exists():
            return path

    cwd_path = Path.cwd() / "health_router.yaml"
    if cwd_path.exists():
        return cwd_path

    home_path = Path.home() / ".config" / "health-router" / "health_router.yaml"
    if home_path.exists():
        return home_path

    return None


# (env var, section, key, converter)
_ENV_OVERRIDES = [
    ("HEALTH_ROUTER_SNAPSHOT_PATH", "persistence", "snapshot_path", str),
    ("HEALTH_ROUTER_FLUSH_DELAY", "persistence", "flush_delay_seconds", float),
    ("HEALTH_ROUTER_MAX_METRICS", "profiler", "max_metrics_per_model", int),
    ("HEALTH_ROUTER_RETENTION_DAYS", "profiler", "retention_days", float),
    ("HEALTH_ROUTER_MAX_ATTEMPTS", "fallback", "max_attempts", int),
    ("HEALTH_ROUTER_ATTEMPT_TIMEOUT", "fallback", "attempt_timeout_seconds", float),
    ("HEALTH_ROUTER_TIME_BUDGET", "fallback", "time_budget_seconds", float),
    ("HEALTH_ROUTER_MIN_PRIMARY_HEALTH", "router", "min_primary_health", float),
    ("HEALTH_ROUTER_STRATEGY", "router", "strategy", str.lower),
    ("HEALTH_ROUTER_ENSEMBLE_SIZE", "ensemble", "size", int),
]


def _apply_env_overrides(config: HealthRouterConfig) -> HealthRouterConfig:
    """Apply environment variable overrides to configuration.

    Environment variables take precedence over YAML configuration.
    """
    config_dict = config.to_dict()

    for env_var, section, key, convert in _ENV_OVERRIDES:
        raw = os.getenv(env_var)
        if not raw:
            continue
        try:
            config_dict.setdefault(section, {})[key] = convert(raw)
        except ValueError:
            logger.warning(f"Ignoring invalid value for {env_var}: {raw!r}")

    persistence_env = os.getenv("HEALTH_ROUTER_PERSISTENCE_ENABLED")
    if persistence_env:
        config_dict.setdefault("persistence", {})["enabled"] = persistence_env.lower() in ("true", "1", "yes")

    try:
        return HealthRouterConfig(**config_dict)
    except ValidationError as e:
        logger.warning(f"Ignoring invalid environment overrides: {e}")
        return config


def get_effective_config(config_path: Optional[Path] = None) -> HealthRouterConfig:
    """Get the effective configuration with all overrides applied.

    Priority: Environment Variables > YAML > Defaults

    Args:
        config_path: Optional explicit path to configuration file.
                    If None, searches standard locations.

    Returns:
        HealthRouterConfig with all overrides applied
    """
    load_dotenv()

    if config_path is None:
        config_path = _find_config_file()

    config = load_config(config_path)
    return _apply_env_overrides(config)
