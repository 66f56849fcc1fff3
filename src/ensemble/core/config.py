"""
ensemble.core.config - Configuration Management
=================================================

This module provides the configuration system for Ensemble. Configuration
can be loaded from multiple sources with the following priority (highest first):

    1. Explicit constructor arguments
    2. Environment variables (prefixed with ENSEMBLE_)
    3. YAML configuration file (ensemble.yaml)
    4. Default values defined in the models below

Architecture Context:
    Configuration flows DOWN through the system. The top-level EnsembleConfig
    is created once and handed to the Team, which passes the relevant parts
    to the components it constructs:

        EnsembleConfig
            ├── MetricsConfig     → StatusEventPipeline, MetricsSink
            ├── flow_type         → execution strategy factory
            ├── max_agent_iterations → BaseAgent
            └── (other settings)  → TransitionRuleRegistry, TaskScheduler

Usage:
    # Load from environment variables:
    config = EnsembleConfig()

    # Load from YAML file:
    config = load_config("ensemble.yaml")

    # Explicit overrides:
    config = EnsembleConfig(flow_type="hierarchy", log_level="DEBUG")

Environment Variables:
    ENSEMBLE_LOG_LEVEL=DEBUG
    ENSEMBLE_ENVIRONMENT=prod
    ENSEMBLE_FLOW_TYPE=hierarchy
    ENSEMBLE_METRICS__ENABLED=false
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal, Optional

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

from ensemble.core.enums import FlowType
from ensemble.core.exceptions import ConfigurationError


# =============================================================================
# Metrics Configuration
# =============================================================================
# Controls what the status event pipeline reports to its metrics sink.
# The sink itself (storage, format) is supplied by the host application.
# =============================================================================
class MetricsConfig(BaseModel):
    """Configuration for transition metrics and logging side effects.

    Attributes:
        enabled: Whether pipeline handlers forward metrics to the sink.
        log_transitions: Whether every committed transition is logged
            through the sink's log() call.
    """

    enabled: bool = Field(
        default=True,
        description="Forward transition metrics to the metrics sink",
    )
    log_transitions: bool = Field(
        default=True,
        description="Log every committed status transition",
    )


# =============================================================================
# Main Configuration
# =============================================================================
# Environment Variable Mapping:
#   ENSEMBLE_LOG_LEVEL          → config.log_level
#   ENSEMBLE_FLOW_TYPE          → config.flow_type
#   ENSEMBLE_METRICS__ENABLED   → config.metrics.enabled (double underscore)
# =============================================================================
class EnsembleConfig(BaseSettings):
    """Top-level configuration for the Ensemble orchestration engine.

    Attributes:
        environment: Deployment environment.
        log_level: Logging level. Structured logs use structlog.
        flow_type: Default scheduling strategy. A workflow whose dependency
            shape is not sequential is promoted to HIERARCHY regardless.
        max_agent_iterations: Iteration budget for an agent's reasoning loop
            before it reports MAX_ITERATIONS_ERROR.
        cascade_blocked_dependencies: When True, a task that ends in ERROR
            or BLOCKED moves its waiting descendants to BLOCKED.
        verify_rules_on_startup: Check rule tables for orphan rules when a
            Team is constructed.
        metrics: Metrics sink configuration (see MetricsConfig).

    Example:
        >>> config = EnsembleConfig(
        ...     flow_type=FlowType.HIERARCHY,
        ...     max_agent_iterations=5,
        ... )
    """

    # -------------------------------------------------------------------------
    # General Settings
    # -------------------------------------------------------------------------
    environment: Literal["dev", "staging", "prod"] = Field(
        default="dev",
        description="Deployment environment (affects defaults and verbosity)",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL",
    )

    # -------------------------------------------------------------------------
    # Orchestration Settings
    # -------------------------------------------------------------------------
    flow_type: FlowType = Field(
        default=FlowType.SEQUENTIAL,
        description="Default scheduling strategy: 'sequential' or 'hierarchy'",
    )
    max_agent_iterations: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Maximum reasoning iterations per agent task",
    )
    cascade_blocked_dependencies: bool = Field(
        default=True,
        description="Block waiting descendants of a failed or blocked task",
    )
    verify_rules_on_startup: bool = Field(
        default=True,
        description="Check transition rule tables for orphan rules at startup",
    )

    # -------------------------------------------------------------------------
    # Nested Configurations
    # -------------------------------------------------------------------------
    metrics: MetricsConfig = Field(
        default_factory=MetricsConfig,
        description="Metrics and transition logging configuration",
    )

    # -------------------------------------------------------------------------
    # Pydantic Settings Configuration
    # -------------------------------------------------------------------------
    #   - env_prefix: All env vars start with "ENSEMBLE_"
    #   - env_nested_delimiter: "__" for nested configs
    #     (e.g., ENSEMBLE_METRICS__ENABLED maps to config.metrics.enabled)
    #   - case_sensitive: Env vars are case-insensitive
    # -------------------------------------------------------------------------
    model_config = {
        "env_prefix": "ENSEMBLE_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
    }


# =============================================================================
# Configuration Loader
# =============================================================================
def load_config(path: Optional[str] = None) -> EnsembleConfig:
    """Load Ensemble configuration from a YAML file and/or environment variables.

    Args:
        path: Path to a YAML configuration file. If None, looks for
            'ensemble.yaml' in the current directory. If that doesn't
            exist either, uses pure defaults + environment variables.

    Returns:
        A fully validated EnsembleConfig instance.

    Raises:
        ConfigurationError: If the YAML file exists but cannot be parsed.
        FileNotFoundError: If an explicit path is provided but doesn't exist.

    Example:
        >>> config = load_config("ensemble.yaml")
        >>> config = load_config()  # auto-detect or use defaults
    """
    if path is None:
        default_path = Path("ensemble.yaml")
        if default_path.exists():
            path = str(default_path)

    yaml_data: dict[str, Any] = {}
    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(
                f"Configuration file not found: {path}. "
                f"Create one or use ENSEMBLE_ environment variables."
            )

        with open(config_path) as f:
            try:
                raw_data = yaml.safe_load(f)
            except yaml.YAMLError as exc:
                raise ConfigurationError(
                    message=f"Invalid YAML in configuration file: {path}",
                    error_code="INVALID_CONFIG_FILE",
                    details={"path": str(config_path), "error": str(exc)},
                ) from exc
            if isinstance(raw_data, dict):
                yaml_data = raw_data

    # YAML values are passed as constructor args; environment variables are
    # loaded automatically by BaseSettings.
    return EnsembleConfig(**yaml_data)


def get_default_config() -> EnsembleConfig:
    """Create an EnsembleConfig with all defaults (plus any set env vars)."""
    return EnsembleConfig()
