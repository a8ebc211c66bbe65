# src/tracesmith/core/config.py
"""
Configuration schema and loading for tracesmith.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction.
"""

import math
import os
import re
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from tracesmith.contracts.enums import SamplerKind
from tracesmith.contracts.routing import arm_kind


class MiningSettings(BaseModel):
    """Sequence alignment and consensus extraction thresholds.

    Example YAML:
        mining:
          min_traces: 3
          trace_limit: 10
          alignment_threshold: 0.7
          consensus_threshold: 0.8
    """

    model_config = {"frozen": True}

    min_traces: int = Field(default=3, ge=1, description="Minimum successful traces before mining a fingerprint")
    trace_limit: int = Field(default=10, ge=1, description="Newest successful traces fetched per mining run")
    alignment_threshold: float = Field(default=0.7, ge=0.0, le=1.0, description="Abort mining below this alignment score")
    consensus_threshold: float = Field(
        default=0.8,
        gt=0.0,
        le=1.0,
        description="Majority share (among non-gap entries) needed to emit a Task node instead of a Branch",
    )
    required_threshold: float = Field(
        default=0.9,
        gt=0.0,
        le=1.0,
        description="Task frequency (over all traces) at or above which a Task node is required",
    )

    @model_validator(mode="after")
    def validate_trace_limit(self) -> "MiningSettings":
        if self.trace_limit < self.min_traces:
            raise ValueError(f"trace_limit ({self.trace_limit}) must be >= min_traces ({self.min_traces})")
        return self


class ConfidenceSettings(BaseModel):
    """Confidence scoring weights and the synthesis gate.

    confidence = alignment_weight * alignment_score
               + consensus_weight * mean_node_frequency
               + sample_weight * (1 - 0.5 ** (trace_count / min_traces))
    """

    model_config = {"frozen": True}

    threshold: float = Field(default=0.75, ge=0.0, le=1.0, description="Minimum confidence to synthesize and deploy")
    alignment_weight: float = Field(default=0.4, ge=0.0, le=1.0)
    consensus_weight: float = Field(default=0.4, ge=0.0, le=1.0)
    sample_weight: float = Field(default=0.2, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def validate_weights_sum_to_one(self) -> "ConfidenceSettings":
        total = self.alignment_weight + self.consensus_weight + self.sample_weight
        if not math.isclose(total, 1.0, abs_tol=1e-9):
            raise ValueError(f"confidence weights must sum to 1.0, got {total}")
        return self


class SynthesisSettings(BaseModel):
    """Input/output contract inference for compiled workflows."""

    model_config = {"frozen": True}

    required_field_ratio: float = Field(
        default=0.9,
        gt=0.0,
        le=1.0,
        description="First-task input fields present in at least this share of traces are required",
    )
    optional_field_ratio: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Fields present in at least this share (but below required) are optional",
    )
    max_examples: int = Field(default=3, ge=0, description="Example values kept per contract field")
    max_enum_values: int = Field(default=10, ge=1, description="Record an enum when at most this many distinct values were seen")

    @model_validator(mode="after")
    def validate_ratio_order(self) -> "SynthesisSettings":
        if self.optional_field_ratio >= self.required_field_ratio:
            raise ValueError("optional_field_ratio must be below required_field_ratio")
        return self


class RouterSettings(BaseModel):
    """Thompson-sampling router configuration.

    Example YAML:
        router:
          prior_alpha: 1.0
          prior_beta: 1.0
          sampler: exact
          seed: 42
    """

    model_config = {"frozen": True}

    prior_alpha: float = Field(default=1.0, gt=0.0, description="Alpha of the prior for newly registered arms")
    prior_beta: float = Field(default=1.0, gt=0.0, description="Beta of the prior for newly registered arms")
    sampler: SamplerKind = Field(
        default=SamplerKind.EXACT,
        description="exact: numpy Beta draws; gaussian: moment-matched normal clipped to [0, 1]",
    )
    seed: int | None = Field(default=None, description="Seed for the sampler's random generator (None = OS entropy)")
    default_arms: tuple[str, ...] = Field(
        default=("exact", "fallback"),
        description="Arms registered (in this order) when a query pattern is first seen",
    )
    max_update_attempts: int = Field(default=50, gt=0, description="Compare-and-set attempts before RouterUpdateRace")

    @field_validator("default_arms")
    @classmethod
    def validate_default_arms(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        for arm in v:
            try:
                arm_kind(arm)
            except ValueError as e:
                raise ValueError(f"Unknown arm family in default_arms: {arm!r}") from e
        if len(set(v)) != len(v):
            raise ValueError(f"Duplicate arms in default_arms: {list(v)}")
        return v


class RetrySettings(BaseModel):
    """Retry behavior for store reads and writes."""

    model_config = {"frozen": True}

    max_attempts: int = Field(default=3, gt=0, description="Maximum attempts (including the first)")
    initial_delay_seconds: float = Field(default=0.5, gt=0, description="Initial backoff delay")
    max_delay_seconds: float = Field(default=10.0, gt=0, description="Maximum backoff delay")
    exponential_base: float = Field(default=2.0, gt=1.0, description="Exponential backoff base")


class ConcurrencySettings(BaseModel):
    """Cross-fingerprint mining parallelism."""

    model_config = {"frozen": True}

    max_workers: int = Field(default=4, gt=0, description="Fingerprints mined in parallel")


class StoreSettings(BaseModel):
    """Database configuration for traces, patterns, workflows, and routing stats."""

    model_config = {"frozen": True}

    # NOTE: str instead of Path - Path mangles DSNs like postgresql://user@host/db
    url: str = Field(default="sqlite:///./tracesmith.db", description="Full SQLAlchemy database URL")
    echo: bool = Field(default=False, description="Echo SQL statements")


class SchedulerSettings(BaseModel):
    """Periodic mining configuration."""

    model_config = {"frozen": True}

    interval_seconds: float = Field(default=3600.0, gt=0, description="Seconds between mining cycles")


class LoggingSettings(BaseModel):
    model_config = {"frozen": True}

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    json_output: bool = False


class TracesmithSettings(BaseModel):
    """Top-level tracesmith configuration.

    Every section has defaults, so an empty file is a valid configuration.
    """

    model_config = {"frozen": True}

    mining: MiningSettings = Field(default_factory=MiningSettings)
    confidence: ConfidenceSettings = Field(default_factory=ConfidenceSettings)
    synthesis: SynthesisSettings = Field(default_factory=SynthesisSettings)
    router: RouterSettings = Field(default_factory=RouterSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    concurrency: ConcurrencySettings = Field(default_factory=ConcurrencySettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


# Regex pattern for ${VAR} or ${VAR:-default} syntax
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")


def _expand_env_vars(config: dict[str, Any]) -> dict[str, Any]:
    """Recursively expand ${VAR} and ${VAR:-default} patterns in config values."""

    def _expand_string(value: str) -> str:
        def replacer(match: re.Match[str]) -> str:
            env_value = os.environ.get(match.group(1))
            if env_value is not None:
                return env_value
            default = match.group(2)
            if default is not None:
                return default
            # No env var and no default - keep original so validation reports it
            return match.group(0)

        return _ENV_VAR_PATTERN.sub(replacer, value)

    def _expand_value(value: Any) -> Any:
        if isinstance(value, str):
            return _expand_string(value)
        if isinstance(value, dict):
            return {k: _expand_value(v) for k, v in value.items()}
        if isinstance(value, list):
            return [_expand_value(item) for item in value]
        return value

    return {k: _expand_value(v) for k, v in config.items()}


def _lower_keys(value: Any) -> Any:
    """Lowercase mapping keys at every depth (Dynaconf uppercases env keys)."""
    if isinstance(value, dict):
        return {str(k).lower(): _lower_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_lower_keys(item) for item in value]
    return value


def load_settings(config_path: Path) -> TracesmithSettings:
    """Load settings from a YAML file with environment variable overrides.

    Precedence (highest first):
    1. Environment variables (TRACESMITH_*), nested keys via ``__``,
       e.g. TRACESMITH_MINING__MIN_TRACES=5
    2. Config file
    3. Defaults from the Pydantic schema

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If config file doesn't exist
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="TRACESMITH",
        settings_files=[str(config_path)],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k: v for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}
    raw_config = _lower_keys(raw_config)
    raw_config = _expand_env_vars(raw_config)

    return TracesmithSettings(**raw_config)
