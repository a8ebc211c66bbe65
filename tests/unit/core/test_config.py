# tests/unit/core/test_config.py
"""Tests for settings validation and loading."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from tracesmith.contracts import SamplerKind
from tracesmith.core.config import (
    ConfidenceSettings,
    MiningSettings,
    RouterSettings,
    SynthesisSettings,
    TracesmithSettings,
    load_settings,
)


class TestDefaults:
    def test_documented_defaults(self) -> None:
        settings = TracesmithSettings()
        assert settings.mining.min_traces == 3
        assert settings.mining.trace_limit == 10
        assert settings.mining.alignment_threshold == 0.7
        assert settings.mining.consensus_threshold == 0.8
        assert settings.confidence.threshold == 0.75
        assert settings.router.prior_alpha == 1.0
        assert settings.router.prior_beta == 1.0
        assert settings.router.sampler is SamplerKind.EXACT
        assert settings.router.default_arms == ("exact", "fallback")

    def test_settings_are_frozen(self) -> None:
        settings = TracesmithSettings()
        with pytest.raises(ValidationError):
            settings.mining.min_traces = 5  # type: ignore[misc]


class TestValidation:
    def test_trace_limit_below_min_traces(self) -> None:
        with pytest.raises(ValidationError, match="trace_limit"):
            MiningSettings(min_traces=5, trace_limit=4)

    def test_confidence_weights_must_sum_to_one(self) -> None:
        with pytest.raises(ValidationError, match="sum to 1.0"):
            ConfidenceSettings(alignment_weight=0.5, consensus_weight=0.5, sample_weight=0.5)

    def test_optional_ratio_below_required(self) -> None:
        with pytest.raises(ValidationError, match="optional_field_ratio"):
            SynthesisSettings(required_field_ratio=0.5, optional_field_ratio=0.5)

    def test_unknown_default_arm_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Unknown arm family"):
            RouterSettings(default_arms=("exact", "heuristic"))

    def test_duplicate_default_arm_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Duplicate"):
            RouterSettings(default_arms=("fallback", "fallback"))

    @pytest.mark.parametrize("value", [0.0, -1.0])
    def test_prior_must_be_positive(self, value: float) -> None:
        with pytest.raises(ValidationError):
            RouterSettings(prior_alpha=value)


class TestLoadSettings:
    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_settings(tmp_path / "missing.yaml")

    def test_yaml_values_override_defaults(self, tmp_path: Path) -> None:
        config = tmp_path / "tracesmith.yaml"
        config.write_text("mining:\n  min_traces: 4\n  trace_limit: 12\nrouter:\n  sampler: gaussian\n  seed: 7\n")

        settings = load_settings(config)

        assert settings.mining.min_traces == 4
        assert settings.mining.trace_limit == 12
        assert settings.router.sampler is SamplerKind.GAUSSIAN
        assert settings.router.seed == 7
        assert settings.confidence.threshold == 0.75

    def test_env_var_expansion_with_default(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("TRACESMITH_TEST_DB", raising=False)
        config = tmp_path / "tracesmith.yaml"
        config.write_text('store:\n  url: "${TRACESMITH_TEST_DB:-sqlite:///fallback.db}"\n')

        assert load_settings(config).store.url == "sqlite:///fallback.db"

        monkeypatch.setenv("TRACESMITH_TEST_DB", "sqlite:///from_env.db")
        assert load_settings(config).store.url == "sqlite:///from_env.db"

    def test_env_override_nested_key(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        config = tmp_path / "tracesmith.yaml"
        config.write_text("mining:\n  min_traces: 3\n")
        monkeypatch.setenv("TRACESMITH_MINING__MIN_TRACES", "5")

        assert load_settings(config).mining.min_traces == 5

    def test_invalid_values_raise_validation_error(self, tmp_path: Path) -> None:
        config = tmp_path / "tracesmith.yaml"
        config.write_text("confidence:\n  threshold: 1.5\n")

        with pytest.raises(ValidationError):
            load_settings(config)
