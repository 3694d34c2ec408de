"""Tests for configuration module.

Every test isolates from environment variables using patch.dict(clear=True)
to prevent BaseSettings env leakage.
"""

import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from lens_agent.config import LensAgentConfig, get_config, get_config_dict

_CLEAN_ENV: dict[str, str] = {}


def _config(**kwargs: object) -> LensAgentConfig:
    with patch.dict(os.environ, _CLEAN_ENV, clear=True):
        return LensAgentConfig(_env_file=None, **kwargs)  # type: ignore[arg-type]


class TestDefaultValues:
    """Default values are correct when no env vars are set."""

    def test_llm_defaults(self) -> None:
        config = _config()
        assert config.llm_provider == "openai"
        assert config.llm_model == "gpt-4o-mini"
        assert config.llm_base_url == ""

    def test_correlation_defaults(self) -> None:
        """Look-back window 5s, decay 2s, base weight 0.6."""
        config = _config()
        assert config.correlation_window_ms == 5000.0
        assert config.correlation_decay_ms == 2000.0
        assert config.correlation_base_weight == 0.6

    def test_pipeline_defaults(self) -> None:
        config = _config()
        assert config.analysis_level == "auto"
        assert config.enable_reviewer is True
        assert config.output_language == "en"
        assert config.stage_max_retries == 2

    def test_stage_timeout_lookup(self) -> None:
        config = _config(explain_timeout=12.5)
        assert config.stage_timeout("explain") == 12.5
        assert config.stage_timeout("locate") == config.locate_timeout


class TestEnvironmentOverrides:
    """Environment variables override defaults (case-insensitive)."""

    def test_provider_from_env(self) -> None:
        with patch.dict(os.environ, {"LLM_PROVIDER": "anthropic"}, clear=True):
            config = LensAgentConfig(_env_file=None)  # type: ignore[call-arg]
        assert config.llm_provider == "anthropic"

    def test_analysis_level_string_coerced(self) -> None:
        """ANALYSIS_LEVEL=2 from the environment becomes the int 2."""
        with patch.dict(os.environ, {"ANALYSIS_LEVEL": "2"}, clear=True):
            config = LensAgentConfig(_env_file=None)  # type: ignore[call-arg]
        assert config.analysis_level == 2

    def test_window_from_env(self) -> None:
        with patch.dict(os.environ, {"CORRELATION_WINDOW_MS": "3000"}, clear=True):
            config = LensAgentConfig(_env_file=None)  # type: ignore[call-arg]
        assert config.correlation_window_ms == 3000.0


class TestValidation:
    """Field validators reject nonsensical values."""

    def test_rejects_non_positive_timeout(self) -> None:
        with pytest.raises(ValidationError, match="positive"):
            _config(locate_timeout=0)

    def test_rejects_non_positive_decay(self) -> None:
        with pytest.raises(ValidationError):
            _config(correlation_decay_ms=-1)

    def test_rejects_base_weight_above_one(self) -> None:
        with pytest.raises(ValidationError, match="between 0.0 and 1.0"):
            _config(correlation_base_weight=1.5)

    def test_rejects_negative_retries(self) -> None:
        with pytest.raises(ValidationError):
            _config(stage_max_retries=-1)

    def test_rejects_unknown_provider(self) -> None:
        with pytest.raises(ValidationError):
            _config(llm_provider="grok")

    def test_rejects_unknown_analysis_level(self) -> None:
        with pytest.raises(ValidationError):
            _config(analysis_level=3)


class TestProjectRoot:
    """Optional checkout of the reported application."""

    def test_disabled_by_default(self) -> None:
        config = _config()
        assert config.project_root == ""
        assert config.source_root is None

    def test_directory_accepted(self, tmp_path: Path) -> None:
        config = _config(project_root=str(tmp_path))
        assert config.source_root == tmp_path.resolve()

    def test_rejects_missing_directory(self, tmp_path: Path) -> None:
        with pytest.raises(ValidationError):
            _config(project_root=str(tmp_path / "missing"))

    def test_rejects_file(self, tmp_path: Path) -> None:
        target = tmp_path / "app.ts"
        target.write_text("", encoding="utf-8")
        with pytest.raises(ValidationError):
            _config(project_root=str(target))


class TestSingleton:
    """get_config() is cached."""

    def test_returns_same_instance(self) -> None:
        with patch.dict(os.environ, _CLEAN_ENV, clear=True):
            assert get_config() is get_config()

    def test_config_dict_contains_fields(self) -> None:
        with patch.dict(os.environ, _CLEAN_ENV, clear=True):
            data = get_config_dict()
        assert data["correlation_window_ms"] == 5000.0
        assert "llm_provider" in data
