"""Tests for config loading and validation."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from cse.config import load_config
from cse.schemas.config import EngineConfig
from cse.schemas.llm import LLMModel, ProviderType


def _model(id: str = "gpt-4o", **kw) -> LLMModel:
    return LLMModel(id=id, context_window=128000, max_tokens=4096, **kw)


class TestEngineConfig:
    """Test the EngineConfig Pydantic model directly."""

    def test_defaults(self) -> None:
        cfg = EngineConfig(models=[_model()])
        assert cfg.cache.enabled is True
        assert cfg.cache.ttl_ms == 3_600_000
        assert cfg.max_in_flight == 3
        assert cfg.call_timeout_s == 60.0
        assert cfg.generation.temperature == 0.7
        assert cfg.templates == []
        assert cfg.providers[ProviderType.OLLAMA].base_url == "http://localhost:11434/v1"

    def test_requires_a_model(self) -> None:
        with pytest.raises(ValidationError, match="At least one model"):
            EngineConfig(models=[])

    def test_unique_model_ids(self) -> None:
        with pytest.raises(ValidationError, match="Duplicate model ids: gpt-4o"):
            EngineConfig(models=[_model(), _model()])

    def test_default_model_must_exist(self) -> None:
        with pytest.raises(ValidationError, match="not a registered model"):
            EngineConfig(models=[_model()], default_model="gpt-5")

    def test_default_model_must_be_available(self) -> None:
        with pytest.raises(ValidationError, match="not available"):
            EngineConfig(models=[_model(is_available=False)], default_model="gpt-4o")

    def test_in_flight_positive(self) -> None:
        with pytest.raises(ValidationError):
            EngineConfig(models=[_model()], max_in_flight=0)


class TestLoadConfig:
    """Test YAML file loading."""

    def test_load_valid(self, tmp_config: Path) -> None:
        cfg = load_config(tmp_config, environ={})
        assert [m.id for m in cfg.models] == ["gpt-4o"]
        assert cfg.default_model == "gpt-4o"
        assert cfg.cache.ttl_ms == 5000

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yml")

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        bad = tmp_path / "bad.yml"
        bad.write_text("- just\n- a list\n")
        with pytest.raises(ValueError, match="YAML mapping"):
            load_config(bad)

    def test_invalid_content(self, tmp_path: Path) -> None:
        bad = tmp_path / "bad.yml"
        bad.write_text("models:\n  - id: x\n    context_window: 10\n    max_tokens: 20\n")
        with pytest.raises(ValidationError, match="exceeds context_window"):
            load_config(bad, environ={})

    def test_commented_out_templates(self, tmp_path: Path) -> None:
        cfg_path = tmp_path / "c.yml"
        cfg_path.write_text(
            "models:\n  - id: m\n    context_window: 100\n    max_tokens: 10\ntemplates:\n  # - id: x\n"
        )
        assert load_config(cfg_path, environ={}).templates == []

    def test_env_overrides(self, tmp_config: Path) -> None:
        cfg = load_config(tmp_config, environ={
            "CSE_CACHE_TTL_MS": "1000",
            "CSE_CACHE_ENABLED": "false",
            "CSE_MAX_IN_FLIGHT": "7",
            "CSE_CALL_TIMEOUT_S": "2.5",
        })
        assert cfg.cache.ttl_ms == 1000
        assert cfg.cache.enabled is False
        assert cfg.max_in_flight == 7
        assert cfg.call_timeout_s == 2.5

    def test_env_default_model_is_validated(self, tmp_config: Path) -> None:
        with pytest.raises(ValidationError, match="not a registered model"):
            load_config(tmp_config, environ={"CSE_DEFAULT_MODEL": "gpt-5"})

    def test_example_config_is_valid(self) -> None:
        example = Path(__file__).parent.parent / "config" / "engine-config.example.yml"
        cfg = load_config(example, environ={})
        assert {m.id for m in cfg.models} == {"gpt-4o", "gpt-3.5-turbo"}
