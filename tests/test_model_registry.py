"""Tests for model selection and the registry's version counters."""

from __future__ import annotations

import pytest
from pydantic import ValidationError as PydanticValidationError

from cse.engine.models import ModelRegistry, estimate_tokens
from cse.errors import CapabilityMismatchError, NotFoundError
from cse.schemas.llm import Capability, LLMModel

CHAT = frozenset({Capability.CHAT})


def _model(id: str, window: int, caps=CHAT, available: bool = True) -> LLMModel:
    return LLMModel(
        id=id,
        context_window=window,
        max_tokens=min(window, 1000),
        capabilities=frozenset(caps),
        is_available=available,
    )


class TestSelectModel:
    def test_preferred_model_wins(self, models) -> None:
        reg = ModelRegistry(models)
        assert reg.select_model(CHAT, "gpt-4o").id == "gpt-4o"

    def test_preferred_missing_capability(self, models) -> None:
        reg = ModelRegistry(models)
        with pytest.raises(CapabilityMismatchError, match="vision"):
            reg.select_model({Capability.VISION}, "gpt-3.5-turbo")

    def test_preferred_unavailable(self) -> None:
        reg = ModelRegistry([_model("m1", 8000, available=False), _model("m2", 8000)])
        with pytest.raises(CapabilityMismatchError, match="not available"):
            reg.select_model(CHAT, "m1")

    def test_preferred_unknown(self, models) -> None:
        with pytest.raises(CapabilityMismatchError, match="not registered"):
            ModelRegistry(models).select_model(CHAT, "claude-9")

    def test_smallest_sufficient_window(self) -> None:
        reg = ModelRegistry([_model("big", 128000), _model("small", 8000), _model("mid", 32000)])
        assert reg.select_model(CHAT, prompt_tokens=5000, output_tokens=1000).id == "small"
        assert reg.select_model(CHAT, prompt_tokens=20000, output_tokens=1000).id == "mid"

    def test_falls_back_to_largest_window(self) -> None:
        reg = ModelRegistry([_model("small", 8000), _model("mid", 32000)])
        assert reg.select_model(CHAT, prompt_tokens=50000).id == "mid"

    def test_tie_broken_by_natural_id_order(self) -> None:
        reg = ModelRegistry([_model("gpt-10", 8000), _model("gpt-9", 8000)])
        assert reg.select_model(CHAT).id == "gpt-9"

    def test_skips_unavailable_and_underpowered(self) -> None:
        reg = ModelRegistry([
            _model("a", 4000, available=False),
            _model("b", 4000, caps={Capability.EMBEDDING}),
            _model("c", 64000),
        ])
        assert reg.select_model(CHAT).id == "c"

    def test_no_candidate(self, models) -> None:
        with pytest.raises(CapabilityMismatchError, match="image_generation"):
            ModelRegistry(models).select_model({Capability.IMAGE_GENERATION})


class TestRegistry:
    def test_list_models_natural_order(self) -> None:
        reg = ModelRegistry([_model("m10", 100), _model("m2", 100)])
        assert [m.id for m in reg.list_models()] == ["m2", "m10"]

    def test_update_bumps_version(self, models) -> None:
        reg = ModelRegistry(models)
        before = reg.get("gpt-4o")
        after = reg.update("gpt-4o", is_available=False)
        assert after.version == before.version + 1
        assert after.is_available is False

    def test_update_validates(self, models) -> None:
        reg = ModelRegistry(models)
        with pytest.raises(PydanticValidationError):
            reg.update("gpt-4o", max_tokens=999999)

    def test_re_register_after_remove_keeps_counting(self, models) -> None:
        reg = ModelRegistry(models)
        reg.remove("gpt-4o")
        with pytest.raises(NotFoundError):
            reg.get("gpt-4o")
        assert reg.register(models[0]).version == 2


class TestLLMModel:
    def test_max_tokens_cannot_exceed_window(self) -> None:
        with pytest.raises(PydanticValidationError, match="exceeds context_window"):
            LLMModel(id="x", context_window=100, max_tokens=200)


def test_estimate_tokens() -> None:
    assert estimate_tokens("abcd" * 10) == 10
    assert estimate_tokens("abc", None, "de") == 2
    assert estimate_tokens() == 0
