"""Configuration schema — validates engine-config.yml."""

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator

from cse.schemas.llm import GenerationOptions, LLMModel, PromptTemplate, ProviderType


class CacheSettings(BaseModel):
    enabled: bool = True
    ttl_ms: int = Field(default=3_600_000, gt=0)  # 1 hour
    max_entries: int | None = Field(default=None, gt=0)


class ProviderSettings(BaseModel):
    """Connection details for one provider family.

    ``api_key_env`` names the environment variable holding the key so the
    config file itself never contains secrets.
    """

    base_url: str | None = None
    api_key_env: str = "OPENAI_API_KEY"
    max_retries: int = 8


def _default_providers() -> dict[ProviderType, ProviderSettings]:
    return {
        ProviderType.OPENAI: ProviderSettings(),
        ProviderType.OLLAMA: ProviderSettings(
            base_url="http://localhost:11434/v1", api_key_env="OLLAMA_API_KEY",
        ),
    }


class EngineConfig(BaseModel):
    """Top-level configuration loaded from engine-config.yml.

    ``templates`` extends (and may override by id) the built-in per-type
    templates. ``default_model`` must name a registered, available model.
    """

    models: list[LLMModel]
    templates: list[PromptTemplate] = []
    default_model: str | None = None

    generation: GenerationOptions = GenerationOptions(
        temperature=0.7,
        top_p=1.0,
        max_tokens=2000,
        frequency_penalty=0.0,
        presence_penalty=0.0,
    )

    cache: CacheSettings = CacheSettings()
    max_in_flight: int = Field(default=3, gt=0)
    call_timeout_s: float = Field(default=60.0, gt=0)

    providers: dict[ProviderType, ProviderSettings] = Field(default_factory=_default_providers)

    @model_validator(mode="after")
    def check_has_models(self) -> "EngineConfig":
        if not self.models:
            raise ValueError("At least one model is required")
        return self

    @model_validator(mode="after")
    def check_unique_model_ids(self) -> "EngineConfig":
        ids = [m.id for m in self.models]
        dupes = sorted({i for i in ids if ids.count(i) > 1})
        if dupes:
            raise ValueError(f"Duplicate model ids: {', '.join(dupes)}")
        return self

    @model_validator(mode="after")
    def check_default_model(self) -> "EngineConfig":
        if self.default_model is None:
            return self
        model = next((m for m in self.models if m.id == self.default_model), None)
        if model is None:
            raise ValueError(f"default_model {self.default_model!r} is not a registered model")
        if not model.is_available:
            raise ValueError(f"default_model {self.default_model!r} is not available")
        return self
