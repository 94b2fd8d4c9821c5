"""Pydantic models for language models, prompt templates and completions."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from cse.schemas.suggestions import SuggestionType


class Capability(str, Enum):
    CHAT = "chat"
    COMPLETION = "completion"
    EMBEDDING = "embedding"
    FUNCTION_CALLING = "function_calling"
    IMAGE_GENERATION = "image_generation"
    VISION = "vision"


class ProviderType(str, Enum):
    OPENAI = "openai"
    OLLAMA = "ollama"
    CUSTOM = "custom"


class LLMModel(BaseModel):
    """A model the engine may dispatch to.

    ``version`` is owned by ``ModelRegistry`` and bumped on every edit so
    that cache fingerprints derived from the old descriptor stop matching.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    provider: ProviderType = ProviderType.OPENAI
    context_window: int = Field(gt=0)
    max_tokens: int = Field(gt=0)
    is_available: bool = True
    capabilities: frozenset[Capability] = frozenset()
    version: int = 1
    metadata: dict[str, Any] = {}

    @model_validator(mode="after")
    def check_max_tokens(self) -> "LLMModel":
        if self.max_tokens > self.context_window:
            raise ValueError(
                f"max_tokens ({self.max_tokens}) exceeds context_window "
                f"({self.context_window}) for model {self.id!r}"
            )
        return self

    def supports(self, required: frozenset[Capability] | set[Capability]) -> bool:
        return set(required) <= set(self.capabilities)


class GenerationOptions(BaseModel):
    """Sampling parameters. ``None`` means "inherit from the next layer"."""

    model_config = ConfigDict(frozen=True)

    temperature: float | None = None
    top_p: float | None = None
    max_tokens: int | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None

    def merged(self, override: GenerationOptions | None) -> GenerationOptions:
        """Return a copy where every non-None field of ``override`` wins."""
        if override is None:
            return self
        changes = {k: v for k, v in override.model_dump().items() if v is not None}
        return self.model_copy(update=changes)


class PromptTemplate(BaseModel):
    """An administrator-managed prompt template.

    ``template`` and ``system_prompt`` use ``{{variable}}`` placeholders;
    every placeholder must be listed in ``variables``.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    template: str
    variables: frozenset[str] = frozenset()
    system_prompt: str | None = None
    required_capabilities: frozenset[Capability] = frozenset({Capability.CHAT})
    default_model: str | None = None
    default_options: GenerationOptions = GenerationOptions()
    suggestion_type: SuggestionType | None = None
    version: int = 1


class RenderedPrompt(BaseModel):
    """A template after variable substitution, ready for a provider."""

    model_config = ConfigDict(frozen=True)

    template_id: str
    template_version: int
    system: str | None = None
    user: str


class TokenUsage(BaseModel):
    model_config = ConfigDict(frozen=True)

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class Completion(BaseModel):
    """What a ``ModelProvider`` returns for one call."""

    model_config = ConfigDict(frozen=True)

    text: str
    model: str = ""
    usage: TokenUsage = TokenUsage()
