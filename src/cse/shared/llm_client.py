"""Model providers — the engine's only network boundary.

The orchestrator only depends on the ``ModelProvider`` protocol:

    async def complete(self, prompt, model, options) -> Completion: ...

Implementations:

    OpenAIProvider  — AsyncOpenAI chat completions in JSON mode. Also serves
                      OpenAI-compatible endpoints (Ollama) via ``base_url``.
                      Retries rate limits and connection errors internally.
    ProviderRouter  — dispatches on ``LLMModel.provider``.
    DryRunProvider  — canned JSON per suggestion type, zero API calls.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import random
import re
from typing import Any, Protocol

from openai import (
    APIConnectionError,
    APIError,
    APITimeoutError,
    AsyncOpenAI,
    RateLimitError,
)

from cse.errors import ProviderError
from cse.schemas.config import ProviderSettings
from cse.schemas.llm import (
    Completion,
    GenerationOptions,
    LLMModel,
    ProviderType,
    RenderedPrompt,
    TokenUsage,
)

logger = logging.getLogger(__name__)

_RATE_LIMIT_BASE_DELAY = 5  # seconds, floor for exponential backoff


class ModelProvider(Protocol):
    async def complete(
        self, prompt: RenderedPrompt, model: LLMModel, options: GenerationOptions,
    ) -> Completion: ...


def _parse_retry_after(exc: RateLimitError) -> float | None:
    """Extract the suggested retry delay from a rate limit error.

    Checks the ``Retry-After`` header first, then falls back to parsing
    the "Please try again in Xs / Xms" substring from the error message.
    Returns seconds as a float, or None if not found.
    """
    try:
        headers = exc.response.headers  # type: ignore[union-attr]
        if retry_after := headers.get("retry-after"):
            return float(retry_after)
    except (AttributeError, TypeError, ValueError):
        pass

    m = re.search(r"try again in (\d+(?:\.\d+)?)\s*(ms|s)\b", str(exc), re.IGNORECASE)
    if m:
        value = float(m.group(1))
        return value / 1000 if m.group(2).lower() == "ms" else value

    return None


def _build_messages(prompt: RenderedPrompt) -> list[dict[str, str]]:
    messages = []
    if prompt.system:
        messages.append({"role": "system", "content": prompt.system})
    messages.append({"role": "user", "content": prompt.user})
    return messages


class OpenAIProvider:
    """Thin async wrapper around the OpenAI SDK for single JSON completions."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        *,
        max_retries: int = 8,
    ) -> None:
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url)
        self._max_retries = max_retries

    @classmethod
    def from_settings(cls, settings: ProviderSettings) -> "OpenAIProvider":
        # Local servers (Ollama) accept any key but the SDK insists on one.
        api_key = os.getenv(settings.api_key_env) or ("local" if settings.base_url else None)
        return cls(api_key=api_key, base_url=settings.base_url, max_retries=settings.max_retries)

    async def _call_with_retry(self, **kwargs: Any) -> Any:
        """Call chat.completions.create with exponential backoff.

        Waits at least as long as the provider's suggested retry-after time,
        uses exponential backoff as a floor, and adds ±25% jitter so
        concurrent analysis types don't retry in lockstep.

        Fails immediately if the request itself exceeds the token limit.
        """
        for attempt in range(self._max_retries):
            try:
                return await self._client.chat.completions.create(**kwargs)
            except RateLimitError as exc:
                msg = str(exc).lower()
                if "request too large" in msg or "context_length_exceeded" in msg:
                    logger.error("Request exceeds token limit (not retryable): %s", exc)
                    raise
                if attempt == self._max_retries - 1:
                    raise

                backoff = _RATE_LIMIT_BASE_DELAY * (2 ** attempt)
                suggested = _parse_retry_after(exc)
                base_delay = max(suggested or 0.0, backoff)
                jitter = random.uniform(-0.25 * base_delay, 0.25 * base_delay)
                delay = max(1.0, base_delay + jitter)

                logger.warning(
                    "Rate limited (429), retrying in %.1fs (attempt %d/%d, "
                    "suggested=%.1fs, backoff=%ds): %s",
                    delay, attempt + 1, self._max_retries,
                    suggested or 0.0, backoff, exc,
                )
                await asyncio.sleep(delay)
            except (APIConnectionError, APITimeoutError) as exc:
                if attempt == self._max_retries - 1:
                    raise
                backoff = _RATE_LIMIT_BASE_DELAY * (2 ** min(attempt, 3))
                jitter = random.uniform(-0.25 * backoff, 0.25 * backoff)
                delay = max(2.0, backoff + jitter)
                logger.warning(
                    "Connection error, retrying in %.1fs (attempt %d/%d): %s",
                    delay, attempt + 1, self._max_retries, exc,
                )
                await asyncio.sleep(delay)
        raise ProviderError("Provider call was not attempted (max_retries < 1)")

    async def complete(
        self, prompt: RenderedPrompt, model: LLMModel, options: GenerationOptions,
    ) -> Completion:
        kwargs: dict[str, Any] = {
            "model": model.id,
            "messages": _build_messages(prompt),
            "response_format": {"type": "json_object"},
        }
        max_tokens = min(options.max_tokens or model.max_tokens, model.max_tokens)
        kwargs["max_tokens"] = max_tokens
        for field in ("temperature", "top_p", "frequency_penalty", "presence_penalty"):
            value = getattr(options, field)
            if value is not None:
                kwargs[field] = value

        logger.debug(
            "completion model=%s template=%s prompt_len=%d",
            model.id, prompt.template_id, len(prompt.user),
        )
        try:
            response = await self._call_with_retry(**kwargs)
        except APIError as exc:
            raise ProviderError(f"{model.provider.value} call failed for {model.id}: {exc}") from exc

        usage = getattr(response, "usage", None)
        return Completion(
            text=response.choices[0].message.content or "",
            model=getattr(response, "model", None) or model.id,
            usage=TokenUsage(
                prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
            ),
        )


class ProviderRouter:
    """Sends each call to the provider registered for ``model.provider``."""

    def __init__(self, providers: dict[ProviderType, ModelProvider]) -> None:
        self._providers = dict(providers)

    @classmethod
    def from_settings(cls, settings: dict[ProviderType, ProviderSettings]) -> "ProviderRouter":
        return cls({kind: OpenAIProvider.from_settings(s) for kind, s in settings.items()})

    async def complete(
        self, prompt: RenderedPrompt, model: LLMModel, options: GenerationOptions,
    ) -> Completion:
        provider = self._providers.get(model.provider)
        if provider is None:
            raise ProviderError(f"No provider configured for {model.provider.value!r} (model {model.id})")
        return await provider.complete(prompt, model, options)


# ======================================================================
# Dry-run provider: zero API calls
# ======================================================================

_DRY_RUN_JSON: dict[str, dict[str, Any]] = {
    "character": {
        "type": "character",
        "title": "Captain Mirela Voss",
        "description": "Harbor-master who smuggles for the Thieves' Guild.",
        "confidence": "high",
        "characterData": {
            "name": "Mirela Voss",
            "personality": "Gruff, pragmatic",
            "goals": "Keep the harbor open at any cost",
            "relationships": [
                {"sourceName": "Mirela Voss", "targetName": "Thieves' Guild", "relationshipType": "ALLY_OF"},
            ],
        },
    },
    "location": {
        "type": "location",
        "title": "The Drowned Lantern",
        "description": "Half-flooded tavern on the south docks.",
        "confidence": "medium",
        "locationData": {"name": "The Drowned Lantern", "pointsOfInterest": ["Cellar door"]},
    },
    "item": {
        "type": "item",
        "title": "Tide-Glass Compass",
        "description": "Compass that points toward the nearest shipwreck.",
        "confidence": "medium",
        "itemData": {"name": "Tide-Glass Compass", "itemType": "ARTIFACT"},
    },
    "event": {
        "type": "event",
        "title": "The Harbor Fire",
        "description": "Warehouses burned the night the party arrived.",
        "confidence": "high",
        "eventData": {"name": "The Harbor Fire", "importance": 7},
    },
    "relationship": {
        "type": "relationship",
        "title": "Voss owes the Guild",
        "description": "Mirela Voss is indebted to the Thieves' Guild.",
        "confidence": "medium",
        "relationshipData": {
            "sourceName": "Mirela Voss",
            "targetName": "Thieves' Guild",
            "relationshipType": "INDEBTED_TO",
            "strength": 6,
        },
    },
    "lore": {
        "type": "lore",
        "title": "The Lantern Saints",
        "description": "Sailors pray to drowned saints for safe passage.",
        "confidence": "low",
        "loreData": {"title": "The Lantern Saints", "content": "Sailors leave lanterns on the water.", "category": "RELIGION"},
    },
    "dialog": {
        "type": "dialog",
        "title": "Voss warns the party",
        "description": "A warning line for the harbor-master.",
        "confidence": "medium",
        "dialogData": {"characterName": "Mirela Voss", "content": "Ships come and go. Questions don't.", "tone": "HOSTILE"},
    },
    "plot": {
        "type": "plot",
        "title": "Who set the fire?",
        "description": "The harbor fire was no accident.",
        "confidence": "medium",
        "plotData": {"title": "Who set the fire?", "summary": "Someone torched the warehouses.", "hooks": ["Burned ledger"]},
    },
    "note": {
        "type": "note",
        "title": "Ledger page",
        "description": "The party kept one page of the burned ledger.",
        "confidence": "high",
        "noteData": {"title": "Ledger page", "content": "Names three ships due next week.", "category": "QUEST"},
    },
}

_TYPE_RE = re.compile(r'"type":\s*"(\w+)"')


class DryRunProvider:
    """Drop-in provider that makes zero API calls.

    Detects the suggestion type from the system prompt and returns one
    canned suggestion of that type.
    """

    async def complete(
        self, prompt: RenderedPrompt, model: LLMModel, options: GenerationOptions,
    ) -> Completion:
        m = _TYPE_RE.search(prompt.system or "") or _TYPE_RE.search(prompt.user)
        canned = _DRY_RUN_JSON.get(m.group(1)) if m else None
        text = json.dumps({"suggestions": [canned] if canned else []})
        logger.info("[dry-run] %s → %s", prompt.template_id, m.group(1) if m else "none")
        return Completion(text=text, model=model.id, usage=TokenUsage())
