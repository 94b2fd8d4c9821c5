"""Shared test fixtures."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from cse.engine.models import ModelRegistry
from cse.engine.prompts import default_templates
from cse.engine.service import SuggestionEngine
from cse.engine.store import SuggestionStore
from cse.engine.templates import TemplateRegistry
from cse.schemas.config import EngineConfig
from cse.schemas.llm import Capability, Completion, LLMModel, TokenUsage
from cse.shared.knowledge import JsonKnowledgeStore
from cse.shared.sources import InMemoryContentSource

TRANSCRIPT_7 = """\
GM: The harbor is still smoking when you reach the Drowned Lantern.
Mirela Voss: Ships come and go. Questions don't.
Aldric: We saw the warehouses burn. Who profits from that?
"""


def suggestion_json(*items: dict) -> str:
    return json.dumps({"suggestions": list(items)})


def character(name: str, confidence: str = "high") -> dict:
    return {
        "type": "character",
        "title": name,
        "description": f"{name} appears in the session.",
        "confidence": confidence,
        "characterData": {"name": name, "personality": "Gruff"},
    }


def location(name: str, confidence: str = "high") -> dict:
    return {
        "type": "location",
        "title": name,
        "description": f"{name} is visited.",
        "confidence": confidence,
        "locationData": {"name": name, "pointsOfInterest": ["Cellar door"]},
    }


def event(name: str, confidence: str = "high") -> dict:
    return {
        "type": "event",
        "title": name,
        "description": f"{name} happened.",
        "confidence": confidence,
        "eventData": {"name": name, "importance": 7},
    }


class FakeProvider:
    """ModelProvider double: canned text (or an exception) per suggestion type."""

    def __init__(
        self,
        responses: dict[str, str | Exception] | None = None,
        *,
        delays: dict[str, float] | None = None,
    ) -> None:
        self.responses = responses or {}
        self.delays = delays or {}
        self.calls: list[tuple] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def complete(self, prompt, model, options) -> Completion:
        kind = prompt.template_id.split("-", 1)[1]
        self.calls.append((prompt, model, options))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if delay := self.delays.get(kind):
                await asyncio.sleep(delay)
            reply = self.responses.get(kind, suggestion_json())
            if isinstance(reply, Exception):
                raise reply
            return Completion(
                text=reply,
                model=model.id,
                usage=TokenUsage(prompt_tokens=100, completion_tokens=40),
            )
        finally:
            self.in_flight -= 1


@pytest.fixture
def models() -> list[LLMModel]:
    return [
        LLMModel(
            id="gpt-4o",
            name="GPT-4o",
            context_window=128000,
            max_tokens=4096,
            capabilities=frozenset({
                Capability.CHAT, Capability.COMPLETION,
                Capability.FUNCTION_CALLING, Capability.VISION,
            }),
        ),
        LLMModel(
            id="gpt-3.5-turbo",
            name="GPT-3.5 Turbo",
            context_window=16385,
            max_tokens=4096,
            capabilities=frozenset({
                Capability.CHAT, Capability.COMPLETION, Capability.FUNCTION_CALLING,
            }),
        ),
    ]


@pytest.fixture
def engine_config(models: list[LLMModel]) -> EngineConfig:
    return EngineConfig(models=models, call_timeout_s=5.0)


@pytest.fixture
def knowledge(tmp_path: Path) -> JsonKnowledgeStore:
    return JsonKnowledgeStore(tmp_path / "knowledge")


@pytest.fixture
def make_engine(engine_config: EngineConfig, knowledge: JsonKnowledgeStore):
    """Factory for a SuggestionEngine over in-memory content and a temp knowledge store."""

    def _make(
        provider, *, config: EngineConfig | None = None, cache=None, knowledge_store=None, context_source=None,
    ):
        cfg = config or engine_config
        return SuggestionEngine(
            config=cfg,
            templates=TemplateRegistry(default_templates()),
            models=ModelRegistry(cfg.models),
            provider=provider,
            content_source=InMemoryContentSource({"transcript-7": TRANSCRIPT_7}),
            store=SuggestionStore(knowledge_store or knowledge),
            cache=cache,
            context_source=context_source,
        )

    return _make


@pytest.fixture
def tmp_config(tmp_path: Path) -> Path:
    """Write a minimal valid config YAML and return its path."""
    cfg = tmp_path / "engine-config.yml"
    cfg.write_text(
        """\
models:
  - id: gpt-4o
    context_window: 128000
    max_tokens: 4096
    capabilities: [chat, completion]
default_model: gpt-4o
cache:
  ttl_ms: 5000
"""
    )
    return cfg
