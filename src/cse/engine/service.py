"""SuggestionEngine — the public boundary of the package.

Wires the registries, cache, store and orchestrator together from an
``EngineConfig`` and exposes the suggestion operations plus lookup of past
analysis results.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from cse.engine.cache import ResponseCache
from cse.engine.models import ModelRegistry
from cse.engine.orchestrator import AnalysisOrchestrator, AnalysisProgress
from cse.engine.prompts import default_templates
from cse.engine.store import AnalysisResultStore, SuggestionStore
from cse.engine.templates import TemplateRegistry
from cse.schemas.analysis import AnalysisRequest, AnalysisResult, SuggestionFilter, TransitionAction
from cse.schemas.config import EngineConfig
from cse.schemas.suggestions import SuggestionBase
from cse.shared.knowledge import KnowledgeStore
from cse.shared.llm_client import ModelProvider
from cse.shared.sources import ContentSource, ContextSource

logger = logging.getLogger(__name__)


class SuggestionEngine:
    def __init__(
        self,
        config: EngineConfig,
        templates: TemplateRegistry,
        models: ModelRegistry,
        provider: ModelProvider,
        content_source: ContentSource,
        store: SuggestionStore,
        cache: ResponseCache | None = None,
        context_source: ContextSource | None = None,
        results: AnalysisResultStore | None = None,
    ) -> None:
        self.config = config
        self.templates = templates
        self.models = models
        self.store = store
        self.cache = cache
        self.results = results if results is not None else AnalysisResultStore()
        self.orchestrator = AnalysisOrchestrator(
            config=config,
            templates=templates,
            models=models,
            provider=provider,
            content_source=content_source,
            store=store,
            cache=cache,
            context_source=context_source,
        )

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        *,
        provider: ModelProvider,
        content_source: ContentSource,
        knowledge_store: KnowledgeStore | None = None,
        context_source: ContextSource | None = None,
        store_path: str | Path | None = None,
        results_path: str | Path | None = None,
    ) -> "SuggestionEngine":
        """Build an engine from config.

        Built-in templates are registered first, then ``config.templates``,
        so a configured template with a built-in id replaces it.
        """
        templates = TemplateRegistry(default_templates())
        for t in config.templates:
            templates.register(t)

        cache = None
        if config.cache.enabled:
            cache = ResponseCache(config.cache.ttl_ms, max_entries=config.cache.max_entries)

        logger.debug(
            "Engine: %d models, %d templates, cache=%s",
            len(config.models), len(templates.list()), "on" if cache is not None else "off",
        )
        return cls(
            config=config,
            templates=templates,
            models=ModelRegistry(config.models),
            provider=provider,
            content_source=content_source,
            store=SuggestionStore(knowledge_store, path=store_path),
            cache=cache,
            context_source=context_source,
            results=AnalysisResultStore(path=results_path),
        )

    async def analyze(
        self,
        request: AnalysisRequest,
        cancel_event: asyncio.Event | None = None,
        progress: AnalysisProgress | None = None,
    ) -> AnalysisResult:
        result = await self.orchestrator.analyze(request, cancel_event, progress)
        return self.results.save(result)

    def get_suggestion(self, suggestion_id: str) -> SuggestionBase:
        return self.store.get(suggestion_id)

    def list_suggestions(self, filter: SuggestionFilter | None = None) -> list[SuggestionBase]:
        return self.store.list(filter)

    async def transition_suggestion(
        self,
        suggestion_id: str,
        action: TransitionAction | str,
        payload: BaseModel | dict[str, Any] | None = None,
    ) -> SuggestionBase:
        return await self.store.transition(suggestion_id, action, payload)

    async def delete_suggestion(self, suggestion_id: str) -> None:
        await self.store.delete(suggestion_id)

    def get_analysis_result(self, result_id: str) -> AnalysisResult:
        return self.results.get(result_id)

    def list_analysis_results(
        self, context_id: str | None = None, context_type: str | None = None,
    ) -> list[AnalysisResult]:
        return self.results.list(context_id, context_type)

    def delete_analysis_result(self, result_id: str) -> None:
        self.results.delete(result_id)
