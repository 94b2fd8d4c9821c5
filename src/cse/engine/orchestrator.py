"""Analysis orchestrator — turns one request into stored suggestions.

Flow per ``analyze`` call:

    prepare (sequential, errors raise to the caller)
        fetch content → per type: resolve template → render → select model
    dispatch (one task per type, at most ``max_in_flight`` calls at once)
        fingerprint → cache → provider (timeout) → parse → filter
    aggregate
        persist, suggestions in request order, per-type models/errors/token usage

Provider and parsing failures stay inside their own type; any exception a
provider raises is reported as ``ProviderError``. If every type fails the
whole call raises ``AnalysisFailedError``; cancelled types are reported in
``metadata.cancelled`` and never count as failures. Suggestions are only
persisted once every task has settled, so a call that raises leaves the
store untouched.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

from cse.engine.cache import ResponseCache, fingerprint
from cse.engine.models import ModelRegistry, estimate_tokens
from cse.engine.parsing import parse_suggestions
from cse.engine.prompts import ANALYSIS_VARIABLES
from cse.engine.store import SuggestionStore
from cse.engine.templates import TemplateRegistry, render
from cse.errors import (
    AnalysisFailedError,
    CapabilityMismatchError,
    ParsingError,
    ProviderError,
    ValidationError,
)
from cse.schemas.analysis import AnalysisMetadata, AnalysisRequest, AnalysisResult
from cse.schemas.config import EngineConfig
from cse.schemas.llm import (
    Completion,
    GenerationOptions,
    LLMModel,
    PromptTemplate,
    RenderedPrompt,
    TokenUsage,
)
from cse.schemas.suggestions import EntityRef, SuggestionBase, SuggestionType
from cse.shared.llm_client import ModelProvider
from cse.shared.sources import ContentSource, ContextSource

logger = logging.getLogger(__name__)


def _format_record(record: str | dict[str, Any]) -> str:
    if isinstance(record, str):
        return record.strip()
    return json.dumps(record, indent=2, ensure_ascii=False, default=str)


class AnalysisProgress(Protocol):
    """Optional observer for per-type dispatch (the CLI's spinner)."""

    def start_type(self, suggestion_type: SuggestionType) -> None: ...

    def finish_type(self, suggestion_type: SuggestionType, count: int, cached: bool) -> None: ...

    def fail_type(self, suggestion_type: SuggestionType, error: str) -> None: ...


@dataclass(frozen=True)
class _Job:
    suggestion_type: SuggestionType
    prompt: RenderedPrompt
    model: LLMModel
    options: GenerationOptions
    key: str


@dataclass
class _Outcome:
    suggestions: list[SuggestionBase] = field(default_factory=list)
    usage: TokenUsage = field(default_factory=TokenUsage)
    cached: bool = False


class AnalysisOrchestrator:
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
    ) -> None:
        self.config = config
        self.templates = templates
        self.models = models
        self.provider = provider
        self.content_source = content_source
        self.store = store
        self.cache = cache
        self.context_source = context_source

    # ------------------------------------------------------------------
    # Preparation
    # ------------------------------------------------------------------

    def _template_for(self, suggestion_type: SuggestionType, custom_prompt: str | None) -> PromptTemplate:
        base = self.templates.for_type(suggestion_type)
        if not custom_prompt:
            return base
        # Same system prompt, capabilities and options; only the user text changes.
        return base.model_copy(update={
            "id": f"custom-{suggestion_type.value}",
            "name": f"Custom {suggestion_type.value} prompt",
            "template": custom_prompt,
            "variables": ANALYSIS_VARIABLES,
            "version": 1,
        })

    def _select_model(
        self, template: PromptTemplate, request: AnalysisRequest, prompt: RenderedPrompt,
        options: GenerationOptions,
    ) -> LLMModel:
        required = template.required_capabilities
        if request.options.model:
            return self.models.select_model(required, request.options.model)

        for preferred in (template.default_model, self.config.default_model):
            if not preferred:
                continue
            try:
                return self.models.select_model(required, preferred)
            except CapabilityMismatchError as exc:
                logger.debug("Skipping default model for %s: %s", template.id, exc)

        return self.models.select_model(
            required,
            prompt_tokens=estimate_tokens(prompt.system, prompt.user),
            output_tokens=options.max_tokens or 0,
        )

    async def _context_text(self, ctx: EntityRef | None) -> str:
        if ctx is None:
            return "(none)"
        record = None
        if self.context_source is not None:
            record = await self.context_source.fetch_context(ctx)
        if record is None:
            return f"{ctx.type} {ctx.id}"
        return f"{ctx.type} {ctx.id}\n{_format_record(record)}"

    def _variables(
        self, request: AnalysisRequest, suggestion_type: SuggestionType, content: str, context: str,
    ) -> dict[str, str]:
        existing: list[str] = []
        if not request.options.include_existing:
            existing = self.store.accepted_titles(suggestion_type, request.context_ref)
        return {
            "content": content,
            "context": context,
            "existing": "\n".join(f"- {t}" for t in existing) or "(none)",
            "max_results": str(request.options.max_results),
            "suggestion_type": suggestion_type.value,
        }

    async def _prepare(self, request: AnalysisRequest) -> list[_Job]:
        if not request.analysis_types:
            raise ValidationError("analysis_types must name at least one suggestion type")

        content = request.content or await self.content_source.fetch_text(request.source_ref)
        if not content.strip():
            raise ValidationError(f"No content to analyze for {request.source_ref.type} {request.source_ref.id!r}")
        context = await self._context_text(request.context_ref)

        jobs = []
        for t in request.analysis_types:
            template = self._template_for(t, request.options.custom_prompt)
            prompt = render(template, self._variables(request, t, content, context))
            options = self.config.generation.merged(template.default_options)
            model = self._select_model(template, request, prompt, options)
            jobs.append(_Job(
                suggestion_type=t,
                prompt=prompt,
                model=model,
                options=options,
                key=fingerprint(prompt, model, options),
            ))
        return jobs

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _call(self, job: _Job, semaphore: asyncio.Semaphore) -> Completion:
        async with semaphore:
            logger.debug("Dispatching %s to %s", job.suggestion_type.value, job.model.id)
            try:
                return await asyncio.wait_for(
                    self.provider.complete(job.prompt, job.model, job.options),
                    timeout=self.config.call_timeout_s,
                )
            except asyncio.TimeoutError as exc:
                raise ProviderError(
                    f"{job.model.id} did not answer within {self.config.call_timeout_s:g}s"
                ) from exc
            except ProviderError:
                raise
            except Exception as exc:
                raise ProviderError(f"{job.model.id} call failed: {type(exc).__name__}: {exc}") from exc

    async def _run_job(
        self, job: _Job, request: AnalysisRequest, semaphore: asyncio.Semaphore,
    ) -> _Outcome:
        outcome = _Outcome()
        completion = self.cache.get(job.key) if self.cache is not None else None
        if completion is not None:
            logger.debug("Cache hit for %s (%s…)", job.suggestion_type.value, job.key[:12])
            outcome.cached = True
        else:
            completion = await self._call(job, semaphore)
            outcome.usage = completion.usage
            if self.cache is not None:
                self.cache.put(job.key, completion)

        parsed = parse_suggestions(completion.text, job.suggestion_type, request)

        opts = request.options
        kept = [s for s in parsed if s.confidence.at_least(opts.min_confidence)]
        if not opts.include_existing:
            taken = {t.strip().lower() for t in self.store.accepted_titles(job.suggestion_type, request.context_ref)}
            kept = [s for s in kept if s.title.strip().lower() not in taken]
        kept = kept[: opts.max_results]

        dropped = len(parsed) - len(kept)
        if dropped:
            logger.debug("Dropped %d %s suggestions after filtering", dropped, job.suggestion_type.value)

        outcome.suggestions = kept
        return outcome

    async def _dispatch(
        self,
        jobs: list[_Job],
        request: AnalysisRequest,
        cancel_event: asyncio.Event | None,
        progress: AnalysisProgress | None,
    ) -> dict[SuggestionType, asyncio.Task[_Outcome]]:
        semaphore = asyncio.Semaphore(self.config.max_in_flight)
        tasks: dict[SuggestionType, asyncio.Task[_Outcome]] = {}
        for job in jobs:
            if progress:
                progress.start_type(job.suggestion_type)
            tasks[job.suggestion_type] = asyncio.create_task(self._run_job(job, request, semaphore))

        pending: set[asyncio.Future] = set(tasks.values())
        waiter = asyncio.ensure_future(cancel_event.wait()) if cancel_event else None
        try:
            while pending:
                watch = pending | {waiter} if waiter else pending
                done, _ = await asyncio.wait(watch, return_when=asyncio.FIRST_COMPLETED)
                pending -= done
                if waiter is not None and waiter in done:
                    logger.info("Analysis %s cancelled with %d calls unfinished", request.id, len(pending))
                    break
        finally:
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
            if waiter is not None and not waiter.done():
                waiter.cancel()
        return tasks

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def analyze(
        self,
        request: AnalysisRequest,
        cancel_event: asyncio.Event | None = None,
        progress: AnalysisProgress | None = None,
    ) -> AnalysisResult:
        """Run every requested analysis type and return the combined result.

        Raises ``ValidationError``, ``CapabilityMismatchError`` or
        ``NotFoundError`` before any model is called; raises
        ``AnalysisFailedError`` if every type failed.
        """
        started = time.monotonic()
        jobs = await self._prepare(request)
        logger.info(
            "Analysis %s: %d types for %s %s",
            request.id, len(jobs), request.source_ref.type, request.source_ref.id,
        )

        tasks = await self._dispatch(jobs, request, cancel_event, progress)

        meta = AnalysisMetadata()
        outcomes: list[tuple[SuggestionType, _Outcome]] = []
        for job in jobs:
            t = job.suggestion_type
            task = tasks[t]
            if task.cancelled():
                meta.cancelled.append(t)
                if progress:
                    progress.fail_type(t, "cancelled")
                continue
            exc = task.exception()
            if exc is not None:
                if not isinstance(exc, (ProviderError, ParsingError)):
                    raise exc
                logger.warning("%s analysis failed: %s", t.value, exc)
                meta.errors[t] = str(exc)
                if progress:
                    progress.fail_type(t, str(exc))
                continue

            outcome = task.result()
            outcomes.append((t, outcome))
            meta.models[t] = job.model.id
            meta.prompt_tokens += outcome.usage.prompt_tokens
            meta.completion_tokens += outcome.usage.completion_tokens
            if outcome.cached:
                meta.cache_hits.append(t)

        meta.total_tokens = meta.prompt_tokens + meta.completion_tokens
        meta.model = next(iter(meta.models.values()), None)
        if meta.errors:
            meta.error = "; ".join(f"{t.value}: {msg}" for t, msg in meta.errors.items())
            if len(meta.errors) == len(jobs):
                raise AnalysisFailedError(
                    f"All {len(jobs)} analysis types failed: {meta.error}",
                    {t.value: msg for t, msg in meta.errors.items()},
                )

        suggestions: list[SuggestionBase] = []
        for t, outcome in outcomes:
            suggestions.extend(self.store.create(s) for s in outcome.suggestions)
            if progress:
                progress.finish_type(t, len(outcome.suggestions), outcome.cached)

        result = AnalysisResult(
            request_id=request.id,
            source_ref=request.source_ref,
            context_ref=request.context_ref,
            suggestions=suggestions,
            processing_time_ms=int((time.monotonic() - started) * 1000),
            metadata=meta,
        )
        logger.info(
            "Analysis %s done: %d suggestions, %d errors, %d cancelled, %d tokens",
            request.id, len(suggestions), len(meta.errors), len(meta.cancelled), meta.total_tokens,
        )
        return result
