"""Typer CLI — ``cse analyze``, ``cse suggestions`` and friends."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from cse.config import load_config
from cse.errors import EngineError

if TYPE_CHECKING:
    from cse.engine.store import SuggestionStore
    from cse.schemas.analysis import AnalysisRequest
    from cse.schemas.config import EngineConfig

# Load .env file from project root (if it exists)
load_dotenv()

app = typer.Typer(
    name="cse",
    help="Content Suggestion Engine — turn campaign session text into reviewable suggestions.",
    no_args_is_help=True,
)
console = Console()

_DEFAULT_STORE = Path("output/suggestions.json")
_DEFAULT_KNOWLEDGE = Path("output/knowledge")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
    )
    # httpx logs every HTTP request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _load_or_exit(config: Path):
    try:
        return load_config(config)
    except Exception as exc:
        console.print(f"[red]Config validation failed:[/] {exc}")
        raise typer.Exit(code=1)


@app.command()
def validate(
    config: Path = typer.Option(..., "--config", "-c", help="Path to engine-config.yml"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Validate a configuration file without running an analysis."""
    _setup_logging(verbose)
    cfg = _load_or_exit(config)

    console.print("[green]Config is valid![/]\n")
    console.print(f"  Models:        {len(cfg.models)}")
    console.print(f"  Default model: {cfg.default_model or '(auto)'}")
    console.print(f"  Templates:     {len(cfg.templates)} configured (+ built-ins)")
    console.print(f"  Cache:         {'on' if cfg.cache.enabled else 'off'} (ttl {cfg.cache.ttl_ms} ms)")
    console.print(f"  In flight:     {cfg.max_in_flight}")
    console.print(f"  Call timeout:  {cfg.call_timeout_s:g}s")


@app.command()
def models(
    config: Path = typer.Option(..., "--config", "-c", help="Path to engine-config.yml"),
) -> None:
    """List the models the engine can dispatch to."""
    from cse.engine.models import ModelRegistry

    cfg = _load_or_exit(config)
    table = Table(title="Models")
    table.add_column("Id", style="cyan")
    table.add_column("Provider")
    table.add_column("Context", justify="right")
    table.add_column("Max out", justify="right")
    table.add_column("Capabilities")
    table.add_column("Available")
    for m in ModelRegistry(cfg.models).list_models():
        table.add_row(
            m.id + (" *" if m.id == cfg.default_model else ""),
            m.provider.value,
            f"{m.context_window:,}",
            f"{m.max_tokens:,}",
            ", ".join(sorted(c.value for c in m.capabilities)),
            "[green]yes[/]" if m.is_available else "[red]no[/]",
        )
    console.print(table)


@app.command()
def analyze(
    input: Path = typer.Argument(..., help="Text or Markdown file to analyze (e.g. a session transcript)."),
    config: Path = typer.Option(..., "--config", "-c", help="Path to engine-config.yml"),
    types: list[str] = typer.Option(
        ["character", "location", "event"], "--type", "-t",
        help="Suggestion type to produce (repeatable).",
    ),
    source_type: str = typer.Option("transcript", "--source-type", help="Kind of source the file represents."),
    context: str = typer.Option("", "--context", help="Context reference as TYPE:ID, e.g. campaign:c-1."),
    context_data: Path = typer.Option(
        None, "--context-data", help="JSON file with the context record (campaign, session or world).",
    ),
    max_results: int = typer.Option(10, "--max-results", "-n"),
    min_confidence: str = typer.Option("low", "--min-confidence", help="low, medium or high."),
    model: str = typer.Option(None, "--model", "-m", help="Force a specific model id."),
    include_existing: bool = typer.Option(False, "--include-existing", help="Keep suggestions already accepted."),
    output: Path = typer.Option(Path("output"), "--output", "-o", help="Directory for result.json."),
    store: Path = typer.Option(_DEFAULT_STORE, "--store", help="Suggestion store file."),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Use canned model output (no API calls)."),
) -> None:
    """Analyze a text file and store the resulting suggestions as pending.

    Example:

        cse analyze sessions/transcript-7.md -c config/engine-config.yml -t character -t item
    """
    from cse.schemas.analysis import AnalysisOptions, AnalysisRequest
    from cse.schemas.suggestions import EntityRef

    _setup_logging(verbose)
    cfg = _load_or_exit(config)

    if not input.is_file():
        console.print(f"[red]Input file not found:[/] {input}")
        raise typer.Exit(code=1)

    context_ref = None
    if context:
        ctx_type, _, ctx_id = context.partition(":")
        if not ctx_id:
            console.print("[red]--context must look like TYPE:ID[/]")
            raise typer.Exit(code=1)
        context_ref = EntityRef(id=ctx_id, type=ctx_type)

    context_record = None
    if context_data is not None:
        if context_ref is None:
            console.print("[red]--context-data needs --context TYPE:ID[/]")
            raise typer.Exit(code=1)
        try:
            context_record = json.loads(context_data.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            console.print(f"[red]Cannot read context data:[/] {exc}")
            raise typer.Exit(code=1)

    try:
        request = AnalysisRequest(
            source_ref=EntityRef(id=input.stem, type=source_type),
            context_ref=context_ref,
            analysis_types=types,
            content=input.read_text(encoding="utf-8"),
            options=AnalysisOptions(
                max_results=max_results,
                min_confidence=min_confidence.lower(),
                include_existing=include_existing,
                model=model,
            ),
        )
    except ValueError as exc:
        console.print(f"[red]Invalid request:[/] {exc}")
        raise typer.Exit(code=1)

    if dry_run:
        console.print("[yellow]DRY-RUN mode — no API calls will be made.[/]\n")

    console.print(f"[bold]Analyzing:[/] {input}\n")
    asyncio.run(_run_analysis(
        cfg, request, input,
        output=output, store=store, context_record=context_record, dry_run=dry_run,
    ))


async def _run_analysis(
    cfg: EngineConfig,
    request: AnalysisRequest,
    input: Path,
    *,
    output: Path,
    store: Path,
    context_record: dict | str | None = None,
    dry_run: bool = False,
) -> None:
    from openai import OpenAIError

    from cse.engine.service import SuggestionEngine
    from cse.output.markdown import render_markdown_result
    from cse.shared.knowledge import JsonKnowledgeStore
    from cse.shared.llm_client import DryRunProvider, ProviderRouter
    from cse.shared.progress import AnalysisProgress
    from cse.shared.sources import FileContentSource, InMemoryContextSource

    try:
        provider = DryRunProvider() if dry_run else ProviderRouter.from_settings(cfg.providers)
    except OpenAIError as exc:
        # Raised by the SDK when no API key is set for a provider.
        console.print(f"[red]Cannot create model client:[/] {exc}")
        raise typer.Exit(code=1)

    context_source = InMemoryContextSource()
    if context_record is not None and request.context_ref is not None:
        context_source.add(request.context_ref.type, request.context_ref.id, context_record)

    engine = SuggestionEngine.from_config(
        cfg,
        provider=provider,
        content_source=FileContentSource(input.parent),
        knowledge_store=JsonKnowledgeStore(_DEFAULT_KNOWLEDGE),
        context_source=context_source,
        store_path=store,
        results_path=output / "results.json",
    )

    try:
        with AnalysisProgress() as progress:
            progress.print_phase(f"Analysis: {', '.join(t.value for t in request.analysis_types)}")
            result = await engine.analyze(request, progress=progress)
    except EngineError as exc:
        console.print(f"[red]Analysis failed:[/] {exc}")
        raise typer.Exit(code=1)

    _print_suggestions(result.suggestions, title=f"{len(result.suggestions)} new suggestions")
    meta = result.metadata
    if meta.error:
        console.print(f"[yellow]Partial result:[/] {meta.error}")
    console.print(
        f"[dim]{meta.total_tokens:,} tokens · {result.processing_time_ms} ms"
        f"{' · cached: ' + ', '.join(t.value for t in meta.cache_hits) if meta.cache_hits else ''}[/]"
    )

    output.mkdir(parents=True, exist_ok=True)
    result_path = output / "result.json"
    result_path.write_text(result.model_dump_json(indent=2))
    console.print(f"\n[green]Result written to:[/] {result_path}")

    md_path = output / "suggestions.md"
    md_path.write_text(render_markdown_result(result, title=f"Suggestions for {input.name}"))
    console.print(f"[green]Markdown written to:[/] {md_path}")
    console.print(f"[green]Suggestions stored in:[/] {store}")


def _print_suggestions(suggestions: list, *, title: str) -> None:
    table = Table(title=title)
    table.add_column("Id", style="dim", no_wrap=True)
    table.add_column("Type", style="cyan")
    table.add_column("Title")
    table.add_column("Confidence")
    table.add_column("Status")
    for s in suggestions:
        table.add_row(s.id[:8], s.type, s.title, s.confidence.value, s.status.value)
    console.print(table)


@app.command()
def suggestions(
    store: Path = typer.Option(_DEFAULT_STORE, "--store", help="Suggestion store file."),
    type: list[str] = typer.Option(None, "--type", "-t", help="Only these types (repeatable)."),
    status: list[str] = typer.Option(None, "--status", "-s", help="Only these statuses (repeatable)."),
    search: str = typer.Option(None, "--search", help="Case-insensitive text in title or description."),
) -> None:
    """List stored suggestions, newest first."""
    from cse.engine.store import SuggestionStore
    from cse.schemas.analysis import SuggestionFilter

    try:
        flt = SuggestionFilter(types=type or [], statuses=status or [], search=search)
    except ValueError as exc:
        console.print(f"[red]Invalid filter:[/] {exc}")
        raise typer.Exit(code=1)

    items = SuggestionStore(path=store).list(flt)
    _print_suggestions(items, title=f"{len(items)} suggestions")


@app.command()
def results(
    output: Path = typer.Option(Path("output"), "--output", "-o", help="Directory holding results.json."),
    context: str = typer.Option("", "--context", help="Only runs for this context, as TYPE:ID."),
    delete: str = typer.Option(None, "--delete", help="Delete the analysis result with this id."),
) -> None:
    """List past analysis runs, newest first."""
    from cse.engine.store import AnalysisResultStore

    result_store = AnalysisResultStore(path=output / "results.json")
    if delete:
        try:
            result_store.delete(delete)
        except EngineError as exc:
            console.print(f"[red]Cannot delete:[/] {exc}")
            raise typer.Exit(code=1)
        console.print(f"[green]Deleted analysis result[/] {delete}")
        return

    ctx_type, _, ctx_id = context.partition(":")
    runs = result_store.list(ctx_id or None, ctx_type or None)

    table = Table(title=f"{len(runs)} analysis runs")
    table.add_column("Id", style="dim", no_wrap=True)
    table.add_column("Created")
    table.add_column("Context")
    table.add_column("Suggestions", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Errors")
    for r in runs:
        ctx = f"{r.context_ref.type}:{r.context_ref.id}" if r.context_ref else "-"
        errors = ", ".join(t.value for t in r.metadata.errors) or "-"
        table.add_row(
            r.id, r.created_at.strftime("%Y-%m-%d %H:%M"), ctx,
            str(len(r.suggestions)), f"{r.metadata.total_tokens:,}", errors,
        )
    console.print(table)


def _resolve_id(store: SuggestionStore, prefix: str) -> str:
    """Accept a full id or the 8-character prefix shown in tables."""
    matches = [s.id for s in store.list() if s.id.startswith(prefix)]
    if len(matches) != 1:
        reason = "No" if not matches else "Ambiguous"
        console.print(f"[red]{reason} suggestion matching[/] {prefix!r}")
        raise typer.Exit(code=1)
    return matches[0]


def _transition(suggestion_id: str, action: str, store: Path, knowledge: Path, payload: dict | None = None) -> None:
    from cse.engine.store import SuggestionStore
    from cse.shared.knowledge import JsonKnowledgeStore

    s = SuggestionStore(JsonKnowledgeStore(knowledge), path=store)
    full_id = _resolve_id(s, suggestion_id)
    try:
        updated = asyncio.run(s.transition(full_id, action, payload))
    except EngineError as exc:
        console.print(f"[red]Cannot {action}:[/] {exc}")
        raise typer.Exit(code=1)

    console.print(f"[green]{updated.title}[/] is now [bold]{updated.status.value}[/]")
    if ref := updated.metadata.get("materialized"):
        console.print(f"  Materialized as {ref['type']} {ref['id']}")


@app.command()
def accept(
    suggestion_id: str = typer.Argument(..., help="Suggestion id (or its first 8 characters)."),
    store: Path = typer.Option(_DEFAULT_STORE, "--store"),
    knowledge: Path = typer.Option(_DEFAULT_KNOWLEDGE, "--knowledge", help="Knowledge store directory."),
) -> None:
    """Accept a suggestion and write it into the knowledge store."""
    _transition(suggestion_id, "accept", store, knowledge)


@app.command()
def reject(
    suggestion_id: str = typer.Argument(..., help="Suggestion id (or its first 8 characters)."),
    store: Path = typer.Option(_DEFAULT_STORE, "--store"),
) -> None:
    """Reject a suggestion."""
    _transition(suggestion_id, "reject", store, _DEFAULT_KNOWLEDGE)


@app.command()
def modify(
    suggestion_id: str = typer.Argument(..., help="Suggestion id (or its first 8 characters)."),
    payload: Path = typer.Option(..., "--payload", "-p", help="JSON file with the replacement payload."),
    store: Path = typer.Option(_DEFAULT_STORE, "--store"),
) -> None:
    """Replace a pending suggestion's payload with an edited one."""
    if not payload.is_file():
        console.print(f"[red]Payload file not found:[/] {payload}")
        raise typer.Exit(code=1)
    try:
        data = json.loads(payload.read_text())
    except json.JSONDecodeError as exc:
        console.print(f"[red]Payload is not valid JSON:[/] {exc}")
        raise typer.Exit(code=1)
    _transition(suggestion_id, "modify", store, _DEFAULT_KNOWLEDGE, data)


@app.command()
def render(
    output: Path = typer.Option(..., "--output", "-o", help="Output directory from a previous run (must contain result.json)."),
) -> None:
    """Re-render suggestions.md from a saved result.json.

    Example:

        cse render --output ./output
    """
    from cse.output.markdown import render_markdown_result
    from cse.schemas.analysis import AnalysisResult

    if not (output / "result.json").exists():
        console.print(f"[red]No result.json found in {output}[/]")
        console.print("Run [bold]cse analyze[/] first — it saves result.json at the end.")
        raise typer.Exit(code=1)

    result = AnalysisResult.model_validate_json((output / "result.json").read_text())
    md_path = output / "suggestions.md"
    md_path.write_text(render_markdown_result(result))
    console.print(f"[green]Markdown written to:[/] {md_path}")
