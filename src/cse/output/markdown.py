"""Markdown report builder — renders an AnalysisResult as a readable document."""

from __future__ import annotations

from pydantic import BaseModel

from cse.schemas.analysis import AnalysisResult
from cse.schemas.suggestions import SuggestionBase, SuggestionType

_CONFIDENCE_BADGE = {"high": "🟢 high", "medium": "🟡 medium", "low": "🔴 low"}


def render_markdown_result(result: AnalysisResult, *, title: str = "") -> str:
    """Render an AnalysisResult into a Markdown string."""
    sections: list[str] = []

    sections.append(f"# {title or 'Content Suggestions'}\n")
    sections.append(f"*Generated: {result.created_at:%Y-%m-%d %H:%M:%S} UTC*\n")

    meta = result.metadata
    sections.append("## Run Summary\n")
    sections.append(f"- **Request:** {result.request_id}")
    sections.append(f"- **Suggestions:** {len(result.suggestions)}")
    sections.append(f"- **Processing time:** {result.processing_time_ms} ms")
    if meta.models:
        used = ", ".join(f"{t.value} → {m}" for t, m in meta.models.items())
        sections.append(f"- **Models:** {used}")
    sections.append(
        f"- **Tokens:** {meta.total_tokens:,} "
        f"({meta.prompt_tokens:,} prompt / {meta.completion_tokens:,} completion)"
    )
    if meta.cache_hits:
        sections.append(f"- **Served from cache:** {', '.join(t.value for t in meta.cache_hits)}")
    sections.append("")

    if meta.errors or meta.cancelled:
        sections.append("## Incomplete Types\n")
        for t, msg in meta.errors.items():
            sections.append(f"- **{t.value}** failed: {msg}")
        for t in meta.cancelled:
            sections.append(f"- **{t.value}** cancelled")
        sections.append("")

    by_type: dict[SuggestionType, list[SuggestionBase]] = {}
    for s in result.suggestions:
        by_type.setdefault(SuggestionType(s.type), []).append(s)

    if not by_type:
        sections.append("*No suggestions.*\n")

    for t, items in by_type.items():
        sections.append(f"## {t.value.capitalize()} ({len(items)})\n")
        for s in items:
            sections.append(_render_suggestion(s))

    return "\n".join(sections)


def _render_suggestion(s: SuggestionBase) -> str:
    lines = [f"### {s.title}\n"]
    lines.append(f"*{_CONFIDENCE_BADGE.get(s.confidence.value, s.confidence.value)} · {s.status.value}*\n")
    if s.description:
        lines.append(f"{s.description}\n")
    lines.extend(_render_payload(s.payload))  # type: ignore[attr-defined]
    lines.append("")
    return "\n".join(lines)


def _render_payload(payload: BaseModel) -> list[str]:
    lines = []
    for name, value in payload.model_dump(exclude_none=True).items():
        if value in ("", [], {}):
            continue
        label = name.replace("_", " ").capitalize()
        if isinstance(value, list):
            lines.append(f"- **{label}:**")
            for item in value:
                if isinstance(item, dict):
                    item = ", ".join(f"{k}: {v}" for k, v in item.items() if v not in (None, "", []))
                lines.append(f"  - {item}")
        else:
            lines.append(f"- **{label}:** {value}")
    return lines
