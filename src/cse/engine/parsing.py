"""Decoding model output into typed suggestions."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from cse.errors import ParsingError
from cse.schemas.analysis import AnalysisRequest
from cse.schemas.suggestions import (
    PAYLOAD_CLASSES,
    PAYLOAD_KEYS,
    SUGGESTION_CLASSES,
    ConfidenceLevel,
    SuggestionBase,
    SuggestionType,
)

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?```", re.DOTALL)


def extract_json(text: str) -> Any:
    """Extract a JSON object or array from text that may contain markdown fences."""
    text = text.strip()

    # 1. Clean JSON, possibly with trailing chatter
    if text[:1] in ("{", "["):
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            try:
                obj, _ = json.JSONDecoder().raw_decode(text)
                return obj
            except json.JSONDecodeError:
                pass

    # 2. ```json ... ``` or ``` ... ``` fenced blocks
    match = _FENCE_RE.search(text)
    if match:
        try:
            return json.loads(match.group(1).strip())
        except json.JSONDecodeError:
            pass

    # 3. First { or [ that starts a decodable value
    for opener in ("{", "["):
        start = text.find(opener)
        if start == -1:
            continue
        try:
            obj, _ = json.JSONDecoder().raw_decode(text, idx=start)
            return obj
        except json.JSONDecodeError:
            pass

    raise ParsingError(
        f"Could not extract JSON from model response (length={len(text)}). "
        f"First 300 chars: {text[:300]!r}"
    )


def coerce_confidence(value: Any) -> ConfidenceLevel:
    """Map whatever the model said about confidence onto low/medium/high.

    Labels are matched case-insensitively. Numbers in [0, 1] map
    ``< 0.4`` → low, ``< 0.75`` → medium, otherwise high; numbers in (1, 10]
    are read as a 1–10 score and divided by 10 first. Anything else is
    medium.
    """
    if isinstance(value, ConfidenceLevel):
        return value
    if isinstance(value, str):
        label = value.strip().lower()
        try:
            return ConfidenceLevel(label)
        except ValueError:
            try:
                value = float(label)
            except ValueError:
                return ConfidenceLevel.MEDIUM
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return ConfidenceLevel.MEDIUM
    score = float(value)
    if 1 < score <= 10:
        score /= 10
    if not 0 <= score <= 1:
        return ConfidenceLevel.MEDIUM
    if score < 0.4:
        return ConfidenceLevel.LOW
    if score < 0.75:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.HIGH


def _items(data: Any) -> list[Any]:
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        inner = data.get("suggestions")
        if isinstance(inner, list):
            return inner
        if "type" in data or "title" in data:
            return [data]
    raise ParsingError(f"Expected a list of suggestions, got {type(data).__name__}")


def _fallback_payload(suggestion_type: SuggestionType, title: str, description: str) -> dict[str, Any] | None:
    """Minimal payload built from title/description when the model omitted it."""
    if suggestion_type in (
        SuggestionType.CHARACTER, SuggestionType.LOCATION,
        SuggestionType.ITEM, SuggestionType.EVENT,
    ):
        return {"name": title, "description": description}
    if suggestion_type in (SuggestionType.LORE, SuggestionType.NOTE):
        return {"title": title, "content": description}
    if suggestion_type == SuggestionType.PLOT:
        return {"title": title, "summary": description}
    return None


def _build_one(
    item: Any, suggestion_type: SuggestionType, request: AnalysisRequest,
) -> SuggestionBase:
    if not isinstance(item, dict):
        raise ValueError(f"suggestion must be an object, got {type(item).__name__}")

    declared = item.get("type") or suggestion_type.value
    if str(declared).lower() != suggestion_type.value:
        raise ValueError(f"expected type {suggestion_type.value!r}, got {declared!r}")

    title = str(item.get("title") or "").strip()
    description = str(item.get("description") or "").strip()

    raw_payload = item.get(PAYLOAD_KEYS[suggestion_type])
    if raw_payload is None:
        raw_payload = item.get("payload")
    if raw_payload is None:
        raw_payload = _fallback_payload(suggestion_type, title, description)
    if raw_payload is None:
        raise ValueError(f"missing {PAYLOAD_KEYS[suggestion_type]}")

    payload = PAYLOAD_CLASSES[suggestion_type].model_validate(raw_payload)
    cls = SUGGESTION_CLASSES[suggestion_type]
    suggestion = cls(
        title=title or "Untitled suggestion",
        description=description,
        confidence=coerce_confidence(item.get("confidence")),
        source_ref=request.source_ref,
        context_ref=request.context_ref,
        metadata=item.get("metadata") if isinstance(item.get("metadata"), dict) else {},
        payload=payload,
    )
    return suggestion


def parse_suggestions(
    raw: str, suggestion_type: SuggestionType, request: AnalysisRequest,
) -> list[SuggestionBase]:
    """Decode ``raw`` into pending suggestions of ``suggestion_type``.

    Individual malformed entries are skipped with a warning. If the text is
    not JSON, or every entry is malformed, ``ParsingError`` is raised and
    nothing from this output should be persisted.
    """
    items = _items(extract_json(raw))

    suggestions: list[SuggestionBase] = []
    problems: list[str] = []
    for i, item in enumerate(items):
        try:
            suggestions.append(_build_one(item, suggestion_type, request))
        except (ValueError, PydanticValidationError) as exc:
            problems.append(f"#{i}: {exc}")
            logger.warning("Skipping malformed %s suggestion #%d: %s", suggestion_type.value, i, exc)

    if items and not suggestions:
        raise ParsingError(
            f"None of the {len(items)} {suggestion_type.value} suggestions matched the schema: "
            + "; ".join(problems)[:500]
        )
    return suggestions
