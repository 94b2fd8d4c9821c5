"""Pydantic models for analysis requests, results and suggestion queries."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from cse.schemas.suggestions import (
    ConfidenceLevel,
    ContentSuggestion,
    EntityRef,
    SuggestionBase,
    SuggestionStatus,
    SuggestionType,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class AnalysisOptions(BaseModel):
    max_results: int = Field(default=10, gt=0)
    min_confidence: ConfidenceLevel = ConfidenceLevel.LOW
    include_existing: bool = False  # keep suggestions duplicating accepted ones
    model: str | None = None
    custom_prompt: str | None = None


class AnalysisRequest(BaseModel):
    """What to analyze and which suggestion types to produce.

    ``content`` is optional inline text; when empty the orchestrator asks the
    ``ContentSource`` for the text behind ``source_ref``.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    source_ref: EntityRef
    context_ref: EntityRef | None = None
    analysis_types: list[SuggestionType]
    content: str = ""
    options: AnalysisOptions = AnalysisOptions()

    @field_validator("analysis_types")
    @classmethod
    def dedupe_types(cls, v: list[SuggestionType]) -> list[SuggestionType]:
        # Order is kept so results are grouped in request order.
        return list(dict.fromkeys(v))


class AnalysisMetadata(BaseModel):
    model: str | None = None
    models: dict[SuggestionType, str] = {}
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    error: str | None = None
    errors: dict[SuggestionType, str] = {}
    cancelled: list[SuggestionType] = []
    cache_hits: list[SuggestionType] = []


class AnalysisResult(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    request_id: str
    source_ref: EntityRef | None = None
    context_ref: EntityRef | None = None
    suggestions: list[ContentSuggestion] = []
    created_at: datetime = Field(default_factory=_now)
    processing_time_ms: int = 0
    metadata: AnalysisMetadata = AnalysisMetadata()

    @property
    def partial(self) -> bool:
        return bool(self.metadata.errors or self.metadata.cancelled)


class SuggestionFilter(BaseModel):
    """Criteria for ``SuggestionStore.list``; empty fields match everything."""

    types: list[SuggestionType] = []
    statuses: list[SuggestionStatus] = []
    confidences: list[ConfidenceLevel] = []
    source_id: str | None = None
    source_type: str | None = None
    context_id: str | None = None
    context_type: str | None = None
    created_after: datetime | None = None
    created_before: datetime | None = None
    search: str | None = None

    def matches(self, s: SuggestionBase) -> bool:
        if self.types and s.type not in self.types:
            return False
        if self.statuses and s.status not in self.statuses:
            return False
        if self.confidences and s.confidence not in self.confidences:
            return False
        if not _ref_matches(s.source_ref, self.source_id, self.source_type):
            return False
        if not _ref_matches(s.context_ref, self.context_id, self.context_type):
            return False
        if self.created_after and s.created_at <= self.created_after:
            return False
        if self.created_before and s.created_at >= self.created_before:
            return False
        if self.search:
            needle = self.search.lower()
            if needle not in s.title.lower() and needle not in s.description.lower():
                return False
        return True


def _ref_matches(ref: EntityRef | None, ref_id: str | None, ref_type: str | None) -> bool:
    if ref_id is None and ref_type is None:
        return True
    if ref is None:
        return False
    if ref_id is not None and ref.id != ref_id:
        return False
    if ref_type is not None and ref.type != ref_type:
        return False
    return True


class TransitionAction(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"
    MODIFY = "modify"
