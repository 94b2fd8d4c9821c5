"""Suggestion store and lifecycle state machine.

    pending  --accept-->  accepted   (materialized into the knowledge store)
    pending  --reject-->  rejected
    pending  --modify-->  modified   (payload replaced)
    modified --accept-->  accepted   (edited payload materialized)
    modified --reject-->  rejected

``accepted`` and ``rejected`` are terminal. Transitions on one id are
serialized by a per-id ``asyncio.Lock``; different ids never contend.
A caller that loses a race finds the suggestion already moved on and gets
``SuggestionStateError``.

With a ``path`` the store is mirrored to a JSON file after every mutation
and reloaded from it on construction. ``AnalysisResultStore`` keeps past
analysis runs the same way so they can be looked up by id or context.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from cse.errors import NotFoundError, SuggestionStateError, ValidationError
from cse.schemas.analysis import AnalysisResult, SuggestionFilter, TransitionAction
from cse.schemas.suggestions import (
    PAYLOAD_CLASSES,
    SUGGESTION_ADAPTER,
    EntityRef,
    SuggestionBase,
    SuggestionStatus,
    SuggestionType,
)
from cse.shared.knowledge import KnowledgeStore

logger = logging.getLogger(__name__)

_TERMINAL = frozenset({SuggestionStatus.ACCEPTED, SuggestionStatus.REJECTED})

_P, _A, _R, _M = (
    SuggestionStatus.PENDING,
    SuggestionStatus.ACCEPTED,
    SuggestionStatus.REJECTED,
    SuggestionStatus.MODIFIED,
)

TRANSITIONS: dict[tuple[SuggestionStatus, TransitionAction], SuggestionStatus] = {
    (_P, TransitionAction.ACCEPT): _A,
    (_P, TransitionAction.REJECT): _R,
    (_P, TransitionAction.MODIFY): _M,
    (_M, TransitionAction.ACCEPT): _A,
    (_M, TransitionAction.REJECT): _R,
}


class SuggestionStore:
    def __init__(
        self,
        knowledge_store: KnowledgeStore | None = None,
        *,
        path: str | Path | None = None,
    ) -> None:
        self._knowledge = knowledge_store
        self._path = Path(path) if path else None
        self._items: dict[str, SuggestionBase] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        if self._path and self._path.exists():
            self._load()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> None:
        raw = json.loads(self._path.read_text(encoding="utf-8"))  # type: ignore[union-attr]
        for entry in raw:
            s = SUGGESTION_ADAPTER.validate_python(entry)
            self._items[s.id] = s
        logger.debug("Loaded %d suggestions from %s", len(self._items), self._path)

    def _save(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        data = [s.model_dump(mode="json") for s in self._items.values()]
        self._path.write_text(json.dumps(data, indent=2), encoding="utf-8")

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def create(self, suggestion: SuggestionBase) -> SuggestionBase:
        """Store a new suggestion. It always starts ``pending``."""
        if suggestion.id in self._items:
            raise ValidationError(f"Suggestion {suggestion.id!r} already exists")
        now = datetime.now(timezone.utc)
        stored = suggestion.model_copy(
            update={"status": SuggestionStatus.PENDING, "updated_at": now}, deep=True,
        )
        self._items[stored.id] = stored
        self._save()
        return stored

    def get(self, suggestion_id: str) -> SuggestionBase:
        try:
            return self._items[suggestion_id]
        except KeyError:
            raise NotFoundError(f"Suggestion {suggestion_id!r} not found") from None

    def list(self, filter: SuggestionFilter | None = None) -> list[SuggestionBase]:
        """Matching suggestions, newest first (ties keep insertion order)."""
        items = [s for s in self._items.values() if filter is None or filter.matches(s)]
        return sorted(items, key=lambda s: s.created_at, reverse=True)

    def accepted_titles(
        self, suggestion_type: SuggestionType, context_ref: EntityRef | None,
    ) -> list[str]:
        """Titles already accepted for ``suggestion_type`` within one context."""
        accepted = self.list(SuggestionFilter(
            types=[suggestion_type], statuses=[SuggestionStatus.ACCEPTED],
        ))
        return [s.title for s in accepted if s.context_ref == context_ref]

    def __len__(self) -> int:
        return len(self._items)

    def _lock_for(self, suggestion_id: str) -> asyncio.Lock:
        lock = self._locks.get(suggestion_id)
        if lock is None:
            lock = self._locks[suggestion_id] = asyncio.Lock()
        return lock

    async def delete(self, suggestion_id: str) -> None:
        """Remove a suggestion regardless of status."""
        self.get(suggestion_id)
        async with self._lock_for(suggestion_id):
            if self._items.pop(suggestion_id, None) is None:
                raise NotFoundError(f"Suggestion {suggestion_id!r} not found")
            self._save()
        self._locks.pop(suggestion_id, None)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def transition(
        self,
        suggestion_id: str,
        action: TransitionAction | str,
        payload: BaseModel | dict[str, Any] | None = None,
    ) -> SuggestionBase:
        """Apply ``action`` and return the updated suggestion.

        ``modify`` needs ``payload`` (a dict or the variant's payload model).
        If materializing an accept fails, the stored suggestion is left
        exactly as it was and the knowledge store's exception propagates.
        """
        try:
            action = TransitionAction(action)
        except ValueError:
            valid = ", ".join(a.value for a in TransitionAction)
            raise ValidationError(f"Unknown action {action!r}; expected one of: {valid}") from None
        self.get(suggestion_id)
        async with self._lock_for(suggestion_id):
            current = self.get(suggestion_id)
            status = SuggestionStatus(current.status)
            target = TRANSITIONS.get((status, action))
            if target is None:
                raise SuggestionStateError(
                    f"Cannot {action.value} suggestion {suggestion_id!r} in status {status.value!r}"
                )

            now = datetime.now(timezone.utc)
            changes: dict[str, Any] = {"status": target, "updated_at": now}

            if action is TransitionAction.MODIFY:
                changes["payload"] = self._coerce_payload(current, payload)
            elif payload is not None:
                raise ValidationError(f"{action.value} does not take a payload")

            if action is TransitionAction.ACCEPT:
                if self._knowledge is None:
                    raise SuggestionStateError("No knowledge store configured; cannot accept")
                ref = await self._knowledge.materialize(current)
                changes["metadata"] = {**current.metadata, "materialized": ref.model_dump()}

            updated = current.model_copy(update=changes)
            self._items[suggestion_id] = updated
            self._save()

        # Nothing can move a terminal suggestion again.
        if target in _TERMINAL:
            self._locks.pop(suggestion_id, None)

        logger.info("Suggestion %s: %s → %s", suggestion_id, status.value, target.value)
        return updated

    @staticmethod
    def _coerce_payload(
        current: SuggestionBase, payload: BaseModel | dict[str, Any] | None,
    ) -> BaseModel:
        if payload is None:
            raise ValidationError("modify requires a payload")
        payload_cls = PAYLOAD_CLASSES[SuggestionType(current.type)]
        if isinstance(payload, BaseModel):
            if not isinstance(payload, payload_cls):
                raise ValidationError(
                    f"{type(payload).__name__} is not a valid payload for a {current.type} suggestion"
                )
            return payload
        try:
            return payload_cls.model_validate(payload)
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid {current.type} payload: {exc}") from exc


class AnalysisResultStore:
    """Past ``AnalysisResult`` records, optionally mirrored to a JSON file."""

    def __init__(self, *, path: str | Path | None = None) -> None:
        self._path = Path(path) if path else None
        self._results: dict[str, AnalysisResult] = {}
        if self._path and self._path.exists():
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            for entry in raw:
                result = AnalysisResult.model_validate(entry)
                self._results[result.id] = result
            logger.debug("Loaded %d analysis results from %s", len(self._results), self._path)

    def _save(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        data = [r.model_dump(mode="json") for r in self._results.values()]
        self._path.write_text(json.dumps(data, indent=2), encoding="utf-8")

    def save(self, result: AnalysisResult) -> AnalysisResult:
        self._results[result.id] = result
        self._save()
        return result

    def get(self, result_id: str) -> AnalysisResult:
        try:
            return self._results[result_id]
        except KeyError:
            raise NotFoundError(f"Analysis result {result_id!r} not found") from None

    def list(self, context_id: str | None = None, context_type: str | None = None) -> list[AnalysisResult]:
        """Results for one context (or all of them), newest first."""
        results = [
            r for r in self._results.values()
            if (context_id is None or (r.context_ref is not None and r.context_ref.id == context_id))
            and (context_type is None or (r.context_ref is not None and r.context_ref.type == context_type))
        ]
        return sorted(results, key=lambda r: r.created_at, reverse=True)

    def delete(self, result_id: str) -> None:
        if self._results.pop(result_id, None) is None:
            raise NotFoundError(f"Analysis result {result_id!r} not found")
        self._save()

    def __len__(self) -> int:
        return len(self._results)
