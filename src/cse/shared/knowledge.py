"""Knowledge stores — where accepted suggestions are materialized.

The suggestion store only depends on the ``KnowledgeStore`` protocol:

    async def materialize(self, suggestion: SuggestionBase) -> EntityRef: ...

``JsonKnowledgeStore`` keeps one JSON file per entity kind under a base
directory. It stands in for the graph-backed store in the CLI and tests.

Directory layout:

    {base}/
      characters.json      ← list of entity dicts, upserted by name
      locations.json
      relationships.json   ← upserted by (source, type, target)
      ...
"""

from __future__ import annotations

import json
import logging
import uuid
from pathlib import Path
from typing import Any, Protocol

from cse.schemas.suggestions import (
    EntityRef,
    RelationshipData,
    SuggestionBase,
    SuggestionType,
    payload_name,
)

logger = logging.getLogger(__name__)


class KnowledgeStore(Protocol):
    async def materialize(self, suggestion: SuggestionBase) -> EntityRef: ...


def _natural_key(suggestion: SuggestionBase) -> str:
    payload = suggestion.payload  # type: ignore[attr-defined]
    if isinstance(payload, RelationshipData):
        return "|".join(
            (payload.source_name.lower(), payload.relationship_type.upper(), payload.target_name.lower())
        )
    return payload_name(suggestion).strip().lower()


class JsonKnowledgeStore:
    def __init__(self, base_path: str | Path) -> None:
        self._base = Path(base_path)
        self._base.mkdir(parents=True, exist_ok=True)

    def _kind_file(self, kind: str) -> Path:
        return self._base / f"{kind}s.json"

    def _read(self, kind: str) -> list[dict[str, Any]]:
        path = self._kind_file(kind)
        if not path.exists():
            return []
        return json.loads(path.read_text(encoding="utf-8"))

    def _write(self, kind: str, entities: list[dict[str, Any]]) -> None:
        self._kind_file(kind).write_text(json.dumps(entities, indent=2), encoding="utf-8")

    def entities(self, kind: SuggestionType | str) -> list[dict[str, Any]]:
        return self._read(SuggestionType(kind).value)

    async def materialize(self, suggestion: SuggestionBase) -> EntityRef:
        """Upsert the suggestion's payload; entities are matched by name."""
        kind = SuggestionType(suggestion.type).value
        key = _natural_key(suggestion)
        entities = self._read(kind)
        record = {
            "key": key,
            "data": suggestion.payload.model_dump(mode="json"),  # type: ignore[attr-defined]
            "suggestion_id": suggestion.id,
        }
        for i, existing in enumerate(entities):
            if existing["key"] == key:
                record["id"] = existing["id"]
                entities[i] = record
                break
        else:
            record["id"] = str(uuid.uuid4())
            entities.append(record)
        self._write(kind, entities)
        logger.info("Materialized %s %r as %s", kind, key, record["id"])
        return EntityRef(id=record["id"], type=kind)
