"""Content suggestion models.

A suggestion is a closed tagged union keyed by ``type``: one pydantic model
per variant, each with a ``Literal`` discriminator and exactly one typed
``payload``. ``ContentSuggestion`` is the discriminated union over all of
them; ``SUGGESTION_ADAPTER`` validates raw dicts/JSON into the right variant.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class SuggestionType(str, Enum):
    CHARACTER = "character"
    LOCATION = "location"
    ITEM = "item"
    EVENT = "event"
    RELATIONSHIP = "relationship"
    LORE = "lore"
    DIALOG = "dialog"
    PLOT = "plot"
    NOTE = "note"


class SuggestionStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    MODIFIED = "modified"


class ConfidenceLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _CONFIDENCE_RANK[self]

    def at_least(self, other: ConfidenceLevel) -> bool:
        return self.rank >= other.rank


_CONFIDENCE_RANK = {
    ConfidenceLevel.LOW: 1,
    ConfidenceLevel.MEDIUM: 2,
    ConfidenceLevel.HIGH: 3,
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


class EntityRef(BaseModel):
    """Reference to something outside the engine (transcript, session, stored entity)."""

    id: str
    type: str


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------

class _Payload(BaseModel):
    # Models answer in camelCase (pointsOfInterest); accept both spellings.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RelatedEntity(_Payload):
    id: str | None = None
    type: str | None = None
    name: str


class Participant(RelatedEntity):
    role: str | None = None


class RelationshipData(_Payload):
    source_id: str | None = None
    source_type: str | None = None
    source_name: str
    target_id: str | None = None
    target_type: str | None = None
    target_name: str
    relationship_type: str = "RELATED_TO"
    description: str | None = None
    strength: int | None = Field(default=None, ge=1, le=10)


class CharacterData(_Payload):
    name: str
    description: str | None = None
    background: str | None = None
    personality: str | None = None
    appearance: str | None = None
    goals: str | None = None
    relationships: list[RelationshipData] = []


class LocationData(_Payload):
    name: str
    description: str | None = None
    history: str | None = None
    features: str | None = None
    inhabitants: str | None = None
    points_of_interest: list[str] = []
    parent_location_id: str | None = None


class ItemData(_Payload):
    name: str
    description: str | None = None
    item_type: str | None = None
    properties: list[str] = []
    owner_name: str | None = None
    location_name: str | None = None


class EventData(_Payload):
    name: str
    description: str | None = None
    date: str | None = None
    location: str | None = None
    participants: list[Participant] = []
    importance: int | None = Field(default=None, ge=1, le=10)
    consequences: str | None = None


class LoreData(_Payload):
    title: str
    content: str
    category: str | None = None
    tags: list[str] = []
    related_entities: list[RelatedEntity] = []


class DialogData(_Payload):
    character_id: str | None = None
    character_name: str
    content: str
    context: str | None = None
    tone: str | None = None
    purpose: str | None = None
    alternatives: list[str] = []


class PlotData(_Payload):
    title: str
    summary: str
    hooks: list[str] = []
    involved_entities: list[RelatedEntity] = []
    status_hint: str | None = None  # "foreshadowed" | "active" | "resolved"


class NoteData(_Payload):
    title: str
    content: str
    category: str | None = None
    tags: list[str] = []
    related_entities: list[RelatedEntity] = []


# ---------------------------------------------------------------------------
# Suggestion variants
# ---------------------------------------------------------------------------

class SuggestionBase(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    title: str
    description: str = ""
    confidence: ConfidenceLevel = ConfidenceLevel.MEDIUM
    status: SuggestionStatus = SuggestionStatus.PENDING
    source_ref: EntityRef | None = None
    context_ref: EntityRef | None = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)
    metadata: dict[str, Any] = {}


class CharacterSuggestion(SuggestionBase):
    type: Literal["character"] = "character"
    payload: CharacterData


class LocationSuggestion(SuggestionBase):
    type: Literal["location"] = "location"
    payload: LocationData


class ItemSuggestion(SuggestionBase):
    type: Literal["item"] = "item"
    payload: ItemData


class EventSuggestion(SuggestionBase):
    type: Literal["event"] = "event"
    payload: EventData


class RelationshipSuggestion(SuggestionBase):
    type: Literal["relationship"] = "relationship"
    payload: RelationshipData


class LoreSuggestion(SuggestionBase):
    type: Literal["lore"] = "lore"
    payload: LoreData


class DialogSuggestion(SuggestionBase):
    type: Literal["dialog"] = "dialog"
    payload: DialogData


class PlotSuggestion(SuggestionBase):
    type: Literal["plot"] = "plot"
    payload: PlotData


class NoteSuggestion(SuggestionBase):
    type: Literal["note"] = "note"
    payload: NoteData


ContentSuggestion = Annotated[
    Union[
        CharacterSuggestion,
        LocationSuggestion,
        ItemSuggestion,
        EventSuggestion,
        RelationshipSuggestion,
        LoreSuggestion,
        DialogSuggestion,
        PlotSuggestion,
        NoteSuggestion,
    ],
    Field(discriminator="type"),
]

SUGGESTION_ADAPTER: TypeAdapter[ContentSuggestion] = TypeAdapter(ContentSuggestion)

SUGGESTION_CLASSES: dict[SuggestionType, type[SuggestionBase]] = {
    SuggestionType.CHARACTER: CharacterSuggestion,
    SuggestionType.LOCATION: LocationSuggestion,
    SuggestionType.ITEM: ItemSuggestion,
    SuggestionType.EVENT: EventSuggestion,
    SuggestionType.RELATIONSHIP: RelationshipSuggestion,
    SuggestionType.LORE: LoreSuggestion,
    SuggestionType.DIALOG: DialogSuggestion,
    SuggestionType.PLOT: PlotSuggestion,
    SuggestionType.NOTE: NoteSuggestion,
}

PAYLOAD_CLASSES: dict[SuggestionType, type[BaseModel]] = {
    SuggestionType.CHARACTER: CharacterData,
    SuggestionType.LOCATION: LocationData,
    SuggestionType.ITEM: ItemData,
    SuggestionType.EVENT: EventData,
    SuggestionType.RELATIONSHIP: RelationshipData,
    SuggestionType.LORE: LoreData,
    SuggestionType.DIALOG: DialogData,
    SuggestionType.PLOT: PlotData,
    SuggestionType.NOTE: NoteData,
}

# Key the model is asked to put the payload under (``"characterData": {...}``).
PAYLOAD_KEYS: dict[SuggestionType, str] = {t: f"{t.value}Data" for t in SuggestionType}


def payload_name(suggestion: SuggestionBase) -> str:
    """Best human-readable name of a suggestion's subject."""
    payload = suggestion.payload  # type: ignore[attr-defined]
    for attr in ("name", "title", "character_name"):
        value = getattr(payload, attr, None)
        if value:
            return value
    if isinstance(payload, RelationshipData):
        return f"{payload.source_name} → {payload.target_name}"
    return suggestion.title
