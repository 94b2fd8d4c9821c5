"""Built-in prompt templates, one per suggestion type."""

from __future__ import annotations

from cse.schemas.llm import Capability, PromptTemplate
from cse.schemas.suggestions import SuggestionType

# Variables every analysis run supplies.
ANALYSIS_VARIABLES = frozenset({
    "content",
    "context",
    "existing",
    "max_results",
    "suggestion_type",
})

_SYSTEM_HEADER = """\
You are an assistant for a tabletop RPG campaign management system.
{task}

## Confidence
Rate each suggestion "high" when the content states it directly, "medium" \
when it is strongly implied, and "low" when it is your own extrapolation.

## Output Format
Respond with a single JSON object (no markdown, no commentary):

{{
  "suggestions": [
    {{
      "type": "{type}",
      "title": "...",
      "description": "One or two sentences",
      "confidence": "high|medium|low",
      "{key}": {payload}
    }}
  ]
}}

Return an empty "suggestions" array when nothing qualifies.
"""

_TASKS: dict[SuggestionType, tuple[str, str]] = {
    SuggestionType.CHARACTER: (
        "Identify characters that are mentioned or implied in the content but "
        "not yet fully defined, inferring as much detail as the content supports.",
        """{
        "name": "...",
        "description": "Physical description",
        "background": "...",
        "personality": "...",
        "appearance": "...",
        "goals": "Goals and motivations",
        "relationships": [
          {"sourceName": "...", "targetName": "...", "relationshipType": "FRIEND_OF|ENEMY_OF|RELATED_TO", "description": "..."}
        ]
      }""",
    ),
    SuggestionType.LOCATION: (
        "Identify locations that are mentioned or implied in the content but "
        "not yet fully defined.",
        """{
        "name": "...",
        "description": "...",
        "history": "...",
        "features": "Notable features",
        "inhabitants": "Who lives here",
        "pointsOfInterest": ["..."],
        "parentLocationId": null
      }""",
    ),
    SuggestionType.ITEM: (
        "Identify notable items, artifacts and treasures that appear in the content.",
        """{
        "name": "...",
        "description": "...",
        "itemType": "WEAPON|ARMOR|ARTIFACT|CONSUMABLE|MISC",
        "properties": ["..."],
        "ownerName": "Current holder, if known",
        "locationName": "Where it is, if known"
      }""",
    ),
    SuggestionType.EVENT: (
        "Identify events that have happened or are about to happen in the campaign.",
        """{
        "name": "...",
        "description": "...",
        "date": "When it occurred or will occur",
        "location": "...",
        "participants": [{"name": "...", "role": "..."}],
        "importance": 7,
        "consequences": "..."
      }""",
    ),
    SuggestionType.RELATIONSHIP: (
        "Identify relationships between entities (characters, factions, locations, "
        "items) that are stated or implied.",
        """{
        "sourceName": "...",
        "sourceType": "character|location|item|faction",
        "targetName": "...",
        "targetType": "character|location|item|faction",
        "relationshipType": "FRIEND_OF|ENEMY_OF|LOCATED_IN|OWNS|RELATED_TO",
        "description": "...",
        "strength": 7
      }""",
    ),
    SuggestionType.LORE: (
        "Extract lore elements (history, legends, religion, customs) from the content.",
        """{
        "title": "...",
        "content": "...",
        "category": "HISTORY|LEGEND|RELIGION|CUSTOM",
        "tags": ["..."],
        "relatedEntities": [{"name": "...", "type": "..."}]
      }""",
    ),
    SuggestionType.DIALOG: (
        "Suggest lines of dialog the game master could use for the NPCs in the "
        "content, with alternative phrasings.",
        """{
        "characterName": "...",
        "content": "The line itself",
        "context": "When to use it",
        "tone": "FRIENDLY|HOSTILE|NEUTRAL",
        "purpose": "INFORMATION|QUEST|WARNING",
        "alternatives": ["..."]
      }""",
    ),
    SuggestionType.PLOT: (
        "Identify plot threads, open hooks and story arcs that the content sets up "
        "or advances.",
        """{
        "title": "...",
        "summary": "...",
        "hooks": ["..."],
        "involvedEntities": [{"name": "...", "type": "..."}],
        "statusHint": "foreshadowed|active|resolved"
      }""",
    ),
    SuggestionType.NOTE: (
        "Suggest notes the game master will want to keep for future sessions: "
        "reminders, secrets, loose ends.",
        """{
        "title": "...",
        "content": "...",
        "category": "PLOT|CHARACTER|LOCATION|QUEST",
        "tags": ["..."],
        "relatedEntities": [{"name": "...", "type": "..."}]
      }""",
    ),
}

USER_TEMPLATE = """\
Analyze the following campaign content and produce at most {{max_results}} \
{{suggestion_type}} suggestions.

## Campaign context
{{context}}

## Already recorded (do not suggest these again)
{{existing}}

## Content to analyze
{{content}}
"""


def _system_prompt(suggestion_type: SuggestionType) -> str:
    task, payload = _TASKS[suggestion_type]
    return _SYSTEM_HEADER.format(
        task=task,
        type=suggestion_type.value,
        key=f"{suggestion_type.value}Data",
        payload=payload,
    )


def default_templates() -> list[PromptTemplate]:
    """Return the built-in template for every suggestion type."""
    return [
        PromptTemplate(
            id=f"suggest-{t.value}",
            name=f"{t.value.capitalize()} suggestions",
            description=f"Extract {t.value} suggestions from session content.",
            template=USER_TEMPLATE,
            variables=ANALYSIS_VARIABLES,
            system_prompt=_system_prompt(t),
            required_capabilities=frozenset({Capability.CHAT}),
            suggestion_type=t,
        )
        for t in SuggestionType
    ]
