"""Prompt template rendering and the versioned template registry."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from typing import Any

from cse.errors import NotFoundError, ValidationError
from cse.schemas.llm import PromptTemplate, RenderedPrompt
from cse.schemas.suggestions import SuggestionType

logger = logging.getLogger(__name__)

PLACEHOLDER_RE = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


def placeholders(text: str | None) -> list[str]:
    """Return placeholder names in order of first appearance."""
    if not text:
        return []
    return list(dict.fromkeys(PLACEHOLDER_RE.findall(text)))


def _substitute(text: str, variables: Mapping[str, Any]) -> str:
    return PLACEHOLDER_RE.sub(lambda m: str(variables[m.group(1)]), text)


def render(template: PromptTemplate, variables: Mapping[str, Any]) -> RenderedPrompt:
    """Substitute ``variables`` into the template and its system prompt.

    Raises ``ValidationError`` naming the first placeholder that is either
    not declared in ``template.variables`` or has no (non-None) value.
    Variables that are declared but never used are fine.
    """
    for text in (template.system_prompt, template.template):
        for name in placeholders(text):
            if name not in template.variables:
                raise ValidationError(
                    f"Template {template.id!r} uses undeclared variable {name!r}"
                )
            if variables.get(name) is None:
                raise ValidationError(
                    f"Missing value for variable {name!r} in template {template.id!r}"
                )

    system = _substitute(template.system_prompt, variables) if template.system_prompt else None
    return RenderedPrompt(
        template_id=template.id,
        template_version=template.version,
        system=system,
        user=_substitute(template.template, variables),
    )


class TemplateRegistry:
    """Holds prompt templates by id and tracks an edit version per id.

    Versions only ever go up, including across ``remove`` and a later
    ``register`` of the same id, so a fingerprint built from an older
    version can never match again.
    """

    def __init__(self, templates: Iterable[PromptTemplate] = ()) -> None:
        self._templates: dict[str, PromptTemplate] = {}
        self._versions: dict[str, int] = {}
        for t in templates:
            self.register(t)

    def _next_version(self, template_id: str) -> int:
        version = self._versions.get(template_id, 0) + 1
        self._versions[template_id] = version
        return version

    def register(self, template: PromptTemplate) -> PromptTemplate:
        """Add or replace a template; the stored copy gets a fresh version."""
        stored = template.model_copy(update={"version": self._next_version(template.id)})
        self._templates[template.id] = stored
        logger.debug("Registered template %s v%d", stored.id, stored.version)
        return stored

    def update(self, template_id: str, **changes: Any) -> PromptTemplate:
        current = self.get(template_id)
        changes.pop("id", None)
        changes["version"] = self._next_version(template_id)
        updated = PromptTemplate.model_validate({**current.model_dump(), **changes})
        self._templates[template_id] = updated
        return updated

    def remove(self, template_id: str) -> None:
        if self._templates.pop(template_id, None) is None:
            raise NotFoundError(f"Prompt template {template_id!r} not found")

    def get(self, template_id: str) -> PromptTemplate:
        try:
            return self._templates[template_id]
        except KeyError:
            raise NotFoundError(f"Prompt template {template_id!r} not found") from None

    def list(self) -> list[PromptTemplate]:
        return sorted(self._templates.values(), key=lambda t: t.id)

    def for_type(self, suggestion_type: SuggestionType) -> PromptTemplate:
        """Return the template serving ``suggestion_type``.

        When several match, the lowest id wins so the choice is stable.
        """
        matches = [t for t in self.list() if t.suggestion_type == suggestion_type]
        if not matches:
            raise NotFoundError(f"No prompt template registered for {suggestion_type.value!r}")
        return matches[0]
