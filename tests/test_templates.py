"""Tests for prompt rendering and the template registry."""

from __future__ import annotations

import pytest

from cse.engine.prompts import ANALYSIS_VARIABLES, default_templates
from cse.engine.templates import PLACEHOLDER_RE, TemplateRegistry, placeholders, render
from cse.errors import NotFoundError, ValidationError
from cse.schemas.llm import PromptTemplate
from cse.schemas.suggestions import SuggestionType


def _template(**kw) -> PromptTemplate:
    base = dict(
        id="t1",
        name="Test",
        template="Hello {{ name }}, you are in {{place}}.",
        variables=frozenset({"name", "place", "unused"}),
    )
    base.update(kw)
    return PromptTemplate(**base)


class TestRender:
    def test_substitutes_all_placeholders(self) -> None:
        out = render(_template(), {"name": "Aldric", "place": "Saltmarsh"})
        assert out.user == "Hello Aldric, you are in Saltmarsh."
        assert PLACEHOLDER_RE.search(out.user) is None

    def test_carries_template_identity(self) -> None:
        out = render(_template(version=4), {"name": "a", "place": "b"})
        assert out.template_id == "t1"
        assert out.template_version == 4

    def test_renders_system_prompt(self) -> None:
        t = _template(system_prompt="You write for {{place}}.")
        out = render(t, {"name": "a", "place": "Greyhawk"})
        assert out.system == "You write for Greyhawk."

    def test_missing_variable_names_it(self) -> None:
        with pytest.raises(ValidationError, match="'place'"):
            render(_template(), {"name": "Aldric"})

    def test_none_value_counts_as_missing(self) -> None:
        with pytest.raises(ValidationError, match="'name'"):
            render(_template(), {"name": None, "place": "x"})

    def test_undeclared_placeholder_rejected(self) -> None:
        t = _template(template="{{name}} meets {{stranger}}")
        with pytest.raises(ValidationError, match="undeclared.*'stranger'"):
            render(t, {"name": "a", "stranger": "b"})

    def test_declared_but_unused_is_fine(self) -> None:
        out = render(_template(), {"name": "a", "place": "b"})
        assert "unused" not in out.user

    def test_values_are_not_re_expanded(self) -> None:
        out = render(_template(), {"name": "{{place}}", "place": "b"})
        assert out.user == "Hello {{place}}, you are in b."

    def test_placeholders_in_order_without_duplicates(self) -> None:
        assert placeholders("{{b}} {{ a }} {{b}}") == ["b", "a"]
        assert placeholders(None) == []


class TestBuiltInTemplates:
    def test_one_template_per_type(self) -> None:
        templates = default_templates()
        assert {t.suggestion_type for t in templates} == set(SuggestionType)

    def test_every_builtin_renders_completely(self) -> None:
        values = {name: f"<{name}>" for name in ANALYSIS_VARIABLES}
        for t in default_templates():
            out = render(t, values)
            assert PLACEHOLDER_RE.search(out.user) is None
            assert f'"{t.suggestion_type.value}Data"' in out.system


class TestTemplateRegistry:
    def test_register_assigns_versions(self) -> None:
        reg = TemplateRegistry()
        assert reg.register(_template()).version == 1
        assert reg.register(_template()).version == 2

    def test_update_bumps_version_and_applies_changes(self) -> None:
        reg = TemplateRegistry([_template()])
        updated = reg.update("t1", template="Bye {{name}}")
        assert updated.version == 2
        assert reg.get("t1").template == "Bye {{name}}"

    def test_versions_survive_remove(self) -> None:
        reg = TemplateRegistry([_template()])
        reg.remove("t1")
        with pytest.raises(NotFoundError):
            reg.get("t1")
        assert reg.register(_template()).version == 2

    def test_remove_unknown(self) -> None:
        with pytest.raises(NotFoundError):
            TemplateRegistry().remove("nope")

    def test_for_type_prefers_lowest_id(self) -> None:
        reg = TemplateRegistry([
            _template(id="b-lore", suggestion_type=SuggestionType.LORE),
            _template(id="a-lore", suggestion_type=SuggestionType.LORE),
        ])
        assert reg.for_type(SuggestionType.LORE).id == "a-lore"

    def test_for_type_missing(self) -> None:
        with pytest.raises(NotFoundError, match="note"):
            TemplateRegistry().for_type(SuggestionType.NOTE)
