"""Model registry and capability matching."""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Iterable
from typing import Any

from cse.errors import CapabilityMismatchError, NotFoundError
from cse.schemas.llm import Capability, LLMModel

logger = logging.getLogger(__name__)

# Rough chars-per-token ratio for English prose; only used to rank context windows.
_CHARS_PER_TOKEN = 4


def estimate_tokens(*texts: str | None) -> int:
    chars = sum(len(t) for t in texts if t)
    return math.ceil(chars / _CHARS_PER_TOKEN)


def _natural_key(model_id: str) -> tuple[tuple[int, int | str], ...]:
    """Sort key that orders ``gpt-4`` before ``gpt-10``."""
    parts = re.split(r"(\d+)", model_id)
    return tuple((0, int(p)) if p.isdigit() else (1, p) for p in parts if p)


def _fmt_caps(caps: Iterable[Capability]) -> str:
    return ", ".join(sorted(c.value for c in caps)) or "(none)"


class ModelRegistry:
    """Known models, keyed by id, with a monotonically increasing edit version."""

    def __init__(self, models: Iterable[LLMModel] = ()) -> None:
        self._models: dict[str, LLMModel] = {}
        self._versions: dict[str, int] = {}
        for m in models:
            self.register(m)

    def _next_version(self, model_id: str) -> int:
        version = self._versions.get(model_id, 0) + 1
        self._versions[model_id] = version
        return version

    def register(self, model: LLMModel) -> LLMModel:
        stored = model.model_copy(update={"version": self._next_version(model.id)})
        self._models[model.id] = stored
        return stored

    def update(self, model_id: str, **changes: Any) -> LLMModel:
        current = self.get(model_id)
        changes.pop("id", None)
        changes["version"] = self._next_version(model_id)
        updated = LLMModel.model_validate({**current.model_dump(), **changes})
        self._models[model_id] = updated
        return updated

    def remove(self, model_id: str) -> None:
        if self._models.pop(model_id, None) is None:
            raise NotFoundError(f"Model {model_id!r} not found")

    def get(self, model_id: str) -> LLMModel:
        try:
            return self._models[model_id]
        except KeyError:
            raise NotFoundError(f"Model {model_id!r} not found") from None

    def list_models(self) -> list[LLMModel]:
        return sorted(self._models.values(), key=lambda m: _natural_key(m.id))

    def select_model(
        self,
        required: Iterable[Capability],
        preferred_id: str | None = None,
        *,
        prompt_tokens: int = 0,
        output_tokens: int = 0,
    ) -> LLMModel:
        """Pick a model whose capabilities cover ``required``.

        A preferred id is all-or-nothing: it must exist, be available and
        cover the requirement, otherwise ``CapabilityMismatchError``.

        Without a preference, the smallest context window that holds
        ``prompt_tokens + output_tokens`` wins; if no window is big enough
        the largest one is used. Remaining ties go to the lowest id in
        natural order.
        """
        required = frozenset(required)

        if preferred_id is not None:
            model = self._models.get(preferred_id)
            if model is None:
                raise CapabilityMismatchError(f"Preferred model {preferred_id!r} is not registered")
            if not model.is_available:
                raise CapabilityMismatchError(f"Preferred model {preferred_id!r} is not available")
            if not model.supports(required):
                missing = required - model.capabilities
                raise CapabilityMismatchError(
                    f"Preferred model {preferred_id!r} lacks capabilities: {_fmt_caps(missing)}"
                )
            return model

        candidates = [m for m in self._models.values() if m.is_available and m.supports(required)]
        if not candidates:
            raise CapabilityMismatchError(
                f"No available model supports: {_fmt_caps(required)}"
            )

        needed = prompt_tokens + output_tokens
        fitting = [m for m in candidates if m.context_window >= needed]
        if fitting:
            chosen = min(fitting, key=lambda m: (m.context_window, _natural_key(m.id)))
        else:
            logger.warning(
                "No model fits ~%d tokens; using the largest context window available", needed,
            )
            chosen = min(candidates, key=lambda m: (-m.context_window, _natural_key(m.id)))

        logger.debug(
            "Selected model %s for %s (~%d tokens)", chosen.id, _fmt_caps(required), needed,
        )
        return chosen
