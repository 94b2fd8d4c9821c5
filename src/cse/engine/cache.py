"""In-memory response cache keyed by request fingerprint.

The fingerprint covers every input that can change a model's answer:
template id and version, the rendered prompts, the model id and version,
and the generation options. Editing a template or model bumps its version,
so stale entries simply stop being addressed; no flush pass is needed.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from cse.schemas.llm import Completion, GenerationOptions, LLMModel, RenderedPrompt

logger = logging.getLogger(__name__)


def fingerprint(prompt: RenderedPrompt, model: LLMModel, options: GenerationOptions) -> str:
    """Return a stable SHA-256 hex digest for one model call."""
    key = {
        "template": {"id": prompt.template_id, "version": prompt.template_version},
        "system": prompt.system,
        "user": prompt.user,
        "model": {"id": model.id, "version": model.version},
        "options": options.model_dump(mode="json"),
    }
    canonical = json.dumps(key, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class _Entry:
    response: Completion
    expires_at: float  # monotonic ms


class ResponseCache:
    """Thread-safe TTL cache.

    Expired entries read as a miss and are evicted on that read. With
    ``max_entries`` set, inserting past the bound drops the oldest entry.
    ``clock`` returns milliseconds and exists so tests can move time.
    """

    def __init__(
        self,
        ttl_ms: int = 3_600_000,
        *,
        max_entries: int | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.ttl_ms = ttl_ms
        self.max_entries = max_entries
        self._clock = clock or (lambda: time.monotonic() * 1000)
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        self._lock = threading.Lock()
        self._stats = {"hits": 0, "misses": 0}

    def get(self, key: str) -> Completion | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats["misses"] += 1
                return None
            if now >= entry.expires_at:
                del self._entries[key]
                self._stats["misses"] += 1
                logger.debug("Cache entry %s… expired", key[:12])
                return None
            self._stats["hits"] += 1
            return entry.response

    def put(self, key: str, response: Completion, ttl_ms: int | None = None) -> None:
        ttl = self.ttl_ms if ttl_ms is None else ttl_ms
        entry = _Entry(response=response, expires_at=self._clock() + ttl)
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = entry
            if self.max_entries is not None:
                while len(self._entries) > self.max_entries:
                    self._entries.popitem(last=False)

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._stats = {"hits": 0, "misses": 0}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            hits, misses = self._stats["hits"], self._stats["misses"]
            return {
                "hits": hits,
                "misses": misses,
                "hit_rate": hits / max(1, hits + misses),
                "entries": len(self._entries),
            }
