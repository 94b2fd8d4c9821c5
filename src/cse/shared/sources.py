"""Content sources — where the text to analyze comes from.

The orchestrator only depends on the ``ContentSource`` protocol:

    async def fetch_text(self, source_ref: EntityRef) -> str: ...

Three implementations are provided:

    InMemoryContentSource — dict lookup; tests and embedding callers.
    FileContentSource     — ``<root>/<id>.txt`` or ``.md``; used by the CLI.
    HttpContentSource     — GET from the campaign backend's REST API.

Campaign, session and world records that frame the analysis come from a
``ContextSource``; ``InMemoryContextSource`` is the bundled one.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Protocol

import httpx

from cse.errors import NotFoundError, ProviderError
from cse.schemas.suggestions import EntityRef

logger = logging.getLogger(__name__)


class ContentSource(Protocol):
    async def fetch_text(self, source_ref: EntityRef) -> str: ...


class InMemoryContentSource:
    def __init__(self, texts: dict[str, str] | None = None) -> None:
        self._texts = dict(texts or {})

    def add(self, source_id: str, text: str) -> None:
        self._texts[source_id] = text

    async def fetch_text(self, source_ref: EntityRef) -> str:
        try:
            return self._texts[source_ref.id]
        except KeyError:
            raise NotFoundError(f"No content for {source_ref.type} {source_ref.id!r}") from None


class FileContentSource:
    """Reads ``<root>/<source id>.txt`` (or ``.md``)."""

    SUFFIXES = (".txt", ".md")

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    async def fetch_text(self, source_ref: EntityRef) -> str:
        for suffix in self.SUFFIXES:
            path = self._root / f"{source_ref.id}{suffix}"
            if path.is_file():
                return path.read_text(encoding="utf-8")
        raise NotFoundError(f"No content file for {source_ref.id!r} under {self._root}")


class HttpContentSource:
    """Fetches plain text from ``{base_url}/{type}s/{id}/text``.

    Transcripts come back as ``{"segments": [{"speaker": ..., "text": ...}]}``
    or as ``{"text": "..."}``; segments are joined one per paragraph with a
    ``Speaker: `` prefix where known.
    """

    def __init__(self, base_url: str, api_key: str = "", timeout: float = 30.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def url_for(self, source_ref: EntityRef) -> str:
        return f"{self._base_url}/{source_ref.type}s/{source_ref.id}/text"

    async def fetch_text(self, source_ref: EntityRef) -> str:
        url = self.url_for(source_ref)
        logger.debug("Fetching content from %s", url)
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.get(url, headers=self._headers())
                resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                raise NotFoundError(f"No content for {source_ref.type} {source_ref.id!r}") from e
            raise ProviderError(f"Content backend returned HTTP {e.response.status_code}") from e
        except httpx.TimeoutException as e:
            raise ProviderError(f"Content backend timed out after {self._timeout}s") from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Cannot reach content backend at {self._base_url}") from e

        data = resp.json()
        if segments := data.get("segments"):
            return "\n\n".join(
                f"{s['speaker']}: {s['text']}" if s.get("speaker") else s["text"]
                for s in segments
            )
        return data.get("text", "")


class ContextSource(Protocol):
    async def fetch_context(self, context_ref: EntityRef) -> str | dict[str, Any] | None: ...


class InMemoryContextSource:
    """Context records keyed by ``(type, id)``.

    A session record carrying a ``campaign_id`` comes back with its campaign
    nested under ``"campaign"``. Unknown references return ``None``.
    """

    def __init__(self, records: dict[tuple[str, str], str | dict[str, Any]] | None = None) -> None:
        self._records: dict[tuple[str, str], str | dict[str, Any]] = {}
        for (kind, record_id), record in (records or {}).items():
            self.add(kind, record_id, record)

    def add(self, context_type: str, context_id: str, record: str | dict[str, Any]) -> None:
        self._records[(context_type.lower(), context_id)] = record

    async def fetch_context(self, context_ref: EntityRef) -> str | dict[str, Any] | None:
        kind = context_ref.type.lower()
        record = self._records.get((kind, context_ref.id))
        if kind == "session" and isinstance(record, dict) and record.get("campaign_id"):
            campaign = self._records.get(("campaign", record["campaign_id"]))
            if campaign is not None:
                return {**record, "campaign": campaign}
        return record
