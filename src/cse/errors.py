"""Exception taxonomy for the suggestion engine.

Validation and state errors are raised straight to the caller. Provider and
parsing errors are caught per suggestion type by the orchestrator and folded
into ``AnalysisResult.metadata``.
"""

from __future__ import annotations


class EngineError(Exception):
    """Base class for every error raised by the engine."""


class ValidationError(EngineError, ValueError):
    """Malformed request: missing template variable, empty analysis types, bad payload."""


class CapabilityMismatchError(EngineError):
    """No available model satisfies the required capabilities."""


class ProviderError(EngineError, RuntimeError):
    """The model call failed (network, rate limit, timeout, provider-side fault)."""


class ParsingError(EngineError, ValueError):
    """Model output could not be decoded into the expected suggestion schema."""


class SuggestionStateError(EngineError):
    """An invalid lifecycle transition was attempted."""


class NotFoundError(EngineError, LookupError):
    """A suggestion, model or template id does not exist."""


class AnalysisFailedError(EngineError):
    """Every requested suggestion type failed.

    ``errors`` maps each suggestion type to the message recorded for it.
    """

    def __init__(self, message: str, errors: dict[str, str]) -> None:
        super().__init__(message)
        self.errors = errors
