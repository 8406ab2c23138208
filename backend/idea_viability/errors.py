"""Error taxonomy for the research pipeline.

Only ``FusionError`` and ``ConfigurationError`` are allowed to reach a
caller of ``run_analysis``.  ``RetrievalError`` and ``GenerationError`` are
recovered locally by the stage that observes them.
"""

from __future__ import annotations

from typing import Any, Optional


class ViabilityError(Exception):
    """Base class for every pipeline error."""

    code = "VIABILITY_ERROR"

    def __init__(
        self,
        message: str,
        *,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe representation for API responses."""
        return {
            "message": self.message,
            "code": self.code,
            "details": self.context,
        }


class RetrievalError(ViabilityError):
    """The web-search capability failed."""

    code = "RETRIEVAL_ERROR"


class GenerationError(ViabilityError):
    """Text generation failed or returned a non-conforming shape."""

    code = "GENERATION_ERROR"


class FusionError(ViabilityError):
    """The combining generation call failed; the terminal artifact is lost."""

    code = "FUSION_ERROR"


class ConfigurationError(ViabilityError):
    """Required credentials or configuration are missing."""

    code = "CONFIGURATION_ERROR"

    def __init__(
        self,
        message: str,
        *,
        missing_keys: Optional[list[str]] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        self.missing_keys = list(missing_keys or [])
        merged = {"missing_keys": self.missing_keys}
        merged.update(context or {})
        super().__init__(message, context=merged)


def get_error_message(error: BaseException) -> str:
    """Best-effort short message for any exception."""
    if isinstance(error, ViabilityError):
        return error.message
    return str(error) or error.__class__.__name__
