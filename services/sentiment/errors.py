# services/sentiment/errors.py
"""
Error taxonomy for the heatmap pipeline.

Only InvalidFilterCombination reaches callers. ProviderUnavailable and
CacheStoreUnavailable are caught inside the pipeline, logged, and degraded
around (default scores / cache bypass).
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class HeatmapError(Exception):
    """Base class for heatmap pipeline errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ProviderUnavailable(HeatmapError):
    """The sentiment source failed or timed out."""

    def __init__(self, message: str, source_name: str = "", details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details)
        self.source_name = source_name


class CacheStoreUnavailable(HeatmapError):
    """A cache store could not be read or written."""

    def __init__(self, message: str, backend: str = "", details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details)
        self.backend = backend


class InvalidFilterCombination(HeatmapError, ValueError):
    """
    Filters that can never match anything (inverted score or strike range).

    Subclasses ValueError so pydantic validators surface it as a
    ValidationError (HTTP 422 at the API layer).
    """
