"""
Error taxonomy for the search engine.

- SearchValidationError: malformed request, raised before any store call
- StoreUnavailableError: catalog or cache tier failed; propagated to callers
- FacetTimeoutError: internal, converted into a partial facet summary
- AnalyticsError: internal, logged and swallowed
"""

from typing import Any, Dict, List, Optional


class SearchEngineError(Exception):
    """Base class for all search engine errors."""


class SearchValidationError(SearchEngineError):
    """The caller sent a request the engine refuses to run."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        errors: Optional[List[Dict[str, Any]]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.field = field
        self.errors = errors or []

    def to_dict(self) -> Dict[str, Any]:
        detail: Dict[str, Any] = {"message": self.message}
        if self.field:
            detail["field"] = self.field
        if self.errors:
            detail["errors"] = self.errors
        return detail


class StoreUnavailableError(SearchEngineError):
    """The catalog store or the key-value cache could not serve a call."""

    def __init__(self, message: str, store: str = "unknown"):
        super().__init__(message)
        self.message = message
        self.store = store


class FacetTimeoutError(SearchEngineError):
    """A facet dimension did not finish inside the join timeout."""

    def __init__(self, dimensions: List[str], timeout_ms: int):
        super().__init__(
            f"Facet dimensions {', '.join(dimensions)} timed out after {timeout_ms}ms"
        )
        self.dimensions = dimensions
        self.timeout_ms = timeout_ms


class AnalyticsError(SearchEngineError):
    """Recording a search event failed."""
