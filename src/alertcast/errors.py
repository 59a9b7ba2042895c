"""Exception types raised by the alert pipeline."""

from __future__ import annotations

from typing import Any


class AlertcastError(Exception):
    """Base class for errors surfaced to callers."""


class ConfigurationError(AlertcastError):
    """A required setting or credential is missing."""


class QueryValidationError(AlertcastError):
    """Inbound query parameters were rejected before any provider call."""

    def __init__(self, issues: list[dict[str, Any]]):
        self.issues = issues
        fields = ", ".join(issue["field"] for issue in issues) or "query"
        super().__init__(f"Invalid query: {fields}")

    def as_dict(self) -> dict[str, Any]:
        return {"error": "Invalid query", "issues": self.issues}
