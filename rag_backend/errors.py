"""Exception hierarchy for the RAG backend.

Hierarchy:
    RagError (base)
    ├── ValidationFailure     malformed/missing session id or message
    ├── RetrievalFailure      similarity search unreachable or erroring
    ├── GenerationFailure     completion model unreachable or erroring
    └── RagResponseFailure    opaque wrapper surfaced to the HTTP layer

Failures are local to a single turn and never retried inside the backend.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class RagError(Exception):
    """Base exception for all RAG backend errors.

    Attributes:
        message: Human-readable error description.
        details: Additional context about the error (for logs only).
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} ({self.details})"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ValidationFailure(RagError):
    """Rejected input; raised before the conversation controller runs."""

    def __init__(self, error: str, message: str) -> None:
        super().__init__(message, details={"error": error})
        self.error = error


class RetrievalFailure(RagError):
    """The similarity-search collaborator failed or timed out."""


class GenerationFailure(RagError):
    """The completion model failed while deciding or generating."""


class RagResponseFailure(RagError):
    """Catch-all raised by the service facade.

    The original exception is kept on ``cause`` for diagnostics and is never
    rendered to clients.
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        details = {"cause": type(cause).__name__} if cause is not None else None
        super().__init__(message, details=details)
        self.cause = cause


__all__ = [
    "RagError",
    "ValidationFailure",
    "RetrievalFailure",
    "GenerationFailure",
    "RagResponseFailure",
]
