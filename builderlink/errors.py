"""
BuilderLink: Error taxonomy for the match engine.

Service-layer code raises these; the HTTP layer maps them to status codes in
``builderlink.main``.  Scoring functions never raise for missing data, they
return ``None`` scores instead.
"""

from __future__ import annotations


class MatchEngineError(Exception):
    """Base exception for match engine errors."""

    status_code: int = 500

    def __init__(self, message: str, **context: object) -> None:
        super().__init__(message)
        self.message = message
        self.context = context


class NotFoundError(MatchEngineError):
    """Raised when a referenced match or scenario response does not exist."""

    status_code = 404


class ConflictError(MatchEngineError):
    """Raised when a match already exists for a (builder, opening) pair."""

    status_code = 409


class InvalidArgumentError(MatchEngineError):
    """Raised for illegal outcome tokens, out-of-range sub-scores and
    incomplete scenario sets submitted as complete."""

    status_code = 400


class PreconditionFailedError(MatchEngineError):
    """Raised when a transition is not legal from the match's current status."""

    status_code = 412


class StorageError(MatchEngineError):
    """Base class for storage failures that callers may retry."""

    status_code = 503


class ConcurrentModificationError(StorageError):
    """The stored match version moved on between read and write."""


class TransientStorageError(StorageError):
    """The backing store was temporarily unavailable."""
