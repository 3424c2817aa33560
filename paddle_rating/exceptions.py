"""
Error taxonomy for the match and session core.
Every error is local and recoverable; the API maps `code` to an HTTP status.
"""
from __future__ import annotations


class PaddleRatingError(Exception):
    """Base class for domain errors raised by the core."""

    code = "UNKNOWN"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class ValidationError(PaddleRatingError, ValueError):
    """Malformed input: wrong player count, bad team partition, bad score pair."""

    code = "VALIDATION_ERROR"


class NotFoundError(PaddleRatingError, LookupError):
    """Unknown match, session, or approver."""

    code = "NOT_FOUND"


class InvalidStateError(PaddleRatingError):
    """Operation not allowed in the current phase or status (e.g. confirming a disputed match)."""

    code = "INVALID_STATE"


class ConcurrencyError(PaddleRatingError):
    """Optimistic-lock conflict. Reserved for a storage-backed ledger."""

    code = "CONFLICT"
