"""Custom exceptions for the estimator."""

from typing import Any


class EstimatorError(Exception):
    """Base exception for the estimator."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(EstimatorError):
    """Validation error."""

    pass


class SessionNotFoundError(EstimatorError):
    """Estimate session not found."""

    def __init__(self, session_id: str):
        super().__init__(
            f"Session not found: {session_id}",
            {"session_id": session_id},
        )


class EstimateNotFoundError(EstimatorError):
    """Estimate not found in the store."""

    def __init__(self, estimate_id: str):
        super().__init__(
            f"Estimate not found: {estimate_id}",
            {"estimate_id": estimate_id},
        )


class PersistenceError(EstimatorError):
    """Writing estimate rows to the store failed."""

    def __init__(self, message: str, estimate_id: str | None = None):
        details = {}
        if estimate_id:
            details["estimate_id"] = estimate_id
        super().__init__(f"Persistence failed: {message}", details)
