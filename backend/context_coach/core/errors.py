"""Error types shared across the engine."""

from __future__ import annotations


class ContextCoachError(Exception):
    """Base class for errors raised by Context Coach."""


class ProviderError(ContextCoachError):
    """A model or embedding provider rejected a request."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransientProviderError(ProviderError):
    """Rate limit or server-side provider failure that is worth retrying."""


class DimensionMismatchError(ContextCoachError, ValueError):
    """Two embedding vectors of different length were compared."""

    def __init__(self, left: int, right: int) -> None:
        super().__init__(f"Embeddings must have the same dimension ({left} != {right})")
        self.left = left
        self.right = right


class InvalidJobTransitionError(ContextCoachError):
    """An ingestion job was asked to move to a state it cannot reach."""

    def __init__(self, job_id: str, current: str, target: str) -> None:
        super().__init__(f"Job {job_id} cannot move from {current} to {target}")
        self.job_id = job_id
        self.current = current
        self.target = target


class SourceUnavailableError(ContextCoachError):
    """No content could be read from an ingestion source."""


class SessionNotFoundError(ContextCoachError):
    """Conversation session is missing or soft-deleted."""

    def __init__(self, session_id: str) -> None:
        super().__init__("Conversation not found")
        self.session_id = session_id


class SessionAccessDeniedError(ContextCoachError):
    """Conversation session belongs to a different profile."""

    def __init__(self, session_id: str, profile_id: str) -> None:
        super().__init__("Access denied")
        self.session_id = session_id
        self.profile_id = profile_id


__all__ = [
    "ContextCoachError",
    "ProviderError",
    "TransientProviderError",
    "DimensionMismatchError",
    "InvalidJobTransitionError",
    "SourceUnavailableError",
    "SessionNotFoundError",
    "SessionAccessDeniedError",
]
