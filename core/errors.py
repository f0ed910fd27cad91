"""Exceptions used across the triage engine."""


class TriageError(Exception):
    """Base exception type."""


class PersistenceError(TriageError):
    """Raised when a progress write cannot be completed after retries."""


class DeletionError(TriageError):
    """Raised by deletion executors that cannot even attempt a deletion."""
