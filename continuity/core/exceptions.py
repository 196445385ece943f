# continuity/core/exceptions.py
"""Continuity exception hierarchy."""


class ContinuityError(Exception):
    """Base exception for all continuity errors."""


class StateError(ContinuityError):
    """Raised when the sequence counter or last-hash pointer is unusable."""


class StateCorruptError(StateError):
    """Raised when a persisted state file holds garbage."""


class StatePersistError(StateError):
    """Raised when a new sequence / hash value could not be written to disk."""


class MalformedRecordError(ContinuityError):
    """Raised when an assembled or loaded record is not well-formed."""


class DurabilityError(ContinuityError):
    """Raised when a write or fsync did not complete."""


class CriticalWriteError(ContinuityError):
    """Raised by gated callers when a critical action could not be logged."""
