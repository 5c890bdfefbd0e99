"""
Error taxonomy for tree exploration.

Fatal errors (allocation, state-size mismatch) abort the whole search.
EvaluationFailure abandons a single branch; NoResults is raised by the
collector when queried before anything was recorded.
"""

from __future__ import annotations


class BeamTreeError(Exception):
    """Base class for all beamtree errors."""


class AllocationError(BeamTreeError, MemoryError):
    """Snapshot buffer could not be allocated."""


class StateSizeMismatch(BeamTreeError, ValueError):
    """Snapshot length disagrees with the model's state size."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Model state size is {expected} bytes but snapshot holds {actual} bytes"
        )


class EvaluationFailure(BeamTreeError, RuntimeError):
    """Model failed to evaluate a token."""

    def __init__(self, token: int, position: int, reason: str = ""):
        self.token = token
        self.position = position
        self.reason = reason
        msg = f"Failed to evaluate token {token} at position {position}"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)


class NoResults(BeamTreeError, LookupError):
    """No result has been recorded yet."""
