"""Typed failures raised by the nomination and scoring engine."""
from __future__ import annotations


class ScoringError(Exception):
    """Base class for engine failures callers are expected to handle."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(ScoringError):
    """Nomination, HCP, campaign or weight configuration is absent."""


class Conflict(ScoringError):
    """Duplicate national identifier on HCP creation."""


class InvalidState(ScoringError):
    """Operation not allowed in the entity's current state."""
