"""
Exception hierarchy shared by the memory tiers and their backends.
"""

from __future__ import annotations


class PersonaMemoryError(Exception):
    """Base class for every error raised by persona-memory."""


class TransientBackendError(PersonaMemoryError):
    """A store, index or embedding provider timed out or was unavailable."""


class ExactStoreError(PersonaMemoryError):
    """The exact tier failed; there is no cheaper tier to fall back to."""


class ValidationError(PersonaMemoryError, ValueError):
    """Input text was empty after normalization."""
