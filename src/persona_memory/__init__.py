"""
persona-memory: tiered answer memory and duplicate guard for social personas.

Reuses earlier answers through an exact tier and a context-filtered
semantic tier, and keeps a persona from publishing the same content twice.
"""

from .config import MemoryConfig
from .context import ContextKey, Intent, Tone, Topic, classify, normalize_content, normalize_query
from .dedup import DeduplicationGuard
from .errors import ExactStoreError, PersonaMemoryError, TransientBackendError, ValidationError
from .memory import TieredMemoryCache
from .models import AdmissionOutcome, EmissionOutcome, MemoryRecord, Resolution, SessionMessage
from .services import MemoryServices, build_services

__all__ = [
    "AdmissionOutcome",
    "ContextKey",
    "DeduplicationGuard",
    "EmissionOutcome",
    "ExactStoreError",
    "Intent",
    "MemoryConfig",
    "MemoryRecord",
    "MemoryServices",
    "PersonaMemoryError",
    "Resolution",
    "SessionMessage",
    "TieredMemoryCache",
    "Tone",
    "Topic",
    "TransientBackendError",
    "ValidationError",
    "build_services",
    "classify",
    "normalize_content",
    "normalize_query",
]
