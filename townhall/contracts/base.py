"""
Base Contracts and Shared Types

These are the foundational types used across all layers.
All types here are IMMUTABLE and represent pure data.
No behavior, no side effects, no dependencies.

BOUNDARY ENFORCEMENT:
=====================
- This module is READ-ONLY from all layers
- Layers may import types but MUST NOT modify this module
- All types are frozen dataclasses for immutability guarantee
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Tuple
from enum import Enum


# =============================================================================
# ERROR STATES (Explicit, never silent)
# =============================================================================

class ErrorKind(Enum):
    """
    Error taxonomy exposed to callers.
    Every ErrorCode belongs to exactly one kind.
    """
    VALIDATION = "validation"
    SECURITY = "security"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    STORAGE = "storage"
    CORRUPTION = "corruption"
    BUSINESS_RULE = "business_rule"


class ErrorCode(Enum):
    """
    Explicit error codes for deterministic error handling.
    No silent fallbacks - every error state is enumerated.
    """
    # Input validation
    INVALID_BUCKET = ("invalid_bucket", ErrorKind.VALIDATION)
    INVALID_ID = ("invalid_id", ErrorKind.VALIDATION)
    INVALID_PAYLOAD = ("invalid_payload", ErrorKind.VALIDATION)
    PAYLOAD_TOO_DEEP = ("payload_too_deep", ErrorKind.VALIDATION)
    PAYLOAD_TOO_LARGE = ("payload_too_large", ErrorKind.VALIDATION)
    RESERVED_KEY = ("reserved_key", ErrorKind.VALIDATION)
    INVALID_RELATIONSHIP = ("invalid_relationship", ErrorKind.VALIDATION)
    INVALID_STRUCTURE = ("invalid_structure", ErrorKind.VALIDATION)
    INVALID_SESSION = ("invalid_session", ErrorKind.VALIDATION)

    # Path containment
    PATH_TRAVERSAL = ("path_traversal", ErrorKind.SECURITY)

    # Lookup
    OBJECT_NOT_FOUND = ("object_not_found", ErrorKind.NOT_FOUND)
    REFERENCE_NOT_SET = ("reference_not_set", ErrorKind.NOT_FOUND)
    STALE_REFERENCE = ("stale_reference", ErrorKind.NOT_FOUND)

    # Conflicts
    REFERENCE_CONFLICT = ("reference_conflict", ErrorKind.CONFLICT)
    CONTENT_CONFLICT = ("content_conflict", ErrorKind.CONFLICT)
    AMBIGUOUS_ID = ("ambiguous_id", ErrorKind.CONFLICT)
    DUPLICATE_EDGE = ("duplicate_edge", ErrorKind.CONFLICT)

    # I/O
    STORAGE_FAILURE = ("storage_failure", ErrorKind.STORAGE)

    # On-disk integrity
    OBJECT_CORRUPTED = ("object_corrupted", ErrorKind.CORRUPTION)
    REFERENCE_CORRUPTED = ("reference_corrupted", ErrorKind.CORRUPTION)

    # Relationship rules
    CROSS_SESSION_EDGE = ("cross_session_edge", ErrorKind.BUSINESS_RULE)
    SELF_REFERENCE = ("self_reference", ErrorKind.BUSINESS_RULE)
    CIRCULAR_REFERENCE = ("circular_reference", ErrorKind.BUSINESS_RULE)

    # Debate lifecycle
    SESSION_NOT_ACTIVE = ("session_not_active", ErrorKind.BUSINESS_RULE)
    INVALID_TRANSITION = ("invalid_transition", ErrorKind.BUSINESS_RULE)
    VOTE_REJECTED = ("vote_rejected", ErrorKind.BUSINESS_RULE)

    @property
    def label(self) -> str:
        return self.value[0]

    @property
    def kind(self) -> ErrorKind:
        return self.value[1]


@dataclass(frozen=True)
class Error:
    """
    Immutable error representation with full context.
    Errors are data, not exceptions - they can be stored and queried.
    """
    code: ErrorCode
    message: str
    timestamp: datetime
    context: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    @property
    def kind(self) -> ErrorKind:
        return self.code.kind

    @staticmethod
    def create(code: ErrorCode, message: str, **context: Any) -> Error:
        """Build an error stamped with the current UTC time."""
        return Error(
            code=code,
            message=message,
            timestamp=datetime.now(timezone.utc),
            context=tuple((key, str(value)) for key, value in context.items())
        )

    def with_context(self, key: str, value: str) -> Error:
        """Return new Error with additional context (immutable)."""
        return Error(
            code=self.code,
            message=self.message,
            timestamp=self.timestamp,
            context=self.context + ((key, value),)
        )

    def context_value(self, key: str) -> Optional[str]:
        for entry_key, entry_value in self.context:
            if entry_key == key:
                return entry_value
        return None


@dataclass(frozen=True)
class Result:
    """
    Generic result type for operations that can fail.
    Either contains a value OR an error, never both.
    """
    value: Optional[Any] = None
    error: Optional[Error] = None

    @property
    def is_success(self) -> bool:
        return self.error is None

    @property
    def is_failure(self) -> bool:
        return self.error is not None

    @staticmethod
    def success(value: Any = None) -> Result:
        return Result(value=value, error=None)

    @staticmethod
    def failure(error: Error) -> Result:
        return Result(value=None, error=error)

    @staticmethod
    def fail(code: ErrorCode, message: str, **context: Any) -> Result:
        """Shorthand for ``Result.failure(Error.create(...))``."""
        return Result.failure(Error.create(code, message, **context))


# =============================================================================
# TEMPORAL TYPES (Immutable, explicit semantics)
# =============================================================================

@dataclass(frozen=True)
class Timestamp:
    """
    Immutable timestamp with explicit semantics.
    All timestamps are UTC, never local time.
    """
    value: datetime

    def __post_init__(self):
        # Ensure UTC timezone
        if self.value.tzinfo is None:
            object.__setattr__(self, 'value', self.value.replace(tzinfo=timezone.utc))

    @staticmethod
    def now() -> Timestamp:
        return Timestamp(value=datetime.now(timezone.utc))

    @staticmethod
    def from_iso(iso_string: str) -> Timestamp:
        dt = datetime.fromisoformat(iso_string.replace('Z', '+00:00'))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return Timestamp(value=dt)

    def to_iso(self) -> str:
        return self.value.isoformat()
