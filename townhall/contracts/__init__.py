"""
Contracts Module

Explicit data types shared between the storage, reference and
relationship layers. No layer may import implementation details from
another layer; they exchange only these types.

DESIGN PRINCIPLES:
==================
1. All contract types are immutable (frozen dataclasses)
2. Errors are values (Result/Error), never raised across a layer boundary
3. All timestamps use UTC and are never mutated
4. Content-hash identity for deduplication and integrity verification
"""

from .base import Error, ErrorCode, ErrorKind, Result, Timestamp
from .records import (
    ArgumentType,
    AuditEventType,
    AuditLogEntry,
    Chain,
    ChainDirection,
    CloseVote,
    ConcessionType,
    DebateStatus,
    MetricPoint,
    RebuttalType,
    RecordRef,
    Reference,
    RelationKind,
    RelationshipEdge,
    SessionState,
    StoredObject,
    VoteTally,
)

__all__ = [
    'ArgumentType',
    'AuditEventType',
    'AuditLogEntry',
    'Chain',
    'ChainDirection',
    'CloseVote',
    'ConcessionType',
    'DebateStatus',
    'Error',
    'ErrorCode',
    'ErrorKind',
    'MetricPoint',
    'RebuttalType',
    'RecordRef',
    'Reference',
    'RelationKind',
    'RelationshipEdge',
    'Result',
    'SessionState',
    'StoredObject',
    'Timestamp',
    'VoteTally',
]
