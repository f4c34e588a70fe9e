"""
Townhall Record Store

A local, Git-inspired store for structured debate records. Each layer
communicates only through explicit contracts, never through shared
mutable state.

LAYER STRUCTURE:
================

1. CONTRACTS (contracts/)
   - Responsibility: Immutable data types, error codes, Result values
   - Outputs: StoredObject, Reference, RelationshipEdge, Chain, Error
   - MUST NOT: Perform I/O or hold state

2. STORAGE LAYER (storage/)
   - Responsibility: Content-addressed objects, the HEAD pointer,
     short-id resolution, version-tracked caching
   - Allowed inputs: Untrusted bucket names, ids and JSON payloads
   - Outputs: Result values holding ids, StoredObjects, References
   - MUST NOT: Touch the filesystem before validation, leak paths

3. CORE RELATIONSHIP LAYER (core/)
   - Responsibility: Edge rules, strength scoring, cycles, chains,
     debate lifecycle and argument structure rules
   - Allowed inputs: RecordRef metadata and edge sets
   - Outputs: RelationshipEdge, Chain
   - MUST NOT: Persist data

4. OBSERVABILITY & AUDIT LAYER (observability/)
   - Responsibility: Audit log and metrics for every layer
   - Outputs: AuditLogEntry lists, MetricPoint series
   - MUST NOT: Modify system behavior or record filesystem paths

CONSTRAINTS ENFORCED:
=====================
- Immutability-first: stored records and edges are frozen values
- Deterministic: identical payloads always produce identical ids
- Explicit errors: every public operation returns a Result
- Acyclic: the relationship graph never contains a cycle
"""

from .contracts import (
    ArgumentType,
    Chain,
    ChainDirection,
    CloseVote,
    ConcessionType,
    DebateStatus,
    Error,
    ErrorCode,
    ErrorKind,
    RebuttalType,
    RecordRef,
    Reference,
    RelationKind,
    RelationshipEdge,
    Result,
    SessionState,
    StoredObject,
    VoteTally,
)
from .core import RelationshipGraph
from .engine import TownhallConfig, TownhallEngine
from .observability import ObservabilityConfig, ObservabilityEngine
from .storage import (
    HashResolver,
    IdentifierValidator,
    ObjectStore,
    ReferenceStore,
    StoreConfig,
)

__version__ = "0.1.0"

__all__ = [
    'ArgumentType',
    'Chain',
    'ChainDirection',
    'CloseVote',
    'ConcessionType',
    'DebateStatus',
    'Error',
    'ErrorCode',
    'ErrorKind',
    'HashResolver',
    'IdentifierValidator',
    'ObjectStore',
    'ObservabilityConfig',
    'ObservabilityEngine',
    'RebuttalType',
    'RecordRef',
    'Reference',
    'ReferenceStore',
    'RelationKind',
    'RelationshipEdge',
    'RelationshipGraph',
    'Result',
    'SessionState',
    'StoreConfig',
    'StoredObject',
    'TownhallConfig',
    'TownhallEngine',
    'VoteTally',
]
