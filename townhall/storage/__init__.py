"""
Storage Layer

RESPONSIBILITY: Content-addressed object persistence and the HEAD pointer
ALLOWED INPUTS: Untrusted bucket names, record ids and JSON payloads
OUTPUTS: Result values holding ids, StoredObjects and References

WHAT THIS LAYER MUST NOT DO:
============================
- Interpret payloads beyond structural safety checks
- Maintain relationship edges (derived in core.relationships)
- Touch the filesystem before validation passes
- Leak filesystem paths in errors or audit entries

BOUNDARY ENFORCEMENT:
=====================
- Every path is containment-checked right before the syscall that uses it
- Objects are written once per content id; writes are atomic replacements
- All operations return Result values and never raise
"""

from .validation import (
    DEFAULT_MAX_PAYLOAD_BYTES,
    DEFAULT_MAX_PAYLOAD_DEPTH,
    RESERVED_KEYS,
    IdentifierValidator,
    canonical_serialize,
    check_payload_structure,
    content_hash,
    prepare_payload,
    resolve_within_root,
    validate_bucket,
    validate_id,
)
from .objects import DEFAULT_BUCKETS, ObjectStore, StoreConfig
from .refs import ReferenceStore
from .resolver import HashResolver
from .cache import (
    CachedRecordReader,
    DirectoryListing,
    InvalidationPlan,
    ObjectStoreListing,
    RecordCache,
    plan_invalidation,
)

__all__ = [
    'CachedRecordReader',
    'DEFAULT_BUCKETS',
    'DEFAULT_MAX_PAYLOAD_BYTES',
    'DEFAULT_MAX_PAYLOAD_DEPTH',
    'DirectoryListing',
    'HashResolver',
    'IdentifierValidator',
    'InvalidationPlan',
    'ObjectStore',
    'ObjectStoreListing',
    'RESERVED_KEYS',
    'RecordCache',
    'ReferenceStore',
    'StoreConfig',
    'canonical_serialize',
    'check_payload_structure',
    'content_hash',
    'plan_invalidation',
    'prepare_payload',
    'resolve_within_root',
    'validate_bucket',
    'validate_id',
]
