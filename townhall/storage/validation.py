"""
Identifier & Payload Validation
===============================

Pure checks applied to every untrusted input before the store touches
the filesystem.

GUARANTEES:
===========
1. Bucket names match [a-z0-9-]+ (full match, bounded length)
2. Record ids match [a-f0-9-]+ (full match, bounded length); no path
   separators, null bytes, dots or uppercase can get through
3. Every derived path is canonicalized and proven to live under the
   store root immediately before the syscall that uses it
4. Payloads are bounded in depth and size and carry no reserved keys

EXPLICIT FAILURE STATES:
- INVALID_BUCKET / INVALID_ID: malformed identifier
- PATH_TRAVERSAL: canonical path escapes the root
- PAYLOAD_TOO_DEEP / PAYLOAD_TOO_LARGE / RESERVED_KEY / INVALID_PAYLOAD
"""

from __future__ import annotations
from typing import Any, List, Tuple
import hashlib
import json
import math
import os
import re

from ..contracts.base import ErrorCode, Result


BUCKET_PATTERN = re.compile(r'[a-z0-9-]+')
ID_PATTERN = re.compile(r'[a-f0-9-]+')

MAX_BUCKET_LENGTH = 64
MAX_ID_LENGTH = 128

DEFAULT_MAX_PAYLOAD_DEPTH = 32
DEFAULT_MAX_PAYLOAD_BYTES = 10 * 1024 * 1024

# Keys that become prototype-pollution vectors once a payload reaches a
# JavaScript consumer or an unsafe deep-merge.
RESERVED_KEYS = frozenset({'__proto__', 'constructor', 'prototype'})

_SCALAR_TYPES = (str, bool, int, type(None))


# =============================================================================
# IDENTIFIERS
# =============================================================================

def validate_bucket(name: Any) -> Result:
    """Validate a bucket name. Returns the name on success."""
    if not isinstance(name, str) or not name.strip():
        return Result.fail(ErrorCode.INVALID_BUCKET, "Invalid bucket: cannot be empty")

    if len(name) > MAX_BUCKET_LENGTH:
        return Result.fail(
            ErrorCode.INVALID_BUCKET,
            f"Invalid bucket: exceeds {MAX_BUCKET_LENGTH} characters"
        )

    if not BUCKET_PATTERN.fullmatch(name):
        return Result.fail(
            ErrorCode.INVALID_BUCKET,
            "Invalid bucket: must be lowercase alphanumeric with hyphens"
        )

    return Result.success(name)


def validate_id(record_id: Any) -> Result:
    """Validate a record id. Returns the id on success."""
    if not isinstance(record_id, str) or not record_id.strip():
        return Result.fail(ErrorCode.INVALID_ID, "Invalid ID format: cannot be empty")

    if len(record_id) > MAX_ID_LENGTH:
        return Result.fail(
            ErrorCode.INVALID_ID,
            f"Invalid ID format: exceeds {MAX_ID_LENGTH} characters"
        )

    if not ID_PATTERN.fullmatch(record_id):
        return Result.fail(
            ErrorCode.INVALID_ID,
            "Invalid ID format: must be lowercase hexadecimal with hyphens"
        )

    return Result.success(record_id)


def resolve_within_root(root: str, candidate: str) -> Result:
    """
    Canonicalize ``candidate`` and prove it lies inside ``root``.

    Symlinks are resolved on both sides, so a link planted inside the
    store that points elsewhere is rejected. Returns the canonical path.
    """
    resolved_root = os.path.realpath(root)
    resolved_path = os.path.realpath(candidate)

    try:
        relative_path = os.path.relpath(resolved_path, resolved_root)
    except ValueError:
        # Different drives on Windows
        return _traversal_failure()

    if (
        relative_path == '..'
        or relative_path.startswith('../')
        or relative_path.startswith('..\\')
        or os.path.isabs(relative_path)
        or os.path.normpath(os.path.join(resolved_root, relative_path)) != resolved_path
    ):
        return _traversal_failure()

    return Result.success(resolved_path)


def _traversal_failure() -> Result:
    return Result.fail(
        ErrorCode.PATH_TRAVERSAL,
        "Path traversal detected: attempted access outside storage directory"
    )


class IdentifierValidator:
    """
    Identifier checks bound to one store root.

    ``resolve`` is the final gate before a filesystem call: it re-derives
    the canonical path even though bucket and id were validated earlier.
    """

    def __init__(self, root: str):
        self._root = os.path.abspath(root)

    @property
    def root(self) -> str:
        return self._root

    validate_bucket = staticmethod(validate_bucket)
    validate_id = staticmethod(validate_id)

    def resolve(self, *parts: str) -> Result:
        return resolve_within_root(self._root, os.path.join(self._root, *parts))

    def validate_object_key(self, bucket: Any, record_id: Any) -> Result:
        """Validate a (bucket, id) pair, bucket first."""
        bucket_result = validate_bucket(bucket)
        if bucket_result.is_failure:
            return bucket_result
        return validate_id(record_id)


# =============================================================================
# PAYLOADS
# =============================================================================

def check_payload_structure(payload: Any, max_depth: int = DEFAULT_MAX_PAYLOAD_DEPTH) -> Result:
    """
    Walk a payload iteratively and reject unsafe structure.

    Depth counts nested containers: ``{"a": 1}`` has depth 1. The walk is
    iterative and stops at ``max_depth``, so self-referencing containers
    and pathological nesting cannot exhaust the interpreter stack.

    Only dicts and lists are containers. Tuples are rejected since they
    would be read back as lists.
    """
    stack: List[Tuple[Any, int]] = [(payload, 0)]

    while stack:
        value, depth = stack.pop()

        if isinstance(value, dict):
            depth += 1
            if depth > max_depth:
                return Result.fail(
                    ErrorCode.PAYLOAD_TOO_DEEP,
                    f"Payload nesting exceeds maximum depth of {max_depth}"
                )
            for key, item in value.items():
                if not isinstance(key, str):
                    return Result.fail(
                        ErrorCode.INVALID_PAYLOAD,
                        "Payload object keys must be strings"
                    )
                if key in RESERVED_KEYS:
                    return Result.fail(
                        ErrorCode.RESERVED_KEY,
                        f"Payload contains reserved key '{key}'",
                        key=key
                    )
                stack.append((item, depth))

        elif isinstance(value, list):
            depth += 1
            if depth > max_depth:
                return Result.fail(
                    ErrorCode.PAYLOAD_TOO_DEEP,
                    f"Payload nesting exceeds maximum depth of {max_depth}"
                )
            stack.extend((item, depth) for item in value)

        elif isinstance(value, float):
            if not math.isfinite(value):
                return Result.fail(
                    ErrorCode.INVALID_PAYLOAD,
                    "Payload contains a non-finite number"
                )

        elif not isinstance(value, _SCALAR_TYPES):
            return Result.fail(
                ErrorCode.INVALID_PAYLOAD,
                f"Payload contains unsupported type '{type(value).__name__}'"
            )

    return Result.success(payload)


def canonical_serialize(payload: Any) -> bytes:
    """Deterministic JSON encoding: sorted keys, no whitespace, UTF-8."""
    return json.dumps(
        payload,
        sort_keys=True,
        separators=(',', ':'),
        ensure_ascii=False,
        allow_nan=False
    ).encode('utf-8')


def content_hash(payload: Any) -> str:
    """Hex SHA-256 of the canonical serialization."""
    return hashlib.sha256(canonical_serialize(payload)).hexdigest()


def prepare_payload(
    payload: Any,
    max_depth: int = DEFAULT_MAX_PAYLOAD_DEPTH,
    max_bytes: int = DEFAULT_MAX_PAYLOAD_BYTES
) -> Result:
    """
    Run every payload check and return the canonical bytes.

    Structure is checked before serialization; size after, but before
    anything is written.
    """
    structure_result = check_payload_structure(payload, max_depth)
    if structure_result.is_failure:
        return structure_result

    try:
        serialized = canonical_serialize(payload)
    except (TypeError, ValueError) as exc:
        return Result.fail(
            ErrorCode.INVALID_PAYLOAD,
            f"Payload is not JSON-serializable: {exc.__class__.__name__}"
        )

    if len(serialized) > max_bytes:
        return Result.fail(
            ErrorCode.PAYLOAD_TOO_LARGE,
            f"Payload exceeds maximum size of {max_bytes} bytes",
            size=len(serialized)
        )

    return Result.success(serialized)
