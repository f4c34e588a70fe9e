"""
Content-Addressed Object Store
==============================

Git-like object storage: every record lives at
``<root>/objects/<bucket>/<id>.json`` where id is the SHA-256 of the
canonical payload unless the caller supplies one.

INVARIANTS:
- All validation happens before any filesystem call
- Path containment is re-checked immediately before every syscall
- Writes are whole-file replacements (temp file + os.replace)
- Directories are created 0o700, object files 0o600
- Error messages name bucket/id, never filesystem paths

EXPLICIT FAILURE STATES:
- OBJECT_NOT_FOUND: no file for bucket/id
- OBJECT_CORRUPTED: on-disk object oversized, unparsable or unsafe
- CONTENT_CONFLICT: explicit id already holds different content (write-once)
- STORAGE_FAILURE: any other I/O error
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
import asyncio
import hashlib
import json
import os
import stat
import tempfile
import time

from ..contracts.base import Error, ErrorCode, ErrorKind, Result, Timestamp
from ..contracts.records import AuditEventType, StoredObject
from ..observability import ObservabilityEngine
from .validation import (
    DEFAULT_MAX_PAYLOAD_BYTES,
    DEFAULT_MAX_PAYLOAD_DEPTH,
    IdentifierValidator,
    check_payload_structure,
    content_hash,
    prepare_payload,
    validate_bucket,
    validate_id,
)


OBJECTS_DIR = 'objects'
REFS_DIR = 'refs'
OBJECT_SUFFIX = '.json'

DEFAULT_BUCKETS = ('arguments', 'simulations', 'agents')

# Room for the id/bucket/storedAt envelope around a maximum-size payload
ENVELOPE_ALLOWANCE_BYTES = 64 * 1024

PRIVATE_DIR_MODE = 0o700

_DOCUMENT_KEYS = frozenset({'id', 'bucket', 'payload', 'storedAt'})


@dataclass
class StoreConfig:
    """Configuration for the object and reference stores."""
    root: str = ".townhall"
    max_payload_depth: int = DEFAULT_MAX_PAYLOAD_DEPTH
    max_payload_bytes: int = DEFAULT_MAX_PAYLOAD_BYTES
    known_buckets: Tuple[str, ...] = DEFAULT_BUCKETS
    write_once: bool = True

    @property
    def max_file_bytes(self) -> int:
        return self.max_payload_bytes + ENVELOPE_ALLOWANCE_BYTES


def describe_os_error(exc: OSError) -> str:
    """Human-readable reason without the filename the OSError carries."""
    return exc.strerror or exc.__class__.__name__


def make_private_dirs(validator: IdentifierValidator, *parts: str) -> Result:
    """
    Create ``root/part1/part2/...`` one level at a time with 0o700.

    Each level is containment-checked before mkdir. Existing directories
    are left as they are.
    """
    os.makedirs(validator.root, mode=PRIVATE_DIR_MODE, exist_ok=True)

    current: List[str] = []
    for part in parts:
        current.append(part)
        path_result = validator.resolve(*current)
        if path_result.is_failure:
            return path_result
        try:
            os.mkdir(path_result.value, PRIVATE_DIR_MODE)
        except FileExistsError:
            pass

    return validator.resolve(*parts) if parts else Result.success(validator.root)


def write_private_file(directory: str, final_path: str, data: bytes, prefix: str):
    """Atomically replace ``final_path`` with ``data`` (mode 0o600)."""
    # mkstemp creates the file 0o600 regardless of umask
    fd, temp_path = tempfile.mkstemp(dir=directory, prefix=prefix, suffix='.tmp')
    try:
        with os.fdopen(fd, 'wb') as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, final_path)
    except BaseException:
        try:
            os.unlink(temp_path)
        except FileNotFoundError:
            pass
        raise


class ObjectStore:
    """
    Async content-addressed object store.

    Every public operation returns a Result and never raises. Blocking
    filesystem work runs in worker threads via asyncio.to_thread; the
    store keeps no in-memory state beyond configuration, so concurrent
    callers only ever race on whole-file replacements.
    """

    LAYER = "storage"

    def __init__(
        self,
        config: Optional[StoreConfig] = None,
        observability: Optional[ObservabilityEngine] = None
    ):
        self._config = config or StoreConfig()
        self._validator = IdentifierValidator(self._config.root)
        self._observability = observability or ObservabilityEngine()

    @property
    def root(self) -> str:
        return self._validator.root

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def validator(self) -> IdentifierValidator:
        return self._validator

    @property
    def observability(self) -> ObservabilityEngine:
        return self._observability

    # =========================================================================
    # WRITE
    # =========================================================================

    async def store(
        self,
        bucket: str,
        payload: Any,
        explicit_id: Optional[str] = None
    ) -> Result:
        """
        Persist a payload and return its id.

        Without ``explicit_id`` the id is the hex SHA-256 of the canonical
        serialization, so storing identical content twice is an idempotent
        overwrite.
        """
        bucket_result = validate_bucket(bucket)
        if bucket_result.is_failure:
            return self._reject("store", bucket_result)

        if explicit_id is not None:
            id_result = validate_id(explicit_id)
            if id_result.is_failure:
                return self._reject("store", id_result, bucket=bucket)

        prepared = prepare_payload(
            payload,
            max_depth=self._config.max_payload_depth,
            max_bytes=self._config.max_payload_bytes
        )
        if prepared.is_failure:
            return self._reject("store", prepared, bucket=bucket)

        serialized: bytes = prepared.value
        record_id = explicit_id if explicit_id is not None else hashlib.sha256(serialized).hexdigest()

        started = time.perf_counter()
        result = await asyncio.to_thread(
            self._write_object, bucket, record_id, payload, explicit_id is not None
        )
        elapsed_ms = (time.perf_counter() - started) * 1000

        if result.is_failure:
            return self._reject("store", result, bucket=bucket, record_id=record_id)

        self._observability.collect_metric("objects_stored_total", 1, {"bucket": bucket})
        self._observability.collect_metric("storage_write_latency_ms", elapsed_ms)
        self._observability.log_audit(
            layer=self.LAYER,
            action="object_stored",
            entity_id=record_id,
            entity_type=bucket,
            event_type=AuditEventType.WRITE,
            metadata=(
                ("bytes", str(len(serialized))),
                ("addressing", "explicit" if explicit_id is not None else "content"),
            )
        )
        return Result.success(record_id)

    def _write_object(
        self,
        bucket: str,
        record_id: str,
        payload: Any,
        explicit: bool
    ) -> Result:
        try:
            dir_result = make_private_dirs(self._validator, OBJECTS_DIR, bucket)
            if dir_result.is_failure:
                return dir_result

            # Final gate right before the write
            path_result = self._object_path(bucket, record_id)
            if path_result.is_failure:
                return path_result
            file_path = path_result.value

            if explicit and self._config.write_once and os.path.lexists(file_path):
                conflict = self._check_write_once(bucket, record_id, file_path, payload)
                if conflict.is_failure:
                    return conflict

            stored = StoredObject(
                id=record_id,
                bucket=bucket,
                payload=payload,
                stored_at=Timestamp.now()
            )
            data = json.dumps(
                stored.to_document(),
                sort_keys=True,
                separators=(',', ':'),
                ensure_ascii=False,
                allow_nan=False
            ).encode('utf-8')

            write_private_file(dir_result.value, file_path, data, prefix=f'.{record_id}.')
            return Result.success(stored)
        except OSError as exc:
            return Result.fail(
                ErrorCode.STORAGE_FAILURE,
                f"Failed to store object {bucket}/{record_id}: {describe_os_error(exc)}",
                bucket=bucket,
                id=record_id
            )

    def _check_write_once(
        self,
        bucket: str,
        record_id: str,
        file_path: str,
        payload: Any
    ) -> Result:
        existing = self._read_object(bucket, record_id, file_path)
        if existing.is_failure:
            return existing
        if content_hash(existing.value.payload) != content_hash(payload):
            return Result.fail(
                ErrorCode.CONTENT_CONFLICT,
                f"Object {bucket}/{record_id} already exists with different content",
                bucket=bucket,
                id=record_id
            )
        return Result.success()

    # =========================================================================
    # READ
    # =========================================================================

    async def retrieve(self, bucket: str, record_id: str) -> Result:
        """Load and re-validate a stored object."""
        key_result = self._validator.validate_object_key(bucket, record_id)
        if key_result.is_failure:
            return self._reject("retrieve", key_result)

        result = await asyncio.to_thread(self._retrieve_sync, bucket, record_id)
        if result.is_failure:
            return self._reject("retrieve", result, bucket=bucket, record_id=record_id)
        return result

    def _retrieve_sync(self, bucket: str, record_id: str) -> Result:
        path_result = self._object_path(bucket, record_id)
        if path_result.is_failure:
            return path_result
        return self._read_object(bucket, record_id, path_result.value)

    def _read_object(self, bucket: str, record_id: str, file_path: str) -> Result:
        max_bytes = self._config.max_file_bytes
        try:
            with open(file_path, 'rb') as handle:
                if os.fstat(handle.fileno()).st_size > max_bytes:
                    return self._corrupted(bucket, record_id, "exceeds maximum size")
                raw = handle.read(max_bytes + 1)
        except (FileNotFoundError, NotADirectoryError):
            return Result.fail(
                ErrorCode.OBJECT_NOT_FOUND,
                f"Object not found: {bucket}/{record_id}",
                bucket=bucket,
                id=record_id
            )
        except OSError as exc:
            return Result.fail(
                ErrorCode.STORAGE_FAILURE,
                f"Failed to retrieve object {bucket}/{record_id}: {describe_os_error(exc)}",
                bucket=bucket,
                id=record_id
            )

        if len(raw) > max_bytes:
            return self._corrupted(bucket, record_id, "exceeds maximum size")

        try:
            document = json.loads(raw.decode('utf-8'))
        except (UnicodeDecodeError, ValueError, RecursionError):
            return self._corrupted(bucket, record_id, "is not valid JSON")

        return self._document_to_object(document, bucket, record_id)

    def _document_to_object(self, document: Any, bucket: str, record_id: str) -> Result:
        if not isinstance(document, dict) or set(document.keys()) != _DOCUMENT_KEYS:
            return self._corrupted(bucket, record_id, "has an invalid envelope")

        if document['id'] != record_id or document['bucket'] != bucket:
            return self._corrupted(bucket, record_id, "does not match its location")

        stored_at = document['storedAt']
        if not isinstance(stored_at, str):
            return self._corrupted(bucket, record_id, "has an invalid timestamp")
        try:
            timestamp = Timestamp.from_iso(stored_at)
        except ValueError:
            return self._corrupted(bucket, record_id, "has an invalid timestamp")

        structure = check_payload_structure(document['payload'], self._config.max_payload_depth)
        if structure.is_failure:
            return self._corrupted(
                bucket, record_id, f"failed validation ({structure.error.code.label})"
            )

        return Result.success(StoredObject(
            id=record_id,
            bucket=bucket,
            payload=document['payload'],
            stored_at=timestamp
        ))

    @staticmethod
    def _corrupted(bucket: str, record_id: str, reason: str) -> Result:
        return Result.fail(
            ErrorCode.OBJECT_CORRUPTED,
            f"Stored object {bucket}/{record_id} {reason}",
            bucket=bucket,
            id=record_id
        )

    async def exists(self, bucket: str, record_id: str) -> Result:
        """Existence check. Missing objects are ``False``, not an error."""
        key_result = self._validator.validate_object_key(bucket, record_id)
        if key_result.is_failure:
            return self._reject("exists", key_result)

        result = await asyncio.to_thread(self._exists_sync, bucket, record_id)
        if result.is_failure:
            return self._reject("exists", result, bucket=bucket, record_id=record_id)
        return result

    def _exists_sync(self, bucket: str, record_id: str) -> Result:
        path_result = self._object_path(bucket, record_id)
        if path_result.is_failure:
            return path_result
        try:
            mode = os.stat(path_result.value).st_mode
        except (FileNotFoundError, NotADirectoryError):
            return Result.success(False)
        except OSError as exc:
            return Result.fail(
                ErrorCode.STORAGE_FAILURE,
                f"Failed to check existence of {bucket}/{record_id}: {describe_os_error(exc)}",
                bucket=bucket,
                id=record_id
            )
        return Result.success(stat.S_ISREG(mode))

    async def list(self, bucket: str) -> Result:
        """Sorted ids stored in a bucket. A missing bucket lists as empty."""
        bucket_result = validate_bucket(bucket)
        if bucket_result.is_failure:
            return self._reject("list", bucket_result)

        result = await asyncio.to_thread(self._scan_bucket, bucket)
        if result.is_failure:
            return self._reject("list", result, bucket=bucket)
        return Result.success(sorted(result.value.keys()))

    async def list_versions(self, bucket: str) -> Result:
        """``{id: mtime_ns}`` for a bucket, used for cache invalidation."""
        bucket_result = validate_bucket(bucket)
        if bucket_result.is_failure:
            return self._reject("list_versions", bucket_result)

        result = await asyncio.to_thread(self._scan_bucket, bucket)
        if result.is_failure:
            return self._reject("list_versions", result, bucket=bucket)
        return result

    def _scan_bucket(self, bucket: str) -> Result:
        dir_result = self._validator.resolve(OBJECTS_DIR, bucket)
        if dir_result.is_failure:
            return dir_result

        versions: Dict[str, int] = {}
        try:
            with os.scandir(dir_result.value) as entries:
                for entry in entries:
                    if not entry.name.endswith(OBJECT_SUFFIX):
                        continue
                    if not entry.is_file(follow_symlinks=False):
                        continue
                    record_id = entry.name[:-len(OBJECT_SUFFIX)]
                    if validate_id(record_id).is_failure:
                        continue
                    versions[record_id] = entry.stat(follow_symlinks=False).st_mtime_ns
        except (FileNotFoundError, NotADirectoryError):
            return Result.success({})
        except OSError as exc:
            return Result.fail(
                ErrorCode.STORAGE_FAILURE,
                f"Failed to list objects in {bucket}: {describe_os_error(exc)}",
                bucket=bucket
            )
        return Result.success(versions)

    # =========================================================================
    # DELETE / INITIALIZE
    # =========================================================================

    async def delete(self, bucket: str, record_id: str) -> Result:
        """Remove an object. Deleting a missing object succeeds."""
        key_result = self._validator.validate_object_key(bucket, record_id)
        if key_result.is_failure:
            return self._reject("delete", key_result)

        result = await asyncio.to_thread(self._delete_sync, bucket, record_id)
        if result.is_failure:
            return self._reject("delete", result, bucket=bucket, record_id=record_id)

        self._observability.log_audit(
            layer=self.LAYER,
            action="object_deleted",
            entity_id=record_id,
            entity_type=bucket,
            event_type=AuditEventType.DELETE
        )
        return result

    def _delete_sync(self, bucket: str, record_id: str) -> Result:
        path_result = self._object_path(bucket, record_id)
        if path_result.is_failure:
            return path_result
        try:
            os.unlink(path_result.value)
        except (FileNotFoundError, NotADirectoryError):
            pass
        except OSError as exc:
            return Result.fail(
                ErrorCode.STORAGE_FAILURE,
                f"Failed to delete object {bucket}/{record_id}: {describe_os_error(exc)}",
                bucket=bucket,
                id=record_id
            )
        return Result.success()

    async def initialize(self) -> Result:
        """Create the root, one directory per known bucket, and refs/."""
        for bucket in self._config.known_buckets:
            bucket_result = validate_bucket(bucket)
            if bucket_result.is_failure:
                return self._reject("initialize", bucket_result)

        result = await asyncio.to_thread(self._initialize_sync)
        if result.is_failure:
            return self._reject("initialize", result)

        self._observability.log_audit(
            layer=self.LAYER,
            action="store_initialized",
            metadata=(("buckets", ",".join(self._config.known_buckets)),)
        )
        return Result.success()

    def _initialize_sync(self) -> Result:
        try:
            for bucket in self._config.known_buckets:
                created = make_private_dirs(self._validator, OBJECTS_DIR, bucket)
                if created.is_failure:
                    return created
            created = make_private_dirs(self._validator, REFS_DIR)
            if created.is_failure:
                return created
        except OSError as exc:
            return Result.fail(
                ErrorCode.STORAGE_FAILURE,
                f"Failed to initialize storage: {describe_os_error(exc)}"
            )
        return Result.success()

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _object_path(self, bucket: str, record_id: str) -> Result:
        return self._validator.resolve(OBJECTS_DIR, bucket, f"{record_id}{OBJECT_SUFFIX}")

    def _reject(
        self,
        action: str,
        result: Result,
        bucket: Optional[str] = None,
        record_id: Optional[str] = None
    ) -> Result:
        """Audit a failed operation and hand the failure back unchanged."""
        error: Error = result.error
        if error.kind in (ErrorKind.VALIDATION, ErrorKind.SECURITY):
            self._observability.collect_metric(
                "storage_rejections_total", 1, {"code": error.code.label}
            )
        self._observability.log_error(
            layer=self.LAYER,
            action=action,
            error=error,
            entity_id=record_id,
            entity_type=bucket
        )
        return result
