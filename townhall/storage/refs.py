"""
Reference Store (HEAD)
======================

A single named, mutable pointer to one stored object.

STATE MACHINE:
    Unset  --set_active/switch_active-->  Set(id)
    Set(a) --switch_active(b)---------->  Set(b)
    Set(a) --set_active(b), b != a----->  REFERENCE_CONFLICT
    any    --clear_active-------------->  Unset

A pointer whose target has since been deleted is stale: get_active
reports it as STALE_REFERENCE and set_active treats it as Unset.

Persistence: ``<root>/refs/<name>`` holds the raw id text. Writes are
whole-file replacements; within one process pointer writes are
serialized by an asyncio.Lock.
"""

from __future__ import annotations
from typing import Optional
import asyncio
import os
import re

from ..contracts.base import ErrorCode, ErrorKind, Result
from ..contracts.records import AuditEventType, Reference
from ..observability import ObservabilityEngine
from .objects import (
    REFS_DIR,
    ObjectStore,
    describe_os_error,
    make_private_dirs,
    write_private_file,
)
from .validation import validate_bucket, validate_id


DEFAULT_REFERENCE_NAME = 'HEAD'
DEFAULT_REFERENCE_BUCKET = 'simulations'

REFERENCE_NAME_PATTERN = re.compile(r'[A-Z][A-Z_]*')

# A pointer file only ever holds one id
MAX_POINTER_BYTES = 4096


class ReferenceStore:
    """
    Active-session pointer backed by the object store.

    Targets are checked for existence in ``bucket`` on every transition
    and on every read.
    """

    LAYER = "refs"

    def __init__(
        self,
        object_store: ObjectStore,
        bucket: str = DEFAULT_REFERENCE_BUCKET,
        name: str = DEFAULT_REFERENCE_NAME,
        observability: Optional[ObservabilityEngine] = None
    ):
        if validate_bucket(bucket).is_failure:
            raise ValueError(f"Invalid reference bucket: {bucket!r}")
        if not REFERENCE_NAME_PATTERN.fullmatch(name):
            raise ValueError(f"Invalid reference name: {name!r}")

        self._objects = object_store
        self._bucket = bucket
        self._name = name
        self._observability = observability or object_store.observability
        self._lock = asyncio.Lock()

    @property
    def objects(self) -> ObjectStore:
        return self._objects

    @property
    def name(self) -> str:
        return self._name

    @property
    def bucket(self) -> str:
        return self._bucket

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    async def set_active(self, record_id: str) -> Result:
        """
        Unset -> Set(id) only.

        Setting the id that is already active is a no-op success.
        """
        id_result = validate_id(record_id)
        if id_result.is_failure:
            return self._reject("set_active", id_result)

        async with self._lock:
            target_check = await self._require_target(record_id)
            if target_check.is_failure:
                return self._reject("set_active", target_check, record_id)

            current = await self._current_target()
            if current.is_failure and current.error.code != ErrorCode.STALE_REFERENCE:
                return self._reject("set_active", current, record_id)

            active_id = current.value
            if active_id == record_id:
                return Result.success(Reference(self._name, record_id))
            if active_id is not None:
                return self._reject("set_active", Result.fail(
                    ErrorCode.REFERENCE_CONFLICT,
                    f"Another session is already active: {active_id}",
                    active=active_id,
                    requested=record_id
                ), record_id)

            return await self._write_pointer("set_active", record_id)

    async def switch_active(self, record_id: str) -> Result:
        """Unconditional checkout. Last writer wins."""
        id_result = validate_id(record_id)
        if id_result.is_failure:
            return self._reject("switch_active", id_result)

        async with self._lock:
            target_check = await self._require_target(record_id)
            if target_check.is_failure:
                return self._reject("switch_active", target_check, record_id)

            return await self._write_pointer("switch_active", record_id)

    async def clear_active(self) -> Result:
        """Back to Unset. Clearing an unset pointer succeeds."""
        async with self._lock:
            result = await asyncio.to_thread(self._clear_sync)
            if result.is_failure:
                return self._reject("clear_active", result)

        self._observability.log_audit(
            layer=self.LAYER,
            action="reference_cleared",
            entity_type=self._name,
            event_type=AuditEventType.REFERENCE
        )
        return result

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_active(self) -> Result:
        """Return the active id. Unset and stale pointers are NOT_FOUND errors."""
        current = await self._current_target()
        if current.is_failure:
            return self._reject("get_active", current)

        active_id = current.value
        if active_id is None:
            return Result.fail(
                ErrorCode.REFERENCE_NOT_SET,
                f"No active session: {self._name} is not set"
            )
        return Result.success(active_id)

    async def has_active(self) -> Result:
        """True when the pointer is set to a live object."""
        result = await self.get_active()
        if result.is_success:
            return Result.success(True)
        if result.error.kind == ErrorKind.NOT_FOUND:
            return Result.success(False)
        return result

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _require_target(self, record_id: str) -> Result:
        exists = await self._objects.exists(self._bucket, record_id)
        if exists.is_failure:
            return exists
        if not exists.value:
            return Result.fail(
                ErrorCode.OBJECT_NOT_FOUND,
                f"Object not found: {self._bucket}/{record_id}",
                bucket=self._bucket,
                id=record_id
            )
        return Result.success()

    async def _current_target(self) -> Result:
        """
        Live target id, or None when Unset.

        Stale pointers are returned as STALE_REFERENCE failures so callers
        can choose to treat them as Unset.
        """
        pointer = await asyncio.to_thread(self._read_pointer_sync)
        if pointer.is_failure or pointer.value is None:
            return pointer

        target_id = pointer.value
        exists = await self._objects.exists(self._bucket, target_id)
        if exists.is_failure:
            return exists
        if not exists.value:
            return Result.fail(
                ErrorCode.STALE_REFERENCE,
                f"{self._name} points to a missing object: {self._bucket}/{target_id}",
                id=target_id
            )
        return Result.success(target_id)

    def _read_pointer_sync(self) -> Result:
        path_result = self._objects.validator.resolve(REFS_DIR, self._name)
        if path_result.is_failure:
            return path_result

        try:
            with open(path_result.value, 'rb') as handle:
                raw = handle.read(MAX_POINTER_BYTES + 1)
        except (FileNotFoundError, NotADirectoryError):
            return Result.success(None)
        except OSError as exc:
            return Result.fail(
                ErrorCode.STORAGE_FAILURE,
                f"Failed to read reference {self._name}: {describe_os_error(exc)}"
            )

        if len(raw) > MAX_POINTER_BYTES:
            return self._corrupted("exceeds maximum size")
        try:
            target_id = raw.decode('ascii').strip()
        except UnicodeDecodeError:
            return self._corrupted("is not ASCII text")
        if validate_id(target_id).is_failure:
            return self._corrupted("does not hold a valid id")

        return Result.success(target_id)

    def _corrupted(self, reason: str) -> Result:
        return Result.fail(
            ErrorCode.REFERENCE_CORRUPTED,
            f"Reference {self._name} {reason}"
        )

    async def _write_pointer(self, action: str, record_id: str) -> Result:
        result = await asyncio.to_thread(self._write_pointer_sync, record_id)
        if result.is_failure:
            return self._reject(action, result, record_id)

        self._observability.collect_metric("reference_switches_total", 1)
        self._observability.log_audit(
            layer=self.LAYER,
            action=action,
            entity_id=record_id,
            entity_type=self._name,
            event_type=AuditEventType.REFERENCE
        )
        return Result.success(Reference(self._name, record_id))

    def _write_pointer_sync(self, record_id: str) -> Result:
        try:
            dir_result = make_private_dirs(self._objects.validator, REFS_DIR)
            if dir_result.is_failure:
                return dir_result

            path_result = self._objects.validator.resolve(REFS_DIR, self._name)
            if path_result.is_failure:
                return path_result

            write_private_file(
                dir_result.value,
                path_result.value,
                record_id.encode('ascii'),
                prefix=f'.{self._name}.'
            )
        except OSError as exc:
            return Result.fail(
                ErrorCode.STORAGE_FAILURE,
                f"Failed to write reference {self._name}: {describe_os_error(exc)}"
            )
        return Result.success()

    def _clear_sync(self) -> Result:
        path_result = self._objects.validator.resolve(REFS_DIR, self._name)
        if path_result.is_failure:
            return path_result
        try:
            os.unlink(path_result.value)
        except (FileNotFoundError, NotADirectoryError):
            pass
        except OSError as exc:
            return Result.fail(
                ErrorCode.STORAGE_FAILURE,
                f"Failed to clear reference {self._name}: {describe_os_error(exc)}"
            )
        return Result.success()

    def _reject(self, action: str, result: Result, record_id: Optional[str] = None) -> Result:
        self._observability.log_error(
            layer=self.LAYER,
            action=action,
            error=result.error,
            entity_id=record_id,
            entity_type=self._name
        )
        return result
