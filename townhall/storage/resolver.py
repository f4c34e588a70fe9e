"""
Short-id resolution (git-style abbreviated hashes).
"""

from __future__ import annotations
import re

from ..contracts.base import ErrorCode, Result
from .objects import ObjectStore


MIN_SHORT_ID_LENGTH = 7

FULL_HASH_PATTERN = re.compile(r'[a-f0-9]{64}')

# Ids listed in an ambiguity error
MAX_LISTED_MATCHES = 3


def is_full_hash(value: str) -> bool:
    return bool(FULL_HASH_PATTERN.fullmatch(value))


class HashResolver:
    """
    Expand an abbreviated id to the unique stored id it prefixes.

    An exact match always wins, so explicit ids that happen to prefix
    other ids stay addressable.
    """

    def __init__(self, object_store: ObjectStore):
        self._objects = object_store

    async def resolve(self, bucket: str, short_id: str) -> Result:
        key_result = self._objects.validator.validate_object_key(bucket, short_id)
        if key_result.is_failure:
            return key_result

        if is_full_hash(short_id):
            exists = await self._objects.exists(bucket, short_id)
            if exists.is_failure:
                return exists
            if not exists.value:
                return self._not_found(bucket, short_id)
            return Result.success(short_id)

        if len(short_id) < MIN_SHORT_ID_LENGTH:
            return Result.fail(
                ErrorCode.INVALID_ID,
                f"Short id must be at least {MIN_SHORT_ID_LENGTH} characters, got {len(short_id)}"
            )

        listed = await self._objects.list(bucket)
        if listed.is_failure:
            return listed

        ids = listed.value
        if short_id in ids:
            return Result.success(short_id)

        matches = [record_id for record_id in ids if record_id.startswith(short_id)]
        if not matches:
            return self._not_found(bucket, short_id)

        if len(matches) > 1:
            shown = ", ".join(matches[:MAX_LISTED_MATCHES])
            return Result.fail(
                ErrorCode.AMBIGUOUS_ID,
                f"Ambiguous short id '{short_id}' matches {len(matches)} objects: {shown}",
                bucket=bucket,
                matches=len(matches)
            )

        return Result.success(matches[0])

    @staticmethod
    def _not_found(bucket: str, short_id: str) -> Result:
        return Result.fail(
            ErrorCode.OBJECT_NOT_FOUND,
            f"Object not found: {bucket}/{short_id}",
            bucket=bucket,
            id=short_id
        )


__all__ = ['HashResolver', 'MIN_SHORT_ID_LENGTH', 'is_full_hash']
