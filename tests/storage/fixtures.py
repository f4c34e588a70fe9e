"""
Storage Test Fixtures

Explicit, deterministic payloads and helpers shared by the storage tests.
"""

from typing import Any, Dict, Set
import hashlib
import os

from townhall.observability import ObservabilityEngine
from townhall.storage import ObjectStore, StoreConfig


# =============================================================================
# IDENTIFIERS
# =============================================================================

# Inputs that must never reach the filesystem as a bucket or id
TRAVERSAL_INPUTS = ("../secret", "/etc/passwd", "a\0b", "AB12", "foo/../bar")

TOPIC_PAYLOAD = {"topic": "X"}
TOPIC_ID = hashlib.sha256(b'{"topic":"X"}').hexdigest()

EXPLICIT_ID = "0123abcd-4567-89ef"


# =============================================================================
# PAYLOADS
# =============================================================================

ARGUMENT_PAYLOAD: Dict[str, Any] = {
    "agent_id": "agent-alpha",
    "session_id": TOPIC_ID,
    "argument_type": "deductive",
    "content": "All debates end; this is a debate; therefore it ends.",
}

UNICODE_PAYLOAD = {"title": "Débat sur l'énergie", "tags": ["élan", "日本"], "score": 0.75}


def nested_payload(depth: int) -> Any:
    """Payload with exactly ``depth`` nested containers."""
    payload: Any = "leaf"
    for level in range(depth):
        payload = {"level": payload} if level % 2 == 0 else [payload]
    return payload


def oversized_payload(limit: int) -> Dict[str, str]:
    """Single-key payload whose serialization exceeds ``limit`` bytes."""
    return {"blob": "x" * (limit + 1)}


# =============================================================================
# STORE FACTORIES
# =============================================================================

def make_store(root, **overrides) -> ObjectStore:
    """ObjectStore rooted at ``root`` with its own observability engine."""
    config = StoreConfig(root=str(root), **overrides)
    return ObjectStore(config, ObservabilityEngine())


def files_under(root) -> Set[str]:
    """Every regular file below ``root``, relative to it."""
    found = set()
    for directory, _, names in os.walk(str(root)):
        for name in names:
            found.add(os.path.relpath(os.path.join(directory, name), str(root)))
    return found


def object_path(root, bucket: str, record_id: str) -> str:
    return os.path.join(str(root), "objects", bucket, f"{record_id}.json")
