"""
Property Tests for Record Store Contracts
Verifies addressing, containment, the single active session and acyclic
relationship graphs over generated inputs.
"""

import asyncio
import os
import tempfile

import networkx as nx
import pytest
from hypothesis import given, settings, strategies as st
from hypothesis.strategies import composite

from townhall.contracts import ErrorCode, ErrorKind, RecordRef, RelationKind
from townhall.core import RelationshipGraph, detect_circular_references
from townhall.observability import ObservabilityEngine
from townhall.storage import (
    ObjectStore,
    ReferenceStore,
    StoreConfig,
    content_hash,
)
from townhall.storage.validation import RESERVED_KEYS

PROPERTY_SETTINGS = settings(max_examples=30, deadline=None)

# =============================================================================
# STRATEGIES (Generators)
# =============================================================================

json_keys = st.text(max_size=8).filter(lambda k: k not in RESERVED_KEYS)

json_scalars = st.one_of(
    st.none(),
    st.booleans(),
    st.integers(min_value=-2**53, max_value=2**53),
    st.floats(allow_nan=False, allow_infinity=False),
    st.text(max_size=20),
)

json_payloads = st.recursive(
    json_scalars,
    lambda children: st.one_of(
        st.lists(children, max_size=4),
        st.dictionaries(json_keys, children, max_size=4),
    ),
    max_leaves=12
)

# Mixes traversal fragments with otherwise valid characters
hostile_names = st.one_of(
    st.sampled_from(["..", "../..", "/etc/passwd", "a/../../b", "a\0b", "", "HEAD"]),
    st.text(alphabet="abc0-./\\\0A~", max_size=12),
)


@composite
def edge_attempts(draw):
    """Random directed pairs over a small set of records."""
    size = draw(st.integers(min_value=2, max_value=6))
    pairs = draw(st.lists(
        st.tuples(st.integers(0, size - 1), st.integers(0, size - 1)),
        max_size=20
    ))
    return size, pairs


@composite
def head_operations(draw):
    """Sequence of (operation, session index) against three sessions."""
    return draw(st.lists(
        st.tuples(st.sampled_from(["set", "switch", "clear"]), st.integers(0, 2)),
        min_size=1,
        max_size=12
    ))


def run(coroutine):
    return asyncio.run(coroutine)


def store_at(root: str) -> ObjectStore:
    return ObjectStore(StoreConfig(root=root), ObservabilityEngine())


def files_outside(base: str, root: str):
    """Regular files below ``base`` that are not below ``root``."""
    outside = []
    for directory, _, names in os.walk(base):
        for name in names:
            path = os.path.realpath(os.path.join(directory, name))
            if os.path.commonpath([path, os.path.realpath(root)]) != os.path.realpath(root):
                outside.append(path)
    return outside


# =============================================================================
# CONTENT ADDRESSING
# =============================================================================

@PROPERTY_SETTINGS
@given(json_payloads)
def test_content_id_is_deterministic_and_round_trips(payload):
    """Same content gives the same id; retrieve returns the stored payload."""
    with tempfile.TemporaryDirectory() as base:
        store = store_at(base)

        first = run(store.store("arguments", payload))
        second = run(store.store("arguments", payload))

        assert first.is_success
        assert first.value == second.value == content_hash(payload)
        assert run(store.retrieve("arguments", first.value)).value.payload == payload


@PROPERTY_SETTINGS
@given(st.dictionaries(json_keys, json_scalars, min_size=2, max_size=6))
def test_key_order_does_not_change_id(payload):
    reordered = dict(reversed(list(payload.items())))
    assert content_hash(payload) == content_hash(reordered)


# =============================================================================
# PATH CONTAINMENT
# =============================================================================

@PROPERTY_SETTINGS
@given(hostile_names, hostile_names)
def test_no_operation_escapes_the_root(bucket, record_id):
    """Whatever the names, nothing is touched outside the store root."""
    with tempfile.TemporaryDirectory() as base:
        root = os.path.join(base, "store")
        store = store_at(root)

        results = [
            run(store.store(bucket, {"n": 1}, explicit_id=record_id)),
            run(store.retrieve(bucket, record_id)),
            run(store.exists(bucket, record_id)),
            run(store.list(bucket)),
            run(store.delete(bucket, record_id)),
        ]

        for result in results:
            if result.is_failure:
                assert result.error.kind in (
                    ErrorKind.VALIDATION, ErrorKind.SECURITY, ErrorKind.NOT_FOUND
                )
        assert files_outside(base, root) == []


@pytest.mark.parametrize("name", ["..", "../x", "x/y", "/abs", "a\0b", "ABC", ""])
def test_hostile_names_never_reach_the_filesystem(tmp_path, name):
    store = store_at(str(tmp_path / "store"))

    result = run(store.store(name, {"n": 1}))
    assert result.error.code == ErrorCode.INVALID_BUCKET

    result = run(store.store("arguments", {"n": 1}, explicit_id=name))
    assert result.error.code == ErrorCode.INVALID_ID
    assert not os.path.exists(str(tmp_path / "store"))


# =============================================================================
# PAYLOAD LIMITS
# =============================================================================

def test_deep_payload_rejected_without_writing(tmp_path):
    payload = "leaf"
    for _ in range(100):
        payload = {"nested": payload}

    store = store_at(str(tmp_path))
    result = run(store.store("arguments", payload))

    assert result.error.code == ErrorCode.PAYLOAD_TOO_DEEP
    assert not os.path.exists(str(tmp_path / "objects"))


def test_oversized_payload_rejected_without_writing(tmp_path):
    payload = {"blob": "x" * (10 * 1024 * 1024 + 1)}

    store = store_at(str(tmp_path))
    result = run(store.store("arguments", payload))

    assert result.error.code == ErrorCode.PAYLOAD_TOO_LARGE
    assert not os.path.exists(str(tmp_path / "objects"))


# =============================================================================
# SINGLE ACTIVE SESSION
# =============================================================================

@PROPERTY_SETTINGS
@given(head_operations())
def test_at_most_one_active_session(operations):
    """HEAD follows a simple model: set never overwrites a different session."""
    with tempfile.TemporaryDirectory() as base:
        store = store_at(base)
        refs = ReferenceStore(store)
        sessions = [
            run(store.store("simulations", {"topic": topic})).value
            for topic in ("A", "B", "C")
        ]

        expected = None
        for operation, index in operations:
            session = sessions[index]
            if operation == "set":
                result = run(refs.set_active(session))
                if expected in (None, session):
                    assert result.is_success
                    expected = session
                else:
                    assert result.error.code == ErrorCode.REFERENCE_CONFLICT
            elif operation == "switch":
                assert run(refs.switch_active(session)).is_success
                expected = session
            else:
                assert run(refs.clear_active()).is_success
                expected = None

            active = run(refs.get_active())
            if expected is None:
                assert active.error.code == ErrorCode.REFERENCE_NOT_SET
            else:
                assert active.value == expected


# =============================================================================
# ACYCLIC RELATIONSHIPS
# =============================================================================

@PROPERTY_SETTINGS
@given(edge_attempts())
def test_graph_stays_acyclic(attempt):
    """Accepted edges never form a cycle, whatever order they arrive in."""
    size, pairs = attempt
    refs = [
        RecordRef(record_id=f"{i:04x}", agent_id=f"agent-{i}", session_id="s1")
        for i in range(size)
    ]
    graph = RelationshipGraph()

    for source, target in pairs:
        result = graph.add_edge(refs[source], refs[target], RelationKind.SUPPORTS)
        if result.is_failure:
            assert result.error.code in (
                ErrorCode.SELF_REFERENCE,
                ErrorCode.DUPLICATE_EDGE,
                ErrorCode.CIRCULAR_REFERENCE,
            )

    edges = graph.edges("s1")
    accepted = nx.DiGraph((e.from_id, e.to_id) for e in edges)
    assert nx.is_directed_acyclic_graph(accepted)
    assert detect_circular_references(edges).is_success
