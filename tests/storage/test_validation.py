"""
Identifier & Payload Validation Tests

AXIOM UNDER TEST:
=================
Untrusted strings are rejected by allow-list, and every derived path is
proven to stay under the store root.
"""

import json
import os

import pytest

from townhall.contracts import ErrorCode, ErrorKind
from townhall.storage.validation import (
    MAX_BUCKET_LENGTH,
    MAX_ID_LENGTH,
    IdentifierValidator,
    canonical_serialize,
    check_payload_structure,
    content_hash,
    prepare_payload,
    resolve_within_root,
    validate_bucket,
    validate_id,
)

from .fixtures import TOPIC_ID, TOPIC_PAYLOAD, TRAVERSAL_INPUTS, nested_payload


# =============================================================================
# BUCKETS & IDS
# =============================================================================

class TestBucketValidation:

    @pytest.mark.parametrize("name", ["arguments", "simulations", "agents", "a-1", "x"])
    def test_accepts_lowercase_alphanumeric(self, name):
        result = validate_bucket(name)
        assert result.is_success
        assert result.value == name

    @pytest.mark.parametrize("name", [
        "", "   ", "Arguments", "args_1", "args.json", "args\n", "a b", None, 42,
    ])
    def test_rejects_outside_alphabet(self, name):
        result = validate_bucket(name)
        assert result.is_failure
        assert result.error.code == ErrorCode.INVALID_BUCKET
        assert result.error.kind == ErrorKind.VALIDATION

    def test_rejects_overlong_name(self):
        assert validate_bucket("a" * MAX_BUCKET_LENGTH).is_success
        assert validate_bucket("a" * (MAX_BUCKET_LENGTH + 1)).is_failure

    @pytest.mark.parametrize("value", TRAVERSAL_INPUTS)
    def test_rejects_traversal_inputs(self, value):
        assert validate_bucket(value).is_failure


class TestIdValidation:

    @pytest.mark.parametrize("record_id", [TOPIC_ID, "abc123", "0123abcd-4567-89ef"])
    def test_accepts_lowercase_hex(self, record_id):
        assert validate_id(record_id).is_success

    @pytest.mark.parametrize("record_id", TRAVERSAL_INPUTS)
    def test_rejects_traversal_inputs(self, record_id):
        result = validate_id(record_id)
        assert result.is_failure
        assert result.error.code == ErrorCode.INVALID_ID

    @pytest.mark.parametrize("record_id", ["", " ", "ABCDEF", "abc.def", "abc\n", "g00d", "abc def"])
    def test_rejects_outside_alphabet(self, record_id):
        assert validate_id(record_id).is_failure

    def test_rejects_overlong_id(self):
        assert validate_id("a" * MAX_ID_LENGTH).is_success
        assert validate_id("a" * (MAX_ID_LENGTH + 1)).is_failure

    def test_validator_checks_bucket_before_id(self, tmp_path):
        validator = IdentifierValidator(str(tmp_path))
        result = validator.validate_object_key("BAD", "ALSO-BAD")
        assert result.error.code == ErrorCode.INVALID_BUCKET


# =============================================================================
# PATH CONTAINMENT
# =============================================================================

class TestPathContainment:

    def test_path_inside_root_resolves(self, tmp_path):
        validator = IdentifierValidator(str(tmp_path))
        result = validator.resolve("objects", "arguments", "abc.json")
        assert result.is_success
        assert result.value == os.path.join(
            os.path.realpath(str(tmp_path)), "objects", "arguments", "abc.json"
        )

    def test_root_itself_is_inside_root(self, tmp_path):
        assert resolve_within_root(str(tmp_path), str(tmp_path)).is_success

    @pytest.mark.parametrize("parts", [
        ("..",),
        ("..", "secret"),
        ("objects", "..", "..", "etc", "passwd"),
    ])
    def test_escaping_paths_are_rejected(self, tmp_path, parts):
        validator = IdentifierValidator(str(tmp_path / "store"))
        result = validator.resolve(*parts)
        assert result.is_failure
        assert result.error.code == ErrorCode.PATH_TRAVERSAL
        assert result.error.kind == ErrorKind.SECURITY

    def test_absolute_component_is_rejected(self, tmp_path):
        validator = IdentifierValidator(str(tmp_path / "store"))
        assert validator.resolve("/etc/passwd").is_failure

    def test_sibling_with_shared_prefix_is_rejected(self, tmp_path):
        root = tmp_path / "store"
        sibling = tmp_path / "store-evil"
        assert resolve_within_root(str(root), str(sibling / "x")).is_failure

    def test_symlink_escaping_root_is_rejected(self, tmp_path):
        root = tmp_path / "store"
        outside = tmp_path / "outside"
        root.mkdir()
        outside.mkdir()
        os.symlink(str(outside), str(root / "objects"))

        validator = IdentifierValidator(str(root))
        result = validator.resolve("objects", "arguments")
        assert result.is_failure
        assert result.error.code == ErrorCode.PATH_TRAVERSAL

    def test_error_message_contains_no_path(self, tmp_path):
        validator = IdentifierValidator(str(tmp_path / "store"))
        result = validator.resolve("..", "secret")
        assert str(tmp_path) not in result.error.message


# =============================================================================
# PAYLOAD STRUCTURE
# =============================================================================

class TestPayloadStructure:

    def test_depth_counts_containers(self):
        assert check_payload_structure(nested_payload(32), max_depth=32).is_success
        result = check_payload_structure(nested_payload(33), max_depth=32)
        assert result.error.code == ErrorCode.PAYLOAD_TOO_DEEP

    def test_scalars_have_depth_zero(self):
        assert check_payload_structure("text", max_depth=0).is_success
        assert check_payload_structure({}, max_depth=0).is_failure

    def test_extreme_nesting_rejected_without_recursion(self):
        result = check_payload_structure(nested_payload(100_000))
        assert result.error.code == ErrorCode.PAYLOAD_TOO_DEEP

    def test_self_referencing_payload_is_bounded(self):
        looped = {}
        looped["self"] = looped
        assert check_payload_structure(looped).error.code == ErrorCode.PAYLOAD_TOO_DEEP

    @pytest.mark.parametrize("payload", [
        {"__proto__": {}},
        {"nested": {"constructor": 1}},
        {"items": [{"ok": 1}, {"prototype": None}]},
    ])
    def test_reserved_keys_rejected_at_any_depth(self, payload):
        result = check_payload_structure(payload)
        assert result.error.code == ErrorCode.RESERVED_KEY

    def test_reserved_names_allowed_as_values(self):
        assert check_payload_structure({"name": "constructor"}).is_success

    @pytest.mark.parametrize("payload", [
        {1: "int key"},
        {"value": float("nan")},
        {"value": float("inf")},
        {"value": {1, 2}},
        {"value": b"bytes"},
        {"value": ("a", "b")},
    ])
    def test_non_json_values_rejected(self, payload):
        result = check_payload_structure(payload)
        assert result.error.code == ErrorCode.INVALID_PAYLOAD


# =============================================================================
# CANONICAL SERIALIZATION
# =============================================================================

class TestCanonicalSerialization:

    def test_concrete_topic_bytes(self):
        assert canonical_serialize(TOPIC_PAYLOAD) == b'{"topic":"X"}'
        assert content_hash(TOPIC_PAYLOAD) == TOPIC_ID

    def test_key_order_does_not_matter(self):
        assert canonical_serialize({"b": 1, "a": [1, 2]}) == canonical_serialize({"a": [1, 2], "b": 1})
        assert canonical_serialize({"b": 1, "a": 2}) == b'{"a":2,"b":1}'

    def test_non_ascii_is_preserved(self):
        serialized = canonical_serialize({"t": "débat"})
        assert serialized == '{"t":"débat"}'.encode("utf-8")
        assert json.loads(serialized.decode("utf-8")) == {"t": "débat"}

    def test_prepare_returns_canonical_bytes(self):
        result = prepare_payload({"b": 2, "a": 1})
        assert result.value == b'{"a":1,"b":2}'

    def test_prepare_rejects_oversized(self):
        result = prepare_payload({"blob": "x" * 100}, max_bytes=50)
        assert result.error.code == ErrorCode.PAYLOAD_TOO_LARGE
        assert result.error.context_value("size") == str(len(b'{"blob":""}') + 100)
