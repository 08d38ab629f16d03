"""
Canonical payload serialization.

The canonical form is compact JSON with object keys in strict lexicographic
order at every depth. Only strings, booleans, integers, null and string-keyed
mappings are representable; anything else is rejected rather than coerced,
so two logically equal field sets always produce byte-identical output.
"""

import json
from typing import Any, Mapping

from imprint.core.errors import MalformedInput

PAYLOAD_FIELDS = (
    "content_hash",
    "content_type",
    "creator_id",
    "signed_at",
    "title",
    "usage_policy",
)

POLICY_FIELDS = (
    "ai_derivative_generation",
    "ai_training",
    "attribution_required",
    "commercial_use",
    "license",
    "policy_note",
)


def _encode_string(value: str, path: str) -> str:
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        raise MalformedInput(path, "strings must be valid Unicode")
    return json.dumps(value, ensure_ascii=False)


def _encode(value: Any, path: str) -> str:
    # bool must be checked before int
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return _encode_string(value, path)
    if isinstance(value, Mapping):
        if not all(isinstance(key, str) for key in value):
            raise MalformedInput(path, "mapping keys must be strings")
        parts = []
        for key in sorted(value):
            parts.append(f"{_encode_string(key, path)}:{_encode(value[key], f'{path}.{key}')}")
        return "{" + ",".join(parts) + "}"
    raise MalformedInput(path, f"{type(value).__name__} has no canonical form")


def canonicalize(value: Any) -> str:
    """Serialize a value to its canonical string."""
    return _encode(value, "$")


def canonical_bytes(value: Any) -> bytes:
    """Canonical string as UTF-8 bytes, the exact input to signing."""
    return canonicalize(value).encode("utf-8")


def build_canonical_payload(
    content_hash: str,
    title: str,
    content_type: str,
    creator_id: str,
    usage_policy: Mapping[str, Any],
    signed_at: str,
) -> str:
    """
    Build the canonical payload a record signature covers.

    The payload holds exactly the six signed fields, and the nested usage
    policy holds exactly its six terms; missing or extra policy terms are
    rejected so a signature can never cover an ambiguous policy.
    """
    missing = [f for f in POLICY_FIELDS if f not in usage_policy]
    extra = [f for f in usage_policy if f not in POLICY_FIELDS]
    if missing:
        raise MalformedInput("usage_policy", f"missing terms: {', '.join(missing)}")
    if extra:
        raise MalformedInput("usage_policy", f"unknown terms: {', '.join(sorted(extra))}")

    return canonicalize({
        "content_hash": content_hash,
        "title": title,
        "content_type": content_type,
        "creator_id": creator_id,
        "usage_policy": dict(usage_policy),
        "signed_at": signed_at,
    })


def payload_from_record(record) -> str:
    """Rebuild the canonical payload from a stored record's fields."""
    return build_canonical_payload(
        content_hash=record.content_hash,
        title=record.title,
        content_type=record.content_type,
        creator_id=record.creator_id,
        usage_policy=record.usage_policy.to_payload(),
        signed_at=record.signed_at,
    )


def policy_payload(usage_policy: Mapping[str, Any]) -> str:
    """Canonical serialization of a usage policy on its own."""
    return canonicalize(dict(usage_policy))
