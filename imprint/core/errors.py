"""
Error taxonomy for provenance operations.

Every outcome here is reportable rather than fatal, except KeyGenerationError
which aborts key generation outright.
"""

from typing import Optional

__all__ = [
    "ProvenanceError",
    "MalformedInput",
    "HashMismatch",
    "SignatureInvalid",
    "ActionExpired",
    "NotFound",
    "RecordStoreError",
    "KeyGenerationError",
]


class ProvenanceError(Exception):
    """Base class for reportable provenance failures."""

    code = "PROVENANCE_ERROR"
    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class MalformedInput(ProvenanceError):
    """Bad hex, wrong key length, unparseable timestamp or unsupported image."""

    code = "MALFORMED_INPUT"
    status_code = 400

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message, "field": self.field}


class HashMismatch(ProvenanceError):
    """Content fingerprint of a candidate file differs from the stored one."""

    code = "HASH_MISMATCH"
    status_code = 409

    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__("Content hash does not match the registered record")


class SignatureInvalid(ProvenanceError):
    """Payload, signature and public key do not agree."""

    code = "SIGNATURE_INVALID"
    status_code = 403


class ActionExpired(ProvenanceError):
    """Authorization timestamp is outside the validity window."""

    code = "EXPIRED"
    status_code = 400


class NotFound(ProvenanceError):
    """No record for the given id or fingerprint."""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, message: str = "Record not found", resource_id: Optional[str] = None):
        self.resource_id = resource_id
        super().__init__(message)


class RecordStoreError(ProvenanceError):
    """The record store failed to complete an operation."""

    code = "STORE_ERROR"
    status_code = 500


class KeyGenerationError(RuntimeError):
    """The secure random source is unavailable; no key may be produced."""

    code = "KEYGEN_FAILED"
