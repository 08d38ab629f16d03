"""
Pydantic models for verification, matching and API response data structures.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .record import ProvenanceRecord

__all__ = [
    "MatchStatus",
    "MatchType",
    "RecordMatch",
    "VerifyRequest",
    "VerifyResponse",
    "DeleteRequest",
    "CreateResponse",
    "FingerprintResponse",
    "ErrorResponse",
    "HealthResponse",
]


class MatchStatus(str, Enum):
    """Outcome of a lookup against the record store."""
    FOUND = "FOUND"
    PERCEPTUAL_MATCH = "PERCEPTUAL_MATCH"
    NOT_FOUND = "NOT_FOUND"
    HASH_MATCH = "HASH_MATCH"
    HASH_MISMATCH = "HASH_MISMATCH"


class MatchType(str, Enum):
    """Enumeration of match types."""
    EXACT = "exact"
    PERCEPTUAL_HASH = "perceptual_hash"
    RECORD_ID = "record_id"


class RecordMatch(BaseModel):
    """A record located by the resolver, with its re-checked signature verdict."""
    record: ProvenanceRecord
    match_type: MatchType = Field(..., description="Type of match")
    hamming_distance: Optional[int] = Field(default=None, description="Bits differing, perceptual matches only")
    signature_valid: bool = Field(..., description="Signature verified over the record's own canonical payload")

    model_config = ConfigDict(use_enum_values=True)


class VerifyRequest(BaseModel):
    """Lookup request: exact fingerprint always, perceptual fingerprint optionally."""
    content_hash: str = Field(..., description="SHA-256 hex digest of the candidate file")
    perceptual_hash: Optional[str] = Field(default=None, description="pHash of the candidate image")
    record_id: Optional[str] = Field(default=None, description="Check against this record only")


class VerifyResponse(BaseModel):
    """Response model for verification lookups."""
    status: MatchStatus
    message: str = Field(..., description="Human-readable message")
    matches: List[RecordMatch] = Field(default_factory=list)

    model_config = ConfigDict(use_enum_values=True)


class DeleteRequest(BaseModel):
    """Signature-authorized deletion request."""
    timestamp: int = Field(..., description="Unix time in milliseconds used in the signed message")
    signature: str = Field(..., description="Base64 signature over delete:<id>:<timestamp>")
    verify_only: bool = Field(default=False, description="Check authorization without deleting")


class CreateResponse(BaseModel):
    id: str
    message: str


class FingerprintResponse(BaseModel):
    """Fingerprints of an uploaded file; the file itself is not kept."""
    file_name: str
    content_type: str
    file_size: int
    content_hash: str
    perceptual_hash: Optional[str] = None


class ErrorResponse(BaseModel):
    """Error response model."""
    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    field: Optional[str] = Field(None, description="Offending input field")


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Overall service status")
    version: str = Field(..., description="API version")
    components: Dict[str, Any] = Field(..., description="Component health status")
