"""
Pydantic models for provenance records and usage policies.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from imprint import config

__all__ = [
    "PolicyChoice",
    "LICENSE_OPTIONS",
    "UsagePolicy",
    "RecordCreate",
    "ProvenanceRecord",
    "RecordSummary",
]


class PolicyChoice(str, Enum):
    """Permission value for AI and commercial usage terms."""
    ALLOWED = "ALLOWED"
    DENIED = "DENIED"


def _choice(value) -> str:
    return value.value if isinstance(value, Enum) else value


LICENSE_OPTIONS = [
    "ALL_RIGHTS_RESERVED",
    "CC_BY_4",
    "CC_BY_SA_4",
    "CC_BY_NC_4",
    "CC_BY_NC_SA_4",
    "CC_BY_ND_4",
    "CC_BY_NC_ND_4",
    "CC0",
    "MIT",
    "CUSTOM",
]


class UsagePolicy(BaseModel):
    """Usage terms embedded by value in a record and covered by its signature."""
    license: str = Field(..., min_length=1, description="License identifier")
    ai_training: PolicyChoice = Field(default=PolicyChoice.DENIED)
    ai_derivative_generation: PolicyChoice = Field(default=PolicyChoice.DENIED)
    commercial_use: PolicyChoice = Field(default=PolicyChoice.DENIED)
    attribution_required: bool = Field(default=True)
    policy_note: str = Field(default="", description="Free-text note, signed verbatim")

    model_config = ConfigDict(use_enum_values=True, validate_default=True, frozen=True)

    def to_payload(self) -> Dict[str, Any]:
        """Plain mapping used for canonicalization."""
        return {
            "license": self.license,
            "ai_training": _choice(self.ai_training),
            "ai_derivative_generation": _choice(self.ai_derivative_generation),
            "commercial_use": _choice(self.commercial_use),
            "attribution_required": self.attribution_required,
            "policy_note": self.policy_note,
        }


class RecordCreate(BaseModel):
    """A signed record as submitted to the record store."""
    schema_version: str = Field(default=config.SCHEMA_VERSION)
    title: str = Field(..., min_length=1, description="Title of the work")
    description: Optional[str] = Field(default=None)
    file_name: str = Field(..., min_length=1, description="Original file name")
    file_size: int = Field(..., ge=0, description="File size in bytes")
    content_type: str = Field(..., min_length=1, description="MIME type of the content")
    content_hash: str = Field(..., description="SHA-256 hex digest of the content")
    perceptual_hash: Optional[str] = Field(default=None, description="64-bit pHash, images only")
    display_name: str = Field(..., min_length=1, description="Creator display name")
    creator_id: str = Field(..., description="did:key identity of the creator")
    public_key: str = Field(..., description="Ed25519 public key, lowercase hex")
    signature_algorithm: str = Field(default=config.SIGNATURE_ALGORITHM)
    signed_payload_hash: str = Field(..., description="SHA-256 hex of the canonical payload")
    signature: str = Field(..., description="Base64 Ed25519 signature over the canonical payload")
    signed_at: str = Field(..., description="ISO-8601 signing time, signed verbatim")
    usage_policy: UsagePolicy
    policy_hash: str = Field(..., description="SHA-256 hex of the canonical usage policy")


class ProvenanceRecord(RecordCreate):
    """A persisted provenance record."""
    id: str = Field(..., description="Record identifier")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RecordSummary(BaseModel):
    """Listing entry for recent records."""
    id: str
    title: str
    display_name: str
    content_hash: str
    signed_at: str
    license: str
    ai_training: str

    @classmethod
    def from_record(cls, record: ProvenanceRecord) -> "RecordSummary":
        return cls(
            id=record.id,
            title=record.title,
            display_name=record.display_name,
            content_hash=record.content_hash,
            signed_at=record.signed_at,
            license=record.usage_policy.license,
            ai_training=_choice(record.usage_policy.ai_training),
        )
