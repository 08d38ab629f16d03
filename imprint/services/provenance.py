"""
Registration, verification and deletion flows built on the core primitives.

Creator side: fingerprint the content, derive the identity, canonicalize
the signed fields and sign them. Service side: re-check everything a
submitted record claims before it is stored, re-verify signatures on every
lookup, and gate deletion on a fresh action authorization.
"""

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

import structlog

from imprint import config
from imprint.core.database import RecordStore
from imprint.core.errors import MalformedInput, NotFound, SignatureInvalid
from imprint.core.utils import new_record_id, parse_iso8601, short, utc_now_iso, validate_hex
from imprint.models.record import ProvenanceRecord, RecordCreate, UsagePolicy
from imprint.models.similarity import MatchStatus
from imprint.services.canonical import payload_from_record, policy_payload
from imprint.services.fingerprint import CONTENT_HASH_LENGTH, content_hash, text_hash
from imprint.services.identity import KEY_HEX_LENGTH, KeyPair, public_key_to_did_key
from imprint.services.image_hash import (
    PERCEPTUAL_HASH_LENGTH,
    Decoder,
    decode_and_resample,
    optional_perceptual_hash,
)
from imprint.services.signing import DELETE_ACTION, require_action_authorization, sign, verify

logger = structlog.get_logger()


def _signable_hex(value: str, field_name: str, length: int) -> str:
    # signed fields must already be in canonical lowercase form
    normalized = validate_hex(value, field_name, length)
    if normalized != value:
        raise MalformedInput(field_name, "must be lowercase hex without surrounding whitespace")
    return value


def build_signed_record(
    content: bytes,
    key_pair: KeyPair,
    title: str,
    display_name: str,
    usage_policy: Union[UsagePolicy, Mapping[str, Any]],
    file_name: str,
    content_type: str,
    description: Optional[str] = None,
    include_perceptual_hash: bool = True,
    signed_at: Optional[str] = None,
    decoder: Decoder = decode_and_resample,
) -> RecordCreate:
    """
    Produce a signed record for local content. The content never leaves this call.

    Args:
        content: Raw file bytes
        key_pair: Creator keypair; only the public half ends up in the record
        usage_policy: Usage terms, signed by value
        include_perceptual_hash: Compute a pHash when the content is a decodable image
        signed_at: Override the signing time (ISO-8601); defaults to now
    """
    if not isinstance(usage_policy, UsagePolicy):
        usage_policy = UsagePolicy(**usage_policy)

    digest = content_hash(content)
    phash = optional_perceptual_hash(content, content_type, decoder=decoder) if include_perceptual_hash else None

    signed_at = signed_at or utc_now_iso()
    parse_iso8601(signed_at)

    unsigned = dict(
        schema_version=config.SCHEMA_VERSION,
        title=title,
        description=description,
        file_name=file_name,
        file_size=len(content),
        content_type=content_type,
        content_hash=digest,
        perceptual_hash=phash,
        display_name=display_name,
        creator_id=key_pair.creator_id,
        public_key=key_pair.public_key,
        signature_algorithm=config.SIGNATURE_ALGORITHM,
        signed_at=signed_at,
        usage_policy=usage_policy,
    )
    # payload_from_record only reads the signed fields
    draft = RecordCreate(signed_payload_hash="", signature="", policy_hash="", **unsigned)
    payload = payload_from_record(draft)

    record = RecordCreate(
        signed_payload_hash=text_hash(payload),
        signature=sign(payload, key_pair.private_key),
        policy_hash=text_hash(policy_payload(usage_policy.to_payload())),
        **unsigned,
    )
    logger.info("Signed provenance record",
                creator_id=record.creator_id,
                content_hash=digest,
                has_perceptual_hash=phash is not None)
    return record


def payload_hash(record: RecordCreate) -> str:
    """SHA-256 hex of the record's canonical payload."""
    return text_hash(payload_from_record(record))


def verify_record_signature(record: RecordCreate) -> bool:
    """Rebuild the canonical payload from stored fields and check it against the stored key."""
    try:
        payload = payload_from_record(record)
    except MalformedInput as e:
        logger.warning("Record payload could not be rebuilt", record_id=getattr(record, "id", None), error=e.message)
        return False

    valid = verify(payload, record.signature, record.public_key)
    if not valid:
        logger.warning("Signature verification failed",
                       record_id=getattr(record, "id", None),
                       creator_id=record.creator_id,
                       public_key=short(record.public_key))
    return valid


def validate_record_for_intake(record: RecordCreate) -> RecordCreate:
    """
    Check every claim a submitted record makes before it may be stored.

    Raises:
        MalformedInput: Bad hex, identity/key disagreement, bad timestamp or hash mismatch
        SignatureInvalid: Signature does not verify over the rebuilt payload
    """
    _signable_hex(record.content_hash, "content_hash", CONTENT_HASH_LENGTH)
    if record.perceptual_hash is not None:
        validate_hex(record.perceptual_hash, "perceptual_hash", PERCEPTUAL_HASH_LENGTH)
    _signable_hex(record.public_key, "public_key", KEY_HEX_LENGTH)

    if record.signature_algorithm != config.SIGNATURE_ALGORITHM:
        raise MalformedInput("signature_algorithm", f"only {config.SIGNATURE_ALGORITHM} is supported")
    if record.creator_id != public_key_to_did_key(record.public_key):
        raise MalformedInput("creator_id", "does not match the identity derived from public_key")
    parse_iso8601(record.signed_at)

    if payload_hash(record) != record.signed_payload_hash:
        raise MalformedInput("signed_payload_hash", "does not match the canonical payload")
    if text_hash(policy_payload(record.usage_policy.to_payload())) != record.policy_hash:
        raise MalformedInput("policy_hash", "does not match the usage policy")

    if not verify_record_signature(record):
        raise SignatureInvalid("Signature does not verify over the record payload")

    if record.perceptual_hash is not None:
        record = record.model_copy(update={"perceptual_hash": record.perceptual_hash.strip().lower()})
    return record


def register_record(store: RecordStore, record: RecordCreate) -> ProvenanceRecord:
    """Validate a submitted record and persist it under a fresh id."""
    record = validate_record_for_intake(record)
    stored = ProvenanceRecord(id=new_record_id(), **record.model_dump())
    store.create(stored)
    logger.info("Provenance record registered",
                record_id=stored.id,
                creator_id=stored.creator_id,
                content_hash=stored.content_hash)
    return stored


@dataclass(frozen=True)
class ContentVerification:
    status: MatchStatus
    content_hash: str
    signature_valid: bool

    @property
    def verified(self) -> bool:
        return self.status == MatchStatus.HASH_MATCH and self.signature_valid


def verify_content(content: bytes, record: RecordCreate) -> ContentVerification:
    """Check local content against a record: hash agreement plus signature verdict."""
    digest = content_hash(content)
    status = MatchStatus.HASH_MATCH if digest == record.content_hash else MatchStatus.HASH_MISMATCH
    return ContentVerification(status=status, content_hash=digest, signature_valid=verify_record_signature(record))


def authorize_deletion(
    store: RecordStore,
    record_id: str,
    timestamp: int,
    signature: str,
    verify_only: bool = False,
    now: Optional[int] = None,
) -> str:
    """
    Gate deletion of a record on a fresh signature from its creator's key.

    Returns:
        "verified" when verify_only is set, otherwise "deleted"

    Raises:
        NotFound: Unknown record id
        MalformedInput: Bad timestamp or signature encoding
        ActionExpired: Timestamp outside the freshness window
        SignatureInvalid: Not signed by the record's key
    """
    record = store.find_by_id(record_id)
    if record is None:
        raise NotFound(resource_id=record_id)

    require_action_authorization(DELETE_ACTION, record_id, timestamp, signature, record.public_key, now=now)

    if verify_only:
        logger.info("Deletion authorization verified", record_id=record_id, creator_id=record.creator_id)
        return "verified"

    if not store.delete(record_id):
        raise NotFound(resource_id=record_id)
    logger.info("Provenance record deleted", record_id=record_id, creator_id=record.creator_id)
    return "deleted"
