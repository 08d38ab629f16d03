import pytest

from imprint.core.errors import ActionExpired, MalformedInput, NotFound, SignatureInvalid
from imprint.core.utils import now_ms
from imprint.models.record import UsagePolicy
from imprint.models.similarity import MatchStatus
from imprint.services.canonical import payload_from_record
from imprint.services.fingerprint import content_hash, text_hash
from imprint.services.provenance import (
    authorize_deletion,
    build_signed_record,
    payload_hash,
    register_record,
    validate_record_for_intake,
    verify_content,
    verify_record_signature,
)
from imprint.services.signing import sign_action, verify


def test_end_to_end_register_and_verify(store, key_pair):
    content = b"the bytes of a song"
    policy = UsagePolicy(license="CC0", ai_training="DENIED")
    record = build_signed_record(
        content, key_pair, title="T", display_name="Ada", usage_policy=policy,
        file_name="song.mp3", content_type="audio/mpeg",
    )

    assert record.content_hash == content_hash(content)
    assert record.perceptual_hash is None
    assert record.creator_id == key_pair.creator_id
    assert record.signed_payload_hash == text_hash(payload_from_record(record))
    assert record.signed_at.endswith("Z")

    stored = register_record(store, record)
    fetched = store.find_by_id(stored.id)
    assert verify(payload_from_record(fetched), fetched.signature, fetched.public_key)

    check = verify_content(content, fetched)
    assert check.status == MatchStatus.HASH_MATCH
    assert check.verified


def test_verify_content_mismatch(make_record):
    record = make_record()
    check = verify_content(b"hello provenance!", record)
    assert check.status == MatchStatus.HASH_MISMATCH
    assert check.signature_valid
    assert not check.verified


def test_private_key_never_in_record(make_record, key_pair):
    dumped = make_record().model_dump_json()
    assert key_pair.private_key not in dumped


def test_image_records_carry_perceptual_hash(make_record, image_bytes):
    record = make_record(content=image_bytes(seed=5), content_type="image/png")
    assert record.perceptual_hash is not None and len(record.perceptual_hash) == 16
    without = make_record(content=image_bytes(seed=5), content_type="image/png", include_perceptual_hash=False)
    assert without.perceptual_hash is None


def test_undecodable_image_registers_without_perceptual_hash(store, make_record):
    svg = b'<svg xmlns="http://www.w3.org/2000/svg"/>'
    record = make_record(content=svg, content_type="image/svg+xml", file_name="logo.svg")
    assert record.perceptual_hash is None
    assert validate_record_for_intake(record) == record


def test_policy_mapping_accepted(key_pair):
    record = build_signed_record(
        b"x", key_pair, title="T", display_name="Ada",
        usage_policy={"license": "MIT", "commercial_use": "ALLOWED"},
        file_name="x.txt", content_type="text/plain",
    )
    assert record.usage_policy.commercial_use == "ALLOWED"
    assert verify_record_signature(record)


def test_intake_accepts_valid_record(make_record):
    record = make_record()
    assert validate_record_for_intake(record) == record


def test_intake_rejects_tampered_title(make_record):
    tampered = make_record().model_copy(update={"title": "Someone else's"})
    with pytest.raises(MalformedInput) as exc:
        validate_record_for_intake(tampered)
    assert exc.value.field == "signed_payload_hash"


def test_intake_rejects_bad_signature(make_record):
    tampered = make_record().model_copy(update={"title": "Someone else's"})
    tampered = tampered.model_copy(update={"signed_payload_hash": payload_hash(tampered)})
    with pytest.raises(SignatureInvalid):
        validate_record_for_intake(tampered)


def test_intake_rejects_foreign_identity(make_record, other_key_pair):
    record = make_record().model_copy(update={"creator_id": other_key_pair.creator_id})
    with pytest.raises(MalformedInput) as exc:
        validate_record_for_intake(record)
    assert exc.value.field == "creator_id"


def test_intake_rejects_policy_hash_mismatch(make_record):
    record = make_record().model_copy(update={"policy_hash": "00" * 32})
    with pytest.raises(MalformedInput) as exc:
        validate_record_for_intake(record)
    assert exc.value.field == "policy_hash"


@pytest.mark.parametrize("field,value", [
    ("content_hash", "AB" * 32),
    ("content_hash", "ab" * 31),
    ("public_key", "zz" * 32),
    ("perceptual_hash", "abc"),
    ("signed_at", "not a date"),
    ("signature_algorithm", "RSA"),
])
def test_intake_rejects_malformed_fields(make_record, field, value):
    record = make_record().model_copy(update={field: value})
    with pytest.raises(MalformedInput):
        validate_record_for_intake(record)


def test_register_assigns_id(store, make_record):
    stored = register_record(store, make_record())
    assert stored.id
    assert store.find_by_id(stored.id).content_hash == stored.content_hash


def test_register_stores_nothing_on_failure(store, make_record):
    with pytest.raises(MalformedInput):
        register_record(store, make_record().model_copy(update={"policy_hash": "00" * 32}))
    assert store.list_recent() == []


def test_authorize_deletion(store, make_record, key_pair):
    stored = register_record(store, make_record())
    auth = sign_action("delete", stored.id, key_pair.private_key)

    assert authorize_deletion(store, stored.id, auth.timestamp, auth.signature, verify_only=True) == "verified"
    assert store.find_by_id(stored.id) is not None

    assert authorize_deletion(store, stored.id, auth.timestamp, auth.signature) == "deleted"
    assert store.find_by_id(stored.id) is None

    with pytest.raises(NotFound):
        authorize_deletion(store, stored.id, auth.timestamp, auth.signature)


def test_authorize_deletion_expired(store, make_record, key_pair):
    stored = register_record(store, make_record())
    stale = now_ms() - 301_000
    auth = sign_action("delete", stored.id, key_pair.private_key, timestamp_ms=stale)
    with pytest.raises(ActionExpired):
        authorize_deletion(store, stored.id, auth.timestamp, auth.signature)
    assert store.find_by_id(stored.id) is not None


def test_authorize_deletion_wrong_key(store, make_record, other_key_pair):
    stored = register_record(store, make_record())
    auth = sign_action("delete", stored.id, other_key_pair.private_key)
    with pytest.raises(SignatureInvalid):
        authorize_deletion(store, stored.id, auth.timestamp, auth.signature)
    assert store.find_by_id(stored.id) is not None


def test_authorize_deletion_malformed(store, make_record):
    stored = register_record(store, make_record())
    with pytest.raises(MalformedInput):
        authorize_deletion(store, stored.id, now_ms(), "###")


def test_authorize_deletion_unknown_record(store):
    with pytest.raises(NotFound):
        authorize_deletion(store, "missing", now_ms(), "AAAA")
