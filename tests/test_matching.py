import pytest

from imprint.core.errors import MalformedInput, NotFound
from imprint.models.similarity import MatchStatus, MatchType
from imprint.services.fingerprint import content_hash
from imprint.services.image_hash import perceptual_hash
from imprint.services.matching import MatchResolver
from imprint.services.provenance import register_record


def _with_phash(record, phash):
    # the perceptual hash is not part of the signed payload
    return record.model_copy(update={"perceptual_hash": phash})


def test_exact_matches_ordered_by_signing_time(store, make_record):
    later = register_record(store, make_record(title="Copy", signed_at="2024-06-01T00:00:00.000Z"))
    earlier = register_record(store, make_record(title="Original", signed_at="2024-01-01T00:00:00.000Z"))

    result = MatchResolver(store).resolve(content_hash(b"hello provenance"))
    assert result.status == MatchStatus.FOUND
    assert [m.record.id for m in result.matches] == [earlier.id, later.id]
    assert all(m.match_type == MatchType.EXACT.value for m in result.matches)
    assert all(m.signature_valid for m in result.matches)
    assert all(m.hamming_distance is None for m in result.matches)


def test_exact_match_short_circuits_perceptual(store, make_record):
    register_record(store, make_record())
    register_record(store, _with_phash(make_record(content=b"other"), "0" * 16))

    result = MatchResolver(store).resolve(content_hash(b"hello provenance"), "0" * 16)
    assert result.status == MatchStatus.FOUND
    assert len(result.matches) == 1


def test_perceptual_fallback_filters_and_sorts(store, make_record):
    far = register_record(store, _with_phash(make_record(content=b"a", title="far"), "00000000000007ff"))
    near = register_record(store, _with_phash(make_record(content=b"b", title="near"), "0000000000000003"))
    same = register_record(store, _with_phash(make_record(content=b"c", title="same"), "0000000000000000"))
    register_record(store, make_record(content=b"d", title="no phash"))

    result = MatchResolver(store, threshold=10).resolve(content_hash(b"query"), "0000000000000000")
    assert result.status == MatchStatus.PERCEPTUAL_MATCH
    assert [m.record.id for m in result.matches] == [same.id, near.id]
    assert [m.hamming_distance for m in result.matches] == [0, 2]
    assert all(m.match_type == MatchType.PERCEPTUAL_HASH.value for m in result.matches)
    assert far.id not in {m.record.id for m in result.matches}


def test_parallel_scoring_matches_serial(store, make_record):
    for i in range(6):
        register_record(store, _with_phash(make_record(content=bytes([i])), format(i, "016x")))

    serial = MatchResolver(store, max_workers=1).resolve(content_hash(b"query"), "0" * 16)
    parallel = MatchResolver(store, max_workers=4).resolve(content_hash(b"query"), "0" * 16)
    assert [(m.record.id, m.hamming_distance) for m in serial.matches] == \
        [(m.record.id, m.hamming_distance) for m in parallel.matches]


def test_not_found(store, make_record):
    register_record(store, _with_phash(make_record(), "ffffffffffffffff"))
    resolver = MatchResolver(store)
    assert resolver.resolve(content_hash(b"unknown")).status == MatchStatus.NOT_FOUND
    assert resolver.resolve(content_hash(b"unknown"), "0" * 16).status == MatchStatus.NOT_FOUND
    assert resolver.resolve(content_hash(b"unknown")).matches == []


def test_tampered_record_is_flagged(store, make_record):
    record = register_record(store, make_record())
    store.delete(record.id)
    store.create(record.model_copy(update={"title": "Forged title"}))

    result = MatchResolver(store).resolve(record.content_hash)
    assert result.status == MatchStatus.FOUND
    assert result.matches[0].signature_valid is False


def test_recompressed_image_resolves_perceptually(store, make_record, image_bytes):
    original = image_bytes(seed=11)
    record = register_record(store, make_record(content=original, content_type="image/png", file_name="i.png"))
    assert record.perceptual_hash is not None

    copy = image_bytes(seed=11, fmt="JPEG", quality=85)
    result = MatchResolver(store).resolve(content_hash(copy), perceptual_hash(copy))
    assert result.status == MatchStatus.PERCEPTUAL_MATCH
    assert result.matches[0].record.id == record.id
    assert result.matches[0].hamming_distance <= 10
    assert result.matches[0].signature_valid


@pytest.mark.parametrize("chash,phash", [("abc", None), ("ab" * 32, "xyz"), ("ab" * 32, "ab" * 4)])
def test_malformed_query(store, chash, phash):
    with pytest.raises(MalformedInput):
        MatchResolver(store).resolve(chash, phash)


def test_check_record(store, make_record):
    record = register_record(store, make_record())
    resolver = MatchResolver(store)

    match = resolver.check_record(record.id, content_hash(b"hello provenance"))
    assert match.status == MatchStatus.HASH_MATCH
    assert match.matches[0].signature_valid

    mismatch = resolver.check_record(record.id, content_hash(b"edited"))
    assert mismatch.status == MatchStatus.HASH_MISMATCH
    assert mismatch.matches[0].match_type == MatchType.RECORD_ID.value

    with pytest.raises(NotFound):
        resolver.check_record("missing", content_hash(b"x"))


def test_result_response(store):
    response = MatchResolver(store).resolve(content_hash(b"nothing")).to_response()
    assert response.status == "NOT_FOUND"
    assert response.message
