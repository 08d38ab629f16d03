import pytest

from imprint.core.errors import ActionExpired, MalformedInput, SignatureInvalid
from imprint.core.utils import b64e
from imprint.services.signing import (
    AuthorizationStatus,
    action_message,
    check_action_authorization,
    require_action_authorization,
    sign,
    sign_action,
    verify,
)

from conftest import RFC8032_PUBLIC, RFC8032_SEED

# RFC 8032 test 1: signature over the empty message
RFC8032_SIGNATURE = (
    "e5564300c360ac729086e2cc806e828a84877f1eb8e5d974d873e065224901555"
    "fb8821590a33bacc61e39701cf9b46bd25bf5f0595bbe24655141438e7a100b"
)

NOW = 1_714_564_800_000
WINDOW = 300_000


def test_rfc8032_known_answer():
    signature = sign(b"", RFC8032_SEED)
    assert signature == b64e(bytes.fromhex(RFC8032_SIGNATURE))
    assert verify(b"", signature, RFC8032_PUBLIC)


def test_sign_verify_round_trip(key_pair):
    signature = sign("payload", key_pair.private_key)
    assert verify("payload", signature, key_pair.public_key)
    # Ed25519 is deterministic
    assert sign("payload", key_pair.private_key) == signature


def test_tampered_payload_fails(key_pair):
    signature = sign('{"title":"T"}', key_pair.private_key)
    assert not verify('{"title":"U"}', signature, key_pair.public_key)


def test_wrong_key_fails(key_pair, other_key_pair):
    signature = sign("payload", key_pair.private_key)
    assert not verify("payload", signature, other_key_pair.public_key)


@pytest.mark.parametrize("signature,public_key", [
    ("!!!", RFC8032_PUBLIC),
    ("", RFC8032_PUBLIC),
    (b64e(b"\x00" * 63), RFC8032_PUBLIC),
    (b64e(bytes.fromhex(RFC8032_SIGNATURE)), "ab" * 31),
    (b64e(bytes.fromhex(RFC8032_SIGNATURE)), "not hex"),
    (None, RFC8032_PUBLIC),
])
def test_verify_never_raises(signature, public_key):
    assert verify(b"", signature, public_key) is False


def test_sign_rejects_malformed_key():
    with pytest.raises(MalformedInput):
        sign("payload", "ab" * 31)


def test_action_message():
    assert action_message("delete", "rec-1", 1700000000000) == "delete:rec-1:1700000000000"


def test_sign_action(key_pair):
    auth = sign_action("delete", "rec-1", key_pair.private_key, timestamp_ms=NOW)
    assert auth.message == f"delete:rec-1:{NOW}"
    assert verify(auth.message, auth.signature, key_pair.public_key)


def _check(key_pair, timestamp, now=NOW, signer=None, resource_id="rec-1"):
    auth = sign_action("delete", "rec-1", (signer or key_pair).private_key, timestamp_ms=timestamp)
    return check_action_authorization(
        "delete", resource_id, timestamp, auth.signature, key_pair.public_key, now=now, window_ms=WINDOW
    )


def test_authorization_within_window(key_pair):
    assert _check(key_pair, NOW) == AuthorizationStatus.OK
    assert _check(key_pair, NOW - WINDOW) == AuthorizationStatus.OK
    assert _check(key_pair, NOW + WINDOW) == AuthorizationStatus.OK


def test_authorization_expired_even_with_valid_signature(key_pair):
    assert _check(key_pair, NOW - WINDOW - 1) == AuthorizationStatus.EXPIRED
    assert _check(key_pair, NOW + WINDOW + 1) == AuthorizationStatus.EXPIRED


def test_expiry_reported_before_signature(key_pair, other_key_pair):
    assert _check(key_pair, NOW - 10 * WINDOW, signer=other_key_pair) == AuthorizationStatus.EXPIRED


def test_authorization_bound_to_resource_and_key(key_pair, other_key_pair):
    assert _check(key_pair, NOW, resource_id="rec-2") == AuthorizationStatus.SIGNATURE_INVALID
    assert _check(key_pair, NOW, signer=other_key_pair) == AuthorizationStatus.SIGNATURE_INVALID


@pytest.mark.parametrize("timestamp,signature", [
    (0, "AAAA"),
    (-5, "AAAA"),
    ("1714564800000", "AAAA"),
    (True, "AAAA"),
    (NOW, "not base64!!"),
])
def test_authorization_malformed(key_pair, timestamp, signature):
    status = check_action_authorization(
        "delete", "rec-1", timestamp, signature, key_pair.public_key, now=NOW, window_ms=WINDOW
    )
    assert status == AuthorizationStatus.MALFORMED


def test_require_action_authorization_raises(key_pair, other_key_pair):
    ok = sign_action("delete", "rec-1", key_pair.private_key, timestamp_ms=NOW)
    require_action_authorization("delete", "rec-1", NOW, ok.signature, key_pair.public_key, now=NOW)

    with pytest.raises(ActionExpired):
        require_action_authorization(
            "delete", "rec-1", NOW, ok.signature, key_pair.public_key, now=NOW + 301_000
        )
    with pytest.raises(SignatureInvalid):
        require_action_authorization("delete", "rec-1", NOW, ok.signature, other_key_pair.public_key, now=NOW)
    with pytest.raises(MalformedInput):
        require_action_authorization("delete", "rec-1", NOW, "%%%", key_pair.public_key, now=NOW)
