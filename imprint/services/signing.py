"""
Ed25519 signing and verification over canonical payloads, plus the
action-authorization challenge used for destructive operations.

An action authorization is a signature over "<action>:<resourceId>:<unixMillis>".
The verifier rebuilds that message from the claimed id and timestamp, rejects
timestamps outside the freshness window, and checks the signature against
the public key stored for the resource.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

import structlog
from nacl.exceptions import BadSignatureError
from nacl.signing import VerifyKey

from imprint import config
from imprint.core.errors import ActionExpired, MalformedInput, SignatureInvalid
from imprint.core.utils import b64d, b64e, now_ms, short
from imprint.services.identity import parse_private_key, parse_public_key

logger = structlog.get_logger()

SIGNATURE_BYTES = 64
DELETE_ACTION = "delete"


def _message_bytes(payload: Union[str, bytes]) -> bytes:
    return payload.encode("utf-8") if isinstance(payload, str) else bytes(payload)


def sign(payload: Union[str, bytes], private_key_hex: str) -> str:
    """
    Sign a payload and return the base64 signature.

    Raises:
        MalformedInput: If the private key is not 64 hex characters
    """
    signing_key = parse_private_key(private_key_hex)
    return b64e(signing_key.sign(_message_bytes(payload)).signature)


def verify(payload: Union[str, bytes], signature_b64: str, public_key_hex: str) -> bool:
    """Check a signature. Returns False for any malformed input instead of raising."""
    try:
        public_key = parse_public_key(public_key_hex)
        signature = b64d(signature_b64)
        if len(signature) != SIGNATURE_BYTES:
            return False
        VerifyKey(public_key).verify(_message_bytes(payload), signature)
        return True
    except (MalformedInput, BadSignatureError, ValueError, TypeError):
        return False
    except Exception as e:
        logger.warning("Unexpected verification failure", error=str(e))
        return False


class AuthorizationStatus(str, Enum):
    OK = "OK"
    MALFORMED = "MALFORMED"
    EXPIRED = "EXPIRED"
    SIGNATURE_INVALID = "SIGNATURE_INVALID"


@dataclass(frozen=True)
class ActionAuthorization:
    """A signed, timestamped intent to perform one action on one resource."""
    action: str
    resource_id: str
    timestamp: int
    signature: str

    @property
    def message(self) -> str:
        return action_message(self.action, self.resource_id, self.timestamp)


def action_message(action: str, resource_id: str, timestamp_ms: int) -> str:
    return f"{action}:{resource_id}:{timestamp_ms}"


def sign_action(
    action: str,
    resource_id: str,
    private_key_hex: str,
    timestamp_ms: Optional[int] = None,
) -> ActionAuthorization:
    timestamp_ms = now_ms() if timestamp_ms is None else int(timestamp_ms)
    signature = sign(action_message(action, resource_id, timestamp_ms), private_key_hex)
    return ActionAuthorization(action, resource_id, timestamp_ms, signature)


def check_action_authorization(
    action: str,
    resource_id: str,
    timestamp_ms: int,
    signature_b64: str,
    public_key_hex: str,
    now: Optional[int] = None,
    window_ms: Optional[int] = None,
) -> AuthorizationStatus:
    """
    Classify an action authorization without side effects.

    Malformed input is rejected before any cryptographic work, and an expired
    timestamp is reported as EXPIRED even when the signature is valid.
    """
    now = now_ms() if now is None else now
    window_ms = config.ACTION_WINDOW_MS if window_ms is None else window_ms

    if isinstance(timestamp_ms, bool) or not isinstance(timestamp_ms, int) or timestamp_ms <= 0:
        return AuthorizationStatus.MALFORMED
    try:
        parse_public_key(public_key_hex)
        b64d(signature_b64)
    except MalformedInput:
        return AuthorizationStatus.MALFORMED

    if abs(now - timestamp_ms) > window_ms:
        return AuthorizationStatus.EXPIRED

    message = action_message(action, resource_id, timestamp_ms)
    if not verify(message, signature_b64, public_key_hex):
        return AuthorizationStatus.SIGNATURE_INVALID

    return AuthorizationStatus.OK


def require_action_authorization(
    action: str,
    resource_id: str,
    timestamp_ms: int,
    signature_b64: str,
    public_key_hex: str,
    now: Optional[int] = None,
    window_ms: Optional[int] = None,
) -> None:
    """
    Raise unless the action authorization is valid.

    Raises:
        MalformedInput: Bad timestamp, key or signature encoding
        ActionExpired: Timestamp outside the freshness window
        SignatureInvalid: Signature does not match the stored public key
    """
    status = check_action_authorization(
        action, resource_id, timestamp_ms, signature_b64, public_key_hex, now=now, window_ms=window_ms
    )
    if status == AuthorizationStatus.OK:
        return

    logger.warning(
        "Action authorization rejected",
        action=action,
        resource_id=resource_id,
        status=status.value,
        signature=short(signature_b64 if isinstance(signature_b64, str) else None),
    )
    if status == AuthorizationStatus.MALFORMED:
        raise MalformedInput("authorization", "timestamp, signature or key is malformed")
    if status == AuthorizationStatus.EXPIRED:
        raise ActionExpired("Timestamp expired. Please try again.")
    raise SignatureInvalid("Invalid signature. Make sure you are using the correct private key.")
