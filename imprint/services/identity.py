"""
Creator identity: Ed25519 keypairs and did:key identifiers.

A did:key is derived purely from the public key: the key is tagged with the
ed25519-pub multicodec prefix (0xed 0x01), base58btc encoded, and given the
multibase marker "z" under the "did:key:" scheme.
"""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

import nacl.utils
import structlog
from nacl.signing import SigningKey

from imprint.core.errors import KeyGenerationError, MalformedInput
from imprint.core.utils import utc_now_iso, validate_hex

logger = structlog.get_logger()

KEY_BYTES = 32
KEY_HEX_LENGTH = KEY_BYTES * 2
ED25519_MULTICODEC = bytes([0xED, 0x01])
DID_KEY_PREFIX = "did:key:"
MULTIBASE_BASE58BTC = "z"

KEYPAIR_FILE_WARNING = (
    "Keep this file safe. Your private key is needed to sign future works under this identity."
)

# Bitcoin base58 alphabet
B58_ALPHABET = b"123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
B58_MAP = {c: i for i, c in enumerate(B58_ALPHABET)}


def b58encode(data: bytes) -> str:
    n_pad = 0
    for c in data:
        if c == 0:
            n_pad += 1
        else:
            break
    num = int.from_bytes(data, "big")
    out = bytearray()
    while num > 0:
        num, rem = divmod(num, 58)
        out.append(B58_ALPHABET[rem])
    out.extend(B58_ALPHABET[0] for _ in range(n_pad))
    out.reverse()
    return out.decode("ascii")


def b58decode(text: str) -> bytes:
    try:
        raw = text.encode("ascii")
    except UnicodeEncodeError:
        raise ValueError("Invalid base58 character")
    num = 0
    for c in raw:
        if c not in B58_MAP:
            raise ValueError("Invalid base58 character")
        num = num * 58 + B58_MAP[c]
    n_pad = 0
    for c in raw:
        if c == B58_ALPHABET[0]:
            n_pad += 1
        else:
            break
    full = num.to_bytes((num.bit_length() + 7) // 8, "big") if num else b""
    return b"\x00" * n_pad + full


def parse_private_key(private_key_hex: str) -> SigningKey:
    """Load a 32-byte Ed25519 seed from hex; rejects malformed input before any crypto."""
    seed = bytes.fromhex(validate_hex(private_key_hex, "private_key", KEY_HEX_LENGTH))
    return SigningKey(seed)


def parse_public_key(public_key_hex: str) -> bytes:
    """Validate a hex public key and return its 32 raw bytes."""
    return bytes.fromhex(validate_hex(public_key_hex, "public_key", KEY_HEX_LENGTH))


def public_key_from_private(private_key_hex: str) -> str:
    return bytes(parse_private_key(private_key_hex).verify_key).hex()


def public_key_to_did_key(public_key_hex: str) -> str:
    """Derive the did:key identity for a hex Ed25519 public key."""
    tagged = ED25519_MULTICODEC + parse_public_key(public_key_hex)
    return f"{DID_KEY_PREFIX}{MULTIBASE_BASE58BTC}{b58encode(tagged)}"


def did_key_to_public_key(did: str) -> str:
    """Recover the hex public key from a did:key identity."""
    if not isinstance(did, str) or not did.startswith(DID_KEY_PREFIX):
        raise MalformedInput("creator_id", "only did:key identities are supported")
    encoded = did.split("#", 1)[0][len(DID_KEY_PREFIX):]
    if not encoded.startswith(MULTIBASE_BASE58BTC):
        raise MalformedInput("creator_id", "did:key must be multibase base58btc (z...)")
    try:
        decoded = b58decode(encoded[1:])
    except ValueError as e:
        raise MalformedInput("creator_id", str(e))
    if not decoded.startswith(ED25519_MULTICODEC):
        raise MalformedInput("creator_id", "multicodec prefix is not ed25519-pub")
    raw = decoded[len(ED25519_MULTICODEC):]
    if len(raw) != KEY_BYTES:
        raise MalformedInput("creator_id", f"Ed25519 public key must be {KEY_BYTES} bytes, got {len(raw)}")
    return raw.hex()


@dataclass(frozen=True)
class KeyPair:
    """Hex-encoded Ed25519 keypair. The private key never leaves the creator."""
    private_key: str
    public_key: str

    @property
    def creator_id(self) -> str:
        return public_key_to_did_key(self.public_key)

    @classmethod
    def from_private_key(cls, private_key_hex: str) -> "KeyPair":
        private_key_hex = validate_hex(private_key_hex, "private_key", KEY_HEX_LENGTH)
        return cls(private_key=private_key_hex, public_key=public_key_from_private(private_key_hex))

    def to_file_dict(self, created_at: Optional[str] = None) -> Dict[str, Any]:
        return {
            "creator_id": self.creator_id,
            "public_key": self.public_key,
            "private_key": self.private_key,
            "created_at": created_at or utc_now_iso(),
            "warning": KEYPAIR_FILE_WARNING,
        }


def generate_key_pair() -> KeyPair:
    """
    Generate a fresh Ed25519 keypair from the operating system's secure random source.

    Raises:
        KeyGenerationError: If secure randomness is unavailable. There is no fallback source.
    """
    try:
        seed = nacl.utils.random(KEY_BYTES)
    except Exception as e:
        logger.error("Secure random source unavailable", error=str(e))
        raise KeyGenerationError("Secure random source unavailable; key generation aborted") from e

    if len(seed) != KEY_BYTES:
        raise KeyGenerationError("Secure random source returned a short read")

    signing_key = SigningKey(seed)
    key_pair = KeyPair(private_key=seed.hex(), public_key=bytes(signing_key.verify_key).hex())
    logger.info("Generated keypair", creator_id=key_pair.creator_id)
    return key_pair


def save_key_pair(key_pair: KeyPair, path: Union[str, Path]) -> Path:
    path = Path(path)
    path.write_text(json.dumps(key_pair.to_file_dict(), indent=2), encoding="utf-8")
    try:
        path.chmod(0o600)
    except OSError:
        logger.warning("Could not restrict keypair file permissions", path=str(path))
    return path


def load_key_pair(path: Union[str, Path]) -> KeyPair:
    """Load a keypair file and check that its public key and identity match the private key."""
    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)

    if "private_key" not in raw:
        raise MalformedInput("private_key", "missing from keypair file")

    key_pair = KeyPair.from_private_key(raw["private_key"])
    if raw.get("public_key") and raw["public_key"].lower() != key_pair.public_key:
        raise MalformedInput("public_key", "does not match the private key")
    if raw.get("creator_id") and raw["creator_id"] != key_pair.creator_id:
        raise MalformedInput("creator_id", "does not match the private key")
    return key_pair
