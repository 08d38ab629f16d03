"""
Exact content fingerprinting with SHA-256.
"""

import hashlib
from typing import BinaryIO, Union

import structlog

logger = structlog.get_logger()

CHUNK_SIZE = 8192
CONTENT_HASH_LENGTH = 64


def content_hash(data: Union[bytes, bytearray, memoryview]) -> str:
    """SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def content_hash_stream(fileobj: BinaryIO) -> str:
    """SHA-256 hex digest of a binary stream, read once in chunks."""
    hash_obj = hashlib.sha256()
    for chunk in iter(lambda: fileobj.read(CHUNK_SIZE), b""):
        hash_obj.update(chunk)
    return hash_obj.hexdigest()


def content_hash_file(file_path: str) -> str:
    """SHA-256 hex digest of a file on disk."""
    try:
        with open(file_path, "rb") as f:
            digest = content_hash_stream(f)
        logger.debug("Calculated content hash", file_path=file_path, hash=digest)
        return digest
    except OSError as e:
        logger.error("Failed to calculate content hash", file_path=file_path, error=str(e))
        raise


def text_hash(text: str) -> str:
    """SHA-256 hex digest of the UTF-8 encoding of a string."""
    return content_hash(text.encode("utf-8"))
