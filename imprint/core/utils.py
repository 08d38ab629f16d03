import base64
import binascii
import logging
import re
import sys
import time
import uuid
from datetime import datetime, timezone
from typing import Optional

import structlog

from .errors import MalformedInput

__all__ = [
    "new_record_id",
    "validate_hex",
    "b64e",
    "b64d",
    "now_ms",
    "utc_now_iso",
    "parse_iso8601",
    "format_file_size",
    "short",
    "configure_logging",
]

HEX_PATTERN = re.compile(r"^[0-9a-fA-F]+$")


def new_record_id() -> str:
    """Generate a new unique record ID."""
    return str(uuid.uuid4())


def validate_hex(value: str, field_name: str, expected_length: Optional[int] = None) -> str:
    """
    Validate that a string is hexadecimal and return it lowercased.

    Raises:
        MalformedInput: If the value is not a string, not hex, or has the wrong length
    """
    if not isinstance(value, str):
        raise MalformedInput(field_name, "must be a string")

    value = value.strip().lower()

    if not value:
        raise MalformedInput(field_name, "cannot be empty")

    if not HEX_PATTERN.match(value):
        raise MalformedInput(field_name, "must be valid hexadecimal")

    if expected_length is not None and len(value) != expected_length:
        raise MalformedInput(field_name, f"must be {expected_length} hex characters")

    return value


def b64e(data: bytes) -> str:
    """Standard base64 encode bytes to string."""
    return base64.b64encode(data).decode("ascii")


def b64d(value: str, field_name: str = "signature") -> bytes:
    """Strict standard base64 decode; raises MalformedInput on bad input."""
    if not isinstance(value, str) or not value.strip():
        raise MalformedInput(field_name, "must be a non-empty base64 string")
    try:
        return base64.b64decode(value.strip(), validate=True)
    except (binascii.Error, ValueError):
        raise MalformedInput(field_name, "must be valid base64")


def now_ms() -> int:
    """Current Unix time in milliseconds."""
    return int(time.time() * 1000)


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601 with millisecond precision and a Z suffix."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso8601(value: str, field_name: str = "signed_at") -> datetime:
    """Parse an ISO-8601 timestamp into an aware datetime (naive values are taken as UTC)."""
    if not isinstance(value, str) or not value:
        raise MalformedInput(field_name, "must be an ISO-8601 timestamp")
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise MalformedInput(field_name, "must be an ISO-8601 timestamp")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_file_size(size_bytes: int) -> str:
    """Format file size in human-readable format."""
    if size_bytes == 0:
        return "0 B"

    size_names = ["B", "KB", "MB", "GB", "TB"]
    size = float(size_bytes)
    i = 0
    while size >= 1024 and i < len(size_names) - 1:
        size /= 1024.0
        i += 1

    return f"{size:.1f} {size_names[i]}"


def short(value: Optional[str], visible: int = 12) -> str:
    """Truncate keys and signatures for log output."""
    if not value:
        return ""
    return value if len(value) <= visible else value[:visible] + "..."


def configure_logging(json_logs: bool = True, level: str = "INFO") -> None:
    """Configure structlog for the API (JSON) or for scripts and the CLI (console)."""
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=getattr(logging, level, logging.INFO))

    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
