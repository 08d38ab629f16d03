import importlib
from datetime import timezone

import pytest
import structlog

from imprint import config
from imprint.core.errors import ActionExpired, MalformedInput, NotFound, SignatureInvalid
from imprint.core.utils import (
    b64d,
    b64e,
    configure_logging,
    format_file_size,
    new_record_id,
    parse_iso8601,
    short,
    utc_now_iso,
    validate_hex,
)


def test_new_record_id_unique():
    ids = {new_record_id() for _ in range(5)}
    assert len(ids) == 5


def test_validate_hex_lowercases():
    assert validate_hex("ABcd", "x") == "abcd"
    assert validate_hex("ab" * 32, "x", 64) == "ab" * 32


@pytest.mark.parametrize("value", ["", "xyz", "ab cd", None, 12])
def test_validate_hex_rejects(value):
    with pytest.raises(MalformedInput) as exc:
        validate_hex(value, "content_hash")
    assert exc.value.field == "content_hash"


def test_validate_hex_length():
    with pytest.raises(MalformedInput):
        validate_hex("abcd", "public_key", 64)


def test_base64_strict():
    assert b64d(b64e(b"\x00\xffdata")) == b"\x00\xffdata"
    with pytest.raises(MalformedInput):
        b64d("not base64!!")
    with pytest.raises(MalformedInput):
        b64d("")


def test_utc_now_iso_format():
    stamp = utc_now_iso()
    assert stamp.endswith("Z")
    # millisecond precision
    assert len(stamp.split(".")[1]) == 4
    assert parse_iso8601(stamp).tzinfo is not None


def test_parse_iso8601():
    parsed = parse_iso8601("2024-05-01T12:00:00.000Z")
    assert parsed.tzinfo == timezone.utc
    assert parse_iso8601("2024-05-01T12:00:00").tzinfo == timezone.utc
    with pytest.raises(MalformedInput):
        parse_iso8601("yesterday")


def test_format_file_size():
    assert format_file_size(0) == "0 B"
    assert format_file_size(2048) == "2.0 KB"


def test_short():
    assert short("a" * 40) == "a" * 12 + "..."
    assert short(None) == ""


def test_error_payloads():
    err = MalformedInput("public_key", "must be 64 hex characters")
    assert err.to_dict() == {
        "error": "MALFORMED_INPUT",
        "message": "public_key: must be 64 hex characters",
        "field": "public_key",
    }
    assert ActionExpired("late").status_code == 400
    assert ActionExpired.code == "EXPIRED"
    assert SignatureInvalid("bad").status_code == 403
    assert NotFound().to_dict()["error"] == "NOT_FOUND"


@pytest.fixture
def reload_config():
    yield lambda: importlib.reload(config)
    importlib.reload(config)


def test_config_from_environment(monkeypatch, reload_config):
    monkeypatch.setenv("IMPRINT_RECORD_STORE", "Memory")
    monkeypatch.setenv("IMPRINT_SIMILARITY_THRESHOLD", "6")
    monkeypatch.setenv("IMPRINT_ACTION_WINDOW_SECONDS", "60")
    reload_config()
    assert config.RECORD_STORE == "memory"
    assert config.SIMILARITY_THRESHOLD == 6
    assert config.ACTION_WINDOW_MS == 60 * 1000


def test_configure_logging_json(caplog):
    configure_logging(json_logs=True)
    with caplog.at_level("INFO"):
        structlog.get_logger("imprint.test").info("hello", record_id="rec-1")
    assert '"record_id": "rec-1"' in caplog.text
