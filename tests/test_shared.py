import json
import logging
import sys

import pytest

from shared.logging_config import JSONFormatter, mask_headers
from shared.security_config import verify_bearer_token

@pytest.mark.parametrize("header,secret,expected", [
    ("Bearer s3cret", "s3cret", True),
    ("Bearer s3cret", "other", False),
    ("Bearer S3CRET", "s3cret", False),
    ("s3cret", "s3cret", False),
    (None, "s3cret", False),
    ("Bearer ", "", False),
    ("Bearer None", None, False),
])
def test_verify_bearer_token(header, secret, expected):
    assert verify_bearer_token(header, secret) is expected

def test_mask_headers_hides_credentials():
    masked = mask_headers({"Authorization": "Bearer s3cret", "Content-Type": "application/json"})

    assert masked == {"Authorization": "***", "Content-Type": "application/json"}

def _record(**extra):
    record = logging.LogRecord("webhook-service", logging.INFO, __file__, 10, "hello %s", ("world",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record

def test_json_formatter_includes_known_extras():
    line = JSONFormatter("webhook-service").format(
        _record(transaction_id="111", outcome="SUCCESS", unrelated="x")
    )
    data = json.loads(line)

    assert data["service"] == "webhook-service"
    assert data["message"] == "hello world"
    assert data["transaction_id"] == "111"
    assert data["outcome"] == "SUCCESS"
    assert "unrelated" not in data

def test_json_formatter_renders_exceptions():
    try:
        raise ValueError("boom")
    except ValueError:
        record = _record()
        record.exc_info = sys.exc_info()

    data = json.loads(JSONFormatter("webhook-service").format(record))

    assert "ValueError: boom" in data["exception"]
