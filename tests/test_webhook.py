import hashlib
import hmac

import pytest

from mergebot.webhook import WebhookHandler

SECRET = "secret"
BODY = '{"action": "opened"}'


def _sign(body: str, key: str = SECRET) -> str:
    digest = hmac.new(key.encode(), body.encode(), hashlib.sha256).hexdigest()
    return "sha256=" + digest


@pytest.fixture
def handler():
    return WebhookHandler(SECRET)


def test_valid_signature(handler):
    assert handler.verify_signature({"X-Hub-Signature-256": _sign(BODY)}, BODY) is True


def test_header_name_is_case_insensitive(handler):
    assert handler.verify_signature({"x-hub-signature-256": _sign(BODY)}, BODY) is True


def test_bytes_body(handler):
    headers = {"X-Hub-Signature-256": _sign(BODY)}
    assert handler.verify_signature(headers, BODY.encode()) is True


def test_tampered_body(handler):
    headers = {"X-Hub-Signature-256": _sign(BODY)}
    assert handler.verify_signature(headers, BODY + " ") is False


def test_wrong_key(handler):
    headers = {"X-Hub-Signature-256": _sign(BODY, key="token")}
    assert handler.verify_signature(headers, BODY) is False


def test_missing_header(handler):
    assert handler.verify_signature({}, BODY) is False


def test_missing_prefix(handler):
    digest = _sign(BODY)[len("sha256="):]
    assert handler.verify_signature({"X-Hub-Signature-256": digest}, BODY) is False


def test_sha1_prefix_rejected(handler):
    digest = _sign(BODY)[len("sha256="):]
    headers = {"X-Hub-Signature-256": "sha1=" + digest}
    assert handler.verify_signature(headers, BODY) is False


def test_uppercase_hex_rejected(handler):
    digest = _sign(BODY)[len("sha256="):]
    headers = {"X-Hub-Signature-256": "sha256=" + digest.upper()}
    assert handler.verify_signature(headers, BODY) is False


def test_non_ascii_header_rejected(handler):
    headers = {"X-Hub-Signature-256": "sha256=\u00e9"}
    assert handler.verify_signature(headers, BODY) is False