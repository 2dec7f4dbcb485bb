"""Verification of signed webhook deliveries."""

from __future__ import annotations

import hashlib
import hmac
from collections.abc import Mapping
from typing import Any

SIGNATURE_HEADER = "X-Hub-Signature-256"
_PREFIX = "sha256="


def _header(headers: Mapping[str, Any], name: str) -> Any:
    value = headers.get(name)
    if value is not None:
        return value
    wanted = name.lower()
    return next(
        (v for k, v in headers.items() if isinstance(k, str) and k.lower() == wanted),
        None,
    )


class WebhookHandler:
    """Checks the HMAC-SHA256 signature that accompanies each delivery."""

    def __init__(self, secret: str) -> None:
        self._secret = secret.encode()

    def verify_signature(self, headers: Mapping[str, Any], body: str | bytes) -> bool:
        """Return True if the signature header matches the body."""
        signature = _header(headers, SIGNATURE_HEADER)
        if signature is None:
            return False
        if isinstance(signature, bytes):
            try:
                signature = signature.decode("ascii")
            except UnicodeDecodeError:
                return False
        if not isinstance(signature, str) or not signature.isascii():
            return False
        if not signature.startswith(_PREFIX):
            return False

        expected = signature[len(_PREFIX):]
        payload = body.encode() if isinstance(body, str) else bytes(body)
        computed = hmac.new(self._secret, payload, hashlib.sha256).hexdigest()
        return hmac.compare_digest(computed.encode("ascii"), expected.encode("ascii"))