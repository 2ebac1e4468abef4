"""Shared-secret checks for inbound HTTP calls."""

import hashlib
import hmac
from typing import Optional

SIGNATURE_PREFIX = "sha256="


def compute_signature(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, header_value: Optional[str], secret: str) -> bool:
    """Check an HMAC-SHA256 body signature sent as ``sha256=<hex>`` or bare hex."""
    if not header_value or not secret:
        return False
    provided = header_value.strip()
    if provided.lower().startswith(SIGNATURE_PREFIX):
        provided = provided[len(SIGNATURE_PREFIX):]
    expected = compute_signature(body, secret)
    return hmac.compare_digest(expected.encode("ascii"), provided.lower().encode("utf-8"))


def secrets_match(provided: Optional[str], expected: str) -> bool:
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))
