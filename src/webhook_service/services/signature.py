"""HMAC-SHA256 signing and verification of raw webhook bodies."""
from __future__ import annotations

import hmac
from hashlib import sha256

SIGNATURE_HEADER = "X-Webhook-Signature"
SIGNATURE_PREFIX = "sha256="


def sign(payload: bytes, secret: str) -> str:
    """Return the lowercase hex HMAC-SHA256 of ``payload``."""
    return hmac.new(secret.encode("utf-8"), payload, sha256).hexdigest()


def signature_header(payload: bytes, secret: str | None) -> str | None:
    """Header value for ``payload``, or ``None`` when no secret is configured."""
    if not secret:
        return None
    return f"{SIGNATURE_PREFIX}{sign(payload, secret)}"


def verify(payload: bytes, provided_signature: str | None, secret: str) -> bool:
    """Check ``provided_signature`` (with or without ``sha256=``) in constant time."""
    if not provided_signature:
        return False
    candidate = provided_signature.strip()
    if candidate.startswith(SIGNATURE_PREFIX):
        candidate = candidate[len(SIGNATURE_PREFIX):]
    expected = sign(payload, secret)
    return hmac.compare_digest(expected.encode("ascii"), candidate.lower().encode("utf-8"))
