"""Webhook signature verification."""

from __future__ import annotations

import hashlib
import hmac

SIGNATURE_PREFIX = "sha256="


def compute_signature(raw_body: bytes, secret: str) -> str:
    """Return the ``sha256=<hex>`` signature the provider sends for ``raw_body``."""

    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(raw_body: bytes, signature_header: str | None, secret: str | None) -> bool:
    """Check an ``X-Hub-Signature-256`` header against the raw request body.

    Never raises: a missing secret, missing or malformed header and a digest
    mismatch all yield ``False``.
    """

    if not secret or not signature_header:
        return False
    received = signature_header.strip()
    if not received.startswith(SIGNATURE_PREFIX) or not received.isascii():
        return False
    expected = compute_signature(raw_body, secret)
    return hmac.compare_digest(received.encode("ascii"), expected.encode("ascii"))
