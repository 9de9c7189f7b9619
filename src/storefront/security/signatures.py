"""Webhook signature verification.

The provider signs ``{webhook-id}.{webhook-timestamp}.{raw body}`` with
HMAC-SHA256, keyed by the base64 payload of the ``whsec_``-prefixed signing
secret, and sends the base64 digest in the ``webhook-signature`` header as one
or more versioned entries (``v1,<sig>``, ``v1=<sig>,v2=<sig>`` or several
space separated ``v1,<sig>`` entries during secret rotation).

Verification always runs over the exact bytes received. Re-serialising a
parsed JSON body changes key order and whitespace and breaks the digest.
"""
from typing import Mapping, Optional
import base64
import binascii
import hashlib
import hmac
import logging
import time

from ..config import ConfigurationError

logger = logging.getLogger(__name__)

SECRET_PREFIX = "whsec_"
ID_HEADER = "webhook-id"
TIMESTAMP_HEADER = "webhook-timestamp"
SIGNATURE_HEADER = "webhook-signature"
DEFAULT_TOLERANCE_SECONDS = 180


class SignatureVerificationError(Exception):
    """Webhook failed authenticity or freshness checks.

    `status_code` is 400 for malformed, missing, stale or wrong-length
    signatures and 403 for a well-formed signature that does not match.
    `reason` is for logs only and must not be returned to the caller.
    """

    def __init__(self, status_code: int, reason: str):
        super().__init__(reason)
        self.status_code = status_code
        self.reason = reason


def decode_secret(secret: Optional[str]) -> bytes:
    """Turn a ``whsec_<base64>`` signing secret into raw HMAC key bytes."""
    if not secret:
        raise ConfigurationError("webhook signing secret is not set")
    if not secret.startswith(SECRET_PREFIX):
        raise ConfigurationError("webhook signing secret must start with 'whsec_'")
    try:
        key = base64.b64decode(secret[len(SECRET_PREFIX):], validate=True)
    except (binascii.Error, ValueError):
        raise ConfigurationError("webhook signing secret is not valid base64")
    if not key:
        raise ConfigurationError("webhook signing secret is empty")
    return key


def compute_signature(key: bytes, delivery_id: str, timestamp: str, body: bytes) -> str:
    signed_content = f"{delivery_id}.{timestamp}.".encode("utf-8") + body
    digest = hmac.new(key, signed_content, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def extract_v1_signatures(header_value: str) -> list[str]:
    """Return every `v1` signature in a signature header, in order."""
    signatures = []
    for entry in header_value.split():
        if entry.startswith("v1,"):
            signatures.append(entry[len("v1,"):])
            continue
        for part in entry.split(","):
            if part.startswith("v1="):
                signatures.append(part[len("v1="):])
    return [sig for sig in signatures if sig]


def verify_webhook(
    body: bytes,
    headers: Mapping[str, str],
    secret: Optional[str],
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
    now: Optional[float] = None,
) -> None:
    """Verify a webhook delivery. Returns None on success.

    Raises ConfigurationError when the secret itself is unusable and
    SignatureVerificationError for anything the sender got wrong.
    """
    key = decode_secret(secret)

    delivery_id = headers.get(ID_HEADER)
    timestamp_header = headers.get(TIMESTAMP_HEADER)
    signature_header = headers.get(SIGNATURE_HEADER)
    if not delivery_id or not timestamp_header or not signature_header:
        raise SignatureVerificationError(400, "missing webhook-id, webhook-timestamp or webhook-signature header")

    try:
        timestamp = int(timestamp_header)
    except ValueError:
        raise SignatureVerificationError(400, "webhook-timestamp is not an integer")
    current = time.time() if now is None else now
    if abs(current - timestamp) > tolerance_seconds:
        raise SignatureVerificationError(400, f"webhook-timestamp outside {tolerance_seconds}s tolerance")

    provided = []
    for candidate in extract_v1_signatures(signature_header):
        try:
            provided.append(base64.b64decode(candidate, validate=True))
        except (binascii.Error, ValueError):
            continue
    if not provided:
        raise SignatureVerificationError(400, "no parseable v1 signature in webhook-signature header")

    expected = base64.b64decode(compute_signature(key, delivery_id, timestamp_header, body))
    same_length = [sig for sig in provided if len(sig) == len(expected)]
    if not same_length:
        raise SignatureVerificationError(400, "signature length mismatch")
    if not any(hmac.compare_digest(expected, sig) for sig in same_length):
        raise SignatureVerificationError(403, "signature mismatch")
