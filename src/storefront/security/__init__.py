"""Security package re-exports for easy imports from `src.storefront.security`."""
from .signatures import (
    SignatureVerificationError,
    compute_signature,
    decode_secret,
    extract_v1_signatures,
    verify_webhook,
    ID_HEADER,
    TIMESTAMP_HEADER,
    SIGNATURE_HEADER,
)

__all__ = [
    "SignatureVerificationError",
    "compute_signature",
    "decode_secret",
    "extract_v1_signatures",
    "verify_webhook",
    "ID_HEADER",
    "TIMESTAMP_HEADER",
    "SIGNATURE_HEADER",
]
