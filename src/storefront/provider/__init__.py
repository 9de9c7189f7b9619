"""Provider package re-exports for easy imports from `src.storefront.provider`."""
from .yoco import (
    CheckoutSession,
    PaymentProvider,
    YocoClient,
    ProviderError,
    ProviderRequestError,
    ProviderUnavailableError,
    ProviderTimeoutError,
    encode_metadata,
)

__all__ = [
    "CheckoutSession",
    "PaymentProvider",
    "YocoClient",
    "ProviderError",
    "ProviderRequestError",
    "ProviderUnavailableError",
    "ProviderTimeoutError",
    "encode_metadata",
]
