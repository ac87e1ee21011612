"""Text and amount helpers shared by the gateway client and the engine."""
from .money import format_amount, quantize_amount
from .sanitize import (
    MERCHANT_REFERENCE_MAX_LENGTH,
    TXN_DATA_MAX_LENGTH,
    build_merchant_reference,
    clean_text,
)

__all__ = [
    "MERCHANT_REFERENCE_MAX_LENGTH",
    "TXN_DATA_MAX_LENGTH",
    "build_merchant_reference",
    "clean_text",
    "format_amount",
    "quantize_amount",
]
