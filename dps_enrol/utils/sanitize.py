"""
Sanitisation of text written to the transactions table or embedded in PxPay XML.

Values come from two untrusted directions: the course/user records used to
build the request, and the gateway reply. Both pass through ``clean_text``
before they are stored or sent.
"""
import re
from typing import Any, Optional

# PxPay field limits
MERCHANT_REFERENCE_MAX_LENGTH = 64
MERCHANT_REFERENCE_PART_LENGTH = 20
TXN_DATA_MAX_LENGTH = 255
EMAIL_MAX_LENGTH = 255

# Markup and quoting characters, backslash, and ASCII control characters
_UNSAFE_CHARS = re.compile(r"[<>&\"'\\\x00-\x1f\x7f]")
_WHITESPACE_RUN = re.compile(r"\s{2,}")


def clean_text(value: Any, max_length: Optional[int] = None) -> str:
    """
    Strip characters that are unsafe for storage or XML embedding.

    Args:
        value: Value to clean (``None`` becomes an empty string)
        max_length: Optional length cap applied after cleaning

    Returns:
        str: Cleaned text
    """
    if value is None:
        return ""
    text = _UNSAFE_CHARS.sub("", str(value))
    text = _WHITESPACE_RUN.sub(" ", text).strip()
    if max_length is not None:
        text = text[:max_length].rstrip()
    return text


def build_merchant_reference(site_part: str, course_part: str, user_part: str) -> str:
    """
    Build the MerchantReference shown on PxPay reports and statements.

    Each part is cut to 20 characters before the parts are joined with ``:``,
    then the whole is uppercased and cleaned. Three 20-character parts and two
    separators stay inside the 64-character PxPay limit.

    Example:
        >>> build_merchant_reference("LMS", "101:Intro to Systems", "42:Doe Jane")
        'LMS:101:INTRO TO SYSTEMS:42:DOE JANE'
    """
    parts = [
        str(part)[:MERCHANT_REFERENCE_PART_LENGTH]
        for part in (site_part, course_part, user_part)
    ]
    reference = ":".join(parts).upper()
    return clean_text(reference, max_length=MERCHANT_REFERENCE_MAX_LENGTH)
