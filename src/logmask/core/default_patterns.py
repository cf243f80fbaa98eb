"""
Built-in patterns for common personal data.

Not exhaustive; extend with patterns for your own data. Anchored patterns
only match a whole value, so they mostly apply to context fields handled
with ``FieldAction.apply_regex()``.
"""

from typing import Dict

from .constants import MaskConstants as Mask


def default_patterns() -> Dict[str, str]:
    """Return an ordered pattern → replacement mapping."""
    return {
        # Finnish personal identity code (HETU)
        r"\b\d{6}[-+A]?\d{3}[A-Z]\b": Mask.MASK_HETU,
        # US Social Security Number
        r"^\d{3}-\d{2}-\d{4}$": Mask.MASK_USSSN,
        # Finnish IBAN, grouped or compact
        r"^FI\d{2}(?: ?\d{4}){3} ?\d{2}$": Mask.MASK_IBAN,
        r"^FI\d{16}$": Mask.MASK_IBAN,
        # International phone numbers (E.164)
        r"^\+\d{1,3}[\s-]?\d{1,4}[\s-]?\d{1,4}[\s-]?\d{1,9}$": Mask.MASK_PHONE,
        # Email address
        r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$": Mask.MASK_EMAIL,
        # Date of birth, YYYY-MM-DD and DD/MM/YYYY
        r"^(19|20)\d{2}-[01]\d-[0-3]\d$": Mask.MASK_DOB,
        r"^[0-3]\d/[01]\d/(19|20)\d{2}$": Mask.MASK_DOB,
        # Passport number
        r"^A\d{6}$": Mask.MASK_PASSPORT,
        # Card test numbers and generic 16-digit card numbers
        r"^(4111 1111 1111 1111|5500-0000-0000-0004|340000000000009|6011000000000004)$": Mask.MASK_CC,
        r"\b[0-9]{16}\b": Mask.MASK_CC,
        # Bearer tokens
        r"^Bearer [A-Za-z0-9\-._~+/]{10,}$": Mask.MASK_TOKEN,
        # API keys
        r"^(sk_(live|test)_[A-Za-z0-9]{16,}|[A-Za-z0-9\-_]{20,})$": Mask.MASK_APIKEY,
        # MAC address
        r"^([0-9A-Fa-f]{2}[:-]){5}([0-9A-Fa-f]{2})$": Mask.MASK_MAC,
        # IPv4
        r"\b(?:(?:25[0-5]|2[0-4]\d|[01]?\d\d?)\.){3}(?:25[0-5]|2[0-4]\d|[01]?\d\d?)\b": Mask.MASK_IPV4,
        # Vehicle registration (ABC-1234, 123-ABC)
        r"\b[A-Z]{2,3}[-\s]?\d{3,4}\b": Mask.MASK_VEHICLE,
        r"\b\d{3,4}[-\s]?[A-Z]{2,3}\b": Mask.MASK_VEHICLE,
        # UK National Insurance number
        r"\b[A-Z]{2}\d{6}[A-Z]\b": Mask.MASK_UKNI,
        # Canadian Social Insurance Number
        r"\b\d{3}[-\s]\d{3}[-\s]\d{3}\b": Mask.MASK_CASIN,
        # UK sort code + account, Canadian transit + account
        r"\b\d{6}[-\s]\d{8}\b": Mask.MASK_UKBANK,
        r"\b\d{5}[-\s]\d{7,12}\b": Mask.MASK_CABANK,
        # US Medicare, European Health Insurance Card
        r"\b\d{3}[-\s]\d{2}[-\s]\d{4}\b": Mask.MASK_MEDICARE,
        r"\b\d{2}[-\s]\d{4}[-\s]\d{4}[-\s]\d{4}[-\s]\d{1,4}\b": Mask.MASK_EHIC,
        # IPv6
        r"\b[0-9a-fA-F]{1,4}:[0-9a-fA-F:]{7,35}\b": Mask.MASK_IPV6,
    }
