"""Placeholder tokens written in place of masked values."""


class MaskConstants:
    """Mask tokens grouped by what they stand in for."""

    # Type placeholders
    MASK_INT = "***INT***"
    MASK_FLOAT = "***FLOAT***"
    MASK_STRING = "***STRING***"
    MASK_BOOL = "***BOOL***"
    MASK_NULL = "***NULL***"
    MASK_ARRAY = "***ARRAY***"
    MASK_OBJECT = "***OBJECT***"

    # Generic
    MASK_GENERIC = "***"
    MASK_MASKED = "***MASKED***"
    MASK_REDACTED = "***REDACTED***"
    MASK_FILTERED = "***FILTERED***"

    # Identifiers
    MASK_HETU = "***HETU***"
    MASK_SSN = "***SSN***"
    MASK_USSSN = "***USSSN***"
    MASK_UKNI = "***UKNI***"
    MASK_CASIN = "***CASIN***"
    MASK_PASSPORT = "***PASSPORT***"

    # Financial
    MASK_IBAN = "***IBAN***"
    MASK_CC = "***CC***"
    MASK_UKBANK = "***UKBANK***"
    MASK_CABANK = "***CABANK***"

    # Contact and network
    MASK_EMAIL = "***EMAIL***"
    MASK_PHONE = "***PHONE***"
    MASK_IPV4 = "***IPv4***"
    MASK_IPV6 = "***IPv6***"
    MASK_MAC = "***MAC***"

    # Credentials
    MASK_TOKEN = "***TOKEN***"
    MASK_APIKEY = "***APIKEY***"
    MASK_SECRET = "***SECRET***"

    # Other personal data
    MASK_DOB = "***DOB***"
    MASK_VEHICLE = "***VEHICLE***"
    MASK_MEDICARE = "***MEDICARE***"
    MASK_EHIC = "***EHIC***"

    # Traversal markers
    CIRCULAR_REFERENCE = "[CIRCULAR_REFERENCE]"
    DEPTH_EXCEEDED = "[MAX_DEPTH_EXCEEDED]"

    # Error text
    MASK_ERROR = "***ERROR***"
    MASKED_ERROR_TEXT = "[MASKED]"
