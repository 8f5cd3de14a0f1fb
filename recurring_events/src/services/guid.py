"""
GUID service for aggregate entity identification.

Encodes, decodes and validates the Global Unique Identifiers exposed by the
engine in place of internal integer keys.

GUID Format: {prefix}_{base32_uuid}
- prefix: 3-character entity type identifier (evt, edt, rep)
- base32_uuid: 26-character Crockford Base32 encoded UUIDv7
"""

import re
import uuid
from typing import Optional, Tuple

import base32_crockford
from uuid_extensions import uuid7

# Prefix mappings for entity types
#   evt - Event (series root holding the recurrence pattern)
#   edt - EventDetail (content shared by occurrences, or a fork of it)
#   rep - EventRepetition (one concrete occurrence)
ENTITY_PREFIXES = {
    "evt": "Event",
    "edt": "EventDetail",
    "rep": "EventRepetition",
}

GUID_LENGTH = 26

GUID_PATTERN = re.compile(
    r"^(evt|edt|rep)_[0-9A-HJKMNP-TV-Za-hjkmnp-tv-z]{26}$",
    re.IGNORECASE
)


class GuidService:
    """
    Static helpers for GUID operations.

    Usage:
        >>> guid = GuidService.generate_guid("evt")
        >>> prefix, value = GuidService.decode_guid(guid)
        >>> GuidService.parse_guid(guid, "evt") == value
        True
    """

    @staticmethod
    def generate_uuid() -> uuid.UUID:
        """Generate a new time-ordered UUIDv7."""
        return uuid7()

    @staticmethod
    def encode_uuid(uuid_value, prefix: str) -> str:
        """
        Encode a UUID (or its 16 raw bytes) to a GUID string.

        Raises:
            ValueError: If prefix is not a known entity prefix
        """
        if prefix not in ENTITY_PREFIXES:
            raise ValueError(
                f"Invalid prefix '{prefix}'. "
                f"Valid prefixes: {', '.join(ENTITY_PREFIXES.keys())}"
            )

        raw = uuid_value if isinstance(uuid_value, bytes) else uuid_value.bytes
        encoded = base32_crockford.encode(int.from_bytes(raw, "big")).zfill(GUID_LENGTH)
        return f"{prefix}_{encoded.lower()}"

    @staticmethod
    def generate_guid(prefix: str) -> str:
        """Generate a fresh GUID with the given prefix."""
        return GuidService.encode_uuid(GuidService.generate_uuid(), prefix)

    @staticmethod
    def decode_guid(guid: str) -> Tuple[str, uuid.UUID]:
        """
        Decode a GUID string to (prefix, UUID).

        Raises:
            ValueError: If the GUID format is invalid
        """
        if not guid:
            raise ValueError("GUID cannot be empty")

        if not GUID_PATTERN.match(guid):
            raise ValueError(
                f"Invalid GUID format: {guid}. "
                f"Expected format: {{prefix}}_{{26-char base32}}"
            )

        prefix = guid[:3].lower()
        try:
            uuid_int = base32_crockford.decode(guid[4:].upper())
            return prefix, uuid.UUID(bytes=uuid_int.to_bytes(16, "big"))
        except (ValueError, OverflowError) as e:
            raise ValueError(f"Invalid GUID encoding: {e}")

    @staticmethod
    def validate_guid(guid: str, expected_prefix: Optional[str] = None) -> bool:
        """Return True if the GUID is well formed (and has the expected prefix)."""
        if not guid or not GUID_PATTERN.match(guid):
            return False
        if expected_prefix:
            return guid[:3].lower() == expected_prefix.lower()
        return True

    @staticmethod
    def get_entity_type(guid: str) -> Optional[str]:
        """Entity type name for a GUID prefix, or None."""
        if not guid or len(guid) < 3:
            return None
        return ENTITY_PREFIXES.get(guid[:3].lower())

    @staticmethod
    def parse_guid(guid: str, expected_prefix: str) -> uuid.UUID:
        """
        Parse a GUID string to UUID, validating the prefix.

        Raises:
            ValueError: If format invalid or prefix doesn't match
        """
        prefix, uuid_value = GuidService.decode_guid(guid)
        if prefix != expected_prefix.lower():
            raise ValueError(
                f"GUID prefix mismatch. "
                f"Expected '{expected_prefix}', got '{prefix}'"
            )
        return uuid_value
