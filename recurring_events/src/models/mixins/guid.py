"""
GUID mixin for SQLAlchemy models.

Every row of the event aggregate carries a UUIDv7 exposed to callers as a
prefixed Crockford Base32 GUID. Integer primary keys stay internal to the
store and are used only as foreign keys.

GUID Format: {prefix}_{base32_uuid}
Examples:
    - evt_01hgw2bbg0000000000000000 (Event, the series root)
    - edt_01hgw2bbg0000000000000001 (EventDetail, shared or forked content)
    - rep_01hgw2bbg0000000000000002 (EventRepetition, one occurrence)
"""

import uuid as uuid_module
from typing import ClassVar, Optional

from sqlalchemy import Column, TypeDecorator, LargeBinary
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from uuid_extensions import uuid7

from recurring_events.src.services.guid import GuidService


class UUIDType(TypeDecorator):
    """
    Platform-independent UUID type.

    Native UUID on PostgreSQL, 16-byte LargeBinary elsewhere (SQLite in
    tests). Always presents as a Python UUID object.
    """

    impl = LargeBinary
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(LargeBinary(16))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        value = _coerce_uuid(value)
        if dialect.name == 'postgresql':
            return value
        return value.bytes

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        return _coerce_uuid(value)


def _coerce_uuid(value) -> uuid_module.UUID:
    if isinstance(value, uuid_module.UUID):
        return value
    if isinstance(value, bytes):
        return uuid_module.UUID(bytes=value)
    return uuid_module.UUID(str(value))


class GuidMixin:
    """
    Mixin providing GUID support for aggregate entities.

    Adds:
    - uuid: UUIDv7 column (time-ordered, unique, indexed)
    - guid: Property returning the prefixed Base32 string
    - parse_guid: Class method decoding a GUID of this entity type

    Usage:
        class EventRepetition(Base, GuidMixin):
            GUID_PREFIX = "rep"
    """

    GUID_PREFIX: ClassVar[str]

    uuid = Column(
        UUIDType(),
        nullable=False,
        unique=True,
        index=True,
        default=uuid7,
    )

    @property
    def guid(self) -> Optional[str]:
        """GUID in format {prefix}_{base32_uuid}, or None before flush."""
        if self.uuid is None:
            return None
        return GuidService.encode_uuid(self.uuid, self.GUID_PREFIX)

    @classmethod
    def parse_guid(cls, guid: str) -> uuid_module.UUID:
        """
        Parse a GUID of this entity type to a UUID.

        Raises:
            ValueError: If the format is invalid or the prefix belongs to
                another entity type
        """
        return GuidService.parse_guid(guid, cls.GUID_PREFIX)
