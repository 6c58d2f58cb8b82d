"""Column codecs: UUIDs, decimals and timestamps are stored as text."""

from datetime import UTC, datetime
from decimal import Decimal
from uuid import UUID


def encode_decimal(value: Decimal) -> str:
    return str(value)


def decode_decimal(value: str) -> Decimal:
    return Decimal(value)


def encode_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def decode_datetime(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def encode_uuid(value: UUID) -> str:
    return str(value)


def decode_uuid(value: str) -> UUID:
    return UUID(value)
