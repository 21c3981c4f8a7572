from datetime import UTC, datetime
from typing import Annotated

from pydantic import PlainSerializer


def serialize_utc(value: datetime) -> str:
    """Serialize a naive UTC datetime as ISO 8601 with a Z suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


# Timestamps are stored naive in UTC
UTCDateTime = Annotated[datetime, PlainSerializer(serialize_utc, return_type=str)]

