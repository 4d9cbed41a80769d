from datetime import datetime


def to_db_timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def from_db_timestamp(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value is not None else None
