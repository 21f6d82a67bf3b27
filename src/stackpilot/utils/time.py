"""Time helpers."""

from __future__ import annotations

from datetime import datetime, timezone

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def timestamp_slug(moment: datetime | None = None) -> str:
    return (moment or utc_now()).strftime(TIMESTAMP_FORMAT)
