# -*- coding: utf-8 -*-
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp; DateTime columns are stored without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat(value):
    return value.isoformat() if value else None


def from_timestamp(value):
    """Naive UTC datetime from a unix timestamp (provider payloads); None passes through."""
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)
