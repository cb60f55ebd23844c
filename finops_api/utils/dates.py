"""
Date Helpers

DateTime columns are stored without a timezone and hold UTC. Incoming
values are normalized with naive_utc before they are compared or stored.
"""
from datetime import datetime, timezone
from typing import Optional


def naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive UTC. Naive values are assumed UTC already."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
