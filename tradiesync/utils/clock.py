"""Time helpers.

Timestamps are stored as naive UTC datetimes throughout the database layer.
"""

import time
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def epoch_ms() -> int:
    return int(time.time() * 1000)
