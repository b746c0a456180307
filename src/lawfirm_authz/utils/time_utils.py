from __future__ import annotations

import math
import time
from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def now_ms() -> int:
    return int(time.time() * 1000)


def from_epoch(seconds: int | float) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def seconds_until(epoch_ms: int, *, now: int | None = None) -> int:
    """Whole seconds until `epoch_ms`, rounded up, never negative."""
    remaining = epoch_ms - (now if now is not None else now_ms())
    if remaining <= 0:
        return 0
    return math.ceil(remaining / 1000)
