"""Anti-sniping end-time extension policy.

A bid landing within ``window`` of the end pushes ``end_time`` to
``now + extension``. Total extension is capped at ``max_total`` beyond the
originally scheduled end, and the end time never moves backward.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass(frozen=True)
class Extension:
    extended: bool
    end_time: datetime


def compute_extension(
    now: datetime,
    end_time: datetime,
    original_end_time: datetime,
    window: timedelta,
    extension: timedelta,
    max_total: timedelta,
) -> Extension:
    """Return the end time after a bid accepted at ``now``."""
    if now > end_time or end_time - now > window:
        return Extension(False, end_time)

    new_end = min(now + extension, original_end_time + max_total)
    if new_end <= end_time:
        return Extension(False, end_time)
    return Extension(True, new_end)
