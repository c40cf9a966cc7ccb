"""
Wall clock helpers. All timestamps in biosync are integer epoch milliseconds.
"""

import time
from datetime import datetime, tzinfo
from typing import Optional

MS_PER_SECOND = 1000
MS_PER_MINUTE = 60 * MS_PER_SECOND
MS_PER_HOUR = 60 * MS_PER_MINUTE
MS_PER_DAY = 24 * MS_PER_HOUR


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def start_of_local_day(ts_ms: int, tz: Optional[tzinfo] = None) -> int:
    """
    Midnight (local, or in `tz`) of the day containing ts_ms, as epoch ms.
    """
    if tz is None:
        moment = datetime.fromtimestamp(ts_ms / 1000).astimezone()
    else:
        moment = datetime.fromtimestamp(ts_ms / 1000, tz)
    midnight = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    return int(midnight.timestamp() * 1000)
