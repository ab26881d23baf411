# -*- coding: utf-8 -*-

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from .parser import RawMeasurement

SOURCE_LABEL = "LLU"

MGDL_PER_MMOLL = 18.0182

# month/day/year hour:minute:second AM|PM, independent of LC_TIME
_LLU_TS = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4}) (\d{1,2}):(\d{1,2}):(\d{1,2}) ([AP]M)$", re.IGNORECASE | re.ASCII)


class Trend(Enum):
    FALLING = "falling"
    FALLING_SLOW = "falling-slow"
    FLAT = "flat"
    RISING_SLOW = "rising-slow"
    RISING = "rising"
    UNKNOWN = "unknown"


_TREND_BY_CODE = {
    1: Trend.FALLING,
    2: Trend.FALLING_SLOW,
    3: Trend.FLAT,
    4: Trend.RISING_SLOW,
    5: Trend.RISING,
}


def to_trend(code: Optional[int]) -> Trend:
    return _TREND_BY_CODE.get(code, Trend.UNKNOWN)


def now_ts(tz) -> datetime:
    return datetime.now(tz) if tz else datetime.now()


def parse_llu_timestamp(ts: str, tz) -> Optional[datetime]:
    # Example: "1/9/2026 10:41:01 AM"
    if not ts:
        return None
    m = _LLU_TS.match(ts.strip())
    if m is None:
        return None
    month, day, year, hour, minute, second = (int(g) for g in m.groups()[:6])
    if not 1 <= hour <= 12:
        return None
    hour = hour % 12 + (12 if m.group(7).upper() == "PM" else 0)
    try:
        dt = datetime(year, month, day, hour, minute, second)
    except ValueError:
        return None
    return dt.replace(tzinfo=tz) if tz else dt


@dataclass(frozen=True)
class Reading:
    value: int
    timestamp: datetime
    trend: Trend
    trend_code: int
    source: str = SOURCE_LABEL

    @property
    def mmol_l(self) -> float:
        return round(self.value / MGDL_PER_MMOLL, 1)


class ReadingNormalizer:
    """
    Turns a raw measurement into a Reading and drops anything that is not
    strictly newer than the last accepted one.

    The last accepted timestamp is follower state; it is not touched by a
    session reset.
    """

    def __init__(self, tz=None, logger: Optional[logging.Logger] = None):
        self.tz = tz
        self.last_sample_time: Optional[datetime] = None
        self.log = logger or logging.getLogger("llu_follower")

    def init_last_sample_time(self) -> None:
        self.last_sample_time = None

    def normalize(self, raw: RawMeasurement) -> Optional[Reading]:
        ts = parse_llu_timestamp(raw.timestamp, self.tz)
        if ts is None:
            # keep the value, a wrong timestamp hurts less than a lost reading
            self.log.error("[poll] failed to parse timestamp %r, using current time", raw.timestamp)
            ts = now_ts(self.tz)
        elif self.last_sample_time is not None and ts <= self.last_sample_time:
            self.log.warning(
                "[poll] timestamp same or older than previous: %s -> %s",
                self.last_sample_time.isoformat(), ts.isoformat(),
            )
            return None

        reading = Reading(
            value=raw.value,
            timestamp=ts,
            trend=to_trend(raw.trend),
            trend_code=raw.trend,
        )
        self.last_sample_time = ts

        self.log.debug(
            "[poll] glucose=%s mg/dl (%.1f mmol/l) trend=%s (%s) ts=%s",
            reading.value, reading.mmol_l, reading.trend.value, reading.trend_code, ts.isoformat(),
        )
        return reading
