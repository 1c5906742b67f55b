"""Job frequency expressions — ``"+1 hour"``, ``"+2 days"``, ``"+1 month"``.

Grammar::

    frequency := [sign] magnitude unit
    sign      := "+" | "-"            (default "+")
    magnitude := digits
    unit      := second | minute | hour | day | week | month | year   (optional "s")

Fixed units (second, minute, hour) are elapsed time: "+1 hour" is always
3600 s later, even across a DST change.  Calendar units (day, week, month,
year) are applied to the wall-clock time in the jobs time zone, so a daily
job planned at 09:00 local keeps running at 09:00 local after the clocks
change, which is 23 or 25 hours of real time on those days.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from functools import lru_cache
from zoneinfo import ZoneInfo

from dateutil.relativedelta import relativedelta

_FREQUENCY_RE = re.compile(
    r"^\s*(?P<sign>[+-])?\s*(?P<magnitude>\d+)\s*"
    r"(?P<unit>second|minute|hour|day|week|month|year)s?\s*$",
    re.IGNORECASE,
)

_FIXED_UNITS = frozenset({"second", "minute", "hour"})


class FrequencyError(ValueError):
    """A job frequency cannot be used to reschedule the job.

    Raised for unparseable expressions and for frequencies that do not move
    forward in time.  This is a programming error in the job declaration.
    """


@dataclass(frozen=True)
class Frequency:
    sign: int
    magnitude: int
    unit: str

    @property
    def is_forward(self) -> bool:
        return self.sign > 0 and self.magnitude > 0

    @property
    def is_fixed(self) -> bool:
        return self.unit in _FIXED_UNITS

    def step(self) -> timedelta:
        """Elapsed duration of one step.  Only meaningful for fixed units."""
        if not self.is_fixed:
            raise ValueError(f"{self} has no fixed duration")
        return timedelta(**{f"{self.unit}s": self.sign * self.magnitude})

    def apply(self, when: datetime, tz: tzinfo, times: int = 1) -> datetime:
        """Return *when* moved by *times* steps, as an aware UTC datetime."""
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        if self.is_fixed:
            return (when + self.step() * times).astimezone(timezone.utc)
        local = when.astimezone(tz)
        shifted = local + relativedelta(**{f"{self.unit}s": self.sign * self.magnitude * times})
        return shifted.astimezone(timezone.utc)

    def __str__(self) -> str:
        plural = "s" if self.magnitude != 1 else ""
        return f"{'+' if self.sign > 0 else '-'}{self.magnitude} {self.unit}{plural}"


def parse_frequency(expression: str) -> Frequency:
    """Parse *expression* or raise :class:`FrequencyError`."""
    match = _FREQUENCY_RE.match(expression or "")
    if match is None:
        raise FrequencyError(f"Invalid frequency {expression!r}")
    return Frequency(
        sign=-1 if match.group("sign") == "-" else 1,
        magnitude=int(match.group("magnitude")),
        unit=match.group("unit").lower(),
    )


@lru_cache(maxsize=32)
def get_timezone(name: str) -> tzinfo:
    """Resolve an IANA zone name; "UTC" never needs the tz database."""
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)
