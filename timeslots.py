from __future__ import annotations

import re
from typing import TYPE_CHECKING, Collection, Iterable, Optional, Sequence, Tuple

from settings import NIGHT_STARTS_AT, TIME_OF_DAY_WINDOWS

if TYPE_CHECKING:
    from models import ScheduleOption

_CLOCK_RE = re.compile(r"^([0-9]{1,2}):([0-9]{2})$")

# -----------------------------------------------------------------------------
# Clock parsing
# -----------------------------------------------------------------------------
def time_to_minutes(clock: str) -> int:
    """Convert 'HH:MM' (24h) to minutes past midnight. '24:00' is accepted as end of day."""
    if not isinstance(clock, str):
        raise ValueError(f"Invalid clock time: {clock!r}. Expected 'HH:MM'.")
    m = _CLOCK_RE.match(clock.strip())
    if not m:
        raise ValueError(f"Invalid clock time: {clock!r}. Expected 'HH:MM'.")
    hours, minutes = int(m.group(1)), int(m.group(2))
    if minutes > 59 or hours > 24 or (hours == 24 and minutes != 0):
        raise ValueError(f"Invalid clock time: {clock!r}. Out of range.")
    return hours * 60 + minutes

def parse_time_range(text: str) -> Tuple[str, str]:
    """Split the compact catalog form '14:00-18:00' into ('14:00', '18:00')."""
    parts = [p.strip() for p in str(text).split("-")]
    if len(parts) != 2:
        raise ValueError(f"Invalid time range: {text!r}. Expected 'HH:MM-HH:MM'.")
    time_to_minutes(parts[0])
    time_to_minutes(parts[1])
    return parts[0], parts[1]

def minutes_to_time(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"

# -----------------------------------------------------------------------------
# Conflict checks
# -----------------------------------------------------------------------------
def overlaps(a: ScheduleOption, b: ScheduleOption) -> bool:
    """Shared weekday AND intersecting half-open time ranges. Touching ranges don't conflict."""
    if not set(a.days) & set(b.days):
        return False
    return b.start_minutes < a.end_minutes and a.start_minutes < b.end_minutes

def is_compatible(candidate: ScheduleOption, placed: Iterable[ScheduleOption]) -> bool:
    return not any(overlaps(candidate, other) for other in placed)

def matches_time_of_day(option: ScheduleOption, preferred: str) -> bool:
    preferred = getattr(preferred, "value", preferred)
    if preferred == "none":
        return True
    if preferred == "night":
        return option.start_minutes >= NIGHT_STARTS_AT
    window = TIME_OF_DAY_WINDOWS.get(preferred)
    if window is None:
        return False
    lo, hi = window
    return lo <= option.start_minutes and option.end_minutes <= hi

def choose_option(
    options: Sequence[ScheduleOption],
    placed: Sequence[ScheduleOption],
    preferred: str = "none",
    excluded: Collection[ScheduleOption] = (),
) -> Optional[ScheduleOption]:
    """Pick a schedule option compatible with everything already placed in a term.

    Options are walked in catalog order. The preferred time of day only breaks
    ties between compatible options: if none of them matches, the first
    compatible option is returned anyway.
    """
    compatible = [o for o in options if o not in excluded and is_compatible(o, placed)]
    if not compatible:
        return None
    for option in compatible:
        if matches_time_of_day(option, preferred):
            return option
    return compatible[0]
