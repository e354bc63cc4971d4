from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from settings import DEFAULT_MAX_HOURS_PER_TERM, MAX_HOURS_CEILING, TERMS_PER_YEAR
from timeslots import minutes_to_time, parse_time_range, time_to_minutes

# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------
class TimeOfDay(str, Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    NIGHT = "night"
    DAY = "day"
    NONE = "none"

class PriorityOrder(str, Enum):
    CATALOG = "catalog"              # catalog order inside each level
    PREREQUISITES = "prerequisites"  # more correlatives first, then more hours

class UnplacedReason(str, Enum):
    DANGLING_PREREQUISITE = "dangling_prerequisite"
    PREREQUISITE_CYCLE = "prerequisite_cycle"
    BLOCKED_PREREQUISITE = "blocked_prerequisite"
    NO_SCHEDULE_OPTIONS = "no_schedule_options"
    HORIZON_EXHAUSTED = "horizon_exhausted"

# -----------------------------------------------------------------------------
# Terms
# -----------------------------------------------------------------------------
def term_id(year: int, half: int) -> str:
    return f"{year}C{half}"

def term_sequence(years: int, terms_per_year: int = TERMS_PER_YEAR) -> List[str]:
    """Generate the conventional horizon: ['1C1', '1C2', '2C1', ...]."""
    return [term_id(y, t) for y in range(1, years + 1) for t in range(1, terms_per_year + 1)]

# -----------------------------------------------------------------------------
# Catalog records
# -----------------------------------------------------------------------------
class ScheduleOption(BaseModel):
    """One weekly slot a course can be taken in: a set of weekdays plus a time range."""

    model_config = ConfigDict(frozen=True)

    days: Tuple[str, ...]
    start: str
    end: str

    @model_validator(mode="before")
    @classmethod
    def _split_compact_time(cls, data):
        # catalog files write the range as {"time": "14:00-18:00"}
        if isinstance(data, dict) and "time" in data and "start" not in data:
            start, end = parse_time_range(data["time"])
            data = {k: v for k, v in data.items() if k != "time"}
            data.update(start=start, end=end)
        return data

    @field_validator("days")
    @classmethod
    def _days_not_empty(cls, days: Tuple[str, ...]) -> Tuple[str, ...]:
        seen: List[str] = []
        for d in days:
            d = d.strip()
            if d and d not in seen:
                seen.append(d)
        if not seen:
            raise ValueError("schedule option needs at least one weekday")
        return tuple(seen)

    @field_validator("start", "end")
    @classmethod
    def _well_formed_clock(cls, value: str) -> str:
        return minutes_to_time(time_to_minutes(value))

    @model_validator(mode="after")
    def _start_before_end(self):
        if self.start_minutes >= self.end_minutes:
            raise ValueError(f"start {self.start} must be before end {self.end}")
        return self

    @property
    def start_minutes(self) -> int:
        return time_to_minutes(self.start)

    @property
    def end_minutes(self) -> int:
        return time_to_minutes(self.end)

    @property
    def time(self) -> str:
        return f"{self.start}-{self.end}"

    def label(self) -> str:
        return f"{'/'.join(self.days)} {self.time}"

class Course(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    name: str
    year: Optional[int] = None   # suggested, advisory only
    term: Optional[int] = None   # suggested half-year (1..2) or running semester number
    hours: int = Field(ge=0)
    schedule_options: List[ScheduleOption] = Field(default_factory=list, alias="scheduleOptions")
    correlatives: List[int] = Field(default_factory=list)

    @field_validator("correlatives")
    @classmethod
    def _dedupe_correlatives(cls, ids: List[int]) -> List[int]:
        out: List[int] = []
        for i in ids:
            if i not in out:
                out.append(i)
        return out

    @model_validator(mode="after")
    def _no_self_reference(self):
        if self.id in self.correlatives:
            raise ValueError(f"course {self.id} lists itself as a correlative")
        return self

    def suggested_term_id(self) -> Optional[str]:
        if not self.year or not self.term:
            return None
        half = (self.term - 1) % TERMS_PER_YEAR + 1
        return term_id(self.year, half)

# -----------------------------------------------------------------------------
# Planning inputs
# -----------------------------------------------------------------------------
class Preferences(BaseModel):
    model_config = ConfigDict(populate_by_name=True, validate_default=True)

    max_hours_per_term: int = Field(default=DEFAULT_MAX_HOURS_PER_TERM, gt=0, alias="maxHoursPerTerm")
    preferred_time_of_day: TimeOfDay = Field(default=TimeOfDay.NONE, alias="preferredTimeOfDay")
    priority: PriorityOrder = PriorityOrder.CATALOG
    prefer_suggested_term: bool = Field(default=False, alias="preferSuggestedTerm")
    backtracking: bool = True

    @field_validator("max_hours_per_term")
    @classmethod
    def _clamp_to_ceiling(cls, value: int) -> int:
        return min(value, MAX_HOURS_CEILING)

class Lock(BaseModel):
    """An externally fixed placement. Occupies hours and slots, never moved."""
    course_id: int
    term_id: str
    schedule: ScheduleOption

# -----------------------------------------------------------------------------
# Planning output
# -----------------------------------------------------------------------------
class Assignment(BaseModel):
    course_id: int
    name: str
    term_id: str
    schedule: ScheduleOption
    hours: int

class TermPlan(BaseModel):
    term_id: str
    assignments: List[Assignment] = []
    hours: int = 0

class UnplacedCourse(BaseModel):
    course_id: int
    name: str
    reason: UnplacedReason
    detail: str = ""
    cycle: List[int] = []

class Plan(BaseModel):
    terms: List[TermPlan] = []
    unplaced: List[UnplacedCourse] = []
    warnings: List[str] = []

    def term_index(self) -> Dict[int, int]:
        """course id -> position of its term in the horizon."""
        return {a.course_id: i for i, t in enumerate(self.terms) for a in t.assignments}

    def assignment_for(self, course_id: int) -> Optional[Assignment]:
        for t in self.terms:
            for a in t.assignments:
                if a.course_id == course_id:
                    return a
        return None

    def unplaced_ids(self) -> List[int]:
        return [u.course_id for u in self.unplaced]

    @property
    def total_hours(self) -> int:
        return sum(t.hours for t in self.terms)
