"""Profile settings schemas shared by the webhook sync and the database rows."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

TIME_PATTERN = r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$"

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday")
WEEKEND = ("saturday", "sunday")


class WorkType(str, Enum):
    """Employment pattern used to seed the planner."""

    FULL_TIME = "full-time"
    PART_TIME = "part-time"


class UserSettings(BaseModel):
    """Settings JSON column of a profile.

    Serialized with camelCase keys (``militaryTime``, ``workType``) to match
    what the dashboard reads.
    """

    model_config = ConfigDict(populate_by_name=True)

    military_time: bool = Field(default=False, alias="militaryTime", description="Show times in 24-hour format")
    work_type: WorkType = Field(default=WorkType.FULL_TIME, alias="workType", description="Work pattern")
    categories: list[str] = Field(
        default_factory=lambda: ["Work", "Personal", "Errands"],
        min_length=1,
        description="Ordered task category labels",
    )


class WorkingDay(BaseModel):
    """Working hours for a single weekday."""

    model_config = ConfigDict(populate_by_name=True)

    start: str = Field(default="09:00", pattern=TIME_PATTERN, description="Start time, HH:MM")
    end: str = Field(default="17:00", pattern=TIME_PATTERN, description="End time, HH:MM")
    is_working_day: bool = Field(default=True, alias="isWorkingDay", description="Whether the day is worked")


class WorkingDays(BaseModel):
    """Working days JSON column of a profile: exactly one entry per weekday."""

    monday: WorkingDay
    tuesday: WorkingDay
    wednesday: WorkingDay
    thursday: WorkingDay
    friday: WorkingDay
    saturday: WorkingDay
    sunday: WorkingDay

    @classmethod
    def default(cls, start: str = "09:00", end: str = "17:00") -> "WorkingDays":
        """Monday to Friday working from start to end, weekend off."""
        days = {day: WorkingDay(start=start, end=end, is_working_day=True) for day in WEEKDAYS}
        days.update({day: WorkingDay(start=start, end=end, is_working_day=False) for day in WEEKEND})
        return cls(**days)
