"""Schedule Schemas"""

from datetime import date, datetime, time
from typing import Annotated, Any, Dict, Literal, Optional, Set, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

from orchestrator.core.config import settings
from orchestrator.core.exceptions import ScheduleValidationError
from orchestrator.models.scheduled_test import ScheduleType, LastRunStatus


class WeeklyRecurrence(BaseModel):
    """Run on a set of weekdays (0 = Sunday ... 6 = Saturday)"""
    kind: Literal["weekly"] = "weekly"
    days: Set[int] = Field(..., min_length=1, description="Weekday ordinals, 0 = Sunday")

    @field_validator('days')
    @classmethod
    def validate_days(cls, v: Set[int]) -> Set[int]:
        invalid = sorted(day for day in v if day < 0 or day > 6)
        if invalid:
            raise ValueError(f'Weekday ordinals must be between 0 and 6, got {invalid}')
        return v


class MonthlyRecurrence(BaseModel):
    """Run on one day of the month"""
    kind: Literal["monthly"] = "monthly"
    day_of_month: int = Field(..., ge=1, le=31, description="Day of month (1-31)")


RecurrencePattern = Annotated[
    Union[WeeklyRecurrence, MonthlyRecurrence],
    Field(discriminator="kind")
]

_recurrence_adapter = TypeAdapter(Optional[RecurrencePattern])

# Which pattern kind each schedule type requires; None means no pattern allowed
PATTERN_KIND_BY_TYPE: Dict[ScheduleType, Optional[str]] = {
    ScheduleType.ONE_TIME: None,
    ScheduleType.DAILY: None,
    ScheduleType.WEEKLY: "weekly",
    ScheduleType.MONTHLY: "monthly",
}


def normalize_recurrence_payload(raw: Any) -> Any:
    """
    Convert the legacy untagged JSON forms into the tagged union.

    ``{"days": [1, 3]}`` becomes a weekly pattern and ``{"dayOfMonth": 15}``
    a monthly one. Tagged payloads and model instances pass through.
    """
    if not isinstance(raw, dict) or "kind" in raw:
        return raw
    if "days" in raw:
        return {"kind": "weekly", "days": raw["days"]}
    if "dayOfMonth" in raw or "day_of_month" in raw:
        return {
            "kind": "monthly",
            "day_of_month": raw.get("dayOfMonth", raw.get("day_of_month")),
        }
    return raw


def parse_recurrence_pattern(raw: Any) -> Optional[Union[WeeklyRecurrence, MonthlyRecurrence]]:
    """Parse a stored or submitted recurrence payload into its typed form"""
    if raw is None:
        return None
    return _recurrence_adapter.validate_python(normalize_recurrence_payload(raw))


def validate_timezone_name(value: str) -> str:
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError):
        raise ScheduleValidationError(f"Unknown timezone: {value}", field="timezone")
    return value


def validate_schedule_shape(
    schedule_type: ScheduleType,
    test_case_id: Optional[str],
    test_file_id: Optional[str],
    scheduled_date: Optional[date],
    recurrence_pattern: Optional[Union[WeeklyRecurrence, MonthlyRecurrence]],
) -> None:
    """
    Check the cross-field rules of a scheduled test.

    Raises:
        ScheduleValidationError: If the combination is not valid
    """
    if not test_case_id and not test_file_id:
        raise ScheduleValidationError(
            "Either test_case_id or test_file_id must be provided",
            field="test_case_id"
        )
    if test_case_id and test_file_id:
        raise ScheduleValidationError(
            "Cannot specify both test_case_id and test_file_id",
            field="test_file_id"
        )

    if schedule_type not in PATTERN_KIND_BY_TYPE:
        raise ScheduleValidationError(
            f"Unknown schedule type: {schedule_type}",
            field="schedule_type"
        )

    if schedule_type == ScheduleType.ONE_TIME and scheduled_date is None:
        raise ScheduleValidationError(
            "scheduled_date is required for one-time schedules",
            field="scheduled_date"
        )

    expected_kind = PATTERN_KIND_BY_TYPE[schedule_type]
    actual_kind = recurrence_pattern.kind if recurrence_pattern is not None else None
    if expected_kind != actual_kind:
        if expected_kind is None:
            message = f"{schedule_type.value} schedules do not take a recurrence pattern"
        else:
            message = f"{schedule_type.value} schedules require a {expected_kind} recurrence pattern"
        raise ScheduleValidationError(message, field="recurrence_pattern")


class ScheduledTestCreate(BaseModel):
    """Request schema for creating a scheduled test"""
    name: str = Field(..., min_length=1, max_length=255, description="Display name")
    test_case_id: Optional[str] = Field(None, description="Catalog test case to run")
    test_file_id: Optional[str] = Field(None, description="Catalog test file whose active cases run")
    user_id: Optional[str] = Field(None, description="Owner attributed to scheduled runs")
    schedule_type: ScheduleType = Field(..., description="one-time, daily, weekly or monthly")
    scheduled_date: Optional[date] = Field(None, description="Date of a one-time run")
    scheduled_time: time = Field(..., description="Wall-clock time of day in `timezone`")
    timezone: str = Field(default_factory=lambda: settings.SCHEDULE_DEFAULT_TIMEZONE)
    recurrence_pattern: Optional[RecurrencePattern] = Field(
        None,
        description="Weekly days or monthly day; absent for one-time and daily"
    )
    description: Optional[str] = None

    @field_validator('recurrence_pattern', mode='before')
    @classmethod
    def accept_legacy_pattern(cls, v: Any) -> Any:
        return normalize_recurrence_payload(v)

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        return validate_timezone_name(v)

    @model_validator(mode='after')
    def validate_shape(self) -> "ScheduledTestCreate":
        validate_schedule_shape(
            self.schedule_type,
            self.test_case_id,
            self.test_file_id,
            self.scheduled_date,
            self.recurrence_pattern,
        )
        return self


class ScheduledTestUpdate(BaseModel):
    """
    Request schema for updating a scheduled test.

    Only the fields that are explicitly set are applied; the rest keep
    their stored values.
    """
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    schedule_type: Optional[ScheduleType] = None
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[time] = None
    timezone: Optional[str] = None
    recurrence_pattern: Optional[RecurrencePattern] = None
    enabled: Optional[bool] = None
    description: Optional[str] = None

    @field_validator('recurrence_pattern', mode='before')
    @classmethod
    def accept_legacy_pattern(cls, v: Any) -> Any:
        return normalize_recurrence_payload(v)

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return validate_timezone_name(v)


class ScheduledTestResponse(BaseModel):
    """Response schema for scheduled test information"""
    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Unique identifier for the schedule")
    name: str
    test_case_id: Optional[str] = None
    test_file_id: Optional[str] = None
    user_id: Optional[str] = None
    schedule_type: ScheduleType
    scheduled_date: Optional[date] = None
    scheduled_time: time
    timezone: str
    recurrence_pattern: Optional[RecurrencePattern] = None
    enabled: bool
    next_run_at: Optional[datetime] = Field(None, description="Next due time (UTC)")
    last_run_at: Optional[datetime] = None
    last_run_status: Optional[LastRunStatus] = None
    run_count: int = 0
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator('recurrence_pattern', mode='before')
    @classmethod
    def accept_legacy_pattern(cls, v: Any) -> Any:
        return normalize_recurrence_payload(v)

