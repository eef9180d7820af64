"""Recurrence Calculator - computes when a scheduled test is next due"""

import calendar
from datetime import date, datetime, time, timedelta, timezone as dt_timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

from orchestrator.core.clock import utcnow
from orchestrator.core.exceptions import ScheduleValidationError
from orchestrator.models.scheduled_test import ScheduleType
from orchestrator.schemas.schedule import WeeklyRecurrence, MonthlyRecurrence


class RecurrenceCalculator:
    """
    Pure next-run computation for scheduled tests.

    ``scheduled_time`` is a wall-clock time in the schedule's timezone. The
    returned instant is a naive UTC datetime, the form every timestamp is
    persisted in. ``now`` may be naive (taken as UTC) or timezone-aware.

    Policies for the edge cases:
    - one-time: returned verbatim even when already in the past; the scanner
      treats a past ``next_run_at`` as immediately due.
    - daily and weekly: the wall-clock time is kept across DST changes, so
      consecutive daily runs are 23 or 25 hours apart around a transition.
    - weekly: the scan covers today plus the following 7 days, so a schedule
      whose only weekday is today and whose time has passed lands exactly one
      week later.
    - monthly: ``day_of_month`` is clamped to the length of the month, so 31
      fires on the last day of shorter months.
    """

    @staticmethod
    def next_run_time(
        schedule_type: ScheduleType,
        scheduled_date: Optional[date],
        scheduled_time: time,
        timezone: str = "UTC",
        recurrence_pattern: Optional[Union[WeeklyRecurrence, MonthlyRecurrence]] = None,
        now: Optional[datetime] = None
    ) -> datetime:
        """
        Calculate the next run time of a schedule.

        Args:
            schedule_type: one-time, daily, weekly or monthly
            scheduled_date: Date of a one-time run
            scheduled_time: Wall-clock time of day
            timezone: IANA timezone the wall-clock time is expressed in
            recurrence_pattern: Weekly or monthly pattern
            now: Reference instant (defaults to the current time)

        Returns:
            Next run time as a naive UTC datetime

        Raises:
            ScheduleValidationError: If the parameters cannot produce a time
        """
        tz = _resolve_timezone(timezone)
        now_utc = _as_aware_utc(now if now is not None else utcnow())
        today = now_utc.astimezone(tz).date()
        wall_clock = scheduled_time.replace(tzinfo=None)

        def at(day: date) -> datetime:
            return datetime.combine(day, wall_clock, tzinfo=tz)

        try:
            schedule_type = ScheduleType(schedule_type)
        except ValueError:
            raise ScheduleValidationError(
                f"Unknown schedule type: {schedule_type}",
                field="schedule_type"
            )

        if schedule_type == ScheduleType.ONE_TIME:
            if scheduled_date is None:
                raise ScheduleValidationError(
                    "scheduled_date is required for one-time schedules",
                    field="scheduled_date"
                )
            return _to_naive_utc(at(scheduled_date))

        if schedule_type == ScheduleType.DAILY:
            return _to_naive_utc(_next_cron_match(wall_clock, "*", tz, now_utc))

        if schedule_type == ScheduleType.WEEKLY:
            if not isinstance(recurrence_pattern, WeeklyRecurrence) or not recurrence_pattern.days:
                raise ScheduleValidationError(
                    "weekly schedules require a weekly recurrence pattern",
                    field="recurrence_pattern"
                )
            days_of_week = ",".join(str(day) for day in sorted(recurrence_pattern.days))
            return _to_naive_utc(_next_cron_match(wall_clock, days_of_week, tz, now_utc))

        if schedule_type == ScheduleType.MONTHLY:
            if not isinstance(recurrence_pattern, MonthlyRecurrence):
                raise ScheduleValidationError(
                    "monthly schedules require a monthly recurrence pattern",
                    field="recurrence_pattern"
                )
            day_of_month = recurrence_pattern.day_of_month
            candidate = at(_clamped_day(today.year, today.month, day_of_month))
            if candidate <= now_utc:
                year, month = (today.year + 1, 1) if today.month == 12 else (today.year, today.month + 1)
                candidate = at(_clamped_day(year, month, day_of_month))
            return _to_naive_utc(candidate)


def weekday_ordinal(day: date) -> int:
    """Weekday ordinal with 0 = Sunday ... 6 = Saturday"""
    return (day.weekday() + 1) % 7


def _next_cron_match(wall_clock: time, days_of_week: str, tz: ZoneInfo, now_utc: datetime) -> datetime:
    """
    Next instant after now_utc whose local wall clock is ``wall_clock`` on
    one of ``days_of_week`` (cron day-of-week field, 0 = Sunday).

    croniter walks naive local time, so every match keeps the wall-clock
    time across DST changes. A wall time skipped by a forward shift resolves
    with the offset in force before it; a repeated one takes its first
    occurrence.
    """
    expression = f"{wall_clock.minute} {wall_clock.hour} * * {days_of_week} {wall_clock.second}"
    # croniter matches whole seconds
    fraction = timedelta(microseconds=wall_clock.microsecond)

    base = (now_utc.astimezone(tz).replace(tzinfo=None) - fraction).replace(microsecond=0)
    while True:
        match = croniter(expression, base).get_next(datetime)
        candidate = (match + fraction).replace(tzinfo=tz)
        if candidate > now_utc:
            return candidate
        base = match


def _resolve_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        raise ScheduleValidationError(f"Unknown timezone: {name}", field="timezone")


def _as_aware_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=dt_timezone.utc)
    return value.astimezone(dt_timezone.utc)


def _to_naive_utc(value: datetime) -> datetime:
    return value.astimezone(dt_timezone.utc).replace(tzinfo=None)


def _clamped_day(year: int, month: int, day_of_month: int) -> date:
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day_of_month, last_day))
