"""Scheduled Test Service - CRUD, due query and post-run bookkeeping for scheduled tests"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from orchestrator.core.clock import utcnow
from orchestrator.core.exceptions import ScheduleNotFoundError, ScheduleValidationError
from orchestrator.core.logging_config import get_logger
from orchestrator.models.catalog import TestCaseModel, TestFileModel
from orchestrator.models.scheduled_test import LastRunStatus, ScheduledTestModel, ScheduleType
from orchestrator.schemas.schedule import (
    PATTERN_KIND_BY_TYPE,
    ScheduledTestCreate,
    ScheduledTestResponse,
    ScheduledTestUpdate,
    parse_recurrence_pattern,
    validate_schedule_shape,
)
from orchestrator.services.recurrence import RecurrenceCalculator

logger = get_logger(__name__)

# Fields whose change moves the next run
SCHEDULING_FIELDS = frozenset({
    "schedule_type",
    "scheduled_date",
    "scheduled_time",
    "timezone",
    "recurrence_pattern",
})


def _as_schedule_error(error: ValidationError) -> ScheduleValidationError:
    """Flatten a pydantic ValidationError into the first offending field"""
    first = error.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or None
    message = str(first.get("msg", "Invalid scheduled test"))
    if message.startswith("Value error, "):
        message = message[len("Value error, "):]
    return ScheduleValidationError(
        message,
        field=field,
        details={"errors": error.errors(include_url=False, include_context=False)}
    )


class ScheduledTestService:
    """
    Manages scheduled tests.

    Responsibilities:
    - Validate and create schedules, computing the first ``next_run_at``
    - List, get, update, toggle and delete schedules
    - Answer the due query used by the scanner
    - Record the outcome of each run and move ``next_run_at`` forward

    Timestamps are naive UTC. Every method takes an optional ``now`` so the
    time-dependent behaviour can be driven explicitly.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        calculator: type = RecurrenceCalculator
    ):
        self.db = db_session
        self.calculator = calculator

    async def create_schedule(
        self,
        request: Union[ScheduledTestCreate, Dict[str, Any]],
        now: Optional[datetime] = None
    ) -> ScheduledTestResponse:
        """
        Create a new scheduled test.

        Args:
            request: Validated request or a raw payload
            now: Reference time for the first next run

        Returns:
            The stored schedule

        Raises:
            ScheduleValidationError: If the schedule shape is invalid or the
                target does not exist in the catalog
        """
        if not isinstance(request, ScheduledTestCreate):
            try:
                request = ScheduledTestCreate.model_validate(request)
            except ValidationError as e:
                raise _as_schedule_error(e)

        await self._ensure_target_exists(request.test_case_id, request.test_file_id)

        next_run_at = self.calculator.next_run_time(
            request.schedule_type,
            request.scheduled_date,
            request.scheduled_time,
            request.timezone,
            request.recurrence_pattern,
            now=now
        )

        schedule = ScheduledTestModel(
            name=request.name,
            test_case_id=request.test_case_id,
            test_file_id=request.test_file_id,
            user_id=request.user_id,
            schedule_type=request.schedule_type,
            scheduled_date=request.scheduled_date,
            scheduled_time=request.scheduled_time,
            timezone=request.timezone,
            recurrence_pattern=self._dump_pattern(request.recurrence_pattern),
            enabled=True,
            next_run_at=next_run_at,
            run_count=0,
            description=request.description
        )

        self.db.add(schedule)
        await self.db.commit()
        await self.db.refresh(schedule)

        logger.info(
            "schedule_created",
            schedule_id=schedule.id,
            schedule_type=schedule.schedule_type.value,
            test_case_id=schedule.test_case_id,
            test_file_id=schedule.test_file_id,
            next_run_at=next_run_at.isoformat()
        )

        return ScheduledTestResponse.model_validate(schedule)

    async def get_schedule(self, schedule_id: str) -> Optional[ScheduledTestResponse]:
        """Get a scheduled test by id, or None if it does not exist"""
        schedule = await self._load(schedule_id)
        if schedule is None:
            return None
        return ScheduledTestResponse.model_validate(schedule)

    async def list_schedules(
        self,
        enabled: Optional[bool] = None,
        schedule_type: Optional[ScheduleType] = None,
        user_id: Optional[str] = None
    ) -> List[ScheduledTestResponse]:
        """
        List scheduled tests with optional filters.

        Ordered by next run (schedules without one last), newest first
        among equals.
        """
        stmt = select(ScheduledTestModel)

        if enabled is not None:
            stmt = stmt.where(ScheduledTestModel.enabled == enabled)
        if schedule_type is not None:
            stmt = stmt.where(ScheduledTestModel.schedule_type == ScheduleType(schedule_type))
        if user_id is not None:
            stmt = stmt.where(ScheduledTestModel.user_id == user_id)

        stmt = stmt.order_by(
            ScheduledTestModel.next_run_at.is_(None),
            ScheduledTestModel.next_run_at.asc(),
            ScheduledTestModel.created_at.desc()
        )

        result = await self.db.execute(stmt)
        return [ScheduledTestResponse.model_validate(s) for s in result.scalars().all()]

    async def update_schedule(
        self,
        schedule_id: str,
        update: Union[ScheduledTestUpdate, Dict[str, Any]],
        now: Optional[datetime] = None
    ) -> ScheduledTestResponse:
        """
        Apply a partial update.

        Changing any scheduling field recomputes ``next_run_at`` from the
        merged (stored + updated) parameters.

        Raises:
            ScheduleNotFoundError: If the schedule does not exist
            ScheduleValidationError: If nothing is updated or the merged
                schedule is invalid
        """
        if not isinstance(update, ScheduledTestUpdate):
            try:
                update = ScheduledTestUpdate.model_validate(update)
            except ValidationError as e:
                raise _as_schedule_error(e)

        changes = update.model_fields_set
        if not changes:
            raise ScheduleValidationError("No fields to update")

        schedule = await self._load(schedule_id)
        if schedule is None:
            raise ScheduleNotFoundError(schedule_id)

        schedule_type = update.schedule_type if "schedule_type" in changes else schedule.schedule_type
        if schedule_type is None:
            raise ScheduleValidationError("schedule_type cannot be cleared", field="schedule_type")
        scheduled_date = update.scheduled_date if "scheduled_date" in changes else schedule.scheduled_date
        scheduled_time = update.scheduled_time if "scheduled_time" in changes else schedule.scheduled_time
        if scheduled_time is None:
            raise ScheduleValidationError("scheduled_time cannot be cleared", field="scheduled_time")
        timezone = (update.timezone if "timezone" in changes else None) or schedule.timezone

        if "recurrence_pattern" in changes:
            pattern = update.recurrence_pattern
        elif PATTERN_KIND_BY_TYPE[ScheduleType(schedule_type)] is None:
            # Switching to daily or one-time drops the stored pattern
            pattern = None
        else:
            pattern = parse_recurrence_pattern(schedule.recurrence_pattern)

        validate_schedule_shape(
            ScheduleType(schedule_type),
            schedule.test_case_id,
            schedule.test_file_id,
            scheduled_date,
            pattern,
        )

        if "name" in changes and update.name is not None:
            schedule.name = update.name
        if "description" in changes:
            schedule.description = update.description

        schedule.schedule_type = ScheduleType(schedule_type)
        schedule.scheduled_date = scheduled_date
        schedule.scheduled_time = scheduled_time
        schedule.timezone = timezone
        schedule.recurrence_pattern = self._dump_pattern(pattern)

        if changes & SCHEDULING_FIELDS:
            schedule.next_run_at = self.calculator.next_run_time(
                schedule.schedule_type,
                scheduled_date,
                scheduled_time,
                timezone,
                pattern,
                now=now
            )

        if "enabled" in changes and update.enabled is not None:
            self._apply_enabled(schedule, update.enabled, now)

        await self.db.commit()
        await self.db.refresh(schedule)

        logger.info(
            "schedule_updated",
            schedule_id=schedule.id,
            fields=sorted(changes),
            next_run_at=schedule.next_run_at.isoformat() if schedule.next_run_at else None
        )

        return ScheduledTestResponse.model_validate(schedule)

    async def toggle_schedule(
        self,
        schedule_id: str,
        enabled: bool,
        now: Optional[datetime] = None
    ) -> ScheduledTestResponse:
        """
        Enable or disable a scheduled test.

        Raises:
            ScheduleNotFoundError: If the schedule does not exist
        """
        schedule = await self._load(schedule_id)
        if schedule is None:
            raise ScheduleNotFoundError(schedule_id)

        self._apply_enabled(schedule, enabled, now)
        await self.db.commit()
        await self.db.refresh(schedule)

        logger.info(
            "schedule_toggled",
            schedule_id=schedule.id,
            enabled=enabled,
            next_run_at=schedule.next_run_at.isoformat() if schedule.next_run_at else None
        )

        return ScheduledTestResponse.model_validate(schedule)

    async def delete_schedule(self, schedule_id: str) -> bool:
        """
        Delete a scheduled test.

        Returns:
            True if deleted, False if not found
        """
        schedule = await self._load(schedule_id)
        if schedule is None:
            logger.warning("delete_schedule_not_found", schedule_id=schedule_id)
            return False

        await self.db.delete(schedule)
        await self.db.commit()

        logger.info("schedule_deleted", schedule_id=schedule_id)
        return True

    async def get_due_schedules(self, now: Optional[datetime] = None) -> List[ScheduledTestResponse]:
        """
        Get enabled schedules whose next run has elapsed, oldest-due first.

        Args:
            now: Reference time (naive UTC); defaults to the current time
        """
        if now is None:
            now = utcnow()

        stmt = (
            select(ScheduledTestModel)
            .where(
                ScheduledTestModel.enabled.is_(True),
                ScheduledTestModel.next_run_at.is_not(None),
                ScheduledTestModel.next_run_at <= now
            )
            .order_by(ScheduledTestModel.next_run_at.asc())
        )

        result = await self.db.execute(stmt)
        return [ScheduledTestResponse.model_validate(s) for s in result.scalars().all()]

    async def update_after_run(
        self,
        schedule_id: str,
        status: LastRunStatus,
        now: Optional[datetime] = None
    ) -> ScheduledTestResponse:
        """
        Record a run outcome and schedule the next occurrence.

        One-time schedules are disabled and their next run cleared for good.
        Recurring schedules move to the first occurrence after both ``now``
        and the occurrence that just ran; ``enabled`` is left alone.

        Raises:
            ScheduleNotFoundError: If the schedule does not exist
        """
        if now is None:
            now = utcnow()
        status = LastRunStatus(status)

        schedule = await self._load(schedule_id)
        if schedule is None:
            raise ScheduleNotFoundError(schedule_id)

        schedule.last_run_at = now
        schedule.last_run_status = status
        schedule.run_count = (schedule.run_count or 0) + 1

        if schedule.schedule_type == ScheduleType.ONE_TIME:
            schedule.enabled = False
            schedule.next_run_at = None
        else:
            reference = now
            if schedule.next_run_at is not None and schedule.next_run_at > reference:
                reference = schedule.next_run_at
            schedule.next_run_at = self._compute_next_run(schedule, reference)

        await self.db.commit()
        await self.db.refresh(schedule)

        logger.info(
            "schedule_run_recorded",
            schedule_id=schedule.id,
            status=status.value,
            run_count=schedule.run_count,
            next_run_at=schedule.next_run_at.isoformat() if schedule.next_run_at else None
        )

        return ScheduledTestResponse.model_validate(schedule)

    async def resolve_target_case_ids(self, schedule: Any) -> List[str]:
        """
        Resolve a schedule's target into the case ids to run.

        A case-targeted schedule yields its one case; a file-targeted one
        every active case of the file.
        """
        if schedule.test_case_id:
            return [schedule.test_case_id]

        if not schedule.test_file_id:
            return []

        stmt = (
            select(TestCaseModel.id)
            .where(
                TestCaseModel.test_file_id == schedule.test_file_id,
                TestCaseModel.active.is_(True)
            )
            .order_by(TestCaseModel.name.asc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def _load(self, schedule_id: str) -> Optional[ScheduledTestModel]:
        stmt = select(ScheduledTestModel).where(ScheduledTestModel.id == str(schedule_id))
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def _ensure_target_exists(
        self,
        test_case_id: Optional[str],
        test_file_id: Optional[str]
    ) -> None:
        if test_case_id:
            if await self.db.get(TestCaseModel, test_case_id) is None:
                raise ScheduleValidationError(
                    f"Test case not found: {test_case_id}",
                    field="test_case_id"
                )
        elif test_file_id:
            if await self.db.get(TestFileModel, test_file_id) is None:
                raise ScheduleValidationError(
                    f"Test file not found: {test_file_id}",
                    field="test_file_id"
                )

    def _apply_enabled(
        self,
        schedule: ScheduledTestModel,
        enabled: bool,
        now: Optional[datetime]
    ) -> None:
        """
        Set ``enabled``. Re-enabling a recurring schedule moves its next run
        to the next occurrence after now; a one-time schedule that already
        ran keeps no next run.
        """
        was_enabled = schedule.enabled
        schedule.enabled = enabled
        if not enabled or was_enabled:
            return
        if schedule.schedule_type == ScheduleType.ONE_TIME:
            return
        schedule.next_run_at = self._compute_next_run(schedule, now)

    def _compute_next_run(self, schedule: ScheduledTestModel, now: Optional[datetime]) -> datetime:
        return self.calculator.next_run_time(
            schedule.schedule_type,
            schedule.scheduled_date,
            schedule.scheduled_time,
            schedule.timezone or "UTC",
            parse_recurrence_pattern(schedule.recurrence_pattern),
            now=now
        )

    @staticmethod
    def _dump_pattern(pattern: Any) -> Optional[Dict[str, Any]]:
        if pattern is None:
            return None
        dumped = pattern.model_dump(mode="json")
        if "days" in dumped:
            dumped["days"] = sorted(dumped["days"])
        return dumped
