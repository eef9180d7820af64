"""Unit tests for ScheduledTestService"""

from datetime import date, datetime, time
from uuid import uuid4

import pytest

from orchestrator.core.exceptions import ScheduleNotFoundError, ScheduleValidationError
from orchestrator.models.scheduled_test import LastRunStatus, ScheduleType
from orchestrator.schemas.schedule import MonthlyRecurrence, WeeklyRecurrence
from orchestrator.services.scheduled_test_service import ScheduledTestService

NOW = datetime(2026, 3, 10, 8, 0)  # Tuesday


def daily_payload(test_case_id, **overrides):
    payload = {
        "name": "Nightly users",
        "test_case_id": test_case_id,
        "schedule_type": "daily",
        "scheduled_time": "09:00:00",
        "timezone": "UTC",
    }
    payload.update(overrides)
    return payload


def one_time_payload(test_case_id, scheduled_date, **overrides):
    return daily_payload(
        test_case_id,
        schedule_type="one-time",
        scheduled_date=scheduled_date,
        **overrides
    )


class TestCreateSchedule:
    """Schedule creation"""

    @pytest.mark.asyncio
    async def test_create_daily_computes_next_run(self, db_session, catalog):
        service = ScheduledTestService(db_session)

        schedule = await service.create_schedule(daily_payload(catalog.list_users_id), now=NOW)

        assert schedule.enabled is True
        assert schedule.run_count == 0
        assert schedule.schedule_type == ScheduleType.DAILY
        assert schedule.next_run_at == datetime(2026, 3, 10, 9, 0)

    @pytest.mark.asyncio
    async def test_create_weekly_from_legacy_pattern(self, db_session, catalog):
        service = ScheduledTestService(db_session)

        schedule = await service.create_schedule(
            daily_payload(
                catalog.list_users_id,
                schedule_type="weekly",
                recurrence_pattern={"days": [5]}
            ),
            now=NOW
        )

        assert isinstance(schedule.recurrence_pattern, WeeklyRecurrence)
        assert schedule.recurrence_pattern.days == {5}
        assert schedule.next_run_at == datetime(2026, 3, 13, 9, 0)

    @pytest.mark.asyncio
    async def test_create_file_targeted_monthly(self, db_session, catalog):
        service = ScheduledTestService(db_session)

        schedule = await service.create_schedule(
            {
                "name": "Monthly load",
                "test_file_id": catalog.load_file_id,
                "schedule_type": "monthly",
                "scheduled_time": "02:00:00",
                "recurrence_pattern": {"kind": "monthly", "day_of_month": 1},
            },
            now=NOW
        )

        assert schedule.test_file_id == catalog.load_file_id
        assert isinstance(schedule.recurrence_pattern, MonthlyRecurrence)
        assert schedule.next_run_at == datetime(2026, 4, 1, 2, 0)

    @pytest.mark.asyncio
    async def test_create_rejects_both_targets_without_persisting(self, db_session, catalog):
        service = ScheduledTestService(db_session)

        with pytest.raises(ScheduleValidationError) as exc_info:
            await service.create_schedule(
                daily_payload(catalog.list_users_id, test_file_id=catalog.api_file_id),
                now=NOW
            )

        assert "Cannot specify both" in exc_info.value.message
        assert await service.list_schedules() == []

    @pytest.mark.asyncio
    async def test_create_rejects_one_time_without_date(self, db_session, catalog):
        service = ScheduledTestService(db_session)

        with pytest.raises(ScheduleValidationError):
            await service.create_schedule(
                daily_payload(catalog.list_users_id, schedule_type="one-time"),
                now=NOW
            )

    @pytest.mark.asyncio
    async def test_create_rejects_unknown_test_case(self, db_session, catalog):
        service = ScheduledTestService(db_session)

        with pytest.raises(ScheduleValidationError) as exc_info:
            await service.create_schedule(daily_payload(str(uuid4())), now=NOW)

        assert exc_info.value.field == "test_case_id"


class TestQuerySchedules:
    """Get and list"""

    @pytest.mark.asyncio
    async def test_get_missing_schedule_returns_none(self, db_session):
        service = ScheduledTestService(db_session)
        assert await service.get_schedule(str(uuid4())) is None

    @pytest.mark.asyncio
    async def test_list_filters(self, db_session, catalog):
        service = ScheduledTestService(db_session)
        daily = await service.create_schedule(
            daily_payload(catalog.list_users_id, user_id="user-a"), now=NOW
        )
        weekly = await service.create_schedule(
            daily_payload(
                catalog.create_user_id,
                schedule_type="weekly",
                recurrence_pattern={"days": [1]},
                user_id="user-b"
            ),
            now=NOW
        )
        await service.toggle_schedule(weekly.id, False, now=NOW)

        enabled = await service.list_schedules(enabled=True)
        assert [s.id for s in enabled] == [daily.id]

        by_type = await service.list_schedules(schedule_type=ScheduleType.WEEKLY)
        assert [s.id for s in by_type] == [weekly.id]

        by_user = await service.list_schedules(user_id="user-a")
        assert [s.id for s in by_user] == [daily.id]

    @pytest.mark.asyncio
    async def test_list_orders_by_next_run_with_unscheduled_last(self, db_session, catalog):
        service = ScheduledTestService(db_session)
        done = await service.create_schedule(
            one_time_payload(catalog.list_users_id, "2026-03-01"), now=NOW
        )
        await service.update_after_run(done.id, LastRunStatus.PASSED, now=NOW)
        later = await service.create_schedule(
            one_time_payload(catalog.list_users_id, "2026-05-01"), now=NOW
        )
        sooner = await service.create_schedule(
            one_time_payload(catalog.list_users_id, "2026-04-01"), now=NOW
        )

        schedules = await service.list_schedules()

        assert [s.id for s in schedules] == [sooner.id, later.id, done.id]


class TestUpdateSchedule:
    """Partial updates"""

    @pytest.mark.asyncio
    async def test_time_change_recomputes_next_run(self, db_session, catalog):
        service = ScheduledTestService(db_session)
        schedule = await service.create_schedule(daily_payload(catalog.list_users_id), now=NOW)

        updated = await service.update_schedule(schedule.id, {"scheduled_time": "07:00:00"}, now=NOW)

        assert updated.scheduled_time == time(7, 0)
        assert updated.next_run_at == datetime(2026, 3, 11, 7, 0)

    @pytest.mark.asyncio
    async def test_name_change_keeps_next_run(self, db_session, catalog):
        service = ScheduledTestService(db_session)
        schedule = await service.create_schedule(daily_payload(catalog.list_users_id), now=NOW)

        updated = await service.update_schedule(
            schedule.id,
            {"name": "Renamed"},
            now=datetime(2026, 3, 12, 8, 0)
        )

        assert updated.name == "Renamed"
        assert updated.next_run_at == schedule.next_run_at

    @pytest.mark.asyncio
    async def test_switch_to_weekly_uses_merged_time(self, db_session, catalog):
        service = ScheduledTestService(db_session)
        schedule = await service.create_schedule(daily_payload(catalog.list_users_id), now=NOW)

        updated = await service.update_schedule(
            schedule.id,
            {"schedule_type": "weekly", "recurrence_pattern": {"days": [4]}},
            now=NOW
        )

        assert updated.schedule_type == ScheduleType.WEEKLY
        assert updated.next_run_at == datetime(2026, 3, 12, 9, 0)

    @pytest.mark.asyncio
    async def test_switch_to_daily_drops_pattern(self, db_session, catalog):
        service = ScheduledTestService(db_session)
        schedule = await service.create_schedule(
            daily_payload(
                catalog.list_users_id,
                schedule_type="weekly",
                recurrence_pattern={"days": [1]}
            ),
            now=NOW
        )

        updated = await service.update_schedule(schedule.id, {"schedule_type": "daily"}, now=NOW)

        assert updated.recurrence_pattern is None
        assert updated.next_run_at == datetime(2026, 3, 10, 9, 0)

    @pytest.mark.asyncio
    async def test_switch_to_weekly_without_pattern_is_rejected(self, db_session, catalog):
        service = ScheduledTestService(db_session)
        schedule = await service.create_schedule(daily_payload(catalog.list_users_id), now=NOW)

        with pytest.raises(ScheduleValidationError):
            await service.update_schedule(schedule.id, {"schedule_type": "weekly"}, now=NOW)

    @pytest.mark.asyncio
    async def test_empty_update_is_rejected(self, db_session, catalog):
        service = ScheduledTestService(db_session)
        schedule = await service.create_schedule(daily_payload(catalog.list_users_id), now=NOW)

        with pytest.raises(ScheduleValidationError) as exc_info:
            await service.update_schedule(schedule.id, {})

        assert exc_info.value.message == "No fields to update"

    @pytest.mark.asyncio
    async def test_update_missing_schedule(self, db_session):
        service = ScheduledTestService(db_session)

        with pytest.raises(ScheduleNotFoundError):
            await service.update_schedule(str(uuid4()), {"name": "x"})


class TestToggleAndDelete:
    """Enable/disable and deletion"""

    @pytest.mark.asyncio
    async def test_reenabling_recurring_schedule_moves_next_run_forward(self, db_session, catalog):
        service = ScheduledTestService(db_session)
        schedule = await service.create_schedule(daily_payload(catalog.list_users_id), now=NOW)

        disabled = await service.toggle_schedule(schedule.id, False, now=NOW)
        assert disabled.enabled is False

        enabled = await service.toggle_schedule(schedule.id, True, now=datetime(2026, 3, 20, 12, 0))
        assert enabled.enabled is True
        assert enabled.next_run_at == datetime(2026, 3, 21, 9, 0)

    @pytest.mark.asyncio
    async def test_reenabling_finished_one_time_schedule_does_not_recur(self, db_session, catalog):
        service = ScheduledTestService(db_session)
        schedule = await service.create_schedule(
            one_time_payload(catalog.list_users_id, "2026-03-09"), now=NOW
        )
        await service.update_after_run(schedule.id, LastRunStatus.PASSED, now=NOW)

        enabled = await service.toggle_schedule(schedule.id, True, now=NOW)

        assert enabled.enabled is True
        assert enabled.next_run_at is None
        due = await service.get_due_schedules(now=datetime(2030, 1, 1))
        assert schedule.id not in [s.id for s in due]

    @pytest.mark.asyncio
    async def test_toggle_missing_schedule(self, db_session):
        service = ScheduledTestService(db_session)

        with pytest.raises(ScheduleNotFoundError):
            await service.toggle_schedule(str(uuid4()), True)

    @pytest.mark.asyncio
    async def test_delete(self, db_session, catalog):
        service = ScheduledTestService(db_session)
        schedule = await service.create_schedule(daily_payload(catalog.list_users_id), now=NOW)

        assert await service.delete_schedule(schedule.id) is True
        assert await service.get_schedule(schedule.id) is None
        assert await service.delete_schedule(schedule.id) is False


class TestDueQuery:
    """get_due_schedules"""

    @pytest.mark.asyncio
    async def test_returns_enabled_elapsed_schedules_oldest_first(self, db_session, catalog):
        service = ScheduledTestService(db_session)
        newer = await service.create_schedule(
            one_time_payload(catalog.list_users_id, "2026-03-09"), now=NOW
        )
        older = await service.create_schedule(
            one_time_payload(catalog.list_users_id, "2026-03-01"), now=NOW
        )
        future = await service.create_schedule(
            one_time_payload(catalog.list_users_id, "2026-03-11"), now=NOW
        )
        disabled = await service.create_schedule(
            one_time_payload(catalog.list_users_id, "2026-02-01"), now=NOW
        )
        await service.toggle_schedule(disabled.id, False, now=NOW)

        due = await service.get_due_schedules(now=NOW)

        assert [s.id for s in due] == [older.id, newer.id]
        assert future.id not in [s.id for s in due]

    @pytest.mark.asyncio
    async def test_next_run_equal_to_now_is_due(self, db_session, catalog):
        service = ScheduledTestService(db_session)
        schedule = await service.create_schedule(
            one_time_payload(catalog.list_users_id, "2026-03-10"), now=NOW
        )

        due = await service.get_due_schedules(now=datetime(2026, 3, 10, 9, 0))

        assert [s.id for s in due] == [schedule.id]


class TestUpdateAfterRun:
    """Post-run bookkeeping"""

    @pytest.mark.asyncio
    async def test_one_time_is_disabled_for_good(self, db_session, catalog):
        service = ScheduledTestService(db_session)
        schedule = await service.create_schedule(
            one_time_payload(catalog.list_users_id, "2026-03-09"), now=NOW
        )

        updated = await service.update_after_run(schedule.id, LastRunStatus.PASSED, now=NOW)

        assert updated.enabled is False
        assert updated.next_run_at is None
        assert updated.last_run_status == LastRunStatus.PASSED
        assert updated.last_run_at == NOW
        assert updated.run_count == 1

    @pytest.mark.asyncio
    async def test_daily_moves_past_previous_next_run(self, db_session, catalog):
        service = ScheduledTestService(db_session)
        schedule = await service.create_schedule(daily_payload(catalog.list_users_id), now=NOW)
        previous = schedule.next_run_at

        updated = await service.update_after_run(
            schedule.id, LastRunStatus.FAILED, now=datetime(2026, 3, 10, 9, 0, 5)
        )

        assert updated.enabled is True
        assert updated.next_run_at > previous
        assert updated.next_run_at == datetime(2026, 3, 11, 9, 0)
        assert updated.last_run_status == LastRunStatus.FAILED
        assert updated.run_count == 1

    @pytest.mark.asyncio
    async def test_early_settlement_still_moves_forward(self, db_session, catalog):
        service = ScheduledTestService(db_session)
        schedule = await service.create_schedule(daily_payload(catalog.list_users_id), now=NOW)

        updated = await service.update_after_run(schedule.id, LastRunStatus.PASSED, now=NOW)

        assert updated.next_run_at > schedule.next_run_at

    @pytest.mark.asyncio
    async def test_disabled_recurring_schedule_stays_disabled(self, db_session, catalog):
        service = ScheduledTestService(db_session)
        schedule = await service.create_schedule(daily_payload(catalog.list_users_id), now=NOW)
        await service.toggle_schedule(schedule.id, False, now=NOW)

        updated = await service.update_after_run(schedule.id, LastRunStatus.SKIPPED, now=NOW)

        assert updated.enabled is False
        assert updated.last_run_status == LastRunStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_missing_schedule(self, db_session):
        service = ScheduledTestService(db_session)

        with pytest.raises(ScheduleNotFoundError):
            await service.update_after_run(str(uuid4()), LastRunStatus.PASSED)


class TestResolveTargets:
    """resolve_target_case_ids"""

    @pytest.mark.asyncio
    async def test_case_target(self, db_session, catalog):
        service = ScheduledTestService(db_session)
        schedule = await service.create_schedule(daily_payload(catalog.list_users_id), now=NOW)

        assert await service.resolve_target_case_ids(schedule) == [catalog.list_users_id]

    @pytest.mark.asyncio
    async def test_file_target_yields_active_cases_only(self, db_session, catalog):
        service = ScheduledTestService(db_session)
        schedule = await service.create_schedule(
            daily_payload(None, test_file_id=catalog.api_file_id), now=NOW
        )

        case_ids = await service.resolve_target_case_ids(schedule)

        assert sorted(case_ids) == sorted([catalog.list_users_id, catalog.create_user_id])
        assert catalog.legacy_id not in case_ids

    @pytest.mark.asyncio
    async def test_file_without_active_cases(self, db_session, catalog):
        service = ScheduledTestService(db_session)
        schedule = await service.create_schedule(
            daily_payload(None, test_file_id=catalog.empty_file_id), now=NOW
        )

        assert await service.resolve_target_case_ids(schedule) == []
