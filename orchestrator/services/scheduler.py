"""Due Schedule Scanner - periodically dispatches scheduled tests that are due"""

import asyncio
from datetime import datetime
from typing import Dict, List, Optional, Set

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orchestrator.core.clock import utcnow
from orchestrator.core.config import settings
from orchestrator.core.logging_config import get_logger
from orchestrator.core.monitoring import MetricsCollector
from orchestrator.models.scheduled_test import LastRunStatus
from orchestrator.models.test_run import RunStatus
from orchestrator.schemas.execution import SchedulerStatus
from orchestrator.schemas.schedule import ScheduledTestResponse
from orchestrator.services.execution_dispatcher import ExecutionDispatcher
from orchestrator.services.scheduled_test_service import ScheduledTestService
from orchestrator.services.test_run_service import TestRunService

logger = get_logger(__name__)


class DueScheduleScanner:
    """
    Fixed-period scanner that turns due schedules into test runs.

    Each tick spawns a scan without waiting for the previous one. A scan
    creates the run for every due schedule and detaches its execution, so
    runs proceed in parallel with each other and with later scans.

    A schedule is never dispatched twice at once: its id stays in the
    in-flight map from the moment a scan picks it up until its run has
    settled and ``next_run_at`` has moved on.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dispatcher: ExecutionDispatcher,
        check_interval_seconds: Optional[float] = None
    ):
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.check_interval_seconds = check_interval_seconds or settings.SCHEDULER_CHECK_INTERVAL_SECONDS
        self._timer_task: Optional[asyncio.Task] = None
        self._scan_tasks: Set[asyncio.Task] = set()
        self._in_flight: Dict[str, Optional[asyncio.Task]] = {}
        self._scan_count = 0
        self._last_scan_at: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    def start(self) -> None:
        """
        Start scanning: one scan immediately, then one per interval.

        Must be called from a running event loop. Starting twice is a no-op.
        """
        if self.is_running:
            logger.warning("scheduler_already_running")
            return

        self._timer_task = asyncio.create_task(self._run_timer())
        logger.info("scheduler_started", check_interval_seconds=self.check_interval_seconds)

    async def stop(self) -> None:
        """Stop the timer; scans and runs already started are left to finish"""
        if self._timer_task is None:
            logger.warning("scheduler_not_running")
            return

        task = self._timer_task
        self._timer_task = None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

        logger.info("scheduler_stopped", in_flight=len(self._in_flight))

    def status(self) -> SchedulerStatus:
        return SchedulerStatus(
            is_running=self.is_running,
            check_interval_seconds=self.check_interval_seconds,
            in_flight_schedule_ids=sorted(self._in_flight),
            scan_count=self._scan_count,
            last_scan_at=self._last_scan_at
        )

    async def _run_timer(self) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while True:
            self._spawn_scan()
            next_tick += self.check_interval_seconds
            await asyncio.sleep(max(next_tick - loop.time(), 0))

    def _spawn_scan(self) -> None:
        task = asyncio.create_task(self._guarded_scan())
        self._scan_tasks.add(task)
        task.add_done_callback(self._scan_tasks.discard)

    async def _guarded_scan(self) -> None:
        try:
            await self.scan_once()
        except Exception as e:
            logger.error("scheduler_scan_failed", error=str(e), exc_info=True)

    async def scan_once(self, now: Optional[datetime] = None) -> int:
        """
        Dispatch every due schedule once.

        A failure with one schedule is logged and the scan moves on to the
        next one.

        Args:
            now: Reference time for the due query (naive UTC)

        Returns:
            Number of runs dispatched
        """
        self._scan_count += 1
        self._last_scan_at = utcnow()
        MetricsCollector.record_scan()

        async with self.session_factory() as session:
            due_schedules = await ScheduledTestService(session).get_due_schedules(now=now)

        if not due_schedules:
            logger.debug("no_due_schedules_found")
            return 0

        logger.info("processing_due_schedules", count=len(due_schedules))

        dispatched = 0
        for schedule in due_schedules:
            if schedule.id in self._in_flight:
                logger.info("scheduled_test_still_running", schedule_id=schedule.id)
                MetricsCollector.record_scheduled_execution("in_flight")
                continue

            # Reserve before the first await so an overlapping scan skips it
            self._in_flight[schedule.id] = None
            MetricsCollector.set_in_flight(len(self._in_flight))

            try:
                if await self._process_schedule(schedule):
                    dispatched += 1
            except Exception as e:
                self._release(schedule.id)
                logger.error(
                    "scheduled_test_failed",
                    schedule_id=schedule.id,
                    schedule_name=schedule.name,
                    error=str(e),
                    exc_info=True
                )
                MetricsCollector.record_scheduled_execution("error")
                await self._record_failure(schedule.id)

        return dispatched

    async def _process_schedule(self, schedule: ScheduledTestResponse) -> bool:
        """Create the run for one due schedule and detach its execution"""
        async with self.session_factory() as session:
            schedule_service = ScheduledTestService(session)

            # The due list may predate a run that settled since it was read
            current = await schedule_service.get_schedule(schedule.id)
            if current is None or not current.enabled or current.next_run_at != schedule.next_run_at:
                self._release(schedule.id)
                logger.info("scheduled_test_already_settled", schedule_id=schedule.id)
                MetricsCollector.record_scheduled_execution("stale")
                return False
            schedule = current

            case_ids = await schedule_service.resolve_target_case_ids(schedule)

            if not case_ids:
                await schedule_service.update_after_run(schedule.id, LastRunStatus.SKIPPED)
                self._release(schedule.id)
                logger.warning("scheduled_test_skipped_no_cases", schedule_id=schedule.id)
                MetricsCollector.record_scheduled_execution("skipped")
                return False

            run = await TestRunService(session).create_run(
                f"{schedule.name} - {utcnow():%Y-%m-%d %H:%M:%S} UTC",
                case_ids,
                user_id=schedule.user_id,
                prefix="scheduled"
            )

        task = asyncio.create_task(self._execute_and_settle(schedule.id, run.id, case_ids))
        self._in_flight[schedule.id] = task
        task.add_done_callback(lambda _task, schedule_id=schedule.id: self._release(schedule_id))

        logger.info(
            "scheduled_test_dispatched",
            schedule_id=schedule.id,
            test_run_id=run.id,
            run_id=run.run_id,
            case_count=len(case_ids)
        )
        MetricsCollector.record_scheduled_execution("dispatched")
        return True

    async def _execute_and_settle(
        self,
        schedule_id: str,
        test_run_id: str,
        case_ids: List[str]
    ) -> None:
        """Execute a scheduled run, then record its outcome on the schedule"""
        try:
            await self.dispatcher.execute_run(test_run_id, case_ids)
        except Exception as e:
            logger.error(
                "scheduled_test_execution_failed",
                schedule_id=schedule_id,
                test_run_id=test_run_id,
                error=str(e),
                exc_info=True
            )

        try:
            async with self.session_factory() as session:
                run_status = await TestRunService(session).get_run_status(test_run_id)
                last_status = LastRunStatus.PASSED if run_status == RunStatus.PASSED else LastRunStatus.FAILED
                await ScheduledTestService(session).update_after_run(schedule_id, last_status)
        except Exception as e:
            logger.error(
                "scheduled_test_settle_failed",
                schedule_id=schedule_id,
                test_run_id=test_run_id,
                error=str(e),
                exc_info=True
            )
            return

        logger.info(
            "scheduled_test_completed",
            schedule_id=schedule_id,
            test_run_id=test_run_id,
            status=last_status.value
        )

    async def _record_failure(self, schedule_id: str) -> None:
        """Move a schedule past an occurrence that could not be dispatched"""
        try:
            async with self.session_factory() as session:
                await ScheduledTestService(session).update_after_run(schedule_id, LastRunStatus.FAILED)
        except Exception as e:
            logger.error(
                "scheduled_test_failure_not_recorded",
                schedule_id=schedule_id,
                error=str(e),
                exc_info=True
            )

    def _release(self, schedule_id: str) -> None:
        self._in_flight.pop(schedule_id, None)
        MetricsCollector.set_in_flight(len(self._in_flight))

    async def wait_for_in_flight(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for running scans and detached runs to finish.

        Returns:
            True if everything finished, False if the timeout expired first
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout is not None else None

        while True:
            tasks = [task for task in self._in_flight.values() if task is not None]
            tasks.extend(self._scan_tasks)
            if not tasks:
                return True

            remaining = None
            if deadline is not None:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    return False

            _, pending = await asyncio.wait(tasks, timeout=remaining)
            if pending:
                return False
