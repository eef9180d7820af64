"""Orchestration services"""

from orchestrator.services.recurrence import RecurrenceCalculator
from orchestrator.services.execution_dispatcher import ExecutionDispatcher
from orchestrator.services.scheduled_test_service import ScheduledTestService
from orchestrator.services.test_run_service import TestRunService
from orchestrator.services.scheduler import DueScheduleScanner

__all__ = [
    "RecurrenceCalculator",
    "ExecutionDispatcher",
    "ScheduledTestService",
    "TestRunService",
    "DueScheduleScanner",
]
