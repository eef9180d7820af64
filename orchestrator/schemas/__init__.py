"""Pydantic schemas for the Scheduled Test Orchestrator"""

from orchestrator.schemas.schedule import (
    WeeklyRecurrence,
    MonthlyRecurrence,
    RecurrencePattern,
    ScheduledTestCreate,
    ScheduledTestUpdate,
    ScheduledTestResponse,
    parse_recurrence_pattern,
)
from orchestrator.schemas.execution import (
    CatalogTestCase,
    TestCaseResult,
    TestRunSummary,
    TestResultResponse,
    SchedulerStatus,
)

__all__ = [
    "WeeklyRecurrence",
    "MonthlyRecurrence",
    "RecurrencePattern",
    "ScheduledTestCreate",
    "ScheduledTestUpdate",
    "ScheduledTestResponse",
    "parse_recurrence_pattern",
    "CatalogTestCase",
    "TestCaseResult",
    "TestRunSummary",
    "TestResultResponse",
    "SchedulerStatus",
]
