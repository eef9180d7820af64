"""SQLAlchemy models for the Scheduled Test Orchestrator"""

from orchestrator.models.base import Base
from orchestrator.models.catalog import TestFileModel, TestCaseModel, CaseType
from orchestrator.models.scheduled_test import ScheduledTestModel, ScheduleType, LastRunStatus
from orchestrator.models.test_run import TestRunModel, TestResultModel, RunStatus, ResultStatus

__all__ = [
    "Base",
    "TestFileModel",
    "TestCaseModel",
    "CaseType",
    "ScheduledTestModel",
    "ScheduleType",
    "LastRunStatus",
    "TestRunModel",
    "TestResultModel",
    "RunStatus",
    "ResultStatus",
]
