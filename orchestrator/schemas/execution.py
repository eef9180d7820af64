"""Execution Schemas"""

from datetime import datetime
from typing import ClassVar, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from orchestrator.models.catalog import CaseType
from orchestrator.models.test_run import RunStatus, ResultStatus


class CatalogTestCase(BaseModel):
    """A catalog case resolved with the path of the file it lives in"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str = Field(..., description="Title matched against runner reports")
    type: CaseType
    file_path: str = Field(..., description="Path of the test source file")
    test_file_id: Optional[str] = None


class TestCaseResult(BaseModel):
    """Normalized outcome of one case, produced by a runner adapter"""
    __test__: ClassVar[bool] = False

    test_case_id: str
    status: ResultStatus
    duration: int = Field(0, ge=0, description="Milliseconds")
    error: Optional[str] = None
    stack_trace: Optional[str] = None
    logs: Optional[str] = None


class TestRunSummary(BaseModel):
    """Response schema for a test run and its aggregate counts"""
    __test__: ClassVar[bool] = False
    model_config = ConfigDict(from_attributes=True)

    id: str
    run_id: str = Field(..., description="Human-readable run token")
    name: str
    status: RunStatus
    user_id: Optional[str] = None
    total_tests: int = 0
    tests_passed: int = 0
    tests_failed: int = 0
    tests_pending: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration: Optional[int] = Field(None, description="Milliseconds")
    created_at: Optional[datetime] = None


class TestResultResponse(BaseModel):
    """Response schema for one persisted per-case result"""
    __test__: ClassVar[bool] = False
    model_config = ConfigDict(from_attributes=True)

    id: str
    test_run_id: str
    test_case_id: str
    status: ResultStatus
    duration: int = 0
    error: Optional[str] = None
    stack_trace: Optional[str] = None
    logs: Optional[str] = None
    completed_at: Optional[datetime] = None


class SchedulerStatus(BaseModel):
    """Snapshot of the due-schedule scanner"""
    is_running: bool
    check_interval_seconds: float
    in_flight_schedule_ids: List[str] = Field(default_factory=list)
    scan_count: int = 0
    last_scan_at: Optional[datetime] = None
