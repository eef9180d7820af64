"""Custom exceptions for the Scheduled Test Orchestrator"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone


def _utc_timestamp() -> datetime:
    return datetime.now(timezone.utc)


class ScheduleValidationError(ValueError):
    """
    Raised when a scheduled test has an invalid shape.

    This exception is raised when:
    - Both or neither of test case / test file targets are set
    - The schedule type is unknown
    - A one-time schedule has no scheduled date
    - The recurrence pattern does not match the schedule type

    Validation errors are raised before anything is persisted.
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize ScheduleValidationError.

        Args:
            message: Human-readable error message
            field: Name of the offending field (if a single field is at fault)
            details: Additional error details for debugging
        """
        self.message = message
        self.field = field
        self.details = details or {}
        self.timestamp = _utc_timestamp()

        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert exception to dictionary for logging.

        Returns:
            Dictionary representation of the error
        """
        return {
            "error_type": "schedule_validation_error",
            "message": self.message,
            "field": self.field,
            "details": self.details,
            "timestamp": self.timestamp.isoformat()
        }

    def get_api_response(self) -> Dict[str, Any]:
        """
        Get API-friendly error response.

        Returns:
            Dictionary suitable for HTTP error responses
        """
        return {
            "detail": self.message,
            "type": "schedule_validation_error",
            "field": self.field
        }


class ScheduleNotFoundError(Exception):
    """Raised when a scheduled test id does not exist."""

    def __init__(self, schedule_id: str):
        self.schedule_id = str(schedule_id)
        self.message = f"Scheduled test not found: {self.schedule_id}"
        self.timestamp = _utc_timestamp()

        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": "schedule_not_found",
            "message": self.message,
            "schedule_id": self.schedule_id,
            "timestamp": self.timestamp.isoformat()
        }

    def get_api_response(self) -> Dict[str, Any]:
        return {
            "detail": self.message,
            "type": "schedule_not_found",
            "schedule_id": self.schedule_id
        }


class TestRunError(Exception):
    """
    Base class for test run lookup and lifecycle errors.

    Carries the opaque id of the run (or catalog file) involved.
    """

    __test__ = False

    error_code = "test_run_error"

    def __init__(
        self,
        message: str,
        test_run_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.test_run_id = str(test_run_id) if test_run_id is not None else None
        self.details = details or {}
        self.timestamp = _utc_timestamp()

        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.error_code,
            "message": self.message,
            "test_run_id": self.test_run_id,
            "details": self.details,
            "timestamp": self.timestamp.isoformat()
        }

    def get_api_response(self) -> Dict[str, Any]:
        return {
            "detail": self.message,
            "type": self.error_code,
            "test_run_id": self.test_run_id
        }


class TestRunNotFoundError(TestRunError):
    """Raised when a test run (or the catalog file to run) does not exist."""

    error_code = "test_run_not_found"


class TestRunNotActiveError(TestRunError):
    """Raised when stopping a run that is already passed or failed."""

    error_code = "test_run_not_active"


class RunnerExecutionError(Exception):
    """
    Raised when an external test runner cannot be executed at all.

    This exception is raised when:
    - The launcher binary (npx, k6) is not on PATH
    - The runner process cannot be spawned

    The dispatcher converts it into failed results for every case in the
    affected file group.
    """

    def __init__(
        self,
        message: str,
        runner: Optional[str] = None,
        file_path: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize RunnerExecutionError.

        Args:
            message: Human-readable error message
            runner: Name of the runner adapter that failed
            file_path: Test file the runner was invoked against
            details: Additional error details for debugging
        """
        self.message = message
        self.runner = runner
        self.file_path = file_path
        self.details = details or {}
        self.timestamp = _utc_timestamp()

        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert exception to dictionary for logging.

        Returns:
            Dictionary representation of the error
        """
        return {
            "error_type": "runner_execution_error",
            "message": self.message,
            "runner": self.runner,
            "file_path": self.file_path,
            "details": self.details,
            "timestamp": self.timestamp.isoformat()
        }
