"""k6 runner adapter - load test cases"""

import json
import os
from typing import Any, Dict, List, Optional, Sequence

from orchestrator.core.config import settings
from orchestrator.core.exceptions import RunnerExecutionError
from orchestrator.core.logging_config import get_logger
from orchestrator.models.test_run import ResultStatus
from orchestrator.schemas.execution import CatalogTestCase, TestCaseResult
from orchestrator.services.runners.base import (
    ProcessObserver,
    ProcessOutput,
    RunnerAdapter,
    failed_results,
    scratch_directory,
)

logger = get_logger(__name__)

K6_NOT_INSTALLED = (
    "K6 is not installed. Please install it from "
    "https://k6.io/docs/getting-started/installation/"
)

# Check marker k6 prints for a failed check
FAILED_CHECK_MARKER = "✗"
ERROR_LOG_MARKER = "ERRO"


class K6Runner(RunnerAdapter):
    """
    Runs one k6 script; the whole script is a single verdict shared by all
    of its cases.
    """

    name = "k6"

    def default_timeout(self) -> float:
        return settings.K6_TIMEOUT_SECONDS

    async def is_available(self) -> bool:
        """Run ``k6 version``; any failure means the tool is unusable"""
        try:
            output = await self._run_process(
                [settings.K6_COMMAND, "version"],
                timeout=settings.K6_VERSION_CHECK_TIMEOUT_SECONDS
            )
        except RunnerExecutionError:
            return False
        return not output.timed_out and output.returncode == 0

    def build_command(self, file_path: str, summary_path: str) -> List[str]:
        return [
            settings.K6_COMMAND,
            "run",
            self.relative_path(file_path),
            f"--summary-export={summary_path}",
        ]

    async def run(
        self,
        file_path: str,
        test_cases: Sequence[CatalogTestCase],
        on_process_started: Optional[ProcessObserver] = None
    ) -> List[TestCaseResult]:
        if not await self.is_available():
            logger.warning("k6_not_installed", command=settings.K6_COMMAND)
            return failed_results(test_cases, K6_NOT_INSTALLED)

        with scratch_directory(self.workdir, "k6-") as scratch:
            summary_path = os.path.join(scratch, "summary.json")
            output = await self._run_process(
                self.build_command(file_path, summary_path),
                timeout=self.timeout_seconds,
                on_process_started=on_process_started
            )
            summary = self._read_summary(summary_path)

        logger.debug(
            "k6_finished",
            file_path=file_path,
            returncode=output.returncode,
            duration_ms=output.duration_ms,
            has_summary=summary is not None
        )

        if output.timed_out:
            return failed_results(
                test_cases,
                output.stderr,
                logs=output.combined,
                duration=output.duration_ms
            )

        return self.parse_output(output, summary, test_cases)

    @staticmethod
    def parse_output(
        output: ProcessOutput,
        summary: Optional[Dict[str, Any]],
        test_cases: Sequence[CatalogTestCase]
    ) -> List[TestCaseResult]:
        """
        Derive the shared verdict from k6 output.

        A failed-check marker anywhere in the output, or an error line on
        stderr, fails the script. A non-zero exit with neither a summary nor
        a marker (k6 could not run the script at all) fails it too.
        """
        has_errors = (
            FAILED_CHECK_MARKER in output.combined
            or ERROR_LOG_MARKER in output.stderr
        )
        if not has_errors and summary is None and output.returncode not in (0, None):
            has_errors = True

        status = ResultStatus.FAILED if has_errors else ResultStatus.PASSED
        logs = json.dumps(summary if summary is not None else {"output": output.combined}, indent=2)
        error = None
        if has_errors:
            error = output.stderr.strip() or "k6 reported failed checks"

        return [
            TestCaseResult(
                test_case_id=case.id,
                status=status,
                duration=output.duration_ms,
                error=error,
                logs=logs,
            )
            for case in test_cases
        ]

    @staticmethod
    def _read_summary(summary_path: str) -> Optional[Dict[str, Any]]:
        if not os.path.exists(summary_path):
            return None
        try:
            with open(summary_path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("k6_summary_unreadable", path=summary_path, error=str(e))
            return None
