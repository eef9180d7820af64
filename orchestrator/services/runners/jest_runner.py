"""Jest runner adapter - API test cases"""

import json
from typing import Any, Dict, List, Optional, Sequence

from orchestrator.core.config import settings
from orchestrator.core.logging_config import get_logger
from orchestrator.schemas.execution import CatalogTestCase, TestCaseResult
from orchestrator.services.runners.base import (
    ProcessObserver,
    ReportEntry,
    RunnerAdapter,
    failed_results,
    match_report_entries,
)

logger = get_logger(__name__)


class JestRunner(RunnerAdapter):
    """Runs one Jest test file and matches assertion titles to case names"""

    name = "jest"

    def default_timeout(self) -> float:
        return settings.JEST_TIMEOUT_SECONDS

    def build_command(self, file_path: str) -> List[str]:
        return [
            settings.NPX_COMMAND,
            "jest",
            self.relative_path(file_path),
            "--json",
            "--testLocationInResults",
        ]

    async def run(
        self,
        file_path: str,
        test_cases: Sequence[CatalogTestCase],
        on_process_started: Optional[ProcessObserver] = None
    ) -> List[TestCaseResult]:
        output = await self._run_process(
            self.build_command(file_path),
            timeout=self.timeout_seconds,
            on_process_started=on_process_started
        )

        logger.debug(
            "jest_finished",
            file_path=file_path,
            returncode=output.returncode,
            duration_ms=output.duration_ms
        )

        if output.timed_out:
            return failed_results(test_cases, output.stderr, logs=output.combined)

        return self.parse_report(output.stdout, test_cases, logs=output.combined)

    @staticmethod
    def parse_report(
        stdout: str,
        test_cases: Sequence[CatalogTestCase],
        logs: Optional[str] = None
    ) -> List[TestCaseResult]:
        """
        Turn Jest's ``--json`` report into per-case results.

        Only the first test file of the report is consulted.
        """
        try:
            report: Dict[str, Any] = json.loads(stdout)
        except (json.JSONDecodeError, TypeError) as e:
            return failed_results(
                test_cases,
                f"Failed to parse Jest results: {e}",
                logs=logs or stdout
            )

        test_files = report.get("testResults") if isinstance(report, dict) else None
        if not test_files:
            return failed_results(test_cases, "No test results in Jest output", logs=logs)

        file_result = test_files[0] or {}
        assertions = file_result.get("assertionResults") or []
        if not assertions:
            # Suite failed to load (syntax error, missing module)
            message = file_result.get("message") or "No test results in Jest output"
            return failed_results(test_cases, message, logs=logs)

        entries = []
        for assertion in assertions:
            failure_messages = assertion.get("failureMessages") or []
            joined = "\n".join(failure_messages) or None
            entries.append(ReportEntry(
                title=assertion.get("title", ""),
                passed=assertion.get("status") == "passed",
                duration=assertion.get("duration") or 0,
                error=joined,
                stack_trace=joined,
            ))

        results = match_report_entries(test_cases, entries)
        for result in results:
            result.logs = logs or None
        return results
