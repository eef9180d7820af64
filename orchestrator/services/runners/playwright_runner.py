"""Playwright runner adapter - UI and E2E test cases"""

import json
import os
import random
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
    scratch_directory,
)

logger = get_logger(__name__)


def collect_specs(suites: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Flatten the nested suite tree of a Playwright JSON report into its specs"""
    specs: List[Dict[str, Any]] = []
    for suite in suites:
        specs.extend(suite.get("specs") or [])
        specs.extend(collect_specs(suite.get("suites") or []))
    return specs


class PlaywrightRunner(RunnerAdapter):
    """
    Runs one Playwright spec file with the JSON reporter.

    Every invocation gets its own scratch directory and debugging port so
    concurrent runs do not share browser state.
    """

    name = "playwright"

    def default_timeout(self) -> float:
        return settings.PLAYWRIGHT_TIMEOUT_SECONDS

    def build_command(self, file_path: str, scratch: str) -> List[str]:
        return [
            settings.NPX_COMMAND,
            "playwright",
            "test",
            self.relative_path(file_path),
            "--reporter=json",
            f"--output={os.path.join(scratch, 'artifacts')}",
        ]

    def build_env(self, scratch: str) -> Dict[str, str]:
        debug_port = settings.PLAYWRIGHT_DEBUG_PORT_BASE + random.randrange(settings.PLAYWRIGHT_DEBUG_PORT_SPAN)
        env = dict(os.environ)
        env.update({
            "PLAYWRIGHT_TEST_BASE_URL": os.environ.get("PLAYWRIGHT_TEST_BASE_URL", ""),
            "PWDEBUG": "",
            "PW_TEST_SCREENSHOT_NO_FONTS_READY": "1",
            "PW_USER_DATA_DIR": os.path.join(scratch, "user-data"),
            "PW_DEBUG_PORT": str(debug_port),
        })
        return env

    async def run(
        self,
        file_path: str,
        test_cases: Sequence[CatalogTestCase],
        on_process_started: Optional[ProcessObserver] = None
    ) -> List[TestCaseResult]:
        with scratch_directory(self.workdir, "pw-") as scratch:
            output = await self._run_process(
                self.build_command(file_path, scratch),
                timeout=self.timeout_seconds,
                env=self.build_env(scratch),
                on_process_started=on_process_started
            )

        logger.debug(
            "playwright_finished",
            file_path=file_path,
            returncode=output.returncode,
            duration_ms=output.duration_ms
        )

        if output.timed_out:
            return failed_results(test_cases, output.stderr, logs=output.combined)

        return self.parse_report(output.stdout, test_cases, logs=output.stdout or output.stderr)

    @staticmethod
    def parse_report(
        stdout: str,
        test_cases: Sequence[CatalogTestCase],
        logs: Optional[str] = None
    ) -> List[TestCaseResult]:
        """Match the specs of a Playwright JSON report to catalog cases by title"""
        try:
            report = json.loads(stdout)
        except (json.JSONDecodeError, TypeError) as e:
            return failed_results(test_cases, f"Failed to parse test results: {e}", logs=logs)

        suites = report.get("suites") if isinstance(report, dict) else None
        if not isinstance(suites, list):
            return failed_results(test_cases, "No test results in output", logs=logs)

        entries = []
        for spec in collect_specs(suites):
            tests = spec.get("tests") or [{}]
            results = tests[0].get("results") or [{}]
            first = results[0]
            error = first.get("error") or {}
            entries.append(ReportEntry(
                title=spec.get("title", ""),
                passed=first.get("status") == "passed",
                duration=first.get("duration") or 0,
                error=error.get("message"),
                stack_trace=error.get("stack"),
            ))

        return match_report_entries(test_cases, entries)
