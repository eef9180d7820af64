"""Execution Dispatcher - runs the cases of a test run through the runner adapters"""

import asyncio
from collections import OrderedDict
from typing import Dict, List, Mapping, Optional, Sequence, Set

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orchestrator.core.clock import utcnow
from orchestrator.core.config import settings
from orchestrator.core.exceptions import RunnerExecutionError, TestRunNotFoundError
from orchestrator.core.logging_config import get_logger
from orchestrator.core.monitoring import MetricsCollector
from orchestrator.models.catalog import CaseType, TestCaseModel, TestFileModel
from orchestrator.models.test_run import ResultStatus, RunStatus, TestResultModel, TestRunModel
from orchestrator.schemas.execution import CatalogTestCase, TestCaseResult
from orchestrator.services.runners import (
    RunnerAdapter,
    build_runner_registry,
    failed_results,
    terminate_process,
)

logger = get_logger(__name__)


def group_by_file(test_cases: Sequence[CatalogTestCase]) -> "OrderedDict[str, List[CatalogTestCase]]":
    """Group cases by source file, keeping first-seen file order"""
    groups: "OrderedDict[str, List[CatalogTestCase]]" = OrderedDict()
    for case in test_cases:
        groups.setdefault(case.file_path, []).append(case)
    return groups


class ExecutionDispatcher:
    """
    Executes one test run: groups its cases by file, hands each group to the
    runner for the file's type and persists the aggregated outcome.

    Every call opens its own sessions from ``session_factory`` so runs can be
    executed as detached tasks alongside each other.

    Runner processes are tracked per run; ``cancel_run`` terminates them and
    results arriving for a run that is no longer ``running`` are discarded.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        runners: Optional[Mapping[CaseType, RunnerAdapter]] = None
    ):
        self.session_factory = session_factory
        self.runners: Dict[CaseType, RunnerAdapter] = dict(
            runners if runners is not None else build_runner_registry()
        )
        self._active_runs: Set[str] = set()
        self._cancelled_runs: Set[str] = set()
        self._processes: Dict[str, Set[asyncio.subprocess.Process]] = {}

    @property
    def active_run_ids(self) -> List[str]:
        return sorted(self._active_runs)

    async def execute_run(
        self,
        test_run_id: str,
        test_case_ids: Sequence[str]
    ) -> Optional[RunStatus]:
        """
        Execute a test run to completion.

        Args:
            test_run_id: Opaque id of a pending run whose result rows exist
            test_case_ids: Catalog case ids to execute

        Returns:
            Final run status, or None if the run was stopped before or during
            execution

        Raises:
            SQLAlchemyError: If the run cannot even be marked failed after an
                unexpected error
        """
        loop = asyncio.get_running_loop()
        start_time = loop.time()
        self._active_runs.add(test_run_id)

        logger.info(
            "test_run_execution_started",
            test_run_id=test_run_id,
            case_count=len(test_case_ids)
        )

        try:
            if not await self._mark_running(test_run_id):
                return None

            test_cases = await self._load_cases(test_case_ids)
            known_ids = {case.id for case in test_cases}
            groups = group_by_file(test_cases)

            results = await self._execute_groups(test_run_id, groups)

            results.extend(
                TestCaseResult(
                    test_case_id=case_id,
                    status=ResultStatus.FAILED,
                    error=f"Test case not found in catalog: {case_id}",
                )
                for case_id in test_case_ids
                if case_id not in known_ids
            )

            if test_run_id in self._cancelled_runs:
                logger.info("test_run_results_discarded", test_run_id=test_run_id, reason="cancelled")
                return None

            duration_ms = int((loop.time() - start_time) * 1000)
            status = await self._save_results(test_run_id, results, duration_ms, known_ids)
            if status is not None:
                MetricsCollector.record_test_run(status.value)
            return status

        except Exception as e:
            logger.error(
                "test_run_execution_failed",
                test_run_id=test_run_id,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True
            )
            await self._mark_failed(test_run_id)
            MetricsCollector.record_test_run(RunStatus.FAILED.value)
            return RunStatus.FAILED

        finally:
            self._active_runs.discard(test_run_id)
            self._cancelled_runs.discard(test_run_id)
            self._processes.pop(test_run_id, None)

    async def cancel_run(self, test_run_id: str) -> int:
        """
        Terminate the runner processes of an executing run.

        Groups not yet started are not launched and the run's late results
        are not persisted.

        Returns:
            Number of processes that were signalled
        """
        if test_run_id not in self._active_runs:
            return 0

        self._cancelled_runs.add(test_run_id)
        processes = [
            process for process in self._processes.get(test_run_id, set())
            if process.returncode is None
        ]

        await asyncio.gather(
            *(terminate_process(p, settings.PROCESS_TERMINATE_GRACE_SECONDS) for p in processes),
            return_exceptions=True
        )

        logger.info(
            "test_run_cancelled",
            test_run_id=test_run_id,
            terminated_processes=len(processes)
        )
        return len(processes)

    async def _mark_running(self, test_run_id: str) -> bool:
        """Move a pending run to running; False if it was stopped or already executed"""
        async with self.session_factory() as session:
            result = await session.execute(
                update(TestRunModel)
                .where(TestRunModel.id == test_run_id, TestRunModel.status == RunStatus.PENDING)
                .values(status=RunStatus.RUNNING, started_at=utcnow())
            )
            await session.commit()
            if result.rowcount == 1:
                return True

            run = await session.get(TestRunModel, test_run_id)
            if run is None:
                raise TestRunNotFoundError(f"Test run not found: {test_run_id}", test_run_id=test_run_id)
            logger.info(
                "test_run_results_discarded",
                test_run_id=test_run_id,
                reason="run_not_pending",
                status=run.status.value
            )
            return False

    async def _load_cases(self, test_case_ids: Sequence[str]) -> List[CatalogTestCase]:
        """Load the requested cases joined with the path of their file"""
        if not test_case_ids:
            return []

        async with self.session_factory() as session:
            stmt = (
                select(TestCaseModel, TestFileModel.path)
                .join(TestFileModel, TestCaseModel.test_file_id == TestFileModel.id)
                .where(TestCaseModel.id.in_(list(test_case_ids)))
            )
            rows = (await session.execute(stmt)).all()

        by_id = {
            case.id: CatalogTestCase(
                id=case.id,
                name=case.name,
                type=case.type,
                file_path=path or case.file_path or "",
                test_file_id=case.test_file_id,
            )
            for case, path in rows
        }
        # Keep the requested order
        return [by_id[case_id] for case_id in test_case_ids if case_id in by_id]

    async def _execute_groups(
        self,
        test_run_id: str,
        groups: Mapping[str, List[CatalogTestCase]]
    ) -> List[TestCaseResult]:
        """Run each file group in turn; a failing group only fails its own cases"""
        results: List[TestCaseResult] = []

        for file_path, cases in groups.items():
            if test_run_id in self._cancelled_runs:
                results.extend(
                    TestCaseResult(test_case_id=case.id, status=ResultStatus.SKIPPED)
                    for case in cases
                )
                continue

            case_type = cases[0].type
            runner = self.runners.get(case_type)
            if runner is None:
                results.extend(failed_results(
                    cases,
                    f"No runner registered for test type {case_type.value}"
                ))
                continue

            results.extend(await self._execute_group(test_run_id, runner, file_path, cases))

        return results

    async def _execute_group(
        self,
        test_run_id: str,
        runner: RunnerAdapter,
        file_path: str,
        cases: List[CatalogTestCase]
    ) -> List[TestCaseResult]:
        loop = asyncio.get_running_loop()
        start_time = loop.time()

        def track(process: asyncio.subprocess.Process) -> None:
            self._processes.setdefault(test_run_id, set()).add(process)

        try:
            group_results = await runner.run(file_path, cases, on_process_started=track)
        except Exception as e:
            if isinstance(e, RunnerExecutionError):
                e.file_path = e.file_path or file_path
            logger.error(
                "runner_group_failed",
                test_run_id=test_run_id,
                runner=runner.name,
                file_path=file_path,
                error=e.to_dict() if isinstance(e, RunnerExecutionError) else str(e),
                exc_info=not isinstance(e, RunnerExecutionError)
            )
            MetricsCollector.record_runner_invocation(runner.name, "error", loop.time() - start_time)
            return failed_results(cases, f"Failed to execute test: {e}")

        MetricsCollector.record_runner_invocation(runner.name, "completed", loop.time() - start_time)

        # One result per case, never fewer
        by_case = {result.test_case_id: result for result in group_results}
        return [
            by_case.get(case.id) or TestCaseResult(
                test_case_id=case.id,
                status=ResultStatus.FAILED,
                error=f"{runner.name} returned no result for this test case",
            )
            for case in cases
        ]

    async def _save_results(
        self,
        test_run_id: str,
        results: Sequence[TestCaseResult],
        duration_ms: int,
        known_case_ids: Set[str]
    ) -> Optional[RunStatus]:
        """
        Persist every case result and the run aggregates.

        Returns:
            Final run status, or None if the run stopped being ``running``
        """
        completed_at = utcnow()

        async with self.session_factory() as session:
            run = await session.get(TestRunModel, test_run_id, populate_existing=True)
            if run is None:
                raise TestRunNotFoundError(f"Test run not found: {test_run_id}", test_run_id=test_run_id)
            if run.status != RunStatus.RUNNING:
                logger.info(
                    "test_run_results_discarded",
                    test_run_id=test_run_id,
                    reason="run_no_longer_running",
                    status=run.status.value
                )
                return None

            existing = {
                row.test_case_id: row
                for row in (await session.execute(
                    select(TestResultModel).where(TestResultModel.test_run_id == test_run_id)
                )).scalars()
            }

            passed = failed = pending = 0
            for result in results:
                if result.status == ResultStatus.PASSED:
                    passed += 1
                elif result.status == ResultStatus.FAILED:
                    failed += 1
                else:
                    pending += 1

                row = existing.get(result.test_case_id)
                if row is None:
                    if result.test_case_id not in known_case_ids:
                        continue
                    row = TestResultModel(test_run_id=test_run_id, test_case_id=result.test_case_id)
                    session.add(row)
                    existing[result.test_case_id] = row

                row.status = result.status
                row.duration = result.duration
                row.error = result.error
                row.stack_trace = result.stack_trace
                row.logs = result.logs
                row.completed_at = completed_at

            status = RunStatus.FAILED if failed > 0 else RunStatus.PASSED
            run.status = status
            run.tests_passed = passed
            run.tests_failed = failed
            run.tests_pending = pending
            run.completed_at = completed_at
            run.duration = duration_ms

            await session.commit()

        logger.info(
            "test_run_execution_completed",
            test_run_id=test_run_id,
            status=status.value,
            tests_passed=passed,
            tests_failed=failed,
            tests_pending=pending,
            duration_ms=duration_ms
        )
        return status

    async def _mark_failed(self, test_run_id: str) -> None:
        """Mark the run failed after an unexpected error; case results stay as they are"""
        async with self.session_factory() as session:
            run = await session.get(TestRunModel, test_run_id)
            if run is None:
                return
            run.status = RunStatus.FAILED
            run.completed_at = utcnow()
            await session.commit()
