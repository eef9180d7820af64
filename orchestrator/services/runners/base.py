"""Runner adapter base - subprocess invocation and report matching shared by all runners"""

import asyncio
import os
import shutil
import signal
import tempfile
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional, Sequence

from orchestrator.core.config import settings
from orchestrator.core.exceptions import RunnerExecutionError
from orchestrator.core.logging_config import get_logger
from orchestrator.models.test_run import ResultStatus
from orchestrator.schemas.execution import CatalogTestCase, TestCaseResult

logger = get_logger(__name__)

OUTPUT_CHUNK_BYTES = 65536

# Called with every process a runner spawns, so the dispatcher can terminate it
ProcessObserver = Callable[[asyncio.subprocess.Process], None]


@dataclass
class ProcessOutput:
    """Captured result of one runner subprocess"""
    returncode: Optional[int]
    stdout: str
    stderr: str
    duration_ms: int = 0
    timed_out: bool = False

    @property
    def combined(self) -> str:
        return self.stdout + "\n" + self.stderr


@dataclass
class ReportEntry:
    """One test as reported by a runner, before matching to catalog cases"""
    title: str
    passed: bool
    duration: int = 0
    error: Optional[str] = None
    stack_trace: Optional[str] = None


def failed_results(
    test_cases: Sequence[CatalogTestCase],
    error: str,
    logs: Optional[str] = None,
    duration: int = 0
) -> List[TestCaseResult]:
    """Mark every case as failed with the same diagnostic"""
    return [
        TestCaseResult(
            test_case_id=case.id,
            status=ResultStatus.FAILED,
            duration=duration,
            error=error,
            logs=logs or None,
        )
        for case in test_cases
    ]


def match_report_entries(
    test_cases: Sequence[CatalogTestCase],
    entries: Sequence[ReportEntry]
) -> List[TestCaseResult]:
    """
    Map each requested case to a reported test by exact title.

    A case without a matching title is failed, and the diagnostic lists
    the titles the runner did report.
    """
    by_title: Dict[str, ReportEntry] = {}
    for entry in entries:
        by_title.setdefault(entry.title, entry)
    available = ", ".join(entry.title for entry in entries)

    results: List[TestCaseResult] = []
    for case in test_cases:
        entry = by_title.get(case.name)
        if entry is None:
            results.append(TestCaseResult(
                test_case_id=case.id,
                status=ResultStatus.FAILED,
                duration=0,
                error=f'Test not found. Expected: "{case.name}". Available: [{available}]',
            ))
            continue

        results.append(TestCaseResult(
            test_case_id=case.id,
            status=ResultStatus.PASSED if entry.passed else ResultStatus.FAILED,
            duration=max(int(entry.duration or 0), 0),
            error=entry.error or None,
            stack_trace=entry.stack_trace or None,
        ))
    return results


def signal_process_group(process: asyncio.subprocess.Process, sig: int) -> None:
    """Send a signal to the runner and everything it spawned (npx forks the real tool)"""
    if process.returncode is not None:
        return
    try:
        if hasattr(os, "killpg"):
            os.killpg(process.pid, sig)
        else:
            process.send_signal(sig)
    except ProcessLookupError:
        pass


async def terminate_process(process: asyncio.subprocess.Process, grace_seconds: float) -> None:
    """SIGTERM the process group, then kill it if it outlives the grace period"""
    if process.returncode is not None:
        return
    signal_process_group(process, signal.SIGTERM)
    try:
        await asyncio.wait_for(process.wait(), timeout=grace_seconds)
    except asyncio.TimeoutError:
        signal_process_group(process, getattr(signal, "SIGKILL", signal.SIGTERM))
        await process.wait()


@contextmanager
def scratch_directory(root: str, prefix: str) -> Iterator[str]:
    """
    Create a uniquely named directory under ``<root>/test-results``.

    The directory is removed when the block exits, whether it returns or raises.
    """
    parent = os.path.join(root, "test-results")
    os.makedirs(parent, exist_ok=True)
    path = tempfile.mkdtemp(prefix=prefix, dir=parent)
    try:
        yield path
    finally:
        try:
            shutil.rmtree(path)
            logger.debug("scratch_directory_removed", path=path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error("scratch_directory_cleanup_failed", path=path, error=str(e))


class RunnerAdapter(ABC):
    """
    Invokes one external test tool and normalizes its report.

    ``run`` returns exactly one result per requested case. Tools exit
    non-zero whenever a test fails, so reports are parsed the same way
    whatever the exit code was.
    """

    name: str = "runner"

    def __init__(
        self,
        workdir: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_output_bytes: Optional[int] = None
    ):
        self.workdir = os.path.abspath(workdir or settings.RUNNER_WORKDIR)
        self.timeout_seconds = timeout_seconds or self.default_timeout()
        self.max_output_bytes = max_output_bytes or settings.RUNNER_MAX_OUTPUT_BYTES

    @abstractmethod
    def default_timeout(self) -> float:
        """Timeout used when none is passed to the constructor"""

    @abstractmethod
    async def run(
        self,
        file_path: str,
        test_cases: Sequence[CatalogTestCase],
        on_process_started: Optional[ProcessObserver] = None
    ) -> List[TestCaseResult]:
        """Execute the cases of one file and return one result per case"""

    def relative_path(self, file_path: str) -> str:
        """Path of the test file relative to the runner working directory"""
        if os.path.isabs(file_path):
            file_path = os.path.relpath(file_path, self.workdir)
        return file_path.replace(os.sep, "/")

    async def _run_process(
        self,
        cmd: List[str],
        timeout: float,
        env: Optional[Dict[str, str]] = None,
        on_process_started: Optional[ProcessObserver] = None
    ) -> ProcessOutput:
        """
        Run a command in the working directory and capture its output.

        A timeout kills the process and is reported through ``timed_out``
        instead of raising.

        Raises:
            RunnerExecutionError: If the command cannot be started
        """
        loop = asyncio.get_running_loop()
        start_time = loop.time()

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=self.workdir,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                start_new_session=(os.name == "posix")
            )
        except FileNotFoundError:
            raise RunnerExecutionError(
                f"Command '{cmd[0]}' not found. Make sure it's installed.",
                runner=self.name
            )
        except OSError as e:
            raise RunnerExecutionError(
                f"Failed to start '{cmd[0]}': {e}",
                runner=self.name
            )

        if on_process_started is not None:
            on_process_started(process)

        try:
            stdout, stderr, _ = await asyncio.wait_for(
                asyncio.gather(
                    self._read_capped(process.stdout),
                    self._read_capped(process.stderr),
                    process.wait()
                ),
                timeout=timeout
            )
        except asyncio.TimeoutError:
            await self._kill(process)
            elapsed_ms = int((loop.time() - start_time) * 1000)
            logger.warning(
                "runner_timed_out",
                runner=self.name,
                command=cmd[:3],
                timeout_seconds=timeout
            )
            return ProcessOutput(
                returncode=process.returncode,
                stdout="",
                stderr=f"{self.name} timed out after {timeout} seconds",
                duration_ms=elapsed_ms,
                timed_out=True
            )
        except asyncio.CancelledError:
            await self._kill(process)
            raise

        return ProcessOutput(
            returncode=process.returncode,
            stdout=self._decode(stdout),
            stderr=self._decode(stderr),
            duration_ms=int((loop.time() - start_time) * 1000)
        )

    async def _read_capped(self, stream: Optional[asyncio.StreamReader]) -> bytes:
        """Read a pipe to EOF, keeping at most max_output_bytes"""
        if stream is None:
            return b""

        kept = bytearray()
        while True:
            chunk = await stream.read(OUTPUT_CHUNK_BYTES)
            if not chunk:
                return bytes(kept)
            # Keep draining past the cap
            room = self.max_output_bytes - len(kept)
            if room > 0:
                kept.extend(chunk[:room])

    @staticmethod
    def _decode(data: bytes) -> str:
        return data.decode("utf-8", errors="replace")

    @staticmethod
    async def _kill(process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        signal_process_group(process, getattr(signal, "SIGKILL", signal.SIGTERM))
        await process.wait()
