"""Runner adapters for the external test tools"""

from typing import Dict, Optional

from orchestrator.models.catalog import CaseType
from orchestrator.services.runners.base import (
    ProcessObserver,
    ProcessOutput,
    ReportEntry,
    RunnerAdapter,
    failed_results,
    match_report_entries,
    scratch_directory,
    signal_process_group,
    terminate_process,
)
from orchestrator.services.runners.jest_runner import JestRunner
from orchestrator.services.runners.k6_runner import K6Runner
from orchestrator.services.runners.playwright_runner import PlaywrightRunner, collect_specs


def build_runner_registry(workdir: Optional[str] = None) -> Dict[CaseType, RunnerAdapter]:
    """Map each catalog case type to the runner that executes it"""
    playwright = PlaywrightRunner(workdir=workdir)
    return {
        CaseType.API: JestRunner(workdir=workdir),
        CaseType.LOAD: K6Runner(workdir=workdir),
        CaseType.UI: playwright,
        CaseType.E2E: playwright,
    }


__all__ = [
    "ProcessObserver",
    "ProcessOutput",
    "ReportEntry",
    "RunnerAdapter",
    "failed_results",
    "match_report_entries",
    "scratch_directory",
    "signal_process_group",
    "terminate_process",
    "JestRunner",
    "K6Runner",
    "PlaywrightRunner",
    "collect_specs",
    "build_runner_registry",
]
