"""Scheduled Test Orchestrator - service entry point

Run with ``python -m orchestrator.main``.
"""

import asyncio
import signal

from orchestrator.core import database
from orchestrator.core.config import settings
from orchestrator.core.logging_config import get_logger
from orchestrator.core.monitoring import start_metrics_server
from orchestrator.services.execution_dispatcher import ExecutionDispatcher
from orchestrator.services.runners import build_runner_registry
from orchestrator.services.scheduler import DueScheduleScanner

logger = get_logger(__name__)

# Upper bound on how long shutdown waits for detached runs
SHUTDOWN_DRAIN_TIMEOUT_SECONDS = 30.0


async def run_service() -> None:
    """
    Start the scheduler and run until SIGTERM or SIGINT.

    On shutdown the scanner is stopped, in-flight runs get a bounded time to
    finish and the database engine is disposed.
    """
    logger.info(
        "orchestrator_starting",
        environment=settings.ENVIRONMENT,
        scheduler_enabled=settings.SCHEDULER_ENABLED
    )

    await database.init_database()

    if settings.METRICS_PORT:
        start_metrics_server(settings.METRICS_PORT)
        logger.info("metrics_server_started", port=settings.METRICS_PORT)

    dispatcher = ExecutionDispatcher(
        database.async_session_factory,
        runners=build_runner_registry(settings.RUNNER_WORKDIR)
    )
    scanner = DueScheduleScanner(database.async_session_factory, dispatcher)

    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def signal_handler(sig, frame):
        logger.info("shutdown_signal_received", signal=sig)
        loop.call_soon_threadsafe(shutdown_event.set)

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    if settings.SCHEDULER_ENABLED:
        scanner.start()
    else:
        logger.warning("scheduler_disabled")

    try:
        await shutdown_event.wait()
    finally:
        if scanner.is_running:
            await scanner.stop()

        drained = await scanner.wait_for_in_flight(timeout=SHUTDOWN_DRAIN_TIMEOUT_SECONDS)
        if not drained:
            logger.warning(
                "in_flight_runs_abandoned",
                schedule_ids=scanner.status().in_flight_schedule_ids
            )

        await database.close_database()
        logger.info("orchestrator_stopped")


def main() -> None:
    asyncio.run(run_service())


if __name__ == "__main__":
    main()
