"""Orchestrates scheduled and one-off pipeline runs"""

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.interval import IntervalTrigger

from repovec.models.reports import PipelineResult
from repovec.pipeline import run_pipeline

logger = logging.getLogger(__name__)

REFRESH_JOB_ID = "embedding_refresh"


class RefreshOrchestrator:
    """Runs the embedding pipeline once or on an interval"""

    def __init__(
        self,
        pipeline: Callable[..., object] | None = None,
        telemetry=None,
        reset: bool = False,
        skip_cleanup: bool = False,
    ):
        """
        Initialize refresh orchestrator

        Args:
            pipeline: Coroutine function returning a PipelineResult (default: run_pipeline)
            telemetry: Optional TelemetryService receiving each result
            reset: Ignore stored state on every run
            skip_cleanup: Skip retention on every run
        """
        self.pipeline = pipeline or run_pipeline
        self.telemetry = telemetry
        self.reset = reset
        self.skip_cleanup = skip_cleanup
        self.scheduler: BaseScheduler | None = None

    def configure_scheduler(
        self,
        scheduler: BaseScheduler,
        interval_hours: int,
        max_concurrent_jobs: int = 1,
    ) -> None:
        """
        Register the pipeline as an interval job

        Args:
            scheduler: Initialized APScheduler scheduler
            interval_hours: Refresh interval in hours
            max_concurrent_jobs: Maximum concurrent runs
        """
        self.scheduler = scheduler

        trigger = IntervalTrigger(hours=interval_hours, start_date=datetime.now())

        self.scheduler.add_job(
            self.refresh_once,
            trigger=trigger,
            id=REFRESH_JOB_ID,
            name="Embedding Snapshot Refresh",
            max_instances=max_concurrent_jobs,
            replace_existing=True,
        )

        logger.info(f"Scheduled refresh every {interval_hours} hours")

    def stop_scheduler(self) -> None:
        """Remove the refresh job"""
        if self.scheduler:
            try:
                self.scheduler.remove_job(REFRESH_JOB_ID)
                logger.info("Stopped refresh scheduler")
            except JobLookupError:
                logger.warning("Refresh job not found during shutdown")

    def refresh_once(self) -> PipelineResult:
        """
        Execute single pipeline run

        Synchronous because scheduler jobs run in worker threads; asyncio.run()
        bridges to the async pipeline. Failures are captured in the result.

        Returns:
            PipelineResult: Result of the run
        """
        start_time = datetime.now(UTC)

        try:
            logger.info("Starting pipeline run")
            result = asyncio.run(self.pipeline(reset=self.reset, skip_cleanup=self.skip_cleanup))
        except Exception as e:
            logger.error(f"Pipeline run failed with exception: {e}", exc_info=True)
            end_time = datetime.now(UTC)
            result = PipelineResult(
                success=False,
                start_time=start_time,
                end_time=end_time,
                duration_seconds=(end_time - start_time).total_seconds(),
                error=str(e),
            )

        if self.telemetry is not None:
            self.telemetry.log_pipeline_run(result)
        return result
