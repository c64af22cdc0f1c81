"""
Scheduler for periodic jobs.

Uses APScheduler to run, in a background thread:
- ingestion every POLL_INTERVAL_SECONDS
- daily statistics for the previous day, shortly after midnight UTC
- the position retention sweep, once a day

Ingestion runs with max_instances=1 so two cycles never overlap; a cycle
that is still running when the next one is due causes that run to be
skipped rather than queued.
"""

import logging
from typing import Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, JobExecutionEvent
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from flighttrack.config import config
from flighttrack.ingestion import IngestionPipeline
from flighttrack.services import RetentionSweeper, StatisticsAggregator

logger = logging.getLogger(__name__)

INGESTION_JOB_ID = 'ingestion'
STATISTICS_JOB_ID = 'daily_statistics'
RETENTION_JOB_ID = 'retention'


def _on_job_executed(event: JobExecutionEvent) -> None:
    logger.debug(f'Job {event.job_id} executed successfully')


def _on_job_error(event: JobExecutionEvent) -> None:
    logger.error(f'Job {event.job_id} failed: {event.exception}')


def build_scheduler(
    pipeline: IngestionPipeline,
    aggregator: Optional[StatisticsAggregator] = None,
    sweeper: Optional[RetentionSweeper] = None,
    interval_seconds: Optional[int] = None,
) -> BackgroundScheduler:
    """
    Create (but do not start) the background scheduler.

    Args:
        pipeline: ingestion pipeline whose run_scheduled() is polled
        aggregator: statistics aggregator (default settings if None)
        sweeper: retention sweeper (default settings if None)
        interval_seconds: ingestion interval (config if None)
    """
    interval = interval_seconds or config.ingestion.poll_interval
    aggregator = aggregator or StatisticsAggregator(session_factory=pipeline.session_factory)
    sweeper = sweeper or RetentionSweeper(session_factory=pipeline.session_factory)

    scheduler = BackgroundScheduler(timezone='UTC')
    scheduler.add_listener(_on_job_executed, EVENT_JOB_EXECUTED)
    scheduler.add_listener(_on_job_error, EVENT_JOB_ERROR)

    scheduler.add_job(
        pipeline.run_scheduled,
        trigger=IntervalTrigger(seconds=interval),
        id=INGESTION_JOB_ID,
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    scheduler.add_job(
        aggregator.generate_for,
        trigger=CronTrigger(hour=0, minute=10, timezone='UTC'),
        id=STATISTICS_JOB_ID,
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    scheduler.add_job(
        sweeper.sweep,
        trigger=CronTrigger(hour=3, minute=0, timezone='UTC'),
        id=RETENTION_JOB_ID,
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    logger.info(f'Scheduler configured: ingestion every {interval}s, statistics 00:10 UTC, retention 03:00 UTC')
    return scheduler
