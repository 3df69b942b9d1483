"""Refresh daemon: runs a refresh batch on a fixed interval with APScheduler."""

from __future__ import annotations

import logging
import signal
import sys
from datetime import datetime
from typing import Optional

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from brokersync.config import get_settings
from .refresh import RefreshSummary, run_refresh_cycle

logger = logging.getLogger(__name__)
settings = get_settings()

JOB_ID = "refresh_cycle"


class RefreshDaemon:
    """Keeps brokerage connections fresh by running refresh batches periodically.

    Batches never overlap: a batch that is still running when the next one
    is due causes the due run to be skipped, and missed runs are coalesced.
    """

    def __init__(
        self,
        interval_seconds: Optional[int] = None,
        limit: Optional[int] = None,
    ):
        """
        Args:
            interval_seconds: Seconds between batches (defaults to REFRESH_INTERVAL_SECONDS)
            limit: Connections per batch (capped at REFRESH_BATCH_SIZE)
        """
        self.interval = interval_seconds or settings.refresh_interval_seconds
        self.limit = limit
        self.scheduler = BlockingScheduler()
        self.batches_run = 0
        self.last_summary: Optional[RefreshSummary] = None
        self._stopping = False

    def run_once(self) -> Optional[RefreshSummary]:
        """Run one batch; errors are logged so the daemon keeps its schedule."""
        self.batches_run += 1
        batch = self.batches_run
        try:
            summary = run_refresh_cycle(limit=self.limit)
        except Exception as e:
            logger.error(f"Refresh batch #{batch} aborted: {e}")
            return None

        self.last_summary = summary
        level = logging.WARNING if summary.failures else logging.INFO
        logger.log(
            level,
            f"Refresh batch #{batch}: {summary.synced}/{summary.connections} synced, "
            f"{summary.refreshed} refreshed, {len(summary.failures)} failed",
        )
        return summary

    def _on_signal(self, signum, frame) -> None:
        if self._stopping:
            logger.warning("Second shutdown signal, exiting immediately")
            sys.exit(1)
        logger.info(f"Signal {signum} received, stopping refresh daemon")
        self._stopping = True
        self.stop()

    def start(self) -> None:
        """Block, running batches until interrupted. The first batch starts immediately."""
        signal.signal(signal.SIGINT, self._on_signal)
        signal.signal(signal.SIGTERM, self._on_signal)

        self.scheduler.add_job(
            self.run_once,
            trigger=IntervalTrigger(seconds=self.interval),
            id=JOB_ID,
            name="Brokerage refresh batch",
            next_run_time=datetime.now(),
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

        logger.info(f"Refresh daemon running every {self.interval}s")
        try:
            self.scheduler.start()
        except (KeyboardInterrupt, SystemExit):
            pass
        finally:
            logger.info(f"Refresh daemon stopped after {self.batches_run} batch(es)")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)


def start_scheduler(interval_seconds: Optional[int] = None, limit: Optional[int] = None) -> None:
    """Run the refresh daemon in the foreground."""
    RefreshDaemon(interval_seconds=interval_seconds, limit=limit).start()
