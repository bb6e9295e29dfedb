"""Periodic Google Sheets export job.

``ExportScheduler`` is built once at startup with its collaborators and
registers ``run_all_due_jobs`` on an APScheduler cron trigger. Each tick walks
the enabled configs one after another; a config's failure is recorded on its
row and never stops the batch.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from app.services.config_store import ConfigStore, ExportJobConfig, RunState
from app.services.export_service import ExportConfigurationError, ExportRunner
from app.services.recurrence import is_due

logger = logging.getLogger(__name__)

JOB_ID = "google_sheets_export_tick"

OUTCOME_SUCCESS = "success"
OUTCOME_FAILED = "failed"
OUTCOME_SKIPPED = "skipped"
OUTCOME_EMPTY = "empty"


@dataclass
class TickSummary:
    checked: int = 0
    due: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    empty: int = 0

    def count(self, outcome: str) -> None:
        if outcome == OUTCOME_SUCCESS:
            self.succeeded += 1
        elif outcome == OUTCOME_FAILED:
            self.failed += 1
        elif outcome == OUTCOME_SKIPPED:
            self.skipped += 1
        elif outcome == OUTCOME_EMPTY:
            self.empty += 1


class ExportScheduler:
    def __init__(
        self,
        store: ConfigStore,
        runner: ExportRunner,
        cron: str = "*/15 * * * *",
        server_tz: Optional[tzinfo] = None,
    ):
        self.store = store
        self.runner = runner
        self.cron = cron
        self.server_tz = server_tz
        self._scheduler: Optional[BackgroundScheduler] = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        if self.running:
            return
        logger.info("Initializing export scheduler", extra={"cron": self.cron})
        scheduler = BackgroundScheduler(timezone=self.server_tz or timezone.utc)
        scheduler.add_job(
            self._tick,
            CronTrigger.from_crontab(self.cron, timezone=self.server_tz),
            id=JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        scheduler.start()
        self._scheduler = scheduler

    def stop(self, wait: bool = False) -> None:
        if self._scheduler is not None:
            if self._scheduler.running:
                self._scheduler.shutdown(wait=wait)
            self._scheduler = None
            logger.info("Export scheduler stopped")

    def _tick(self) -> None:
        logger.info("Running scheduled export check")
        self.run_all_due_jobs()

    def run_all_due_jobs(self, now: Optional[datetime] = None) -> TickSummary:
        now = now or datetime.now(timezone.utc)
        summary = TickSummary()
        try:
            configs = self.store.list_enabled_export_configs()
            for config in configs:
                summary.checked += 1
                if not is_due(config, now, self.server_tz):
                    continue
                summary.due += 1
                summary.count(self.run_job(config, now))
        except Exception:
            # Per-job errors are handled in run_job; this guards store failures
            logger.exception("Error in scheduled export batch")
        logger.info(
            "Scheduled export check finished",
            extra={
                "checked": summary.checked,
                "due": summary.due,
                "succeeded": summary.succeeded,
                "failed": summary.failed,
                "skipped": summary.skipped,
            },
        )
        return summary

    def run_job(self, config: ExportJobConfig, now: Optional[datetime] = None) -> str:
        """Run one config and record its outcome; never raises."""
        now = now or datetime.now(timezone.utc)
        ctx = {"config_id": config.id, "user_id": config.user_id}
        logger.info("Processing export config %s", config.name, extra=ctx)
        try:
            result = self.runner.run_scheduled(config, now)
        except ExportConfigurationError as exc:
            # Not recorded as failed so it is retried on the next due cycle
            logger.error("Skipping export config %s: %s", config.name, exc, extra=ctx)
            return OUTCOME_SKIPPED
        except Exception as exc:
            logger.exception("Export failed for %s", config.name, extra=ctx)
            self._record(config, RunState.failed(now, str(exc) or type(exc).__name__))
            return OUTCOME_FAILED

        if result is None:
            return OUTCOME_EMPTY
        self._record(config, RunState.success(now, result.rows))
        logger.info(
            "Export success for %s",
            config.name,
            extra={**ctx, "rows": result.rows, "start_row": result.start_row},
        )
        return OUTCOME_SUCCESS

    def _record(self, config: ExportJobConfig, state: RunState) -> None:
        try:
            self.store.update_config_run_state(config.id, state)
        except Exception:
            logger.exception(
                "Could not record export run state",
                extra={"config_id": config.id, "status": state.status},
            )
