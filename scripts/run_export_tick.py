"""Run one scheduled-export check outside the web process.

Useful from cron when the in-process scheduler is disabled, or to force a
single config while debugging.
"""
import argparse
import sys
from datetime import datetime, timezone

from app.core.dependencies import build_export_runner, build_export_scheduler
from app.core.logging_utils import configure_logging
from app.core.settings import settings
from app.jobs.export_scheduler import OUTCOME_FAILED
from app.services.recurrence import is_due


def main() -> int:
    parser = argparse.ArgumentParser(description="Run due Google Sheets exports once.")
    parser.add_argument("--config-id", type=int, default=None, help="Run this config now, due or not")
    parser.add_argument(
        "--dry-run", action="store_true", help="List the configs that are due without exporting"
    )
    args = parser.parse_args()

    configure_logging(settings)
    runner = build_export_runner()
    scheduler = build_export_scheduler(runner)
    now = datetime.now(timezone.utc)

    if args.config_id is not None:
        config = runner.store.get_export_config(args.config_id)
        if config is None:
            print(f"Config {args.config_id} not found", file=sys.stderr)
            return 1
        if args.dry_run:
            print(f"{config.id}\t{config.name}\tdue={is_due(config, now, scheduler.server_tz)}")
            return 0
        outcome = scheduler.run_job(config, now)
        print(f"Config {config.id}: {outcome}")
        return 2 if outcome == OUTCOME_FAILED else 0

    if args.dry_run:
        for config in runner.store.list_enabled_export_configs():
            if is_due(config, now, scheduler.server_tz):
                print(f"{config.id}\t{config.name}\t{config.export_frequency}")
        return 0

    summary = scheduler.run_all_due_jobs(now)
    print(
        f"checked={summary.checked} due={summary.due} succeeded={summary.succeeded} "
        f"failed={summary.failed} skipped={summary.skipped} empty={summary.empty}"
    )
    return 0 if summary.failed == 0 else 2


if __name__ == "__main__":
    sys.exit(main())
