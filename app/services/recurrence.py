"""Decide whether an export job config is due on the current scheduler tick."""
from __future__ import annotations

import logging
from datetime import datetime, timezone, tzinfo
from typing import Optional

from app.services.timezones import local_now

logger = logging.getLogger(__name__)

# The scheduler ticks every 15 minutes; a 14 minute window hits exactly once.
DUE_WINDOW_MINUTES = 14
# Suppress a second daily run from overlapping windows or repeated ticks.
# Tied to the tick cadence above; revisit both together.
DAILY_DEBOUNCE_HOURS = 12
DEFAULT_INTERVAL_HOURS = 6
DEFAULT_EXPORT_HOUR = 9
DEFAULT_EXPORT_MINUTE = 0

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def hours_since(now: datetime, then: Optional[datetime]) -> float:
    now_utc = _as_utc(now)
    then_utc = _as_utc(then) or _EPOCH
    return (now_utc - then_utc).total_seconds() / 3600


def is_due(config, now: Optional[datetime] = None, server_tz: Optional[tzinfo] = None) -> bool:
    """Return True when ``config`` should run at ``now``.

    ``config`` is any object with the ExportJobConfig recurrence attributes.
    Naive datetimes are treated as UTC.
    """
    now = _as_utc(now) or datetime.now(timezone.utc)
    frequency = (config.export_frequency or "").lower()

    if frequency == "daily":
        tz_name = config.ad_account_timezone if config.use_account_timezone else None
        current, _ = local_now(now, tz_name, server_tz)
        target_hour = (
            config.export_hour if config.export_hour is not None else DEFAULT_EXPORT_HOUR
        )
        target_minute = (
            config.export_minute if config.export_minute is not None else DEFAULT_EXPORT_MINUTE
        )
        if current.hour != target_hour:
            return False
        if abs(current.minute - target_minute) >= DUE_WINDOW_MINUTES:
            return False
        if config.last_run_at is not None and hours_since(now, config.last_run_at) < DAILY_DEBOUNCE_HOURS:
            logger.debug(
                "Skipping recently exported config",
                extra={"config_id": config.id},
            )
            return False
        return True

    if frequency == "hourly":
        interval = config.export_interval or DEFAULT_INTERVAL_HOURS
        return hours_since(now, config.last_run_at) >= interval

    return False
