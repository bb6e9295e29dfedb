"""Timezone resolution for scheduled exports.

Zone lookups never raise: ``resolve_zone`` returns either a ``ZonedTime`` or a
``TimezoneError`` value and callers decide how to degrade (always to server
time for exports).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from typing import NamedTuple, Optional, Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ZonedTime:
    zone: tzinfo
    name: str


@dataclass(frozen=True)
class TimezoneError:
    name: str
    reason: str


ZoneResolution = Union[ZonedTime, TimezoneError]


class ResolvedDate(NamedTuple):
    iso_date: str  # YYYY-MM-DD, for the Marketing API time_range
    display_date: str  # DD/MM/YYYY, written into the sheet


def normalize_zone_name(raw: Optional[str]) -> str:
    """Strip the ``" | +7"`` offset suffix stored alongside account timezones."""
    return (raw or "").split("|", 1)[0].strip()


def resolve_zone(raw: Optional[str]) -> ZoneResolution:
    name = normalize_zone_name(raw)
    if not name:
        return TimezoneError(name=raw or "", reason="empty timezone")
    try:
        return ZonedTime(zone=ZoneInfo(name), name=name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        return TimezoneError(name=name, reason=str(exc) or type(exc).__name__)


def server_zone(name: Optional[str] = None) -> Optional[tzinfo]:
    """Return the configured server zone, or None for the host's local time."""
    if not name:
        return None
    resolved = resolve_zone(name)
    if isinstance(resolved, TimezoneError):
        logger.warning(
            "Invalid server timezone %s (%s); using host local time",
            resolved.name,
            resolved.reason,
        )
        return None
    return resolved.zone


def _aware(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        # Naive datetimes are UTC throughout the app (DB columns are naive UTC)
        return now.replace(tzinfo=timezone.utc)
    return now


def server_now(now: Optional[datetime] = None, server_tz: Optional[tzinfo] = None) -> datetime:
    aware = _aware(now)
    return aware.astimezone(server_tz) if server_tz is not None else aware.astimezone()


def local_now(
    now: Optional[datetime] = None,
    tz_name: Optional[str] = None,
    server_tz: Optional[tzinfo] = None,
) -> Tuple[datetime, bool]:
    """Return ``now`` in ``tz_name`` plus a flag telling whether it degraded.

    Without a zone name the server time is returned and the flag is False.
    """
    if not tz_name:
        return server_now(now, server_tz), False
    resolved = resolve_zone(tz_name)
    if isinstance(resolved, TimezoneError):
        logger.warning(
            "Invalid timezone %s (%s), using server time",
            resolved.name,
            resolved.reason,
            extra={"timezone": resolved.name},
        )
        return server_now(now, server_tz), True
    return _aware(now).astimezone(resolved.zone), False


def yesterday_in(
    tz_name: Optional[str] = None,
    now: Optional[datetime] = None,
    server_tz: Optional[tzinfo] = None,
) -> ResolvedDate:
    """Yesterday's calendar date in ``tz_name`` (server time when absent/invalid).

    Today's ad data is incomplete until the day rolls over in the account's
    own timezone, so scheduled exports always target the previous day.
    """
    current, _ = local_now(now, tz_name, server_tz)
    day = current.date() - timedelta(days=1)
    return ResolvedDate(iso_date=day.strftime("%Y-%m-%d"), display_date=day.strftime("%d/%m/%Y"))


def display_from_iso(iso_date: str) -> str:
    """``2024-03-07`` -> ``07/03/2024``."""
    y, m, d = iso_date.split("-")
    return f"{d}/{m}/{y}"
