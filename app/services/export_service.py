"""Google Sheets export pipeline shared by the scheduler and the manual trigger.

credentials -> token refresh -> Marketing API fetch -> rows -> sheet write.
Run-state bookkeeping is left to the caller.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Any, Dict, List, Optional, Sequence, Tuple

import requests

from app.services.ads_data import (
    DATA_TYPE_LEVELS,
    DATA_TYPES,
    AdsDataProvider,
    DateRange,
    merge_by_id,
    strip_act,
    with_act,
)
from app.services.column_mapper import (
    DURATION_FIELDS,
    REPORT_MONEY_FIELDS,
    build_header_row,
    map_to_row,
    parse_column_mapping,
    trim_trailing_empty,
)
from app.services.config_store import (
    ConfigStore,
    ExportJobConfig,
    UserCredentials,
    parse_account_ids,
)
from app.services.sheets import SheetsAPIError, SheetsClient, SpreadsheetSink
from app.services.timezones import display_from_iso, server_now, yesterday_in

logger = logging.getLogger(__name__)

# Replace mode clears this range before writing from the top
REPLACE_CLEAR_RANGE = "A:Z"

# A manual export skips rows where every one of these is empty or zero
STATS_FIELDS = (
    "reach",
    "impressions",
    "postEngagements",
    "clicks",
    "newMessagingContacts",
    "spend",
    "costPerNewMessagingContact",
    "videoAvgTimeWatched",
    "videoPlays",
    "video3SecWatched",
    "videoP25Watched",
    "videoP50Watched",
    "videoP75Watched",
    "videoP95Watched",
    "videoP100Watched",
)


class ExportConfigurationError(Exception):
    """The config cannot run as stored (missing credentials, empty scope, bad mapping)."""


@dataclass(frozen=True)
class ExportResult:
    rows: int
    start_row: int
    target_date: str


def _is_blank_stat(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (int, float)):
        return value == 0
    return str(value) in ("", "0", "0.00")


def has_stats(record: Dict[str, Any]) -> bool:
    return not all(_is_blank_stat(record.get(k)) for k in STATS_FIELDS)


class ExportRunner:
    def __init__(
        self,
        store: ConfigStore,
        ads: AdsDataProvider,
        sheets: SpreadsheetSink,
        server_tz: Optional[tzinfo] = None,
        max_workers: int = 8,
    ):
        self.store = store
        self.ads = ads
        self.sheets = sheets
        self.server_tz = server_tz
        self.max_workers = max(1, max_workers)

    # Credentials

    def load_credentials(self, config: ExportJobConfig) -> UserCredentials:
        creds = self.store.get_user_credentials(config.user_id)
        if not creds.spreadsheet_refresh_token:
            raise ExportConfigurationError(f"User {config.user_id} missing Google refresh token")
        if not creds.ads_access_token:
            raise ExportConfigurationError(f"User {config.user_id} missing Facebook ad token")
        return creds

    def open_sheets(self, creds: UserCredentials) -> SheetsClient:
        tokens = self.sheets.refresh_access_token(creds.spreadsheet_refresh_token)
        if creds.google_account_id is not None:
            self.store.update_stored_oauth_token(creds.google_account_id, tokens)
        return self.sheets.authorize(tokens.access_token)

    # Shape

    @staticmethod
    def job_shape(config: ExportJobConfig) -> Tuple[List[str], Dict[str, str]]:
        account_ids = parse_account_ids(config.account_ids)
        if not account_ids:
            raise ExportConfigurationError("No accounts selected for export")
        try:
            mapping = parse_column_mapping(config.column_mapping)
        except ValueError as exc:
            raise ExportConfigurationError(str(exc)) from exc
        if config.data_type not in DATA_TYPES:
            raise ExportConfigurationError(f"Unknown data type: {config.data_type}")
        return account_ids, mapping

    # Fetch

    def fetch_records(
        self,
        token: str,
        data_type: str,
        account_ids: Sequence[str],
        date_range: Optional[DateRange],
        with_account_names: bool = False,
    ) -> List[Dict[str, Any]]:
        if data_type == "accounts":
            wanted = {strip_act(a) for a in account_ids}
            return [dict(a) for a in self.ads.list_ad_accounts(token) if strip_act(a["id"]) in wanted]

        level = DATA_TYPE_LEVELS[data_type]
        workers = min(self.max_workers, 2 * len(account_ids))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ads-fetch") as pool:
            pending = [
                (
                    pool.submit(self.ads.list_entities, token, with_act(acct), level),
                    pool.submit(self.ads.fetch_insights, token, with_act(acct), level, date_range),
                )
                for acct in account_ids
            ]
            # .result() re-raises; one failing account fails the whole job
            records: List[Dict[str, Any]] = []
            for entities, insights in pending:
                records.extend(merge_by_id(entities.result(), insights.result()))

        if with_account_names and records:
            names = {strip_act(a["id"]): a.get("name", "") for a in self.ads.list_ad_accounts(token)}
            for rec in records:
                rec["accountName"] = names.get(strip_act(rec.get("accountId", "")), "")
        return records

    # Write

    def write_rows(
        self, client: SheetsClient, config: ExportJobConfig, rows: List[List[str]]
    ) -> int:
        """Write rows in append or replace mode; return the 1-based start row."""
        if config.append_mode:
            existing = client.read_column_range(config.spreadsheet_id, config.sheet_name, "A:A")
            next_row = len(existing) + 1
            logger.info(
                "Appending rows after last filled row in column A",
                extra={"config_id": config.id, "start_row": next_row, "rows": len(rows)},
            )
            client.write_range(config.spreadsheet_id, config.sheet_name, f"A{next_row}", rows)
            return next_row

        try:
            client.clear_range(config.spreadsheet_id, config.sheet_name, REPLACE_CLEAR_RANGE)
        except (SheetsAPIError, requests.RequestException) as exc:
            logger.info(
                "Clear failed (sheet may be empty), proceeding with update: %s",
                exc,
                extra={"config_id": config.id},
            )
        client.write_range(config.spreadsheet_id, config.sheet_name, "A1", rows)
        return 1

    # Pipelines

    def run_scheduled(self, config: ExportJobConfig, now: Optional[datetime] = None) -> Optional[ExportResult]:
        """Export yesterday's data for a due config.

        Returns None when there was nothing to export. Raises
        ExportConfigurationError for configs that cannot run; any other
        exception is an upstream failure.
        """
        now = now or datetime.now(timezone.utc)
        creds = self.load_credentials(config)
        client = self.open_sheets(creds)
        account_ids, mapping = self.job_shape(config)

        tz_name = config.ad_account_timezone if config.use_account_timezone else None
        target = yesterday_in(tz_name, now, self.server_tz)
        logger.info(
            "Fetching %s for %s (timezone: %s)",
            config.data_type,
            target.iso_date,
            tz_name or "server",
            extra={"config_id": config.id},
        )
        records = self.fetch_records(
            creds.ads_access_token,
            config.data_type,
            account_ids,
            DateRange(since=target.iso_date, until=target.iso_date),
        )
        if not records:
            logger.info(
                "No data to export for %s", target.iso_date, extra={"config_id": config.id}
            )
            return None

        rows = [
            trim_trailing_empty(
                map_to_row(rec, mapping, config.include_date, target.display_date)
            )
            for rec in records
        ]
        start_row = self.write_rows(client, config, rows)
        return ExportResult(rows=len(rows), start_row=start_row, target_date=target.iso_date)

    def run_manual(
        self,
        config: ExportJobConfig,
        date_range: Optional[DateRange] = None,
        include_header: bool = False,
        now: Optional[datetime] = None,
    ) -> ExportResult:
        """Export on demand for an explicit date range (lifetime data when omitted).

        Rows keep their full width so columns line up with the optional header.
        """
        creds = self.load_credentials(config)
        client = self.open_sheets(creds)
        account_ids, mapping = self.job_shape(config)

        if date_range:
            date_str = display_from_iso(date_range["since"])
        else:
            date_str = server_now(now, self.server_tz).strftime("%d/%m/%Y")

        records = self.fetch_records(
            creds.ads_access_token,
            config.data_type,
            account_ids,
            date_range,
            with_account_names=True,
        )
        rows: List[List[str]] = []
        for rec in records:
            if config.data_type != "accounts" and not has_stats(rec):
                continue
            rows.append(
                map_to_row(
                    rec,
                    mapping,
                    config.include_date,
                    date_str,
                    money_fields=REPORT_MONEY_FIELDS,
                    duration_fields=DURATION_FIELDS,
                )
            )
        if not rows:
            return ExportResult(rows=0, start_row=0, target_date=date_range["since"] if date_range else "")

        if include_header:
            rows.insert(0, build_header_row(mapping, config.include_date))
        start_row = self.write_rows(client, config, rows)
        data_rows = len(rows) - (1 if include_header else 0)
        return ExportResult(
            rows=data_rows,
            start_row=start_row,
            target_date=date_range["since"] if date_range else "",
        )
