"""Database access for the export scheduler.

Every call opens its own session so the scheduler thread never holds ORM
objects between ticks; configs are handed out as frozen snapshots.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Protocol

from sqlalchemy.orm import Session

from app.models.export import ExportConfig
from app.models.user import LinkedAccount, User
from app.services.sheets import OAuthTokens

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"


@dataclass(frozen=True)
class ExportJobConfig:
    id: int
    user_id: int
    name: str
    data_type: str
    spreadsheet_id: str
    spreadsheet_name: Optional[str]
    sheet_name: str
    column_mapping: Any  # JSON text or dict; parsed by the column mapper
    include_date: bool
    append_mode: bool
    account_ids: Any  # JSON text or list; see parse_account_ids
    enabled: bool
    export_frequency: Optional[str]
    export_hour: Optional[int]
    export_minute: Optional[int]
    export_interval: Optional[int]
    use_account_timezone: bool
    ad_account_timezone: Optional[str]
    last_run_at: Optional[datetime] = None
    last_run_status: Optional[str] = None
    last_run_rows: Optional[int] = None
    last_run_error: Optional[str] = None

    @classmethod
    def from_model(cls, row: ExportConfig) -> "ExportJobConfig":
        return cls(
            id=row.ConfigID,
            user_id=row.UserID,
            name=row.Name,
            data_type=row.DataType,
            spreadsheet_id=row.SpreadsheetID,
            spreadsheet_name=row.SpreadsheetName,
            sheet_name=row.SheetName,
            column_mapping=row.ColumnMapping,
            include_date=bool(row.IncludeDate),
            append_mode=bool(row.AppendMode),
            account_ids=row.AccountIDs,
            enabled=bool(row.AutoExportEnabled),
            export_frequency=row.ExportFrequency,
            export_hour=row.ExportHour,
            export_minute=row.ExportMinute,
            export_interval=row.ExportInterval,
            use_account_timezone=bool(row.UseAdAccountTimezone),
            ad_account_timezone=row.AdAccountTimezone,
            last_run_at=row.LastRunAt,
            last_run_status=row.LastRunStatus,
            last_run_rows=row.LastRunRows,
            last_run_error=row.LastRunError,
        )


@dataclass(frozen=True)
class RunState:
    last_run_at: datetime
    status: str
    rows: Optional[int] = None
    error: Optional[str] = None

    @classmethod
    def success(cls, at: datetime, rows: int) -> "RunState":
        return cls(last_run_at=at, status=STATUS_SUCCESS, rows=rows)

    @classmethod
    def failed(cls, at: datetime, error: str) -> "RunState":
        return cls(last_run_at=at, status=STATUS_FAILED, error=error)


@dataclass(frozen=True)
class UserCredentials:
    google_account_id: Optional[int]
    spreadsheet_refresh_token: Optional[str]
    ads_access_token: Optional[str]


class ConfigStore(Protocol):
    def list_enabled_export_configs(self) -> List[ExportJobConfig]: ...

    def get_export_config(self, config_id: int) -> Optional[ExportJobConfig]: ...

    def update_config_run_state(self, config_id: int, state: RunState) -> None: ...

    def update_stored_oauth_token(self, account_id: int, tokens: OAuthTokens) -> None: ...

    def get_user_credentials(self, user_id: int) -> UserCredentials: ...


def parse_account_ids(raw: Any) -> List[str]:
    """Accept a list or JSON text; anything unparsable yields an empty scope."""
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            logger.error("Error parsing accountIds: %r", raw[:200])
            return []
    if not isinstance(raw, list):
        return []
    return [str(x).strip() for x in raw if str(x).strip()]


def _naive_utc(value: datetime) -> datetime:
    # Store naive UTC for DB columns that are naive
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.replace(tzinfo=None)


class SqlConfigStore:
    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def list_enabled_export_configs(self) -> List[ExportJobConfig]:
        with self.session_factory() as db:
            rows = (
                db.query(ExportConfig)
                .filter(ExportConfig.AutoExportEnabled.is_(True))
                .order_by(ExportConfig.ConfigID)
                .all()
            )
            return [ExportJobConfig.from_model(r) for r in rows]

    def get_export_config(self, config_id: int) -> Optional[ExportJobConfig]:
        with self.session_factory() as db:
            row = db.get(ExportConfig, config_id)
            return ExportJobConfig.from_model(row) if row is not None else None

    def update_config_run_state(self, config_id: int, state: RunState) -> None:
        with self.session_factory() as db:
            row = db.get(ExportConfig, config_id)
            if row is None:
                logger.warning("Export config vanished before run state update", extra={"config_id": config_id})
                return
            row.LastRunAt = _naive_utc(state.last_run_at)
            row.LastRunStatus = state.status
            row.LastRunError = state.error
            if state.rows is not None:
                row.LastRunRows = state.rows
            db.commit()

    def update_stored_oauth_token(self, account_id: int, tokens: OAuthTokens) -> None:
        with self.session_factory() as db:
            acct = db.get(LinkedAccount, account_id)
            if acct is None:
                return
            acct.AccessToken = tokens.access_token
            if tokens.refresh_token:
                acct.RefreshToken = tokens.refresh_token
            if tokens.expires_at is not None:
                acct.ExpiresAt = tokens.expires_at
            db.commit()

    def get_user_credentials(self, user_id: int) -> UserCredentials:
        with self.session_factory() as db:
            user = db.get(User, user_id)
            accounts = (
                db.query(LinkedAccount)
                .filter(
                    LinkedAccount.UserID == user_id,
                    LinkedAccount.Provider.in_(("google", "facebook")),
                )
                .all()
            )
            google = next((a for a in accounts if a.Provider == "google"), None)
            facebook = next((a for a in accounts if a.Provider == "facebook"), None)
            ads_token = (user.FacebookAdToken if user is not None else None) or (
                facebook.AccessToken if facebook is not None else None
            )
            return UserCredentials(
                google_account_id=google.AccountID if google is not None else None,
                spreadsheet_refresh_token=google.RefreshToken if google is not None else None,
                ads_access_token=ads_token,
            )
