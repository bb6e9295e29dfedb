"""Google Sheets export configs: CRUD plus the manual "export now" trigger."""
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from sqlalchemy.orm import Session

from app.core.dependencies import get_export_runner
from app.models.export import ExportConfig
from app.models.user import User
from app.services.ads_data import DATA_TYPES, DateRange
from app.services.auth import require_user
from app.services.column_mapper import parse_column_mapping
from app.services.config_store import STATUS_FAILED, STATUS_SUCCESS, ExportJobConfig, parse_account_ids
from app.services.export_service import ExportConfigurationError, ExportRunner
from app.services.recurrence import DEFAULT_INTERVAL_HOURS
from app.services.sheets import extract_spreadsheet_id
from db import get_db

router = APIRouter(prefix="/api/export/google-sheets")
logger = logging.getLogger(__name__)
audit = logging.getLogger("audit")

_ISO_DATE = r"^\d{4}-\d{2}-\d{2}$"


class ExportConfigIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(min_length=1, max_length=200)
    spreadsheet_url: str = Field(alias="spreadsheetUrl")
    spreadsheet_name: Optional[str] = Field(None, alias="spreadsheetName")
    sheet_name: str = Field(alias="sheetName", min_length=1, max_length=255)
    data_type: str = Field(alias="dataType")
    column_mapping: Dict[str, str] = Field(alias="columnMapping")
    auto_export_enabled: bool = Field(False, alias="autoExportEnabled")
    export_frequency: Optional[Literal["daily", "hourly"]] = Field(None, alias="exportFrequency")
    export_hour: Optional[int] = Field(None, ge=0, le=23, alias="exportHour")
    export_minute: Optional[int] = Field(None, ge=0, le=59, alias="exportMinute")
    export_interval: Optional[int] = Field(None, gt=0, alias="exportInterval")
    append_mode: bool = Field(True, alias="appendMode")
    include_date: bool = Field(True, alias="includeDate")
    account_ids: List[str] = Field(default_factory=list, alias="accountIds")
    ad_account_timezone: Optional[str] = Field(None, alias="adAccountTimezone")
    use_ad_account_timezone: bool = Field(False, alias="useAdAccountTimezone")

    @field_validator("column_mapping", mode="before")
    @classmethod
    def _mapping(cls, v: Any) -> Dict[str, str]:
        return parse_column_mapping(v)

    @field_validator("data_type")
    @classmethod
    def _data_type(cls, v: str) -> str:
        if v not in DATA_TYPES:
            raise ValueError(f"dataType must be one of {', '.join(DATA_TYPES)}")
        return v

    @field_validator("account_ids", mode="before")
    @classmethod
    def _accounts(cls, v: Any) -> List[str]:
        return parse_account_ids(v) if v is not None else []

    @model_validator(mode="after")
    def _schedule(self) -> "ExportConfigIn":
        if self.auto_export_enabled and not self.export_frequency:
            raise ValueError("exportFrequency is required when autoExportEnabled is set")
        if self.export_frequency == "hourly" and self.export_interval is None:
            self.export_interval = DEFAULT_INTERVAL_HOURS
        return self


class DateRangeIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    since: str = Field(alias="from", pattern=_ISO_DATE)
    until: str = Field(alias="to", pattern=_ISO_DATE)


class TriggerIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    config_id: int = Field(alias="configId")
    date_range: Optional[DateRangeIn] = Field(None, alias="dateRange")
    include_header: bool = Field(False, alias="includeHeader")


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc).isoformat().replace("+00:00", "Z")


def serialize_config(row: ExportConfig) -> Dict[str, Any]:
    return {
        "id": row.ConfigID,
        "name": row.Name,
        "spreadsheetUrl": row.SpreadsheetUrl,
        "spreadsheetId": row.SpreadsheetID,
        "spreadsheetName": row.SpreadsheetName,
        "sheetName": row.SheetName,
        "dataType": row.DataType,
        "columnMapping": json.loads(row.ColumnMapping or "{}"),
        "autoExportEnabled": bool(row.AutoExportEnabled),
        "exportFrequency": row.ExportFrequency,
        "exportHour": row.ExportHour,
        "exportMinute": row.ExportMinute,
        "exportInterval": row.ExportInterval,
        "appendMode": bool(row.AppendMode),
        "includeDate": bool(row.IncludeDate),
        "accountIds": parse_account_ids(row.AccountIDs),
        "adAccountTimezone": row.AdAccountTimezone,
        "useAdAccountTimezone": bool(row.UseAdAccountTimezone),
        "lastRunAt": _iso(row.LastRunAt),
        "lastRunStatus": row.LastRunStatus,
        "lastRunRows": row.LastRunRows,
        "lastRunError": row.LastRunError,
    }


def _apply(row: ExportConfig, data: ExportConfigIn, spreadsheet_id: str) -> None:
    row.Name = data.name
    row.SpreadsheetUrl = data.spreadsheet_url
    row.SpreadsheetID = spreadsheet_id
    row.SpreadsheetName = data.spreadsheet_name
    row.SheetName = data.sheet_name
    row.DataType = data.data_type
    row.ColumnMapping = json.dumps(data.column_mapping)
    row.AutoExportEnabled = data.auto_export_enabled
    row.ExportFrequency = data.export_frequency
    row.ExportHour = data.export_hour
    row.ExportMinute = data.export_minute
    row.ExportInterval = data.export_interval
    row.AppendMode = data.append_mode
    row.IncludeDate = data.include_date
    row.AccountIDs = json.dumps(data.account_ids)
    row.AdAccountTimezone = data.ad_account_timezone
    row.UseAdAccountTimezone = data.use_ad_account_timezone


def _spreadsheet_id(url: str) -> str:
    sid = extract_spreadsheet_id(url)
    if not sid:
        raise HTTPException(status_code=400, detail="Invalid Google Sheets URL")
    return sid


def _owned_config(db: Session, config_id: int, user: User) -> ExportConfig:
    row = db.get(ExportConfig, config_id)
    if row is None or row.UserID != user.UserID:
        raise HTTPException(status_code=404, detail="Config not found")
    return row


def _validation_error(exc: ValidationError) -> HTTPException:
    return HTTPException(
        status_code=422,
        detail=[{"loc": e["loc"], "msg": e["msg"]} for e in exc.errors()],
    )


@router.get("")
def list_configs(db: Session = Depends(get_db), user: User = Depends(require_user)):
    rows = (
        db.query(ExportConfig)
        .filter(ExportConfig.UserID == user.UserID)
        .order_by(ExportConfig.CreatedAt.desc(), ExportConfig.ConfigID.desc())
        .all()
    )
    return {"configs": [serialize_config(r) for r in rows]}


@router.post("")
def create_config(
    payload: Dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    user: User = Depends(require_user),
):
    try:
        data = ExportConfigIn.model_validate(payload)
    except ValidationError as exc:
        raise _validation_error(exc)
    row = ExportConfig(UserID=user.UserID)
    _apply(row, data, _spreadsheet_id(data.spreadsheet_url))
    db.add(row)
    db.commit()
    db.refresh(row)
    audit.info("export_config.created", extra={"user_id": user.UserID, "config_id": row.ConfigID})
    return {"success": True, "config": serialize_config(row)}


@router.put("/{config_id}")
def update_config(
    config_id: int,
    payload: Dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    user: User = Depends(require_user),
):
    row = _owned_config(db, config_id, user)
    merged = serialize_config(row)
    merged.update(payload)
    try:
        data = ExportConfigIn.model_validate(merged)
    except ValidationError as exc:
        raise _validation_error(exc)
    _apply(row, data, _spreadsheet_id(data.spreadsheet_url))
    db.commit()
    db.refresh(row)
    return {"success": True, "config": serialize_config(row)}


@router.delete("/{config_id}")
def delete_config(
    config_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_user),
):
    row = _owned_config(db, config_id, user)
    db.delete(row)
    db.commit()
    audit.info("export_config.deleted", extra={"user_id": user.UserID, "config_id": config_id})
    return {"success": True}


@router.post("/trigger")
def trigger_export(
    request: Request,
    body: TriggerIn,
    db: Session = Depends(get_db),
    user: User = Depends(require_user),
    runner: ExportRunner = Depends(get_export_runner),
):
    """Run an export immediately, optionally for an explicit date range."""
    row = db.get(ExportConfig, body.config_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Config not found")
    if row.UserID != user.UserID:
        raise HTTPException(status_code=403, detail="Forbidden")

    date_range = (
        DateRange(since=body.date_range.since, until=body.date_range.until)
        if body.date_range
        else None
    )
    ctx = {
        "config_id": row.ConfigID,
        "user_id": user.UserID,
        "request_id": getattr(request.state, "request_id", None),
    }
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    try:
        result = runner.run_manual(
            ExportJobConfig.from_model(row), date_range, include_header=body.include_header
        )
    except ExportConfigurationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except Exception as exc:  # upstream API failures surface to the caller
        logger.exception("Manual export failed", extra=ctx)
        row.LastRunAt = now
        row.LastRunStatus = STATUS_FAILED
        row.LastRunError = str(exc)
        db.commit()
        raise HTTPException(status_code=502, detail=str(exc))

    if result.rows == 0:
        return {"message": "No data to export", "count": 0}

    row.LastRunAt = now
    row.LastRunStatus = STATUS_SUCCESS
    row.LastRunRows = result.rows
    row.LastRunError = None
    db.commit()
    logger.info("Manual export success", extra={**ctx, "rows": result.rows})
    return {"success": True, "count": result.rows, "startRow": result.start_row}
