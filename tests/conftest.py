import os

# Must be set before db/main are imported so the app binds the in-memory
# engine and does not start the background scheduler.
os.environ.setdefault("TEST_SQLITE", "1")
os.environ.setdefault("EXPORT_SCHEDULER_ENABLED", "false")
os.environ.setdefault("LOG_FILE", "")

import json  # noqa: E402
from typing import Any, Dict, List, Optional  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

import app.models  # noqa: E402,F401
from app.models.export import ExportConfig  # noqa: E402
from app.models.user import Base, LinkedAccount, User  # noqa: E402
from app.services.auth import create_session  # noqa: E402
from app.services.sheets import OAuthTokens  # noqa: E402
from db import engine  # noqa: E402


@pytest.fixture
def session_factory():
    """Fresh schema per test on the shared in-memory engine."""
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    try:
        yield factory
    finally:
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    import db as dbmod

    # expose to db.get_db so TestClient requests share this session
    dbmod._TEST_SESSION = session
    try:
        yield session
    finally:
        dbmod._TEST_SESSION = None
        session.close()


@pytest.fixture
def user(db_session):
    u = User(
        FirstName="Test",
        LastName="User",
        Email="testuser@example.com",
        FacebookAdToken="fb-token",
    )
    db_session.add(u)
    db_session.flush()
    db_session.add(
        LinkedAccount(
            UserID=u.UserID,
            Provider="google",
            ProviderAccountID="g-1",
            AccessToken="old-access",
            RefreshToken="refresh-1",
        )
    )
    db_session.commit()
    return u


def make_config(db_session, user_id: int, **overrides: Any) -> ExportConfig:
    values: Dict[str, Any] = dict(
        UserID=user_id,
        Name="Daily campaigns",
        DataType="campaigns",
        SpreadsheetUrl="https://docs.google.com/spreadsheets/d/sheet123abc/edit",
        SpreadsheetID="sheet123abc",
        SheetName="Sheet1",
        ColumnMapping=json.dumps({"name": "B", "spend": "C"}),
        IncludeDate=True,
        AppendMode=True,
        AccountIDs=json.dumps(["123"]),
        AutoExportEnabled=True,
        ExportFrequency="daily",
        ExportHour=9,
        ExportMinute=0,
        UseAdAccountTimezone=False,
    )
    values.update(overrides)
    row = ExportConfig(**values)
    db_session.add(row)
    db_session.commit()
    return row


@pytest.fixture
def client(db_session):
    # Import the app here so the environment above is applied first
    from main import app

    c = TestClient(app)
    yield c
    app.state.export_runner = None


@pytest.fixture
def auth_client(client, db_session, user):
    s = create_session(db_session, user.UserID, expires_in_minutes=60)
    client.cookies.set("session_id", s.SessionID)
    return client


class FakeAds:
    """In-memory AdsDataProvider recording every call."""

    def __init__(self, entities=None, insights=None, accounts=None, fail_entities=None):
        self.entities = entities or {}
        self.insights = insights or {}
        self.accounts = accounts or []
        self.fail_entities = fail_entities
        self.calls: List[tuple] = []

    def list_ad_accounts(self, token):
        self.calls.append(("accounts", token))
        return list(self.accounts)

    def list_entities(self, token, account_id, level):
        self.calls.append(("entities", token, account_id, level))
        if self.fail_entities is not None:
            raise self.fail_entities
        return list(self.entities.get(account_id, []))

    def fetch_insights(self, token, account_id, level, date_range):
        self.calls.append(("insights", token, account_id, level, date_range))
        return list(self.insights.get(account_id, []))


class FakeSheetsClient:
    def __init__(self, existing_rows: int = 0, fail_clear: Optional[Exception] = None):
        self.existing_rows = existing_rows
        self.fail_clear = fail_clear
        self.reads: List[tuple] = []
        self.writes: List[tuple] = []
        self.clears: List[tuple] = []

    def read_column_range(self, spreadsheet_id, sheet_name, rng):
        self.reads.append((spreadsheet_id, sheet_name, rng))
        return [["x"]] * self.existing_rows

    def write_range(self, spreadsheet_id, sheet_name, start_cell, rows):
        self.writes.append((spreadsheet_id, sheet_name, start_cell, [list(r) for r in rows]))

    def clear_range(self, spreadsheet_id, sheet_name, rng):
        self.clears.append((spreadsheet_id, sheet_name, rng))
        if self.fail_clear is not None:
            raise self.fail_clear


class FakeSheets:
    def __init__(self, client: Optional[FakeSheetsClient] = None):
        self.client = client or FakeSheetsClient()
        self.refreshed: List[str] = []

    def refresh_access_token(self, refresh_token):
        self.refreshed.append(refresh_token)
        return OAuthTokens(access_token="new-access", expires_at=2_000_000_000)

    def authorize(self, access_token):
        return self.client
