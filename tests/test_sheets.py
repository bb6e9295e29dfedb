from datetime import datetime

import pytest
from gspread.exceptions import WorksheetNotFound
from gspread.http_client import BackOffHTTPClient

from app.services import sheets as sheets_mod
from app.services.sheets import (
    GoogleSheetsClient,
    GoogleSheetsSink,
    SheetsAPIError,
    extract_spreadsheet_id,
)


class FakeWorksheet:
    def __init__(self, values=None):
        self.values = values or []
        self.updates = []
        self.clears = []

    def get_values(self, rng):
        return self.values

    def update(self, values=None, range_name=None, **kwargs):
        self.updates.append((range_name, values, kwargs))

    def batch_clear(self, ranges):
        self.clears.append(ranges)


class FakeSpreadsheet:
    def __init__(self, worksheets):
        self.worksheets = worksheets

    def worksheet(self, title):
        if title not in self.worksheets:
            raise WorksheetNotFound(title)
        return self.worksheets[title]


class FakeGspreadClient:
    def __init__(self, spreadsheets):
        self.spreadsheets = spreadsheets
        self.opened = []

    def open_by_key(self, key):
        self.opened.append(key)
        return self.spreadsheets[key]


def client_with(ws, title="Data", key="sid"):
    return GoogleSheetsClient(FakeGspreadClient({key: FakeSpreadsheet({title: ws})}))


def test_extract_spreadsheet_id():
    url = "https://docs.google.com/spreadsheets/d/1AbC-dEf_ghIJklMNopQRstuVWxyz/edit#gid=0"
    assert extract_spreadsheet_id(url) == "1AbC-dEf_ghIJklMNopQRstuVWxyz"
    assert extract_spreadsheet_id("1AbC-dEf_ghIJklMNopQRstuVWxyz") == "1AbC-dEf_ghIJklMNopQRstuVWxyz"
    assert extract_spreadsheet_id("https://example.com/nope") is None
    assert extract_spreadsheet_id("") is None


def test_write_uses_user_entered_values():
    ws = FakeWorksheet()
    client_with(ws).write_range("sid", "Data", "A5", [("a", "b")])
    assert ws.updates == [("A5", [["a", "b"]], {"value_input_option": "USER_ENTERED"})]


def test_read_returns_column_values():
    ws = FakeWorksheet([["x"], ["y"]])
    assert client_with(ws).read_column_range("sid", "Data", "A:A") == [["x"], ["y"]]


def test_clear_targets_the_worksheet_range():
    ws = FakeWorksheet()
    client_with(ws).clear_range("sid", "Data", "A:Z")
    assert ws.clears == [["A:Z"]]


def test_missing_worksheet_raises_sheets_error():
    client = client_with(FakeWorksheet(), title="Other")
    with pytest.raises(SheetsAPIError) as exc:
        client.write_range("sid", "Data", "A1", [["a"]])
    assert exc.value.status == 404


class FakeCredentials:
    instances = []

    def __init__(self, token=None, refresh_token=None, **kwargs):
        self.token = token
        self.refresh_token = refresh_token
        self.kwargs = kwargs
        self.expiry = None
        FakeCredentials.instances.append(self)

    def refresh(self, request):
        self.token = "fresh"
        self.expiry = datetime(2024, 1, 1, 1, 0, 0)


@pytest.fixture
def fake_credentials(monkeypatch):
    FakeCredentials.instances = []
    monkeypatch.setattr(sheets_mod, "Credentials", FakeCredentials)
    return FakeCredentials


def test_refresh_access_token(fake_credentials):
    sink = GoogleSheetsSink("cid", "secret", token_url="https://oauth.test/token")

    tokens = sink.refresh_access_token("r1")

    assert tokens.access_token == "fresh"
    assert tokens.refresh_token is None
    assert tokens.expires_at == 1704070800
    creds = fake_credentials.instances[0]
    assert creds.refresh_token == "r1"
    assert creds.kwargs["client_id"] == "cid"
    assert creds.kwargs["token_uri"] == "https://oauth.test/token"


def test_refresh_reports_rotated_refresh_token(fake_credentials, monkeypatch):
    def rotate(self, request):
        self.token = "fresh"
        self.refresh_token = "r2"

    monkeypatch.setattr(FakeCredentials, "refresh", rotate)
    tokens = GoogleSheetsSink("cid", "secret").refresh_access_token("r1")
    assert tokens.refresh_token == "r2"
    assert tokens.expires_at is None


def test_refresh_rejects_response_without_token(fake_credentials, monkeypatch):
    monkeypatch.setattr(FakeCredentials, "refresh", lambda self, request: None)
    with pytest.raises(SheetsAPIError):
        GoogleSheetsSink("cid", "secret").refresh_access_token("r1")


def test_authorize_uses_backoff_client(fake_credentials, monkeypatch):
    captured = {}

    class FakeHTTP:
        def set_timeout(self, timeout):
            captured["timeout"] = timeout

    class FakeGC:
        http_client = FakeHTTP()

    def fake_authorize(creds, http_client=None):
        captured["token"] = creds.token
        captured["http_client"] = http_client
        return FakeGC()

    monkeypatch.setattr(sheets_mod.gspread, "authorize", fake_authorize)

    client = GoogleSheetsSink("cid", "secret", timeout=12).authorize("access")

    assert isinstance(client, GoogleSheetsClient)
    assert captured == {"token": "access", "http_client": BackOffHTTPClient, "timeout": 12}
