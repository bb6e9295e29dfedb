import json

import pytest

from app.models.export import ExportConfig
from app.models.user import User
from app.services.ads_data import AdsDataError
from app.services.config_store import SqlConfigStore
from app.services.export_service import ExportRunner
from conftest import FakeAds, FakeSheets, make_config

BASE = "/api/export/google-sheets"


def payload(**overrides):
    body = {
        "name": "Weekly report",
        "spreadsheetUrl": "https://docs.google.com/spreadsheets/d/1AbC-dEf_ghIJklMNopQRstuVWxyz/edit",
        "sheetName": "Data",
        "dataType": "campaigns",
        "columnMapping": {"name": "B", "spend": "c", "id": "skip"},
        "accountIds": ["123"],
        "autoExportEnabled": True,
        "exportFrequency": "daily",
        "exportHour": 9,
        "exportMinute": 30,
    }
    body.update(overrides)
    return body


@pytest.fixture
def install_runner(session_factory):
    from main import app

    def install(ads, sheets=None):
        sheets = sheets or FakeSheets()
        app.state.export_runner = ExportRunner(SqlConfigStore(session_factory), ads, sheets)
        return sheets

    return install


def test_requires_login(client):
    assert client.get(BASE).status_code == 401
    assert client.post(BASE, json=payload()).status_code == 401


def test_create_and_list(auth_client, db_session, user):
    r = auth_client.post(BASE, json=payload())
    assert r.status_code == 200, r.text
    config = r.json()["config"]
    assert config["spreadsheetId"] == "1AbC-dEf_ghIJklMNopQRstuVWxyz"
    assert config["columnMapping"] == {"name": "B", "spend": "C", "id": "skip"}
    assert config["accountIds"] == ["123"]
    assert config["lastRunAt"] is None

    row = db_session.get(ExportConfig, config["id"])
    assert row.UserID == user.UserID
    assert json.loads(row.AccountIDs) == ["123"]

    listed = auth_client.get(BASE).json()["configs"]
    assert [c["id"] for c in listed] == [config["id"]]


def test_create_rejects_bad_spreadsheet_url(auth_client):
    r = auth_client.post(BASE, json=payload(spreadsheetUrl="https://example.com/sheet"))
    assert r.status_code == 400


@pytest.mark.parametrize(
    "overrides",
    [
        {"columnMapping": {"id": "skip"}},
        {"columnMapping": {"name": "B2"}},
        {"exportHour": 24},
        {"exportMinute": 60},
        {"exportFrequency": "hourly", "exportInterval": 0},
        {"dataType": "creatives"},
        {"autoExportEnabled": True, "exportFrequency": None},
        {"name": ""},
    ],
)
def test_create_validation(auth_client, overrides):
    r = auth_client.post(BASE, json=payload(**overrides))
    assert r.status_code == 422, r.text


def test_hourly_interval_defaults(auth_client):
    r = auth_client.post(BASE, json=payload(exportFrequency="hourly"))
    assert r.status_code == 200
    assert r.json()["config"]["exportInterval"] == 6


def test_partial_update(auth_client, db_session, user):
    cfg = make_config(db_session, user.UserID)
    r = auth_client.put(f"{BASE}/{cfg.ConfigID}", json={"exportHour": 17, "appendMode": False})
    assert r.status_code == 200, r.text
    body = r.json()["config"]
    assert body["exportHour"] == 17
    assert body["appendMode"] is False
    assert body["name"] == "Daily campaigns"


def test_update_validates_merged_config(auth_client, db_session, user):
    cfg = make_config(db_session, user.UserID)
    r = auth_client.put(f"{BASE}/{cfg.ConfigID}", json={"exportMinute": 75})
    assert r.status_code == 422


def test_other_users_configs_are_hidden(auth_client, db_session):
    other = User(FirstName="O", LastName="U", Email="other@example.com")
    db_session.add(other)
    db_session.commit()
    cfg = make_config(db_session, other.UserID)

    assert auth_client.get(BASE).json()["configs"] == []
    assert auth_client.put(f"{BASE}/{cfg.ConfigID}", json={"exportHour": 1}).status_code == 404
    assert auth_client.delete(f"{BASE}/{cfg.ConfigID}").status_code == 404
    r = auth_client.post(f"{BASE}/trigger", json={"configId": cfg.ConfigID})
    assert r.status_code == 403


def test_delete(auth_client, db_session, user):
    cfg = make_config(db_session, user.UserID)
    assert auth_client.delete(f"{BASE}/{cfg.ConfigID}").status_code == 200
    assert auth_client.get(BASE).json()["configs"] == []


def test_trigger_success_records_run(auth_client, db_session, user, install_runner):
    cfg = make_config(db_session, user.UserID)
    sheets = install_runner(
        FakeAds(
            accounts=[{"id": "123", "name": "Main"}],
            entities={"act_123": [{"id": "c1", "accountId": "123", "name": "Spring"}]},
            insights={"act_123": [{"id": "c1", "spend": "2", "clicks": "4"}]},
        )
    )

    r = auth_client.post(
        f"{BASE}/trigger",
        json={
            "configId": cfg.ConfigID,
            "dateRange": {"from": "2024-03-01", "to": "2024-03-31"},
            "includeHeader": True,
        },
    )

    assert r.status_code == 200, r.text
    assert r.json()["count"] == 1
    rows = sheets.client.writes[0][3]
    assert rows[0][:3] == ["date", "name", "spend"]
    assert rows[1][:3] == ["01/03/2024", "Spring", "2.00"]
    db_session.expire_all()
    row = db_session.get(ExportConfig, cfg.ConfigID)
    assert row.LastRunStatus == "success"
    assert row.LastRunRows == 1


def test_trigger_with_no_data(auth_client, db_session, user, install_runner):
    cfg = make_config(db_session, user.UserID)
    sheets = install_runner(FakeAds())
    r = auth_client.post(f"{BASE}/trigger", json={"configId": cfg.ConfigID})
    assert r.status_code == 200
    assert r.json() == {"message": "No data to export", "count": 0}
    assert sheets.client.writes == []


def test_trigger_upstream_failure(auth_client, db_session, user, install_runner):
    cfg = make_config(db_session, user.UserID)
    install_runner(FakeAds(fail_entities=AdsDataError("token expired")))

    r = auth_client.post(f"{BASE}/trigger", json={"configId": cfg.ConfigID})

    assert r.status_code == 502
    db_session.expire_all()
    row = db_session.get(ExportConfig, cfg.ConfigID)
    assert row.LastRunStatus == "failed"
    assert "token expired" in row.LastRunError


def test_trigger_configuration_error(auth_client, db_session, user, install_runner):
    cfg = make_config(db_session, user.UserID, AccountIDs="[]")
    install_runner(FakeAds())
    r = auth_client.post(f"{BASE}/trigger", json={"configId": cfg.ConfigID})
    assert r.status_code == 400
    assert "No accounts" in r.json()["detail"]


def test_trigger_unknown_config(auth_client, install_runner):
    install_runner(FakeAds())
    assert auth_client.post(f"{BASE}/trigger", json={"configId": 999}).status_code == 404


def test_trigger_rejects_malformed_dates(auth_client, db_session, user, install_runner):
    cfg = make_config(db_session, user.UserID)
    install_runner(FakeAds())
    r = auth_client.post(
        f"{BASE}/trigger",
        json={"configId": cfg.ConfigID, "dateRange": {"from": "03/01/2024", "to": "2024-03-31"}},
    )
    assert r.status_code == 422
