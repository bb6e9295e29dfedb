from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from app.services.config_store import ExportJobConfig, UserCredentials
from app.services.export_service import ExportConfigurationError, ExportRunner, has_stats
from conftest import FakeAds, FakeSheets, FakeSheetsClient

UTC = ZoneInfo("UTC")


class StaticStore:
    def __init__(self, creds):
        self.creds = creds
        self.saved_tokens = []

    def get_user_credentials(self, user_id):
        return self.creds

    def update_stored_oauth_token(self, account_id, tokens):
        self.saved_tokens.append((account_id, tokens.access_token))


def job(**overrides):
    values = dict(
        id=1,
        user_id=1,
        name="Report",
        data_type="campaigns",
        spreadsheet_id="sheet123abc",
        spreadsheet_name=None,
        sheet_name="Report",
        column_mapping={"name": "B", "spend": "C", "accountName": "D", "videoAvgTimeWatched": "E"},
        include_date=True,
        append_mode=False,
        account_ids=["123", "act_456"],
        enabled=False,
        export_frequency=None,
        export_hour=None,
        export_minute=None,
        export_interval=None,
        use_account_timezone=False,
        ad_account_timezone=None,
    )
    values.update(overrides)
    return ExportJobConfig(**values)


def runner(ads, sheets, creds=None):
    store = StaticStore(creds or UserCredentials(5, "refresh", "token"))
    return ExportRunner(store, ads, sheets, server_tz=UTC), store


def two_account_ads():
    return FakeAds(
        accounts=[{"id": "123", "name": "Main"}, {"id": "456", "name": "Second"}],
        entities={
            "act_123": [{"id": "c1", "accountId": "123", "name": "Live"}, {"id": "c2", "accountId": "123", "name": "Idle"}],
            "act_456": [{"id": "c3", "accountId": "456", "name": "Other"}],
        },
        insights={
            "act_123": [{"id": "c1", "spend": "4.5", "videoAvgTimeWatched": "65"}],
            "act_456": [{"id": "c3", "spend": "0", "impressions": "10"}],
        },
    )


def test_manual_export_filters_idle_rows_and_adds_header():
    ads = two_account_ads()
    sheets = FakeSheets()
    r, store = runner(ads, sheets)

    result = r.run_manual(job(), {"since": "2024-03-01", "until": "2024-03-07"}, include_header=True)

    assert result.rows == 2
    assert result.start_row == 1
    assert store.saved_tokens == [(5, "new-access")]
    _, _, start, rows = sheets.client.writes[0]
    assert start == "A1"
    assert rows[0][:5] == ["date", "name", "spend", "accountName", "videoAvgTimeWatched"]
    assert rows[1][:5] == ["01/03/2024", "Live", "4.50", "Main", "01.05"]
    assert rows[2][:5] == ["01/03/2024", "Other", "0.00", "Second", "-"]
    # rows stay full width to line up with the header
    assert all(len(row) == 26 for row in rows)
    insight_calls = [c for c in ads.calls if c[0] == "insights"]
    assert {c[2] for c in insight_calls} == {"act_123", "act_456"}
    assert all(c[4] == {"since": "2024-03-01", "until": "2024-03-07"} for c in insight_calls)


def test_manual_export_without_range_uses_lifetime_and_today():
    ads = two_account_ads()
    sheets = FakeSheets()
    r, _ = runner(ads, sheets)
    now = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)

    r.run_manual(job(), None, now=now)

    assert all(c[4] is None for c in ads.calls if c[0] == "insights")
    assert sheets.client.writes[0][3][0][0] == "15/03/2024"


def test_manual_export_with_nothing_to_write():
    sheets = FakeSheets()
    r, _ = runner(FakeAds(), sheets)
    result = r.run_manual(job(), None)
    assert result.rows == 0
    assert sheets.client.writes == []


def test_append_mode_starts_after_last_filled_row():
    sheets = FakeSheets(FakeSheetsClient(existing_rows=10))
    r, _ = runner(two_account_ads(), sheets)
    result = r.run_manual(job(append_mode=True), None)
    assert result.start_row == 11
    assert sheets.client.writes[0][2] == "A11"


@pytest.mark.parametrize(
    "creds",
    [UserCredentials(None, None, "token"), UserCredentials(5, "refresh", None)],
)
def test_missing_credentials_are_configuration_errors(creds):
    r, _ = runner(FakeAds(), FakeSheets(), creds)
    with pytest.raises(ExportConfigurationError):
        r.run_scheduled(job())


@pytest.mark.parametrize(
    "overrides",
    [
        {"account_ids": []},
        {"account_ids": "garbage"},
        {"column_mapping": {"id": "skip"}},
        {"data_type": "creatives"},
    ],
)
def test_bad_shape_is_a_configuration_error(overrides):
    with pytest.raises(ExportConfigurationError):
        ExportRunner.job_shape(job(**overrides))


def test_has_stats():
    assert not has_stats({"spend": "0.00", "impressions": 0})
    assert has_stats({"clicks": "3"})
    assert not has_stats({"name": "only a name"})
