"""Read-only access to Meta Marketing API data used by the exports.

Records are plain dicts with fixed keys per level; the keys are the field
names users map to spreadsheet columns.
"""
from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import (
    Any,
    Dict,
    List,
    Literal,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    TypedDict,
    TypeVar,
    Union,
)

from facebook_business.adobjects.adaccount import AdAccount
from facebook_business.adobjects.user import User as FacebookUser
from facebook_business.api import FacebookAdsApi
from facebook_business.exceptions import FacebookError
from facebook_business.session import FacebookSession

logger = logging.getLogger(__name__)

Level = Literal["campaign", "adset", "ad"]

# ExportConfig.DataType -> insights level
DATA_TYPE_LEVELS: Dict[str, Level] = {
    "campaigns": "campaign",
    "adsets": "adset",
    "ads": "ad",
}
DATA_TYPES = ("accounts",) + tuple(DATA_TYPE_LEVELS)

PAGE_LIMIT = 500

MESSAGING_STARTED = "onsite_conversion.messaging_conversation_started_7d"

INSIGHT_FIELDS = [
    "spend",
    "impressions",
    "clicks",
    "cpc",
    "ctr",
    "reach",
    "frequency",
    "actions",
    "cost_per_action_type",
    "video_avg_time_watched_actions",
    "video_play_actions",
    "video_p25_watched_actions",
    "video_p50_watched_actions",
    "video_p75_watched_actions",
    "video_p95_watched_actions",
    "video_p100_watched_actions",
]


class AdsDataError(Exception):
    """Marketing API call failed."""


class DateRange(TypedDict):
    since: str  # YYYY-MM-DD
    until: str


class AdAccountRecord(TypedDict, total=False):
    id: str
    name: str
    status: str
    currency: str
    timezone: str
    timezoneName: str
    country: str
    spendCap: Optional[str]
    amountSpent: Optional[str]


class CampaignRecord(TypedDict, total=False):
    id: str
    accountId: str
    name: str
    status: str
    effectiveStatus: str
    objective: str
    dailyBudget: Optional[str]
    lifetimeBudget: Optional[str]
    budget: Optional[str]


class AdSetRecord(TypedDict, total=False):
    id: str
    accountId: str
    campaignId: str
    name: str
    status: str
    effectiveStatus: str
    dailyBudget: Optional[str]
    lifetimeBudget: Optional[str]
    budget: Optional[str]


class AdRecord(TypedDict, total=False):
    id: str
    accountId: str
    campaignId: str
    adsetId: str
    name: str
    status: str
    effectiveStatus: str


EntityRecord = Union[CampaignRecord, AdSetRecord, AdRecord]


class InsightRecord(TypedDict, total=False):
    id: str
    spend: Optional[str]
    impressions: Optional[str]
    clicks: Optional[str]
    cpc: Optional[str]
    ctr: Optional[str]
    reach: Optional[str]
    frequency: Optional[str]
    postEngagements: Union[int, float]
    newMessagingContacts: Union[int, float]
    costPerNewMessagingContact: Union[int, float]
    videoAvgTimeWatched: Optional[str]
    videoPlays: Optional[str]
    video3SecWatched: Union[int, float]
    videoP25Watched: Optional[str]
    videoP50Watched: Optional[str]
    videoP75Watched: Optional[str]
    videoP95Watched: Optional[str]
    videoP100Watched: Optional[str]


class AdsDataProvider(Protocol):
    def list_ad_accounts(self, token: str) -> List[AdAccountRecord]: ...

    def list_entities(self, token: str, account_id: str, level: Level) -> List[EntityRecord]: ...

    def fetch_insights(
        self, token: str, account_id: str, level: Level, date_range: Optional[DateRange]
    ) -> List[InsightRecord]: ...


E = TypeVar("E", bound=Mapping[str, Any])
I = TypeVar("I", bound=Mapping[str, Any])  # noqa: E741


def merge_by_id(entities: Sequence[E], insights: Sequence[I]) -> List[Dict[str, Any]]:
    """Left-join insights onto entities by ``id``.

    Entities without insights keep their base fields; insights without a
    matching entity are dropped.
    """
    by_id = {i.get("id"): i for i in insights}
    return [{**entity, **by_id.get(entity.get("id"), {})} for entity in entities]


def strip_act(account_id: str) -> str:
    account_id = str(account_id).strip()
    return account_id[4:] if account_id.startswith("act_") else account_id


def with_act(account_id: str) -> str:
    return f"act_{strip_act(account_id)}"


def _minor_units(value: Any) -> Optional[str]:
    # Budgets come back in the account currency's minor units (cents)
    if value in (None, ""):
        return None
    try:
        return str((Decimal(str(value)) / 100).quantize(Decimal("0.01")))
    except InvalidOperation:
        return None


def _first_value(items: Any) -> Optional[str]:
    if not items:
        return None
    return items[0].get("value")


def _action_value(items: Any, action_type: str) -> Union[int, float]:
    # Counts stay whole numbers ("4" -> 4); costs keep their fraction
    for item in items or []:
        if item.get("action_type") == action_type:
            try:
                value = float(item.get("value"))
            except (TypeError, ValueError):
                return 0
            return int(value) if value.is_integer() else value
    return 0


class FacebookAdsProvider:
    """AdsDataProvider backed by the facebook_business SDK.

    A fresh FacebookAdsApi is bound per token so concurrent jobs for
    different users never share the SDK's default session.
    """

    def __init__(self, api_version: Optional[str] = None, app_id: str = "", app_secret: str = ""):
        self.api_version = api_version
        self.app_id = app_id
        self.app_secret = app_secret

    def _api(self, token: str) -> FacebookAdsApi:
        session = FacebookSession(
            app_id=self.app_id or None,
            app_secret=self.app_secret or None,
            access_token=token,
        )
        return FacebookAdsApi(session, api_version=self.api_version)

    def list_ad_accounts(self, token: str) -> List[AdAccountRecord]:
        try:
            cursor = FacebookUser(fbid="me", api=self._api(token)).get_ad_accounts(
                fields=[
                    "account_id",
                    "name",
                    "account_status",
                    "currency",
                    "timezone_name",
                    "timezone_offset_hours_utc",
                    "business_country_code",
                    "spend_cap",
                    "amount_spent",
                ],
                params={"limit": PAGE_LIMIT},
            )
            accounts = []
            for acc in cursor:
                offset = acc.get("timezone_offset_hours_utc") or 0
                tz_name = acc.get("timezone_name") or "Unknown"
                accounts.append(
                    AdAccountRecord(
                        id=str(acc.get("account_id")),
                        name=acc.get("name") or "",
                        status="ACTIVE" if acc.get("account_status") == 1 else "INACTIVE",
                        currency=acc.get("currency") or "",
                        timezone=f"{tz_name} | {'+' if offset >= 0 else ''}{offset}",
                        timezoneName=tz_name,
                        country=acc.get("business_country_code") or "Unknown",
                        spendCap=acc.get("spend_cap"),
                        amountSpent=acc.get("amount_spent"),
                    )
                )
            return accounts
        except FacebookError as exc:
            raise AdsDataError(f"Failed to list ad accounts: {exc}") from exc

    def list_entities(self, token: str, account_id: str, level: Level) -> List[EntityRecord]:
        account = AdAccount(with_act(account_id), api=self._api(token))
        acct = strip_act(account_id)
        params = {"limit": PAGE_LIMIT}
        try:
            if level == "campaign":
                return [
                    CampaignRecord(
                        id=c.get("id"),
                        accountId=acct,
                        name=c.get("name") or "",
                        status=c.get("status") or "",
                        effectiveStatus=c.get("effective_status") or "",
                        objective=c.get("objective") or "",
                        dailyBudget=c.get("daily_budget"),
                        lifetimeBudget=c.get("lifetime_budget"),
                        budget=_minor_units(c.get("daily_budget") or c.get("lifetime_budget")),
                    )
                    for c in account.get_campaigns(
                        fields=[
                            "id",
                            "name",
                            "status",
                            "effective_status",
                            "objective",
                            "daily_budget",
                            "lifetime_budget",
                        ],
                        params=params,
                    )
                ]
            if level == "adset":
                return [
                    AdSetRecord(
                        id=s.get("id"),
                        accountId=acct,
                        campaignId=s.get("campaign_id") or "",
                        name=s.get("name") or "",
                        status=s.get("status") or "",
                        effectiveStatus=s.get("effective_status") or "",
                        dailyBudget=s.get("daily_budget"),
                        lifetimeBudget=s.get("lifetime_budget"),
                        budget=_minor_units(s.get("daily_budget") or s.get("lifetime_budget")),
                    )
                    for s in account.get_ad_sets(
                        fields=[
                            "id",
                            "name",
                            "status",
                            "effective_status",
                            "campaign_id",
                            "daily_budget",
                            "lifetime_budget",
                        ],
                        params=params,
                    )
                ]
            if level == "ad":
                return [
                    AdRecord(
                        id=a.get("id"),
                        accountId=acct,
                        campaignId=a.get("campaign_id") or "",
                        adsetId=a.get("adset_id") or "",
                        name=a.get("name") or "",
                        status=a.get("status") or "",
                        effectiveStatus=a.get("effective_status") or "",
                    )
                    for a in account.get_ads(
                        fields=["id", "name", "status", "effective_status", "adset_id", "campaign_id"],
                        params=params,
                    )
                ]
        except FacebookError as exc:
            raise AdsDataError(f"Failed to list {level}s for {with_act(account_id)}: {exc}") from exc
        raise ValueError(f"Unknown level: {level}")

    def fetch_insights(
        self, token: str, account_id: str, level: Level, date_range: Optional[DateRange]
    ) -> List[InsightRecord]:
        account = AdAccount(with_act(account_id), api=self._api(token))
        params: Dict[str, Any] = {"level": level, "limit": PAGE_LIMIT}
        if date_range:
            params["time_range"] = {"since": date_range["since"], "until": date_range["until"]}
        else:
            params["date_preset"] = "maximum"
        try:
            rows = account.get_insights(fields=INSIGHT_FIELDS + [f"{level}_id"], params=params)
            insights = [self._insight(row, level) for row in rows]
            logger.debug(
                "Fetched %s %s insight rows for %s", len(insights), level, with_act(account_id)
            )
            return insights
        except FacebookError as exc:
            raise AdsDataError(
                f"Failed to fetch {level} insights for {with_act(account_id)}: {exc}"
            ) from exc

    @staticmethod
    def _insight(row: Mapping[str, Any], level: Level) -> InsightRecord:
        actions = row.get("actions")
        return InsightRecord(
            id=row.get(f"{level}_id"),
            spend=row.get("spend"),
            impressions=row.get("impressions"),
            clicks=row.get("clicks"),
            cpc=row.get("cpc"),
            ctr=row.get("ctr"),
            reach=row.get("reach"),
            frequency=row.get("frequency"),
            postEngagements=_action_value(actions, "post_engagement"),
            newMessagingContacts=_action_value(actions, MESSAGING_STARTED),
            costPerNewMessagingContact=_action_value(
                row.get("cost_per_action_type"), MESSAGING_STARTED
            ),
            videoAvgTimeWatched=_first_value(row.get("video_avg_time_watched_actions")),
            videoPlays=_first_value(row.get("video_play_actions")),
            # 'video_view' counts 3-second plays
            video3SecWatched=_action_value(actions, "video_view"),
            videoP25Watched=_first_value(row.get("video_p25_watched_actions")),
            videoP50Watched=_first_value(row.get("video_p50_watched_actions")),
            videoP75Watched=_first_value(row.get("video_p75_watched_actions")),
            videoP95Watched=_first_value(row.get("video_p95_watched_actions")),
            videoP100Watched=_first_value(row.get("video_p100_watched_actions")),
        )
