"""Google Sheets destination: OAuth token refresh and worksheet read/write/clear."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import timezone
from typing import List, Optional, Protocol, Sequence

import gspread
from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from gspread.exceptions import GSpreadException, NoValidUrlKeyFound
from gspread.http_client import BackOffHTTPClient
from gspread.utils import extract_id_from_url

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_URL = "https://oauth2.googleapis.com/token"
SHEETS_SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]
USER_ENTERED = "USER_ENTERED"

_BARE_ID = re.compile(r"^[a-zA-Z0-9-_]{20,}$")


class SheetsAPIError(Exception):
    def __init__(self, status: int, message: str):
        super().__init__(f"Google Sheets API error {status}: {message}")
        self.status = status
        self.message = message


@dataclass(frozen=True)
class OAuthTokens:
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None  # epoch seconds


class SheetsClient(Protocol):
    def read_column_range(self, spreadsheet_id: str, sheet_name: str, rng: str) -> List[List[str]]: ...

    def write_range(
        self, spreadsheet_id: str, sheet_name: str, start_cell: str, rows: Sequence[Sequence[str]]
    ) -> None: ...

    def clear_range(self, spreadsheet_id: str, sheet_name: str, rng: str) -> None: ...


class SpreadsheetSink(Protocol):
    def refresh_access_token(self, refresh_token: str) -> OAuthTokens: ...

    def authorize(self, access_token: str) -> SheetsClient: ...


def extract_spreadsheet_id(url_or_id: str) -> Optional[str]:
    """Pull the id out of a docs.google.com spreadsheet URL (or accept a bare id)."""
    value = (url_or_id or "").strip()
    try:
        return extract_id_from_url(value)
    except NoValidUrlKeyFound:
        pass
    if _BARE_ID.match(value):
        return value
    return None


def _as_sheets_error(exc: GSpreadException) -> SheetsAPIError:
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None) or 404
    return SheetsAPIError(status, str(exc) or type(exc).__name__)


class GoogleSheetsClient:
    """Worksheet operations on behalf of one user's authorized gspread client."""

    def __init__(self, gc: gspread.Client):
        self.gc = gc

    def _worksheet(self, spreadsheet_id: str, sheet_name: str) -> gspread.Worksheet:
        return self.gc.open_by_key(spreadsheet_id).worksheet(sheet_name)

    def read_column_range(self, spreadsheet_id: str, sheet_name: str, rng: str) -> List[List[str]]:
        try:
            return self._worksheet(spreadsheet_id, sheet_name).get_values(rng)
        except GSpreadException as exc:
            raise _as_sheets_error(exc) from exc

    def write_range(
        self, spreadsheet_id: str, sheet_name: str, start_cell: str, rows: Sequence[Sequence[str]]
    ) -> None:
        try:
            self._worksheet(spreadsheet_id, sheet_name).update(
                values=[list(r) for r in rows],
                range_name=start_cell,
                value_input_option=USER_ENTERED,
            )
        except GSpreadException as exc:
            raise _as_sheets_error(exc) from exc

    def clear_range(self, spreadsheet_id: str, sheet_name: str, rng: str) -> None:
        try:
            self._worksheet(spreadsheet_id, sheet_name).batch_clear([rng])
        except GSpreadException as exc:
            raise _as_sheets_error(exc) from exc


class GoogleSheetsSink:
    """SpreadsheetSink using the app's Google OAuth client credentials."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        token_url: str = DEFAULT_TOKEN_URL,
        timeout: int = 30,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_url = token_url
        self.timeout = timeout

    def refresh_access_token(self, refresh_token: str) -> OAuthTokens:
        creds = Credentials(
            token=None,
            refresh_token=refresh_token,
            client_id=self.client_id,
            client_secret=self.client_secret,
            token_uri=self.token_url,
            scopes=SHEETS_SCOPES,
        )
        try:
            creds.refresh(Request())
        except RefreshError as exc:
            raise SheetsAPIError(400, f"Token refresh failed: {exc}") from exc
        if not creds.token:
            raise SheetsAPIError(400, "Token response did not include an access_token")
        # google-auth keeps expiry as naive UTC
        expires_at = (
            int(creds.expiry.replace(tzinfo=timezone.utc).timestamp()) if creds.expiry else None
        )
        return OAuthTokens(
            access_token=creds.token,
            # Only report a refresh token when Google rotated it
            refresh_token=creds.refresh_token if creds.refresh_token != refresh_token else None,
            expires_at=expires_at,
        )

    def authorize(self, access_token: str) -> GoogleSheetsClient:
        # BackOffHTTPClient retries rate-limited (429) calls with exponential backoff
        gc = gspread.authorize(Credentials(token=access_token), http_client=BackOffHTTPClient)
        gc.http_client.set_timeout(self.timeout)
        return GoogleSheetsClient(gc)
