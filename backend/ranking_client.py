"""Search Console ranking-data provider: OAuth endpoints and search analytics."""

import logging
import os
from datetime import date, timedelta
from pathlib import Path
from urllib.parse import quote, urlencode

import requests
from dotenv import load_dotenv

import database

load_dotenv(dotenv_path=Path(__file__).resolve().parent / ".env")

logger = logging.getLogger(__name__)

PROVIDER = "google_search_console"
AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
API_BASE = "https://www.googleapis.com/webmasters/v3"
SCOPE = "https://www.googleapis.com/auth/webmasters.readonly"

GSC_CLIENT_ID = os.getenv("GSC_CLIENT_ID", "")
GSC_CLIENT_SECRET = os.getenv("GSC_CLIENT_SECRET", "")
GSC_REDIRECT_URI = os.getenv("GSC_REDIRECT_URI", "http://localhost:8000/oauth/callback")
REQUEST_TIMEOUT_SECONDS = 20
EXPIRY_MARGIN = timedelta(seconds=60)


class ProviderError(Exception):
    """The ranking provider rejected a request or was unreachable."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def authorization_url(state: str) -> str:
    params = {
        "client_id": GSC_CLIENT_ID,
        "redirect_uri": GSC_REDIRECT_URI,
        "response_type": "code",
        "scope": SCOPE,
        "access_type": "offline",
        "prompt": "consent",
        "state": state,
    }
    return f"{AUTHORIZE_URL}?{urlencode(params)}"


def _post_token(data: dict) -> dict:
    try:
        response = requests.post(TOKEN_URL, data=data, timeout=REQUEST_TIMEOUT_SECONDS)
    except requests.RequestException as e:
        raise ProviderError(f"Token endpoint unreachable: {e}") from e
    if not response.ok:
        logger.warning("Token endpoint returned %s: %s", response.status_code, response.text[:300])
        raise ProviderError(f"Token request failed: {response.status_code}", response.status_code)
    try:
        return response.json()
    except ValueError as e:
        raise ProviderError("Token endpoint returned invalid JSON") from e


def exchange_code(code: str) -> dict:
    """Exchange an authorization code for access and refresh tokens."""
    return _post_token(
        {
            "code": code,
            "client_id": GSC_CLIENT_ID,
            "client_secret": GSC_CLIENT_SECRET,
            "redirect_uri": GSC_REDIRECT_URI,
            "grant_type": "authorization_code",
        }
    )


def refresh_access_token(refresh_token: str) -> dict:
    return _post_token(
        {
            "refresh_token": refresh_token,
            "client_id": GSC_CLIENT_ID,
            "client_secret": GSC_CLIENT_SECRET,
            "grant_type": "refresh_token",
        }
    )


def store_tokens(user_id: str, tokens: dict) -> None:
    if not tokens.get("access_token"):
        raise ProviderError("Token response carried no access_token")
    database.save_credentials(
        user_id=user_id,
        provider=PROVIDER,
        access_token=tokens["access_token"],
        refresh_token=tokens.get("refresh_token"),
        token_type=tokens.get("token_type", "Bearer"),
        scope=tokens.get("scope"),
        expires_at=database.utcnow() + timedelta(seconds=int(tokens.get("expires_in", 3600))),
    )


def connection_status(user_id: str) -> dict:
    creds = database.get_credentials(user_id, PROVIDER)
    if creds is None:
        return {"connected": False, "expired": False, "expires_at": None}
    return {
        "connected": True,
        "expired": creds["expires_at"] <= database.utcnow(),
        "expires_at": creds["expires_at"],
    }


def get_access_token(user_id: str) -> str:
    """Return a usable access token, refreshing it when it is about to expire."""
    creds = database.get_credentials(user_id, PROVIDER)
    if creds is None:
        raise ProviderError(f"No ranking provider connected for user {user_id}")
    if creds["expires_at"] - EXPIRY_MARGIN > database.utcnow():
        return creds["access_token"]
    if not creds.get("refresh_token"):
        raise ProviderError("Access token expired and no refresh token is stored")
    tokens = refresh_access_token(creds["refresh_token"])
    store_tokens(user_id, tokens)
    logger.info("Refreshed ranking provider token for user %s", user_id)
    return tokens["access_token"]


def default_date_range(today: date | None = None) -> tuple[str, str]:
    """Last 7 days, ending 2 days ago (provider data lags)."""
    today = today or date.today()
    return (today - timedelta(days=7)).isoformat(), (today - timedelta(days=2)).isoformat()


def query_keywords(
    access_token: str,
    site_url: str,
    *,
    start_date: str | None = None,
    end_date: str | None = None,
    row_limit: int = 1000,
) -> list[dict]:
    """
    Query keyword performance for `site_url`. Each row:
    {keyword, position, impressions, clicks, ctr}.
    """
    default_start, default_end = default_date_range()
    url = f"{API_BASE}/sites/{quote(site_url, safe='')}/searchAnalytics/query"
    body = {
        "startDate": start_date or default_start,
        "endDate": end_date or default_end,
        "dimensions": ["query"],
        "rowLimit": row_limit,
    }
    try:
        response = requests.post(
            url,
            json=body,
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
    except requests.RequestException as e:
        raise ProviderError(f"Search analytics unreachable: {e}") from e
    if not response.ok:
        logger.warning("Search analytics returned %s: %s", response.status_code, response.text[:300])
        raise ProviderError(f"Failed to fetch keyword performance: {response.status_code}", response.status_code)

    rows = []
    for row in (response.json() or {}).get("rows", []):
        keys = row.get("keys") or []
        if not keys:
            continue
        rows.append(
            {
                "keyword": str(keys[0]),
                "position": float(row.get("position", 0)),
                "impressions": int(row.get("impressions", 0)),
                "clicks": int(row.get("clicks", 0)),
                "ctr": float(row.get("ctr", 0.0)),
            }
        )
    return rows
