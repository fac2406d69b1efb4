"""Tests for keyword sync and the ranking provider client."""

from datetime import timedelta

import pytest
import requests

import database
import pipeline
import ranking_client
from keyword_sync import compute_trend, sync_keywords
from models import AlertRule, AlertType, Severity, Trend
from ranking_client import ProviderError

SITE = "https://example.com/"


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self.ok = 200 <= status_code < 300
        self._payload = payload or {}
        self.text = str(self._payload)

    def json(self):
        return self._payload


def rows(*pairs):
    return lambda: [
        {"keyword": term, "position": position, "impressions": 100, "clicks": 7, "ctr": 0.07}
        for term, position in pairs
    ]


@pytest.mark.parametrize(
    ("previous", "position", "expected"),
    [(None, 5, Trend.STABLE), (5, 5, Trend.STABLE), (8, 3, Trend.UP), (3, 8, Trend.DOWN)],
)
def test_compute_trend(previous, position, expected):
    assert compute_trend(previous, position) is expected


def test_sync_tracks_previous_position_and_trend(db):
    sync_keywords("user-1", SITE, fetch_rows=rows(("meal planner", 4.4), ("picky eaters", 12)))
    [meal, picky] = sync_keywords("user-1", SITE, fetch_rows=rows(("meal planner", 9.6), ("picky eaters", 11)))

    assert meal.position == 10
    assert meal.previous_position == 4
    assert meal.trend is Trend.DOWN
    assert picky.trend is Trend.UP
    assert meal.external_metrics.clicks == 7

    stored = database.get_keyword("user-1", SITE, "meal planner")
    assert stored.position == 10
    assert stored.previous_position == 4
    assert len(database.list_keywords("user-1")) == 2


def test_sync_records_one_observation_per_keyword_per_run(db):
    start = database.utcnow() - timedelta(minutes=1)
    sync_keywords("user-1", SITE, fetch_rows=rows(("meal planner", 4)))
    sync_keywords("user-1", SITE, fetch_rows=rows(("meal planner", 6), ("", 3)))

    history = database.list_keyword_observations("user-1", SITE, start)
    assert list(history) == ["meal planner"]
    assert [o.trend for o in history["meal planner"]] == [Trend.STABLE, Trend.DOWN]


def test_keyword_history_is_kept_per_user(db):
    database.insert_alert_rule(
        AlertRule(
            "rule-kw",
            AlertType.KEYWORD_CHANGE,
            {"threshold_positions": 10, "window_hours": 24},
            Severity.HIGH,
            user_id="user-a",
        )
    )
    created = []
    for user_id, position in [("user-a", 10), ("user-b", 1), ("user-a", 5), ("user-b", 5), ("user-a", 3)]:
        _, alerts = pipeline.sync_and_alert(user_id, SITE, fetch_rows=rows(("meal plan", position)))
        created.extend(alerts)

    start = database.utcnow() - timedelta(minutes=1)
    history_a = database.list_keyword_observations("user-a", SITE, start)
    assert [o.position for o in history_a["meal plan"]] == [10, 5, 3]
    assert [o.trend for o in history_a["meal plan"]] == [Trend.STABLE, Trend.UP, Trend.UP]
    assert created == []


def test_sync_without_connection_raises_provider_error(db):
    with pytest.raises(ProviderError):
        sync_keywords("user-1", SITE)


def test_query_keywords_maps_rows(monkeypatch):
    captured = {}

    def fake_post(url, json=None, headers=None, timeout=None):
        captured.update(url=url, body=json, headers=headers)
        return FakeResponse(
            payload={
                "rows": [
                    {"keys": ["meal planner"], "position": 3.2, "impressions": 50, "clicks": 5, "ctr": 0.1},
                    {"keys": [], "position": 1},
                ]
            }
        )

    monkeypatch.setattr(ranking_client.requests, "post", fake_post)
    result = ranking_client.query_keywords("tok", SITE, start_date="2026-02-01", end_date="2026-02-07")

    assert result == [{"keyword": "meal planner", "position": 3.2, "impressions": 50, "clicks": 5, "ctr": 0.1}]
    assert "https%3A%2F%2Fexample.com%2F" in captured["url"]
    assert captured["headers"]["Authorization"] == "Bearer tok"
    assert captured["body"]["startDate"] == "2026-02-01"


def test_query_keywords_http_error_raises(monkeypatch):
    monkeypatch.setattr(ranking_client.requests, "post", lambda *a, **kw: FakeResponse(403))
    with pytest.raises(ProviderError) as exc:
        ranking_client.query_keywords("tok", SITE)
    assert exc.value.status_code == 403


def test_query_keywords_network_error_raises(monkeypatch):
    def boom(*args, **kwargs):
        raise requests.ConnectionError("unreachable")

    monkeypatch.setattr(ranking_client.requests, "post", boom)
    with pytest.raises(ProviderError):
        ranking_client.query_keywords("tok", SITE)


def test_expired_token_is_refreshed(db, monkeypatch):
    database.save_credentials(
        user_id="user-1",
        provider=ranking_client.PROVIDER,
        access_token="old",
        refresh_token="refresh-me",
        token_type="Bearer",
        scope=ranking_client.SCOPE,
        expires_at=database.utcnow() - timedelta(minutes=5),
    )
    monkeypatch.setattr(
        ranking_client.requests,
        "post",
        lambda *a, **kw: FakeResponse(payload={"access_token": "new", "expires_in": 3600}),
    )

    assert ranking_client.get_access_token("user-1") == "new"
    creds = database.get_credentials("user-1", ranking_client.PROVIDER)
    assert creds["access_token"] == "new"
    assert creds["refresh_token"] == "refresh-me"
    assert ranking_client.connection_status("user-1")["connected"] is True


def test_fresh_token_is_used_as_is(db):
    database.save_credentials(
        user_id="user-1",
        provider=ranking_client.PROVIDER,
        access_token="current",
        refresh_token=None,
        token_type="Bearer",
        scope=None,
        expires_at=database.utcnow() + timedelta(hours=1),
    )
    assert ranking_client.get_access_token("user-1") == "current"
    assert ranking_client.connection_status("user-2") == {"connected": False, "expired": False, "expires_at": None}


def test_authorization_url_carries_state():
    url = ranking_client.authorization_url("state-123")
    assert url.startswith(ranking_client.AUTHORIZE_URL)
    assert "state=state-123" in url
    assert "access_type=offline" in url
