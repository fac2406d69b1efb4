"""
Pytest configuration and shared fixtures.

Every test that touches storage gets its own temporary sqlite file.
Nothing here reaches the network.
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest

import database
from models import (
    AuditRecord,
    AuditTotals,
    Category,
    CategoryScores,
    Finding,
    Impact,
    Status,
    TriggeredBy,
)
from scraper import parse_snapshot

GOOD_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>Healthy Family Meal Planning for Picky Eaters</title>
  <meta name="description" content="{description}">
  <meta property="og:title" content="Healthy Family Meal Planning">
  <meta property="og:description" content="Plan meals for picky eaters.">
  <meta property="og:image" content="https://example.com/og.png">
  <meta property="og:url" content="https://example.com/">
  <meta name="twitter:card" content="summary_large_image">
  <link rel="canonical" href="https://example.com/">
  <link rel="icon" href="/favicon.ico">
  <link rel="stylesheet" href="/app.css">
  <script type="application/ld+json">{{"@context": "https://schema.org", "@type": "Organization"}}</script>
  <script src="/app.js" defer></script>
</head>
<body>
  <h1>Meal Planning for Picky Eaters</h1>
  <h2>How it works</h2>
  <p>{body}</p>
  <img src="/hero.webp" alt="Family dinner" width="800" height="600">
  <a href="/recipes">Recipes</a>
  <a href="/pantry">Pantry</a>
  <a href="/grocery">Grocery list</a>
  <a href="/planner">Planner</a>
  <a href="/blog">Blog</a>
  <a href="https://partner.example.org/" rel="noopener">Partner</a>
  <button aria-label="Open menu"></button>
</body>
</html>
"""

SECURE_HEADERS = {
    "Content-Encoding": "gzip",
    "Strict-Transport-Security": "max-age=31536000",
    "Content-Security-Policy": "default-src 'self'",
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


def good_html() -> str:
    return GOOD_HTML.format(
        description=("Plan healthy family meals that picky eaters will actually enjoy, with recipes, "
                     "pantry tracking and grocery lists in one place for busy parents."),
        body=" ".join(["nutritious"] * 400),
    )


@pytest.fixture
def db(tmp_path, monkeypatch):
    """Point the storage layer at a fresh sqlite file."""
    monkeypatch.setattr(database, "DB_PATH", tmp_path / "test.db")
    database.init_db()
    yield tmp_path / "test.db"


@pytest.fixture
def good_snapshot():
    return parse_snapshot(
        good_html(),
        "https://example.com/",
        http_status=200,
        response_time_ms=120,
        headers=SECURE_HEADERS,
    )


def make_record(
    overall: int,
    *,
    target_url: str = "https://example.com/",
    timestamp: datetime | None = None,
    findings: tuple[Finding, ...] = (),
    user_id: str = "user-1",
) -> AuditRecord:
    """Build an AuditRecord with a chosen overall score (other fields filler)."""
    return AuditRecord(
        id=str(uuid.uuid4()),
        user_id=user_id,
        target_url=target_url,
        triggered_by=TriggeredBy.SCHEDULED,
        timestamp=timestamp or datetime.now(timezone.utc),
        findings=findings,
        scores=CategoryScores(
            technical=overall,
            on_page=overall,
            performance=overall,
            mobile=overall,
            accessibility=overall,
            overall=overall,
        ),
        totals=AuditTotals(checked=len(findings), passed=0, warned=0, failed=0),
    )


def hours_ago(hours: float, *, base: datetime | None = None) -> datetime:
    return (base or datetime.now(timezone.utc)) - timedelta(hours=hours)


def finding(category=Category.TECHNICAL, status=Status.PASSED, item="Item", impact=Impact.MEDIUM) -> Finding:
    return Finding(category=category, item=item, status=status, impact=impact, message=f"{item} {status.value}")
