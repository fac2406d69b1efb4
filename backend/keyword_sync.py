"""Pull keyword rankings from the provider and update tracked keywords."""

import logging
from collections.abc import Callable

import database
import ranking_client
from models import ExternalMetrics, Keyword, KeywordObservation, Trend

logger = logging.getLogger(__name__)

RowFetcher = Callable[[], list[dict]]


def compute_trend(previous_position: int | None, position: int) -> Trend:
    """A smaller position number is a better ranking."""
    if previous_position is None or previous_position == position:
        return Trend.STABLE
    return Trend.UP if position < previous_position else Trend.DOWN


def sync_keywords(
    user_id: str,
    site_url: str,
    *,
    fetch_rows: RowFetcher | None = None,
) -> list[Keyword]:
    """
    Fetch provider rows for `site_url`, recompute position/trend against
    the stored value, record an observation and upsert every keyword.
    Raises ranking_client.ProviderError when the provider call fails.
    """
    if fetch_rows is None:

        def fetch_rows() -> list[dict]:
            token = ranking_client.get_access_token(user_id)
            return ranking_client.query_keywords(token, site_url)

    rows = fetch_rows()
    now = database.utcnow()
    updated: list[Keyword] = []
    for row in rows:
        term = str(row.get("keyword") or "").strip()
        if not term:
            continue
        position = int(round(float(row.get("position", 0))))
        existing = database.get_keyword(user_id, site_url, term)
        previous_position = existing.position if existing else None
        trend = compute_trend(previous_position, position)

        keyword = Keyword(
            keyword=term,
            target_url=site_url,
            position=position,
            volume=existing.volume if existing else 0,
            difficulty=existing.difficulty if existing else 0,
            trend=trend,
            previous_position=previous_position,
            external_metrics=ExternalMetrics(
                impressions=int(row.get("impressions", 0)),
                clicks=int(row.get("clicks", 0)),
                ctr=float(row.get("ctr", 0.0)),
            ),
            user_id=user_id,
            updated_at=now,
        )
        database.upsert_keyword(keyword)
        database.insert_keyword_observation(
            KeywordObservation(
                keyword=term,
                target_url=site_url,
                position=position,
                trend=trend,
                observed_at=now,
                user_id=user_id,
            )
        )
        updated.append(keyword)

    logger.info("Synced %d keywords for %s (user %s)", len(updated), site_url, user_id)
    return updated
