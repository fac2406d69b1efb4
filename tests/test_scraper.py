"""Tests for page snapshot extraction."""

import pytest
import requests

import scraper
from conftest import SECURE_HEADERS, good_html
from scraper import SnapshotUnavailable, parse_snapshot


def test_parse_snapshot_extracts_page_signals():
    snapshot = parse_snapshot(good_html(), "https://example.com/", response_time_ms=90, headers=SECURE_HEADERS)

    assert snapshot["title"] == "Healthy Family Meal Planning for Picky Eaters"
    assert snapshot["lang"] == "en"
    assert snapshot["charset"] == "utf-8"
    assert snapshot["canonical_url"] == "https://example.com/"
    assert snapshot["has_favicon"] is True
    assert snapshot["meta"]["og:title"] == "Healthy Family Meal Planning"
    assert snapshot["meta"]["twitter:card"] == "summary_large_image"
    assert snapshot["headings"]["h1"] == ["Meal Planning for Picky Eaters"]
    assert snapshot["headings"]["h2"] == ["How it works"]
    assert snapshot["images"] == [{"src": "/hero.webp", "alt": "Family dinner", "width": 800, "height": 600}]
    assert snapshot["structured_data_types"] == ["Organization"]
    assert snapshot["structured_data_count"] == 1
    assert snapshot["stylesheets"] == ["/app.css"]
    assert snapshot["response_time_ms"] == 90
    assert snapshot["word_count"] > 400


def test_links_are_classified_internal_and_external():
    snapshot = parse_snapshot(good_html(), "https://example.com/")
    internal = [link["href"] for link in snapshot["links"] if link["internal"]]
    external = [link for link in snapshot["links"] if not link["internal"]]
    assert "/recipes" in internal
    assert len(external) == 1
    assert external[0]["rel"] == "noopener"


def test_scripts_exclude_json_ld_and_keep_loading_flags():
    snapshot = parse_snapshot(good_html(), "https://example.com/")
    assert snapshot["scripts"] == [{"src": "/app.js", "is_async": False, "defer": True, "type": ""}]


def test_headers_are_lowercased():
    snapshot = parse_snapshot(good_html(), "https://example.com/", headers={"X-Frame-Options": "DENY"})
    assert snapshot["headers"] == {"x-frame-options": "DENY"}


def test_insecure_resources_on_https_page():
    html = '<html><body><img src="http://cdn.example.com/a.png"><script src="https://ok/x.js"></script></body></html>'
    snapshot = parse_snapshot(html, "https://example.com/")
    assert snapshot["insecure_resources"] == ["http://cdn.example.com/a.png"]


def test_render_only_fields_are_none():
    snapshot = parse_snapshot(good_html(), "https://example.com/")
    assert snapshot["load_time_ms"] is None
    assert snapshot["body_font_size_px"] is None
    assert snapshot["small_touch_targets"] is None


def test_empty_document_is_unavailable():
    with pytest.raises(SnapshotUnavailable):
        parse_snapshot("   ", "https://example.com/")


def test_fetch_failure_raises_snapshot_unavailable(monkeypatch):
    def fail(*args, **kwargs):
        raise requests.ConnectionError("connection refused")

    monkeypatch.setattr(scraper.requests, "get", fail)
    with pytest.raises(SnapshotUnavailable) as excinfo:
        scraper.fetch_snapshot("https://unreachable.example/")
    assert excinfo.value.url == "https://unreachable.example/"
    assert "connection refused" in excinfo.value.reason
