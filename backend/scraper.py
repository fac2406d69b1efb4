"""Page scraper: fetch a URL and turn it into a PageSnapshot for the checks.

Extracts on-page signals including meta tags, headings, link profile,
images, scripts, structured data, response headers and accessibility
hints. Does NOT crawl subpages and does NOT render JavaScript, so
render-only signals are left as None.
"""

import json
import logging
import os
import re
from pathlib import Path
from urllib.parse import urljoin, urlparse

import requests
from bs4 import BeautifulSoup
from dotenv import load_dotenv

from models import ImageInfo, LinkInfo, PageSnapshot, ScriptInfo

load_dotenv(dotenv_path=Path(__file__).resolve().parent / ".env")

logger = logging.getLogger(__name__)

SCRAPER_TIMEOUT_SECONDS = float(os.getenv("SCRAPER_TIMEOUT_SECONDS", "12"))

_REQUEST_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/122.0.0.0 Safari/537.36 SEOmonitorBot/1.0"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}

_INTERACTIVE_TAGS = ["button", "a", "input", "select", "textarea"]


class SnapshotUnavailable(Exception):
    """The target page could not be fetched or parsed."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Snapshot unavailable for {url}: {reason}")
        self.url = url
        self.reason = reason


def fetch_snapshot(url: str) -> PageSnapshot:
    """
    Fetch the page at `url` and return a structured snapshot.
    Raises SnapshotUnavailable on network errors, HTTP errors and
    unparseable documents.
    """
    try:
        response = requests.get(url, timeout=SCRAPER_TIMEOUT_SECONDS, headers=_REQUEST_HEADERS)
        response_time_ms = int(response.elapsed.total_seconds() * 1000)
        response.raise_for_status()
        response.encoding = response.apparent_encoding or "utf-8"
        html = response.text
    except (requests.RequestException, ValueError, OSError) as e:
        logger.warning("Fetch failed for %s: %s", url, e)
        raise SnapshotUnavailable(url, str(e)) from e

    return parse_snapshot(
        html,
        url,
        http_status=response.status_code,
        response_time_ms=response_time_ms,
        headers=dict(response.headers),
    )


def parse_snapshot(
    html: str,
    url: str,
    *,
    http_status: int = 200,
    response_time_ms: int = 0,
    headers: dict[str, str] | None = None,
) -> PageSnapshot:
    """Parse an HTML document into a PageSnapshot. Pure; no network access."""
    if not html or not html.strip():
        raise SnapshotUnavailable(url, "empty document")
    try:
        soup = BeautifulSoup(html, "html.parser")
    except Exception as e:
        raise SnapshotUnavailable(url, f"unparseable document: {e}") from e

    parsed_url = urlparse(url)
    base_domain = (parsed_url.netloc or "").lower().strip()
    base_url = f"{parsed_url.scheme or 'https'}://{parsed_url.netloc or ''}"

    # --- Structured data and scripts (extract before decomposing scripts) ---
    structured_data_types: list[str] = []
    ld_scripts = soup.find_all("script", attrs={"type": "application/ld+json"})
    for script_tag in ld_scripts:
        try:
            ld = json.loads(script_tag.string or "")
        except ValueError:
            continue
        items = ld if isinstance(ld, list) else [ld]
        for item in items:
            if not isinstance(item, dict):
                continue
            sd_type = item.get("@type", "")
            if isinstance(sd_type, list):
                structured_data_types.extend(str(t) for t in sd_type if t)
            elif sd_type:
                structured_data_types.append(str(sd_type))
    structured_data_types = list(dict.fromkeys(structured_data_types))[:10]

    scripts: list[ScriptInfo] = []
    for script_tag in soup.find_all("script"):
        script_type = (script_tag.get("type") or "").strip().lower()
        if script_type == "application/ld+json":
            continue
        scripts.append(
            {
                "src": (script_tag.get("src") or "").strip() or None,
                "is_async": script_tag.has_attr("async"),
                "defer": script_tag.has_attr("defer"),
                "type": script_type,
            }
        )

    insecure_resources: list[str] = []
    if parsed_url.scheme == "https":
        for tag in soup.find_all(src=True):
            if str(tag["src"]).strip().lower().startswith("http:"):
                insecure_resources.append(str(tag["src"]).strip())
        for tag in soup.find_all("link", href=True):
            if str(tag["href"]).strip().lower().startswith("http:"):
                insecure_resources.append(str(tag["href"]).strip())

    html_bytes = len(html.encode("utf-8"))

    for tag in soup.find_all(["script", "style"]):
        tag.decompose()

    # --- Document-level attributes ---
    html_tag = soup.find("html")
    lang = (html_tag.get("lang") or "").strip() if html_tag else ""

    charset = ""
    charset_tag = soup.find("meta", attrs={"charset": True})
    if charset_tag:
        charset = (charset_tag.get("charset") or "").strip()
    else:
        equiv = soup.find("meta", attrs={"http-equiv": re.compile(r"^content-type$", re.I)})
        match = re.search(r"charset=([\w-]+)", (equiv.get("content") or "") if equiv else "", re.I)
        if match:
            charset = match.group(1)

    title = ""
    if soup.title and soup.title.string:
        title = soup.title.string.strip()

    # --- Meta tags (name= and property=, lowercased keys) ---
    meta: dict[str, str] = {}
    for tag in soup.find_all("meta"):
        key = tag.get("name") or tag.get("property")
        if not key:
            continue
        key = str(key).strip().lower()
        if key and key not in meta:
            meta[key] = (tag.get("content") or "").strip()

    canonical_url = None
    for link in soup.find_all("link", href=True):
        if "canonical" in [r.lower() for r in (link.get("rel") or [])]:
            canonical_url = (link["href"] or "").strip()
            break

    has_favicon = any(
        any("icon" in r.lower() for r in (link.get("rel") or []))
        for link in soup.find_all("link")
    )

    hreflang_tags: list[str] = []
    for link in soup.find_all("link", attrs={"hreflang": True}):
        lang_val = (link.get("hreflang") or "").strip()
        if lang_val and lang_val not in hreflang_tags:
            hreflang_tags.append(lang_val)

    stylesheets = [
        (link.get("href") or "").strip()
        for link in soup.find_all("link")
        if "stylesheet" in [r.lower() for r in (link.get("rel") or [])]
    ]

    # --- Headings ---
    headings: dict[str, list[str]] = {}
    for level in range(1, 7):
        name = f"h{level}"
        headings[name] = [h.get_text(strip=True)[:120] for h in soup.find_all(name)]

    # --- Links ---
    links: list[LinkInfo] = []
    for a in soup.find_all("a", href=True):
        href = (a["href"] or "").strip()
        if not href or href.startswith("#") or href.lower().startswith(("javascript:", "mailto:", "tel:")):
            continue
        resolved_host = (urlparse(urljoin(base_url, href)).netloc or "").lower()
        links.append(
            {
                "href": href,
                "rel": " ".join(a.get("rel") or []),
                "text": a.get_text(strip=True),
                "internal": href.startswith("/") or resolved_host == base_domain,
            }
        )

    # --- Images ---
    images: list[ImageInfo] = []
    for img in soup.find_all("img"):
        alt = img.get("alt")
        images.append(
            {
                "src": (img.get("src") or "").strip(),
                "alt": alt.strip() if isinstance(alt, str) else None,
                "width": _int_attr(img.get("width")),
                "height": _int_attr(img.get("height")),
            }
        )

    # --- Accessible labels on interactive elements ---
    interactive = soup.find_all(_INTERACTIVE_TAGS)
    labelled = 0
    for el in interactive:
        if el.get("aria-label") or el.get("aria-labelledby") or el.get("title") or el.get_text(strip=True):
            labelled += 1
        elif el.name == "input" and el.get("id") and soup.find("label", attrs={"for": el.get("id")}):
            labelled += 1

    # --- Word count (visible text only) ---
    visible_text = soup.get_text(separator=" ", strip=True)
    word_count = len(visible_text.split()) if visible_text else 0

    return {
        "url": url,
        "http_status": http_status,
        "response_time_ms": response_time_ms,
        "load_time_ms": None,
        "headers": {str(k).lower(): str(v) for k, v in (headers or {}).items()},
        "lang": lang,
        "charset": charset,
        "title": title,
        "meta": meta,
        "canonical_url": canonical_url,
        "has_favicon": has_favicon,
        "hreflang_tags": hreflang_tags[:10],
        "headings": headings,
        "images": images,
        "links": links,
        "scripts": scripts,
        "stylesheets": stylesheets,
        "structured_data_types": structured_data_types,
        "structured_data_count": len(ld_scripts),
        "insecure_resources": insecure_resources,
        "interactive_total": len(interactive),
        "interactive_labelled": labelled,
        "word_count": word_count,
        "html_bytes": html_bytes,
        "text_bytes": len(visible_text.encode("utf-8")),
        "body_font_size_px": None,
        "small_touch_targets": None,
    }


def _int_attr(value: object) -> int | None:
    if value is None:
        return None
    match = re.match(r"\s*(\d+)", str(value))
    return int(match.group(1)) if match else None
