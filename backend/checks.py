"""Audit check registry.

Every check is a pure function of a PageSnapshot that returns a short list
of Findings. Checks are registered in declaration order, which is also the
order findings appear in reports. A check that lacks the data it needs
reports an Info finding instead of raising.
"""

import logging
import re
from collections.abc import Callable, Mapping
from types import MappingProxyType
from typing import Any

from models import Category, Finding, Impact, Status

logger = logging.getLogger(__name__)

TITLE_MIN, TITLE_MAX = 30, 60
DESCRIPTION_MIN, DESCRIPTION_MAX = 120, 160
MIN_WORDS = 300
MIN_INTERNAL_LINKS = 5
LARGE_IMAGE_PX = 2000
MIN_FONT_PX = 16
SLOW_LOAD_MS, CRITICAL_LOAD_MS = 3000, 5000
SLOW_RESPONSE_MS, CRITICAL_RESPONSE_MS = 1000, 3000
MAX_STYLESHEETS = 5
MIN_TEXT_RATIO = 0.10


class MissingData(Exception):
    """Raised inside a check when the snapshot lacks a required field."""


class FindingFactory:
    """Builds findings for one (category, item) pair."""

    def __init__(self, category: Category, item: str) -> None:
        self.category = category
        self.item = item

    def _make(self, status: Status, message: str, impact: Impact, fix: str | None) -> Finding:
        return Finding(self.category, self.item, status, impact, message, fix)

    def passed(self, message: str, impact: Impact = Impact.MEDIUM) -> Finding:
        return self._make(Status.PASSED, message, impact, None)

    def warning(self, message: str, impact: Impact = Impact.MEDIUM, fix: str | None = None) -> Finding:
        return self._make(Status.WARNING, message, impact, fix)

    def failed(self, message: str, impact: Impact = Impact.HIGH, fix: str | None = None) -> Finding:
        return self._make(Status.FAILED, message, impact, fix)

    def info(self, message: str, impact: Impact = Impact.LOW) -> Finding:
        return self._make(Status.INFO, message, impact, None)


CheckFn = Callable[[Mapping[str, Any], FindingFactory], list[Finding]]


def _freeze(value: Any) -> Any:
    """Deep read-only copy: mappings become MappingProxyType, lists become tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({key: _freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item) for item in value)
    return value


class CheckRegistry:
    """Fixed, ordered collection of audit checks."""

    def __init__(self) -> None:
        self._checks: list[tuple[Category, str, CheckFn]] = []

    def register(self, category: Category, item: str) -> Callable[[CheckFn], CheckFn]:
        def decorator(fn: CheckFn) -> CheckFn:
            self._checks.append((category, item, fn))
            return fn

        return decorator

    def __len__(self) -> int:
        return len(self._checks)

    @property
    def items(self) -> list[tuple[Category, str]]:
        return [(category, item) for category, item, _ in self._checks]

    def run_all(self, snapshot: Mapping[str, Any]) -> list[Finding]:
        """Run every check against a deep read-only copy of `snapshot`."""
        frozen = _freeze(snapshot)
        findings: list[Finding] = []
        for category, item, fn in self._checks:
            factory = FindingFactory(category, item)
            try:
                findings.extend(fn(frozen, factory))
            except MissingData as e:
                findings.append(factory.info(f"Not evaluated: {e} not available in snapshot"))
            except Exception:
                logger.exception("Check %r crashed", item)
                findings.append(factory.info("Not evaluated: check raised an unexpected error"))
        return findings


def _require(snapshot: Mapping[str, Any], key: str) -> Any:
    value = snapshot.get(key)
    if value is None:
        raise MissingData(key)
    return value


REGISTRY = CheckRegistry()
check = REGISTRY.register


def run_all(snapshot: Mapping[str, Any]) -> list[Finding]:
    return REGISTRY.run_all(snapshot)


# ---------------------------------------------------------------------------
# Technical
# ---------------------------------------------------------------------------


@check(Category.TECHNICAL, "Title Tag")
def title_tag(snapshot, f):
    title = _require(snapshot, "title")
    length = len(title)
    if not title:
        return [f.failed("Missing title tag", fix="Add a descriptive, keyword-rich <title> to the <head>.")]
    if length < TITLE_MIN:
        return [
            f.warning(
                f"Title tag is too short ({length} characters). Recommended: {TITLE_MIN}-{TITLE_MAX}.",
                Impact.HIGH,
                "Expand the title with descriptive keywords while keeping it under 60 characters.",
            )
        ]
    if length > TITLE_MAX:
        return [
            f.warning(
                f"Title tag is too long ({length} characters). May be truncated in search results.",
                Impact.HIGH,
                "Shorten the title to 60 characters or less.",
            )
        ]
    return [f.passed(f"Title tag length is optimal ({length} characters)", Impact.HIGH)]


@check(Category.TECHNICAL, "Meta Description")
def meta_description(snapshot, f):
    meta = _require(snapshot, "meta")
    if "description" not in meta:
        return [f.failed("Missing meta description", fix='Add <meta name="description" content="...">.')]
    length = len(meta["description"])
    if DESCRIPTION_MIN <= length <= DESCRIPTION_MAX:
        return [f.passed(f"Meta description length is optimal ({length} characters)", Impact.HIGH)]
    return [
        f.warning(
            f"Meta description should be {DESCRIPTION_MIN}-{DESCRIPTION_MAX} characters (current: {length})",
            fix="Rewrite the meta description to fit the recommended length.",
        )
    ]


@check(Category.TECHNICAL, "Canonical URL")
def canonical_url(snapshot, f):
    canonical = snapshot.get("canonical_url")
    if canonical:
        return [f.passed(f"Canonical URL present: {canonical}", Impact.HIGH)]
    return [
        f.warning(
            "Missing canonical URL",
            fix='Add <link rel="canonical" href="..."> to prevent duplicate content issues.',
        )
    ]


@check(Category.TECHNICAL, "Robots Meta")
def robots_meta(snapshot, f):
    meta = _require(snapshot, "meta")
    robots = meta.get("robots")
    if robots is None:
        return [f.info("No robots meta tag; defaults to index,follow")]
    if "noindex" in robots.lower():
        return [
            f.warning(
                "Page set to noindex and will not appear in search results",
                Impact.HIGH,
                "Remove the noindex directive if this page should be indexed.",
            )
        ]
    return [f.passed(f"Robots meta configured: {robots}")]


@check(Category.TECHNICAL, "Viewport")
def viewport(snapshot, f):
    meta = _require(snapshot, "meta")
    if "viewport" in meta:
        return [f.passed("Viewport meta tag present", Impact.HIGH)]
    return [
        f.failed(
            "Missing viewport meta tag",
            fix='Add <meta name="viewport" content="width=device-width, initial-scale=1">.',
        )
    ]


@check(Category.TECHNICAL, "HTTPS")
def https(snapshot, f):
    url = _require(snapshot, "url")
    if url.lower().startswith("https://"):
        return [f.passed("Site uses HTTPS", Impact.HIGH)]
    return [f.failed("Site not using HTTPS", fix="Enable HTTPS for security and ranking benefits.")]


@check(Category.TECHNICAL, "HTTP Status")
def http_status(snapshot, f):
    status = _require(snapshot, "http_status")
    if status == 200:
        return [f.passed("Page responds with 200 OK", Impact.HIGH)]
    if 300 <= status < 400:
        return [f.warning(f"Page responds with redirect {status}", fix="Link directly to the final URL.")]
    return [f.failed(f"Page responds with status {status}", fix="Serve the page with a 200 status.")]


@check(Category.TECHNICAL, "Favicon")
def favicon(snapshot, f):
    if snapshot.get("has_favicon"):
        return [f.passed("Favicon present", Impact.LOW)]
    return [f.warning("Missing favicon", Impact.LOW, "Add a favicon for brand recognition in tabs and results.")]


@check(Category.TECHNICAL, "Language Declaration")
def language_declaration(snapshot, f):
    lang = snapshot.get("lang")
    if lang:
        return [f.passed(f"Language declared: {lang}")]
    return [f.warning("Missing language declaration on <html>", fix='Add lang="en" (or the right code) to <html>.')]


@check(Category.TECHNICAL, "Character Encoding")
def character_encoding(snapshot, f):
    charset = snapshot.get("charset")
    if not charset:
        return [f.warning("No charset declared", Impact.LOW, 'Add <meta charset="utf-8"> early in the <head>.')]
    if charset.lower().replace("-", "") != "utf8":
        return [f.warning(f"Charset is {charset}", Impact.LOW, "Prefer UTF-8 encoding.")]
    return [f.passed("UTF-8 charset declared", Impact.LOW)]


@check(Category.TECHNICAL, "Hreflang")
def hreflang(snapshot, f):
    tags = snapshot.get("hreflang_tags") or []
    if not tags:
        return [f.info("No hreflang alternates declared")]
    if "x-default" not in [t.lower() for t in tags]:
        return [f.warning(f"{len(tags)} hreflang tags without x-default", Impact.LOW, "Add an x-default alternate.")]
    return [f.passed(f"{len(tags)} hreflang alternates including x-default", Impact.LOW)]


# ---------------------------------------------------------------------------
# On-page
# ---------------------------------------------------------------------------


@check(Category.ON_PAGE, "H1 Tag")
def h1_tag(snapshot, f):
    h1s = _require(snapshot, "headings").get("h1", [])
    if len(h1s) == 1:
        return [f.passed(f'Single H1 tag present: "{h1s[0][:50]}"', Impact.HIGH)]
    if not h1s:
        return [f.failed("Missing H1 tag", fix="Add a single, descriptive H1 that includes the primary keyword.")]
    return [f.warning(f"Multiple H1 tags found ({len(h1s)})", fix="Use only one H1 per page; use H2-H6 below it.")]


@check(Category.ON_PAGE, "Heading Hierarchy")
def heading_hierarchy(snapshot, f):
    headings = _require(snapshot, "headings")
    counts = [len(headings.get(f"h{level}", [])) for level in range(1, 7)]
    if counts[0] == 0 or counts[1] == 0:
        return [
            f.warning(
                "Improve heading structure with an H1 followed by H2 sections",
                fix="Use H1 for the main title, H2 for sections and H3 for subsections.",
            )
        ]
    skipped = [level + 1 for level in range(1, 6) if counts[level] and not counts[level - 1]]
    if skipped:
        return [
            f.warning(
                f"Heading levels skipped before H{', H'.join(str(s) for s in skipped)}",
                Impact.LOW,
                "Do not skip heading levels.",
            )
        ]
    return [f.passed(f"Proper heading structure (H1: {counts[0]}, H2: {counts[1]}, H3: {counts[2]})")]


@check(Category.ON_PAGE, "Image Alt Text")
def image_alt_text(snapshot, f):
    images = _require(snapshot, "images")
    if not images:
        return [f.info("No images on page")]
    with_alt = sum(1 for img in images if img.get("alt"))
    percent = with_alt / len(images) * 100
    if with_alt == len(images):
        return [f.passed(f"All {len(images)} images have alt text")]
    if percent >= 80:
        return [
            f.warning(
                f"{with_alt}/{len(images)} images have alt text ({percent:.0f}%)",
                fix="Add descriptive alt text to all images.",
            )
        ]
    return [
        f.failed(
            f"Only {with_alt}/{len(images)} images have alt text ({percent:.0f}%)",
            fix="Add accurate alt text to every meaningful image.",
        )
    ]


@check(Category.ON_PAGE, "Internal Linking")
def internal_linking(snapshot, f):
    links = _require(snapshot, "links")
    internal = sum(1 for link in links if link.get("internal"))
    if internal >= MIN_INTERNAL_LINKS:
        return [f.passed(f"Good internal linking ({internal} internal links)")]
    return [
        f.warning(
            f"Limited internal linking ({internal} links)",
            fix="Link to related pages so crawlers can discover the site structure.",
        )
    ]


@check(Category.ON_PAGE, "External Links")
def external_links(snapshot, f):
    external = [link for link in _require(snapshot, "links") if not link.get("internal")]
    if not external:
        return []
    missing_rel = [link for link in external if not link.get("rel")]
    if not missing_rel:
        return [f.passed(f"All {len(external)} external links have rel attributes", Impact.LOW)]
    return [
        f.warning(
            f"{len(missing_rel)}/{len(external)} external links missing rel attributes",
            Impact.LOW,
            'Add rel="noopener noreferrer" or rel="nofollow" to external links as appropriate.',
        )
    ]


@check(Category.ON_PAGE, "Anchor Text")
def anchor_text(snapshot, f):
    links = _require(snapshot, "links")
    empty = sum(1 for link in links if not link.get("text"))
    if not links:
        return [f.info("No links on page")]
    if empty:
        return [f.warning(f"{empty} links have no anchor text", Impact.LOW, "Give every link descriptive text.")]
    return [f.passed("All links have anchor text", Impact.LOW)]


@check(Category.ON_PAGE, "Open Graph")
def open_graph(snapshot, f):
    meta = _require(snapshot, "meta")
    missing = [name for name in ("title", "description", "image", "url") if not meta.get(f"og:{name}")]
    if not missing:
        return [f.passed("Complete Open Graph tags (title, description, image, URL)")]
    return [
        f.warning(
            f"Missing Open Graph tags: {', '.join(missing)}",
            fix="Add complete Open Graph tags for social sharing.",
        )
    ]


@check(Category.ON_PAGE, "Twitter Cards")
def twitter_cards(snapshot, f):
    meta = _require(snapshot, "meta")
    if meta.get("twitter:card"):
        return [f.passed(f"Twitter card type: {meta['twitter:card']}", Impact.LOW)]
    return [f.warning("Missing Twitter Card meta tags", Impact.LOW, "Add twitter:card and related tags.")]


@check(Category.ON_PAGE, "Structured Data")
def structured_data(snapshot, f):
    count = snapshot.get("structured_data_count") or 0
    if count:
        types = ", ".join(snapshot.get("structured_data_types") or []) or "untyped"
        return [f.passed(f"Structured data present ({count} schema(s): {types})", Impact.HIGH)]
    return [
        f.warning(
            "No structured data found",
            Impact.HIGH,
            "Add JSON-LD structured data for rich results.",
        )
    ]


@check(Category.ON_PAGE, "Keyword Consistency")
def keyword_consistency(snapshot, f):
    title = _require(snapshot, "title")
    h1s = _require(snapshot, "headings").get("h1", [])
    if not title or not h1s:
        return [f.info("Title or H1 missing; keyword consistency not evaluated")]
    title_words = {w for w in title.lower().split() if len(w) > 3}
    h1_words = {w for w in h1s[0].lower().split() if len(w) > 3}
    if title_words & h1_words:
        return [f.passed("Title and H1 share target keywords")]
    return [
        f.warning(
            "Title and H1 share no significant words",
            fix="Use the primary keyword in both the title and the H1.",
        )
    ]


# ---------------------------------------------------------------------------
# Performance
# ---------------------------------------------------------------------------


@check(Category.PERFORMANCE, "Page Load Time")
def page_load_time(snapshot, f):
    load_ms = snapshot.get("load_time_ms")
    if load_ms is None:
        return [f.info("Page load time not measured (page was not rendered)", Impact.HIGH)]
    seconds = load_ms / 1000
    if load_ms < SLOW_LOAD_MS:
        return [f.passed(f"Fast page load time ({seconds:.2f}s)", Impact.HIGH)]
    if load_ms < CRITICAL_LOAD_MS:
        return [
            f.warning(
                f"Moderate page load time ({seconds:.2f}s)",
                Impact.HIGH,
                "Optimize images, minify CSS/JS and enable caching.",
            )
        ]
    return [
        f.failed(
            f"Slow page load time ({seconds:.2f}s)",
            fix="Improve server response time, optimize assets and consider a CDN.",
        )
    ]


@check(Category.PERFORMANCE, "Initial Response Time")
def initial_response_time(snapshot, f):
    response_ms = _require(snapshot, "response_time_ms")
    if response_ms < SLOW_RESPONSE_MS:
        return [f.passed(f"Server responded in {response_ms}ms")]
    if response_ms < CRITICAL_RESPONSE_MS:
        return [f.warning(f"Server responded in {response_ms}ms", fix="Reduce server processing time.")]
    return [
        f.failed(
            f"Server responded in {response_ms}ms",
            fix="Investigate slow backend work and add caching.",
        )
    ]


@check(Category.PERFORMANCE, "Image Optimization")
def image_optimization(snapshot, f):
    images = _require(snapshot, "images")
    large = [
        img for img in images
        if (img.get("width") or 0) > LARGE_IMAGE_PX or (img.get("height") or 0) > LARGE_IMAGE_PX
    ]
    if not large:
        return [f.passed("Images appear to be optimized")]
    return [
        f.warning(
            f"{len(large)} large images detected (>{LARGE_IMAGE_PX}px)",
            Impact.HIGH,
            "Resize and compress large images; serve modern formats like WebP.",
        )
    ]


@check(Category.PERFORMANCE, "Image Dimensions")
def image_dimensions(snapshot, f):
    images = _require(snapshot, "images")
    if not images:
        return []
    unsized = sum(1 for img in images if img.get("width") is None or img.get("height") is None)
    if unsized:
        return [
            f.warning(
                f"{unsized}/{len(images)} images lack width/height attributes",
                Impact.LOW,
                "Declare image dimensions to avoid layout shifts.",
            )
        ]
    return [f.passed("All images declare their dimensions", Impact.LOW)]


@check(Category.PERFORMANCE, "Resource Loading")
def resource_loading(snapshot, f):
    scripts = [s for s in _require(snapshot, "scripts") if s.get("src")]
    stylesheets = _require(snapshot, "stylesheets")
    return [f.info(f"{len(scripts)} scripts, {len(stylesheets)} stylesheets loaded", Impact.MEDIUM)]


@check(Category.PERFORMANCE, "Render-Blocking Scripts")
def render_blocking_scripts(snapshot, f):
    blocking = [
        s for s in _require(snapshot, "scripts")
        if s.get("src") and not s.get("is_async") and not s.get("defer") and s.get("type") != "module"
    ]
    if not blocking:
        return [f.passed("No render-blocking scripts detected")]
    return [
        f.warning(
            f"{len(blocking)} render-blocking scripts found",
            Impact.HIGH,
            "Add async or defer to non-critical scripts.",
        )
    ]


@check(Category.PERFORMANCE, "Stylesheet Count")
def stylesheet_count(snapshot, f):
    stylesheets = _require(snapshot, "stylesheets")
    if len(stylesheets) <= MAX_STYLESHEETS:
        return [f.passed(f"{len(stylesheets)} stylesheets", Impact.LOW)]
    return [
        f.warning(
            f"{len(stylesheets)} stylesheets requested",
            Impact.LOW,
            "Bundle stylesheets to reduce round trips.",
        )
    ]


@check(Category.PERFORMANCE, "Compression")
def compression(snapshot, f):
    headers = _require(snapshot, "headers")
    encoding = headers.get("content-encoding", "")
    if any(token in encoding for token in ("gzip", "br", "zstd", "deflate")):
        return [f.passed(f"Response compressed ({encoding})")]
    return [f.warning("Response is not compressed", fix="Enable gzip or brotli compression on the server.")]


# ---------------------------------------------------------------------------
# Mobile & accessibility
# ---------------------------------------------------------------------------


@check(Category.MOBILE, "Mobile Viewport")
def mobile_viewport(snapshot, f):
    content = _require(snapshot, "meta").get("viewport", "")
    if "width=device-width" in content.replace(" ", "").lower():
        return [f.passed("Mobile-responsive viewport configured", Impact.HIGH)]
    return [
        f.failed(
            "Mobile viewport not properly configured",
            fix='Ensure the viewport meta includes "width=device-width, initial-scale=1".',
        )
    ]


@check(Category.MOBILE, "Viewport Zoom")
def viewport_zoom(snapshot, f):
    content = _require(snapshot, "meta").get("viewport", "").replace(" ", "").lower()
    if not content:
        return []
    if "user-scalable=no" in content or re.search(r"maximum-scale=1(\.0+)?(,|$)", content):
        return [f.warning("Viewport disables pinch zoom", fix="Remove user-scalable=no and maximum-scale=1.")]
    return [f.passed("Users can zoom the page")]


@check(Category.MOBILE, "Font Size")
def font_size(snapshot, f):
    size = snapshot.get("body_font_size_px")
    if size is None:
        return [f.info("Body font size not measured (requires rendering)")]
    if size >= MIN_FONT_PX:
        return [f.passed(f"Readable font size ({size:g}px)")]
    return [f.warning(f"Small font size ({size:g}px) may be hard to read on mobile", fix="Use at least 16px body text.")]


@check(Category.MOBILE, "Touch Targets")
def touch_targets(snapshot, f):
    small = snapshot.get("small_touch_targets")
    if small is None:
        return [f.info("Touch target sizes not measured (requires rendering)")]
    if small == 0:
        return [f.passed("All interactive elements are touch-friendly (>=44px)")]
    return [f.warning(f"{small} small touch targets (<44px)", fix="Make buttons and links at least 44x44px.")]


@check(Category.MOBILE, "ARIA Labels")
def aria_labels(snapshot, f):
    total = _require(snapshot, "interactive_total")
    labelled = _require(snapshot, "interactive_labelled")
    if total == 0:
        return [f.info("No interactive elements on page")]
    percent = labelled / total * 100
    if labelled == total:
        return [f.passed("All interactive elements have accessible labels", Impact.HIGH)]
    return [
        f.warning(
            f"{percent:.0f}% of interactive elements have labels",
            Impact.HIGH,
            "Add aria-label or aria-labelledby to unlabeled interactive elements.",
        )
    ]


@check(Category.MOBILE, "Color Contrast")
def color_contrast(snapshot, f):
    return [f.info("Manual color contrast check recommended (WCAG AA: 4.5:1)", Impact.HIGH)]


# ---------------------------------------------------------------------------
# Security
# ---------------------------------------------------------------------------


@check(Category.SECURITY, "SSL/TLS")
def ssl_tls(snapshot, f):
    if _require(snapshot, "url").lower().startswith("https://"):
        return [f.passed("Secure HTTPS connection", Impact.HIGH)]
    return [f.failed("Not using HTTPS", fix="Enable an SSL/TLS certificate.")]


@check(Category.SECURITY, "Mixed Content")
def mixed_content(snapshot, f):
    insecure = _require(snapshot, "insecure_resources")
    if not insecure:
        return [f.passed("No mixed content", Impact.HIGH)]
    return [
        f.warning(
            f"{len(insecure)} HTTP resources on HTTPS page",
            Impact.HIGH,
            "Serve every resource over HTTPS.",
        )
    ]


@check(Category.SECURITY, "Inline Scripts")
def inline_scripts(snapshot, f):
    inline = [s for s in _require(snapshot, "scripts") if not s.get("src")]
    if not inline:
        return [f.passed("No inline scripts (good for CSP)", Impact.LOW)]
    return [f.info(f"{len(inline)} inline scripts present")]


def _header_check(header: str, label: str, fix: str, impact: Impact = Impact.MEDIUM) -> CheckFn:
    def run(snapshot, f):
        value = _require(snapshot, "headers").get(header)
        if value:
            return [f.passed(f"{label} header set", impact)]
        return [f.warning(f"Missing {label} header", impact, fix)]

    return run


check(Category.SECURITY, "HSTS")(
    _header_check("strict-transport-security", "Strict-Transport-Security", "Send an HSTS header.", Impact.HIGH)
)
check(Category.SECURITY, "Content Security Policy")(
    _header_check("content-security-policy", "Content-Security-Policy", "Define a Content-Security-Policy.")
)
check(Category.SECURITY, "Clickjacking Protection")(
    _header_check("x-frame-options", "X-Frame-Options", "Send X-Frame-Options: DENY or SAMEORIGIN.")
)
check(Category.SECURITY, "MIME Sniffing Protection")(
    _header_check("x-content-type-options", "X-Content-Type-Options", "Send X-Content-Type-Options: nosniff.")
)
check(Category.SECURITY, "Referrer Policy")(
    _header_check("referrer-policy", "Referrer-Policy", "Send a Referrer-Policy header.", Impact.LOW)
)


# ---------------------------------------------------------------------------
# Content
# ---------------------------------------------------------------------------


@check(Category.CONTENT, "Word Count")
def word_count(snapshot, f):
    words = _require(snapshot, "word_count")
    if words >= MIN_WORDS:
        return [f.passed(f"Substantial content ({words} words)", Impact.HIGH)]
    return [
        f.warning(
            f"Thin content ({words} words). Aim for {MIN_WORDS}+.",
            Impact.HIGH,
            "Add comprehensive, useful content.",
        )
    ]


@check(Category.CONTENT, "Text to HTML Ratio")
def text_to_html_ratio(snapshot, f):
    html_bytes = _require(snapshot, "html_bytes")
    text_bytes = _require(snapshot, "text_bytes")
    if html_bytes == 0:
        raise MissingData("html_bytes")
    ratio = text_bytes / html_bytes
    if ratio >= MIN_TEXT_RATIO:
        return [f.passed(f"Text to HTML ratio {ratio:.0%}", Impact.LOW)]
    return [f.warning(f"Low text to HTML ratio ({ratio:.0%})", Impact.LOW, "Trim markup or add more text content.")]


@check(Category.CONTENT, "Content Freshness")
def content_freshness(snapshot, f):
    last_modified = (snapshot.get("headers") or {}).get("last-modified")
    if last_modified:
        return [f.info(f"Last modified: {last_modified}", Impact.MEDIUM)]
    return [f.info("Regular content updates improve rankings", Impact.MEDIUM)]
