"""Weighted category scoring for audit findings."""

import math
from collections.abc import Iterable
from fractions import Fraction

from models import AuditTotals, Category, CategoryScores, Finding, Status

# Every Category must be mapped; Content is reported but not scored.
CATEGORY_BUCKETS: dict[Category, str | None] = {
    Category.TECHNICAL: "technical",
    Category.SECURITY: "technical",
    Category.ON_PAGE: "on_page",
    Category.PERFORMANCE: "performance",
    Category.MOBILE: "mobile",
    Category.CONTENT: None,
}

OVERALL_WEIGHTS: dict[str, int] = {
    "technical": 30,
    "on_page": 25,
    "performance": 25,
    "mobile": 20,
}

_unmapped = set(Category) - set(CATEGORY_BUCKETS)
if _unmapped:
    raise RuntimeError(f"Categories without a scoring bucket: {sorted(c.value for c in _unmapped)}")


def _round_half_up(value: Fraction) -> int:
    return math.floor(value + Fraction(1, 2))


def category_score(findings: Iterable[Finding]) -> int:
    """round(100 * (passed + 0.5 * warning) / N); 100 when there are no findings."""
    passed = warned = total = 0
    for finding in findings:
        total += 1
        if finding.status is Status.PASSED:
            passed += 1
        elif finding.status is Status.WARNING:
            warned += 1
    if total == 0:
        return 100
    return _round_half_up(Fraction(200 * passed + 100 * warned, 2 * total))


def overall_score(technical: int, on_page: int, performance: int, mobile: int) -> int:
    parts = {"technical": technical, "on_page": on_page, "performance": performance, "mobile": mobile}
    weighted = sum(OVERALL_WEIGHTS[name] * value for name, value in parts.items())
    return _round_half_up(Fraction(weighted, 100))


def score(findings: Iterable[Finding]) -> CategoryScores:
    """Aggregate findings into per-category and overall scores. Pure."""
    buckets: dict[str, list[Finding]] = {name: [] for name in OVERALL_WEIGHTS}
    for finding in findings:
        bucket = CATEGORY_BUCKETS[finding.category]
        if bucket is not None:
            buckets[bucket].append(finding)

    technical = category_score(buckets["technical"])
    on_page = category_score(buckets["on_page"])
    performance = category_score(buckets["performance"])
    mobile = category_score(buckets["mobile"])
    return CategoryScores(
        technical=technical,
        on_page=on_page,
        performance=performance,
        mobile=mobile,
        # No dedicated accessibility rule set yet; mirrors the mobile bucket.
        accessibility=mobile,
        overall=overall_score(technical, on_page, performance, mobile),
    )


def totals(findings: Iterable[Finding]) -> AuditTotals:
    checked = passed = warned = failed = 0
    for finding in findings:
        checked += 1
        if finding.status is Status.PASSED:
            passed += 1
        elif finding.status is Status.WARNING:
            warned += 1
        elif finding.status is Status.FAILED:
            failed += 1
    return AuditTotals(checked=checked, passed=passed, warned=warned, failed=failed)
