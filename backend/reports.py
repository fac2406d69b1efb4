"""Audit report export to JSON and CSV."""

import json

from models import AuditRecord

CSV_HEADER = ("Category", "Item", "Status", "Impact", "Message", "Fix")


def to_dict(record: AuditRecord) -> dict:
    return {
        "id": record.id,
        "target_url": record.target_url,
        "triggered_by": record.triggered_by.value,
        "timestamp": record.timestamp.isoformat(),
        "scores": dict(record.scores.__dict__),
        "totals": dict(record.totals.__dict__),
        "score_change": record.score_change,
        "new_issues": list(record.new_issues),
        "resolved_issues": list(record.resolved_issues),
        "findings": [
            {
                "category": f.category.value,
                "item": f.item,
                "status": f.status.value,
                "impact": f.impact.value,
                "message": f.message,
                "fix": f.fix,
            }
            for f in record.findings
        ],
    }


def to_json(record: AuditRecord) -> str:
    return json.dumps(to_dict(record), indent=2, ensure_ascii=False)


def _quote(value: object) -> str:
    text = "" if value is None else str(value)
    return '"' + text.replace('"', '""') + '"'


def to_csv(record: AuditRecord) -> str:
    """One row per finding, every field quoted."""
    lines = [",".join(CSV_HEADER)]
    for f in record.findings:
        lines.append(
            ",".join(
                _quote(v) for v in (f.category.value, f.item, f.status.value, f.impact.value, f.message, f.fix)
            )
        )
    return "\n".join(lines) + "\n"
