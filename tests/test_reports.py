import json

from conftest import finding, make_record
from models import Category, Finding, Impact, Status
from reports import to_csv, to_json


def _record():
    quoted = Finding(
        category=Category.ON_PAGE,
        item="Title Tag",
        status=Status.WARNING,
        impact=Impact.MEDIUM,
        message='Title is "Home", too short',
        fix=None,
    )
    return make_record(
        77,
        findings=(quoted, finding(Category.SECURITY, Status.FAILED, "HSTS", Impact.HIGH)),
    )


def test_csv_has_header_and_one_quoted_row_per_finding():
    lines = to_csv(_record()).splitlines()
    assert lines[0] == "Category,Item,Status,Impact,Message,Fix"
    assert len(lines) == 3
    assert lines[1] == '"on_page","Title Tag","warning","medium","Title is ""Home"", too short",""'
    assert lines[2].startswith('"security","HSTS","failed","high",')


def test_csv_ends_with_newline():
    assert to_csv(_record()).endswith("\n")


def test_json_carries_scores_totals_and_findings():
    record = _record()
    data = json.loads(to_json(record))
    assert data["id"] == record.id
    assert data["target_url"] == "https://example.com/"
    assert data["scores"]["overall"] == 77
    assert data["totals"]["checked"] == record.totals.checked
    assert [f["item"] for f in data["findings"]] == ["Title Tag", "HSTS"]
    assert data["findings"][0]["fix"] is None
