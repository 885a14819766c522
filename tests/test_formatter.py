"""Tests for core/formatter.py terminal and JSON renderers.

Color is forced off so assertions run against plain text.
"""

import json

import pytest

from core import formatter
from core.formatter import print_incident, print_incident_table, print_rows, to_json


@pytest.fixture(autouse=True)
def no_color(monkeypatch):
    monkeypatch.setattr(formatter, "_color_enabled", False)


def test_incident_table_tags_risk(repo, capsys):
    incidents = repo.list_incidents()
    print_incident_table(incidents, risk_ids={incidents[0].id})
    out = capsys.readouterr().out
    assert "INCIDENTS -- 6 listed" in out
    risk_line = next(line for line in out.splitlines() if incidents[0].incident_id in line)
    assert "PDPC" in risk_line
    assert "\033[" not in out


def test_incident_detail(repo, capsys):
    incident = next(i for i in repo.list_incidents() if i.incident_id == "INC-2025-002")
    print_incident(incident, risk=False, vulnerability="Access Misconfigurations & Exposure")
    out = capsys.readouterr().out
    assert "INC-2025-002" in out
    assert "Access Misconfigurations & Exposure" in out
    assert "PDPC ACTION PENDING" not in out
    assert "TIMELINE" in out


def test_rows_table(capsys):
    print_rows([{"unit": "Finance", "avg": 12.5, "flag": True, "missing": None}], title="COVERAGE")
    out = capsys.readouterr().out
    assert "COVERAGE -- 1 row(s)" in out
    assert "12.5" in out
    assert "yes" in out


def test_empty_rows(capsys):
    print_rows([])
    assert "No rows." in capsys.readouterr().out


def test_to_json_dataclass_list(repo):
    data = json.loads(to_json(repo.list_incidents()[:2]))
    assert [d["incident_id"] for d in data] == ["INC-2025-005", "INC-2025-001"]
