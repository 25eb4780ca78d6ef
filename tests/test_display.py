"""Tests for terminal rendering helpers."""

import pytest
from rich.text import Text

from killthenoise.display import jira_cell, severity_cell, severity_label, source_icon, truncate, type_cell


@pytest.mark.parametrize(
    ("severity", "label"),
    [(None, "N/A"), (0, "Low"), (39.9, "Low"), (40, "Medium"), (60, "High"), (79, "High"), (80, "Critical"), (100, "Critical")],
)
def test_severity_label(severity, label: str) -> None:
    assert severity_label(severity)[0] == label


def test_severity_cell_shows_score() -> None:
    assert severity_cell(85) == "[bold red]Critical 85[/bold red]"
    assert severity_cell(None) == "[dim]N/A[/dim]"


def test_type_cell(make_group) -> None:
    assert "Feature" in type_cell(make_group(type="feature_request"))
    assert "Bug" in type_cell(make_group(type="bug"))
    assert "92%" in type_cell(make_group(confidence=0.92))


def test_truncate() -> None:
    assert truncate("short") == "short"
    assert truncate(None) == ""
    assert truncate("x" * 10, 4) == "xxxx…"


def test_source_icon() -> None:
    assert source_icon("Slack") == "💬"
    assert source_icon("zendesk") == "📁"


def test_jira_cell() -> None:
    assert "No Ticket" in jira_cell([])
    assert jira_cell([("KTN-1", None), ("KTN-2", "https://acme/KTN-2")]) == "🎫 KTN-1, [link=https://acme/KTN-2]🎫 KTN-2[/link]"


def test_jira_cell_escapes_backend_text() -> None:
    cell = jira_cell([("[/red]KTN-3", "https://acme/[x]")])
    assert Text.from_markup(cell).plain == "🎫 [/red]KTN-3"
