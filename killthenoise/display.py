"""Terminal rendering helpers for issue groups and reports."""

from rich.markup import escape

from killthenoise.models import IssueGroup, IssueType

SOURCE_ICON = {"hubspot": "📊", "jira": "🎫", "slack": "💬"}

# (lower bound, label, rich style) on the 0-100 severity scale
_SEVERITY_BANDS = [
    (80, "Critical", "bold red"),
    (60, "High", "yellow"),
    (40, "Medium", "blue"),
    (0, "Low", "green"),
]


def source_icon(source: str | None) -> str:
    return SOURCE_ICON.get((source or "").lower(), "📁")


def severity_label(severity: float | None) -> tuple[str, str]:
    """(label, rich style) for a severity score."""
    if severity is None:
        return "N/A", "dim"
    for lower, label, style in _SEVERITY_BANDS:
        if severity >= lower:
            return label, style
    return "Low", "green"


def severity_cell(severity: float | None) -> str:
    label, style = severity_label(severity)
    score = "" if severity is None else f" {severity:g}"
    return f"[{style}]{label}{score}[/{style}]"


def type_cell(group: IssueGroup) -> str:
    if group.type is IssueType.FEATURE_REQUEST:
        text = "[green]✨ Feature[/green]"
    else:
        text = "[red]🐛 Bug[/red]"
    if group.confidence is not None:
        text += f" [dim]{group.confidence:.0%}[/dim]"
    return text


def truncate(text: str | None, max_len: int = 140) -> str:
    if not text:
        return ""
    return f"{text[:max_len]}…" if len(text) > max_len else text


def jira_cell(tickets: list[tuple[str, str | None]]) -> str:
    if not tickets:
        return "[dim]🎟️ No Ticket[/dim]"
    return ", ".join(_ticket_link(key, url) for key, url in tickets)


def _ticket_link(key: str, url: str | None) -> str:
    # A bracket would end the link tag early
    if url and "[" not in url and "]" not in url:
        return f"[link={url}]🎫 {escape(key)}[/link]"
    return f"🎫 {escape(key)}"
