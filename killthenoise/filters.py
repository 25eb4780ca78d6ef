"""Pure filter/sort functions behind the issue list view.

``visible_groups`` is a function of the fetched groups, the loaded report
cache and the view preferences only, so the same inputs always give the same
list.
"""

from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime, timezone
from functools import cmp_to_key

from killthenoise.models import (
    IssueGroup,
    IssueType,
    JiraStatusFilter,
    ReportItem,
    SeverityFilter,
    SortDirection,
    SortField,
    TypeFilter,
    ViewPreferences,
)

HIGH_SEVERITY_THRESHOLD = 80


def severity_of(group: IssueGroup) -> float:
    return group.severity if group.severity is not None else 0


def jira_keys(reports: Iterable[ReportItem]) -> list[tuple[str, str | None]]:
    """(key, url) for every Jira-sourced report that carries an issue key."""
    return [(r.jira_key, r.url) for r in reports if r.jira_key]


def has_jira_ticket(group: IssueGroup, reports_by_group: Mapping[str, Sequence[ReportItem]]) -> bool:
    # Groups whose reports are not loaded yet count as "no ticket"
    return bool(jira_keys(reports_by_group.get(group.id, ())))


def matches_type(group: IssueGroup, value: TypeFilter) -> bool:
    if value is TypeFilter.ALL:
        return True
    return group.type is IssueType(value.value)


def matches_jira_status(
    group: IssueGroup,
    value: JiraStatusFilter,
    reports_by_group: Mapping[str, Sequence[ReportItem]],
) -> bool:
    if value is JiraStatusFilter.ALL:
        return True
    has_ticket = has_jira_ticket(group, reports_by_group)
    return has_ticket if value is JiraStatusFilter.HAS_TICKET else not has_ticket


def matches_severity(group: IssueGroup, value: SeverityFilter) -> bool:
    if value is SeverityFilter.ALL:
        return True
    high = severity_of(group) >= HIGH_SEVERITY_THRESHOLD
    return high if value is SeverityFilter.HIGH else not high


def matches_team(group: IssueGroup, team_id: str | None) -> bool:
    return team_id is None or group.team_id == team_id


def _timestamp(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def _sort_key(group: IssueGroup, field: SortField) -> float | int | str:
    match field:
        case SortField.SEVERITY:
            return severity_of(group)
        case SortField.FREQUENCY:
            return group.frequency
        case SortField.TITLE:
            return group.title.casefold()
        case SortField.UPDATED_AT:
            return _timestamp(group.updated_at)
    raise ValueError(f"Unknown sort field: {field}")


def compare_groups(a: IssueGroup, b: IssueGroup, field: SortField) -> int:
    """Ascending comparator returning -1, 0 or 1; compare(a, b) == -compare(b, a)."""
    ka, kb = _sort_key(a, field), _sort_key(b, field)
    return (ka > kb) - (ka < kb)


def sort_groups(groups: Sequence[IssueGroup], field: SortField, direction: SortDirection) -> list[IssueGroup]:
    # Ties keep backend order in both directions
    sign = 1 if direction is SortDirection.ASC else -1
    return sorted(groups, key=cmp_to_key(lambda a, b: sign * compare_groups(a, b, field)))


def visible_groups(
    groups: Sequence[IssueGroup],
    prefs: ViewPreferences,
    reports_by_group: Mapping[str, Sequence[ReportItem]] | None = None,
) -> list[IssueGroup]:
    """type -> Jira ticket presence -> severity -> team, then sort."""
    reports_by_group = reports_by_group or {}
    filtered = [
        g
        for g in groups
        if matches_type(g, prefs.type_filter)
        and matches_jira_status(g, prefs.jira_status_filter, reports_by_group)
        and matches_severity(g, prefs.severity_filter)
        and matches_team(g, prefs.team_filter)
    ]
    return sort_groups(filtered, prefs.sort_field, prefs.sort_direction)
