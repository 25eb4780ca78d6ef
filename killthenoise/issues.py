"""Issue list view-model: fetched AI issue groups plus local filter/sort state."""

import asyncio
from dataclasses import dataclass, field
from enum import Enum

import structlog
from pydantic import BaseModel, ConfigDict

from killthenoise import filters
from killthenoise.api import ApiClient, ApiError
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
from killthenoise.preferences import Preferences

logger = structlog.get_logger(__name__)

DEFAULT_LIMIT = 20

_FILTER_DIMENSIONS: dict[str, tuple[str, type[Enum]]] = {
    "type": ("type_filter", TypeFilter),
    "jira_status": ("jira_status_filter", JiraStatusFilter),
    "severity": ("severity_filter", SeverityFilter),
}


class ViewState(str, Enum):
    LOADING = "loading"
    ERROR = "error"
    EMPTY = "empty"
    POPULATED = "populated"


@dataclass
class ReportState:
    loading: bool = False
    error: str | None = None
    items: list[ReportItem] = field(default_factory=list)


class IssueSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int
    bugs: int
    feature_requests: int
    critical: int  # severity >= 80
    with_jira_ticket: int
    average_severity: float | None


class IssueListViewModel:
    def __init__(
        self,
        client: ApiClient,
        preferences: Preferences,
        limit: int = DEFAULT_LIMIT,
        team_id: str | None = None,
    ) -> None:
        self._client = client
        self._preferences = preferences
        self.limit = limit
        self.team_id = team_id
        # Read once, like every other piece of persisted state
        self.prefs: ViewPreferences = preferences.load_view_preferences()

        self.groups: list[IssueGroup] = []
        self.loading = False
        self.error: str | None = None
        self.reports: dict[str, ReportState] = {}
        self.expanded_group_id: str | None = None

        self._loaded_once = False
        self._inflight: dict[str, asyncio.Task] = {}
        self._report_seq: dict[str, int] = {}
        self._log = logger.bind(tenant_id=client.tenant_id)

    # -- fetching -----------------------------------------------------------

    async def fetch_groups(self) -> None:
        """Replace the group list with a fresh snapshot from the backend."""
        background = self._loaded_once
        self.loading = True
        self.error = None
        try:
            groups = await self._client.list_issue_groups(self.limit, team_id=self.team_id)
        except ApiError as exc:
            self._log.warning("issue_groups_fetch_failed", background=background, error=str(exc))
            self.error = str(exc) or "Failed to load issues"
            if not background:
                self.groups = []
            return
        finally:
            self.loading = False

        self.groups = groups
        self._loaded_once = True
        self._log.info("issue_groups_fetched", count=len(groups))
        self._autoload_jira_reports()

    def _autoload_jira_reports(self) -> None:
        for group in self.groups:
            if group.has_jira_source and group.id not in self.reports:
                self._start_reports_fetch(group.id)

    def _start_reports_fetch(self, group_id: str, force: bool = False) -> asyncio.Task:
        current = self._inflight.get(group_id)
        if current is not None and not current.done() and not force:
            return current

        seq = self._report_seq.get(group_id, 0) + 1
        self._report_seq[group_id] = seq
        previous = self.reports.get(group_id)
        self.reports[group_id] = ReportState(loading=True, items=previous.items if previous else [])
        task = asyncio.create_task(self._load_reports(group_id, seq))
        self._inflight[group_id] = task
        return task

    async def _load_reports(self, group_id: str, seq: int) -> None:
        try:
            items = await self._client.list_reports(group_id)
            state = ReportState(items=items)
        except ApiError as exc:
            self._log.warning("reports_fetch_failed", group_id=group_id, error=str(exc))
            state = ReportState(error=str(exc) or "Failed to load reports")
        finally:
            if self._inflight.get(group_id) is asyncio.current_task():
                del self._inflight[group_id]

        if seq != self._report_seq.get(group_id):
            self._log.debug("reports_stale_response_discarded", group_id=group_id, seq=seq)
            return
        self.reports[group_id] = state

    async def fetch_reports(self, group_id: str, force: bool = False) -> ReportState:
        """Load one group's reports; concurrent calls share one request unless force is set."""
        task = self._start_reports_fetch(group_id, force=force)
        # Shielded so one cancelled caller does not cancel the shared fetch
        await asyncio.shield(task)
        # A newer forced fetch may have superseded ours; wait until the latest settles
        while (latest := self._inflight.get(group_id)) is not None and not latest.done():
            await asyncio.shield(latest)
        return self.reports[group_id]

    async def wait_for_reports(self) -> None:
        while self._inflight:
            await asyncio.gather(*list(self._inflight.values()))

    async def toggle_expanded(self, group_id: str) -> None:
        self.expanded_group_id = None if self.expanded_group_id == group_id else group_id
        if self.expanded_group_id is not None and self.expanded_group_id not in self.reports:
            await self.fetch_reports(self.expanded_group_id)

    async def close(self) -> None:
        """Drop all state and cancel outstanding report fetches (unmount / tenant switch)."""
        tasks = list(self._inflight.values())
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise
        self._inflight.clear()
        self.groups = []
        self.reports = {}
        self.expanded_group_id = None
        self._loaded_once = False

    # -- filter / sort ------------------------------------------------------

    def set_filter(self, dimension: str, value: str | None) -> None:
        """Change one filter dimension and persist it. Never re-fetches."""
        if dimension == "team":
            team = value.strip() if value else ""
            self.prefs = self.prefs.model_copy(update={"team_filter": team or None})
        else:
            try:
                attr, enum_cls = _FILTER_DIMENSIONS[dimension]
            except KeyError:
                valid = ", ".join([*_FILTER_DIMENSIONS, "team"])
                raise ValueError(f"Unknown filter '{dimension}'. Valid: {valid}") from None
            self.prefs = self.prefs.model_copy(update={attr: enum_cls(value)})
        self._preferences.save_view_preferences(self.prefs)

    def set_sort(self, sort_field: SortField | str) -> None:
        sort_field = SortField(sort_field)
        if sort_field is self.prefs.sort_field:
            direction = self.prefs.sort_direction.flipped()
        else:
            direction = SortDirection.DESC
        self.prefs = self.prefs.model_copy(update={"sort_field": sort_field, "sort_direction": direction})
        self._preferences.save_view_preferences(self.prefs)

    # -- derived view -------------------------------------------------------

    def _loaded_reports(self) -> dict[str, list[ReportItem]]:
        return {group_id: state.items for group_id, state in self.reports.items()}

    @property
    def visible_groups(self) -> list[IssueGroup]:
        return filters.visible_groups(self.groups, self.prefs, self._loaded_reports())

    def jira_tickets(self, group_id: str) -> list[tuple[str, str | None]]:
        state = self.reports.get(group_id)
        return filters.jira_keys(state.items) if state else []

    @property
    def view_state(self) -> ViewState:
        if self.loading and not self.groups:
            return ViewState.LOADING
        if self.error and not self.groups:
            return ViewState.ERROR
        if not self.groups:
            return ViewState.EMPTY
        return ViewState.POPULATED

    @property
    def summary(self) -> IssueSummary:
        """Counts over every fetched group, independent of the active filters."""
        reports = self._loaded_reports()
        severities = [g.severity for g in self.groups if g.severity is not None]
        return IssueSummary(
            total=len(self.groups),
            bugs=sum(1 for g in self.groups if g.type is IssueType.BUG),
            feature_requests=sum(1 for g in self.groups if g.type is IssueType.FEATURE_REQUEST),
            critical=sum(1 for g in self.groups if filters.severity_of(g) >= filters.HIGH_SEVERITY_THRESHOLD),
            with_jira_ticket=sum(1 for g in self.groups if filters.has_jira_ticket(g, reports)),
            average_severity=round(sum(severities) / len(severities), 1) if severities else None,
        )
