"""Shared test fixtures."""

import asyncio
from collections.abc import Callable

import pytest

import killthenoise.settings as settings_module
from killthenoise.api import ApiError
from killthenoise.models import (
    AuthorizationUrl,
    AuthStatus,
    CreatedTicket,
    IssueGroup,
    RefreshResult,
    ReportItem,
)
from killthenoise.preferences import MemoryStorage, Preferences
from killthenoise.settings import KtnSettings

API = "http://ktn.test"
TENANT = "tenant-1"


@pytest.fixture(autouse=True)
def reset_lru_cache():
    settings_module._load_toml.cache_clear()
    yield
    settings_module._load_toml.cache_clear()


@pytest.fixture
def settings() -> KtnSettings:
    return KtnSettings(api_base=API)


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def preferences(storage: MemoryStorage) -> Preferences:
    return Preferences(storage)


@pytest.fixture
def make_group() -> Callable[..., IssueGroup]:
    def _make(id: str = "g1", title: str = "Login fails", **kwargs) -> IssueGroup:
        data = {
            "id": id,
            "title": title,
            "summary": f"{title} for several customers",
            "severity": 50,
            "type": "bug",
            "frequency": 1,
            "updated_at": "2025-03-01T12:00:00Z",
            **kwargs,
        }
        return IssueGroup.model_validate(data)

    return _make


@pytest.fixture
def make_report() -> Callable[..., ReportItem]:
    def _make(group_id: str = "g1", source: str = "slack", external_id: str | None = None, **kwargs) -> ReportItem:
        data = {
            "id": f"r-{group_id}-{source}-{external_id}",
            "group_id": group_id,
            "source": source,
            "title": "Customer report",
            "external_id": external_id,
            "url": f"https://acme.atlassian.net/browse/{external_id}" if external_id else None,
            "created_at": "2025-03-01T10:00:00Z",
            **kwargs,
        }
        return ReportItem.model_validate(data)

    return _make


class FakeApiClient:
    """In-memory stand-in for ApiClient used by the view-model tests."""

    tenant_id = TENANT

    def __init__(self) -> None:
        self.groups: list[IssueGroup] = []
        self.groups_error: str | None = None
        self.group_calls: list[tuple[int, str | None]] = []

        self.reports: dict[str, list[ReportItem]] = {}
        self.reports_error: str | None = None
        self.report_calls: list[str] = []
        # Each list_reports call consumes the next gate (if any) and blocks on it
        self.report_gates: list[asyncio.Event] = []

        self.created: list[tuple[str, str, str]] = []
        self.create_error: str | None = None
        self.description: str = "AI written description"
        self.description_error: str | None = None

    async def list_issue_groups(self, limit: int, team_id: str | None = None) -> list[IssueGroup]:
        self.group_calls.append((limit, team_id))
        if self.groups_error:
            raise ApiError(self.groups_error)
        return list(self.groups)

    async def list_reports(self, group_id: str) -> list[ReportItem]:
        self.report_calls.append(group_id)
        items = list(self.reports.get(group_id, []))
        error = self.reports_error
        if self.report_gates:
            await self.report_gates.pop(0).wait()
        if error:
            raise ApiError(error)
        return items

    async def create_jira_ticket(self, group_id: str, title: str, description: str) -> CreatedTicket:
        if self.create_error:
            raise ApiError(self.create_error)
        self.created.append((group_id, title, description))
        key = f"KTN-{len(self.created)}"
        return CreatedTicket(ticket_key=key, ticket_url=f"https://acme.atlassian.net/browse/{key}")

    async def generate_jira_description(self, title: str, summary: str) -> str:
        if self.description_error:
            raise ApiError(self.description_error)
        return self.description


@pytest.fixture
def fake_client() -> FakeApiClient:
    return FakeApiClient()


class FakeProvider:
    """OAuth provider double. Status responses are consumed in order; the last one repeats."""

    name = "slack"
    label = "Slack"
    tenant_id = TENANT

    def __init__(self) -> None:
        self.statuses: list[AuthStatus | ApiError] = [AuthStatus(provider="slack", needs_auth=True)]
        self.status_calls = 0
        self.auth_url: AuthorizationUrl | ApiError = AuthorizationUrl(
            authorization_url="https://slack.com/oauth/v2/authorize?state=abc", integration_id="int-1"
        )
        self.refresh_result: RefreshResult | ApiError = RefreshResult(success=True)
        self.refreshed: list[str] = []

    async def get_auth_status(self) -> AuthStatus:
        self.status_calls += 1
        result = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(result, ApiError):
            raise result
        return result

    async def get_auth_url(self) -> AuthorizationUrl:
        if isinstance(self.auth_url, ApiError):
            raise self.auth_url
        return self.auth_url

    async def refresh_token(self, integration_id: str) -> RefreshResult:
        self.refreshed.append(integration_id)
        if isinstance(self.refresh_result, ApiError):
            raise self.refresh_result
        return self.refresh_result


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


class FakeClock:
    """Virtual monotonic clock; sleep() advances it instantly."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class FakePopup:
    def __init__(self, closed: bool = False) -> None:
        self.closed = closed


@pytest.fixture
def popup() -> FakePopup:
    return FakePopup()
