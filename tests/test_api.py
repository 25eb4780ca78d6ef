"""Tests for ApiClient using pytest-httpx."""

import json

import httpx
import pytest
from pytest_httpx import HTTPXMock

from killthenoise.api import TENANT_HEADER, ApiClient, ApiError, _error_message, _unwrap
from killthenoise.models import IssueType
from killthenoise.settings import KtnSettings

API = "http://ktn.test"
TENANT = "tenant-1"

_GROUP_NODE = {
    "id": "g1",
    "title": "Checkout crash",
    "summary": "Payment page crashes",
    "severity": 88,
    "type": "bug",
    "frequency": 4,
    "sources": [{"source": "jira", "count": 1}, {"source": "slack", "count": 3}],
    "updated_at": "2025-03-01T12:00:00Z",
}

_REPORT_NODE = {
    "id": "r1",
    "group_id": "g1",
    "source": "jira",
    "title": "Checkout crash on iOS",
    "external_id": "KTN-12",
    "url": "https://acme.atlassian.net/browse/KTN-12",
    "created_at": "2025-03-01T10:00:00Z",
}


@pytest.fixture
async def client():
    async with ApiClient(KtnSettings(api_base=API), TENANT) as c:
        yield c


class TestUnwrap:
    def test_data_envelope(self) -> None:
        assert _unwrap({"success": True, "data": [1, 2]}, "x") == [1, 2]

    def test_bare_payload(self) -> None:
        assert _unwrap([1, 2], "x") == [1, 2]
        assert _unwrap({"authenticated": True}, "x") == {"authenticated": True}

    def test_success_false_raises_with_message(self) -> None:
        with pytest.raises(ApiError, match="Integration not found"):
            _unwrap({"success": False, "message": "Integration not found"}, "fallback")

    def test_success_false_without_message_uses_fallback(self) -> None:
        with pytest.raises(ApiError, match="fallback"):
            _unwrap({"success": False}, "fallback")

    def test_nested_detail_message(self) -> None:
        assert _error_message({"detail": {"message": "Bad tenant"}}, "x") == "Bad tenant"


class TestIssueGroups:
    async def test_returns_groups_with_tenant_header(self, client: ApiClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            url=f"{API}/api/issues?tenant_id={TENANT}&limit=20",
            json={"success": True, "data": [_GROUP_NODE]},
        )
        groups = await client.list_issue_groups(20)

        assert len(groups) == 1
        assert groups[0].id == "g1"
        assert groups[0].type is IssueType.BUG
        assert httpx_mock.get_request().headers[TENANT_HEADER] == TENANT

    async def test_team_param(self, client: ApiClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=f"{API}/api/issues?tenant_id={TENANT}&limit=5&team_id=t9", json=[])
        assert await client.list_issue_groups(5, team_id="t9") == []

    async def test_null_data_is_empty(self, client: ApiClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=f"{API}/api/issues?tenant_id={TENANT}&limit=20", json={"data": None})
        assert await client.list_issue_groups(20) == []

    async def test_http_error_uses_detail(self, client: ApiClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            url=f"{API}/api/issues?tenant_id={TENANT}&limit=20",
            status_code=500,
            json={"detail": "Database unavailable"},
        )
        with pytest.raises(ApiError, match="Database unavailable") as exc_info:
            await client.list_issue_groups(20)
        assert exc_info.value.status_code == 500

    async def test_http_error_without_body(self, client: ApiClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=f"{API}/api/issues?tenant_id={TENANT}&limit=20", status_code=502, text="bad")
        with pytest.raises(ApiError, match=r"Failed to load issues \(HTTP 502\)"):
            await client.list_issue_groups(20)

    async def test_transport_error(self, client: ApiClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_exception(httpx.ConnectError("connection refused"))
        with pytest.raises(ApiError, match="Failed to load issues: connection refused"):
            await client.list_issue_groups(20)

    async def test_malformed_group(self, client: ApiClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=f"{API}/api/issues?tenant_id={TENANT}&limit=20", json=[{"id": "g1"}])
        with pytest.raises(ApiError, match="malformed response"):
            await client.list_issue_groups(20)

    async def test_non_list_payload(self, client: ApiClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=f"{API}/api/issues?tenant_id={TENANT}&limit=20", json={"data": {"id": "g1"}})
        with pytest.raises(ApiError, match="expected a list"):
            await client.list_issue_groups(20)


class TestReports:
    async def test_returns_reports(self, client: ApiClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=f"{API}/api/issues/g1/reports", json={"data": [_REPORT_NODE]})
        reports = await client.list_reports("g1")
        assert reports[0].jira_key == "KTN-12"


class TestAuth:
    async def test_auth_status_root_payload(self, client: ApiClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            url=f"{API}/api/slack/auth-status/{TENANT}",
            json={"authenticated": True, "integration_id": "int-1", "team": "Acme"},
        )
        node = await client.get_auth_status("slack")
        assert node["team"] == "Acme"

    async def test_auth_url(self, client: ApiClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            url=f"{API}/api/hubspot/authorize/{TENANT}",
            json={"success": True, "data": {"authorization_url": "https://app.hubspot.com/oauth", "integration_id": 5}},
        )
        auth = await client.get_auth_url("hubspot")
        assert auth.authorization_url == "https://app.hubspot.com/oauth"

    async def test_auth_url_missing(self, client: ApiClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=f"{API}/api/slack/authorize/{TENANT}", json={"success": True, "data": {}})
        with pytest.raises(ApiError, match="Failed to start slack authorization"):
            await client.get_auth_url("slack")

    async def test_refresh_token(self, client: ApiClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            method="POST",
            url=f"{API}/api/slack/refresh-token/{TENANT}/int-1",
            json={"message": "Token refreshed"},
        )
        result = await client.refresh_token("slack", "int-1")
        assert result.success
        assert result.message == "Token refreshed"

    async def test_refresh_token_rejected(self, client: ApiClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            method="POST",
            url=f"{API}/api/slack/refresh-token/{TENANT}/int-1",
            json={"success": False, "message": "Refresh token revoked"},
        )
        with pytest.raises(ApiError, match="Refresh token revoked"):
            await client.refresh_token("slack", "int-1")


class TestTickets:
    async def test_create_jira_ticket(self, client: ApiClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            method="POST",
            url=f"{API}/api/issues/g1/create-jira-ticket?tenant_id={TENANT}",
            json={"success": True, "data": {"ticket_key": "KTN-99", "ticket_url": "https://acme/KTN-99"}},
        )
        ticket = await client.create_jira_ticket("g1", "Fix checkout", "Steps...")

        assert ticket.ticket_key == "KTN-99"
        request = httpx_mock.get_request()
        assert request.headers[TENANT_HEADER] == TENANT
        assert json.loads(request.read()) == {"title": "Fix checkout", "description": "Steps..."}

    async def test_generate_description(self, client: ApiClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            method="POST",
            url=f"{API}/api/ai/generate-jira-description",
            json={"success": True, "description": "User Story: ..."},
        )
        assert await client.generate_jira_description("t", "s") == "User Story: ..."

    async def test_generate_description_missing_field(self, client: ApiClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(method="POST", url=f"{API}/api/ai/generate-jira-description", json={"success": True})
        with pytest.raises(ApiError, match="no description"):
            await client.generate_jira_description("t", "s")


class TestTeams:
    async def test_list_teams(self, client: ApiClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            url=f"{API}/api/teams/{TENANT}",
            json={"data": [{"id": 1, "name": "Payments", "is_default": True}, {"id": 2, "name": "Growth"}]},
        )
        teams = await client.list_teams()
        assert [t.name for t in teams] == ["Payments", "Growth"]
        assert teams[0].id == "1"

    async def test_create_team(self, client: ApiClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            method="POST",
            url=f"{API}/api/teams/{TENANT}",
            json={"success": True, "data": {"id": 7, "name": "Mobile", "is_default_team": True}},
        )
        team = await client.create_team("Mobile", "iOS and Android crashes", is_default=True)

        assert team.id == "7"
        assert team.is_default
        assert json.loads(httpx_mock.get_request().read()) == {
            "name": "Mobile",
            "description": "",
            "assignment_criteria": "iOS and Android crashes",
            "is_default_team": True,
        }

    async def test_update_team(self, client: ApiClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            method="PUT", url=f"{API}/api/teams/{TENANT}/7", json={"id": 7, "name": "Mobile apps"}
        )
        team = await client.update_team("7", name="Mobile apps", is_default=False)

        assert team.name == "Mobile apps"
        assert json.loads(httpx_mock.get_request().read()) == {"name": "Mobile apps", "is_default_team": False}

    async def test_delete_team_without_body(self, client: ApiClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(method="DELETE", url=f"{API}/api/teams/{TENANT}/7", status_code=204)
        assert await client.delete_team("7") is None

    async def test_set_default_team(self, client: ApiClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            method="POST", url=f"{API}/api/teams/{TENANT}/7/set-default", json={"success": True}
        )
        await client.set_default_team("7")
        assert httpx_mock.get_request().method == "POST"

    async def test_set_default_team_rejected(self, client: ApiClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            method="POST",
            url=f"{API}/api/teams/{TENANT}/7/set-default",
            json={"success": False, "message": "Team not found"},
        )
        with pytest.raises(ApiError, match="Team not found"):
            await client.set_default_team("7")


class TestJiraStatus:
    async def test_connected(self, client: ApiClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            url=f"{API}/api/jira/status/{TENANT}/j-1",
            json={
                "connected": True,
                "base_url": "https://acme.atlassian.net",
                "method": "api_token",
                "user": {"display_name": "Dana", "email": "dana@acme.io"},
            },
        )
        status = await client.get_jira_status("j-1")

        assert status.connected
        assert status.base_url == "https://acme.atlassian.net"
        assert status.user.display_name == "Dana"

    async def test_missing_connected_flag(self, client: ApiClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=f"{API}/api/jira/status/{TENANT}/j-1", json={"base_url": "x"})
        with pytest.raises(ApiError, match="Failed to fetch Jira status"):
            await client.get_jira_status("j-1")


class TestSync:
    async def test_slack_nested_count(self, client: ApiClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            method="POST",
            url=f"{API}/api/slack/sync/{TENANT}?days=7",
            json={"success": True, "data": {"ingested": 12}},
        )
        result = await client.sync_slack()
        assert result.provider == "slack"
        assert result.ingested == 12

    async def test_slack_root_count(self, client: ApiClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            method="POST", url=f"{API}/api/slack/sync/{TENANT}?days=3", json={"success": True, "ingested": 4}
        )
        assert (await client.sync_slack(days=3)).ingested == 4

    async def test_jira_sync_type(self, client: ApiClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            method="POST",
            url=f"{API}/api/jira/sync/{TENANT}/j-1?sync_type=incremental",
            json={"ingested": 2, "message": "2 issues updated"},
        )
        result = await client.sync_jira("j-1", "incremental")
        assert result.message == "2 issues updated"

    async def test_hubspot_sync(self, client: ApiClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(method="POST", url=f"{API}/api/hubspot/sync", json={"success": True})
        result = await client.sync_hubspot()

        assert result.ingested == 0
        assert httpx_mock.get_request().headers[TENANT_HEADER] == TENANT

    async def test_failure(self, client: ApiClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            method="POST",
            url=f"{API}/api/slack/sync/{TENANT}?days=7",
            json={"success": False, "message": "No channels selected"},
        )
        with pytest.raises(ApiError, match="No channels selected"):
            await client.sync_slack()
