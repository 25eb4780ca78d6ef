"""Async client for the KillTheNoise backend REST API.

Every response passes through ``_unwrap``: some endpoints nest their payload
under ``data`` and some return it at the root, and ``success: false`` can
arrive with a 200. Callers only ever see the canonical payload or an
``ApiError``.
"""

import httpx
import structlog
from pydantic import ValidationError

from killthenoise.models import (
    AuthorizationUrl,
    CreatedTicket,
    IssueGroup,
    JiraStatus,
    RefreshResult,
    ReportItem,
    SyncResult,
    Team,
)
from killthenoise.settings import KtnSettings

logger = structlog.get_logger(__name__)

TENANT_HEADER = "X-Tenant-ID"


class ApiError(RuntimeError):
    """Any failure talking to the backend: transport, HTTP status, or success=false."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _error_message(payload: object, fallback: str) -> str:
    if isinstance(payload, dict):
        for key in ("message", "detail", "error"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
            # FastAPI validation details come back as {"detail": {"message": ...}}
            if isinstance(value, dict) and isinstance(value.get("message"), str):
                return value["message"]
    return fallback


def _unwrap(payload: object, fallback: str) -> object:
    if isinstance(payload, dict):
        if payload.get("success") is False:
            raise ApiError(_error_message(payload, fallback))
        if "data" in payload:
            return payload["data"]
    return payload


class ApiClient:
    def __init__(
        self,
        settings: KtnSettings,
        tenant_id: str,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.tenant_id = tenant_id
        self._client = httpx.AsyncClient(
            base_url=settings.api_base,
            headers={TENANT_HEADER: tenant_id, "Accept": "application/json"},
            timeout=settings.request_timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        fallback: str,
        params: dict | None = None,
        body: dict | None = None,
    ) -> object:
        try:
            response = await self._client.request(method, path, params=params, json=body)
        except httpx.HTTPError as exc:
            logger.warning("api_transport_error", method=method, path=path, error=str(exc))
            raise ApiError(f"{fallback}: {exc}") from exc

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if response.is_error:
            logger.warning("api_http_error", method=method, path=path, status=response.status_code)
            raise ApiError(_error_message(payload, f"{fallback} (HTTP {response.status_code})"), response.status_code)
        if response.status_code == httpx.codes.NO_CONTENT:
            return None
        if payload is None:
            raise ApiError(f"{fallback}: backend returned a non-JSON response", response.status_code)
        return _unwrap(payload, fallback)

    async def _get(self, path: str, fallback: str, params: dict | None = None) -> object:
        return await self._request("GET", path, fallback, params=params)

    async def _post(self, path: str, fallback: str, body: dict | None = None, params: dict | None = None) -> object:
        return await self._request("POST", path, fallback, params=params, body=body)

    async def _put(self, path: str, fallback: str, body: dict | None = None) -> object:
        return await self._request("PUT", path, fallback, body=body)

    async def _delete(self, path: str, fallback: str) -> object:
        return await self._request("DELETE", path, fallback)

    # -- OAuth providers ----------------------------------------------------

    async def get_auth_status(self, provider: str) -> dict:
        data = await self._get(
            f"/api/{provider}/auth-status/{self.tenant_id}", "Failed to check authentication status"
        )
        if not isinstance(data, dict):
            raise ApiError("Failed to check authentication status: unexpected response")
        return data

    async def get_auth_url(self, provider: str) -> AuthorizationUrl:
        fallback = f"Failed to start {provider} authorization"
        data = await self._get(f"/api/{provider}/authorize/{self.tenant_id}", fallback)
        return _parse(AuthorizationUrl, data, fallback)

    async def refresh_token(self, provider: str, integration_id: str) -> RefreshResult:
        data = await self._post(
            f"/api/{provider}/refresh-token/{self.tenant_id}/{integration_id}", "Failed to refresh token"
        )
        if isinstance(data, dict):
            data = {"success": True, **data}
        return _parse(RefreshResult, data, "Failed to refresh token")

    async def get_jira_status(self, integration_id: str) -> JiraStatus:
        fallback = "Failed to fetch Jira status"
        data = await self._get(f"/api/jira/status/{self.tenant_id}/{integration_id}", fallback)
        if not isinstance(data, dict) or "connected" not in data:
            raise ApiError(f"{fallback}: unexpected response")
        return _parse(JiraStatus, data, fallback)

    # -- Ingestion ----------------------------------------------------------

    async def sync_slack(self, days: int = 7) -> SyncResult:
        data = await self._post(
            f"/api/slack/sync/{self.tenant_id}", "Failed to sync Slack messages", params={"days": days}
        )
        return _sync_result("slack", data, "Failed to sync Slack messages")

    async def sync_jira(self, integration_id: str, sync_type: str = "full") -> SyncResult:
        data = await self._post(
            f"/api/jira/sync/{self.tenant_id}/{integration_id}",
            "Failed to sync Jira issues",
            params={"sync_type": sync_type},
        )
        return _sync_result("jira", data, "Failed to sync Jira issues")

    async def sync_hubspot(self) -> SyncResult:
        data = await self._post("/api/hubspot/sync", "Failed to sync HubSpot tickets")
        return _sync_result("hubspot", data, "Failed to sync HubSpot tickets")

    # -- AI issue groups ----------------------------------------------------

    async def list_issue_groups(self, limit: int, team_id: str | None = None) -> list[IssueGroup]:
        params: dict = {"tenant_id": self.tenant_id, "limit": limit}
        if team_id:
            params["team_id"] = team_id
        data = await self._get("/api/issues", "Failed to load issues", params=params)
        return _parse_list(IssueGroup, data, "Failed to load issues")

    async def list_reports(self, group_id: str) -> list[ReportItem]:
        data = await self._get(f"/api/issues/{group_id}/reports", "Failed to load reports")
        return _parse_list(ReportItem, data, "Failed to load reports")

    async def create_jira_ticket(self, group_id: str, title: str, description: str) -> CreatedTicket:
        data = await self._post(
            f"/api/issues/{group_id}/create-jira-ticket",
            "Failed to create ticket",
            body={"title": title, "description": description},
            params={"tenant_id": self.tenant_id},
        )
        return _parse(CreatedTicket, data, "Failed to create ticket")

    async def generate_jira_description(self, title: str, summary: str) -> str:
        data = await self._post(
            "/api/ai/generate-jira-description",
            "Failed to generate description",
            body={"title": title, "summary": summary},
        )
        description = data.get("description") if isinstance(data, dict) else None
        if not isinstance(description, str):
            raise ApiError("Failed to generate description: no description in response")
        return description

    # -- Teams --------------------------------------------------------------

    async def list_teams(self) -> list[Team]:
        data = await self._get(f"/api/teams/{self.tenant_id}", "Failed to load teams")
        return _parse_list(Team, data, "Failed to load teams")

    async def create_team(
        self, name: str, assignment_criteria: str, description: str = "", is_default: bool = False
    ) -> Team:
        data = await self._post(
            f"/api/teams/{self.tenant_id}",
            "Failed to create team",
            body={
                "name": name,
                "description": description,
                "assignment_criteria": assignment_criteria,
                "is_default_team": is_default,
            },
        )
        return _parse(Team, data, "Failed to create team")

    async def update_team(self, team_id: str, **fields: object) -> Team:
        if "is_default" in fields:
            fields["is_default_team"] = fields.pop("is_default")
        data = await self._put(f"/api/teams/{self.tenant_id}/{team_id}", "Failed to update team", body=fields)
        return _parse(Team, data, "Failed to update team")

    async def delete_team(self, team_id: str) -> None:
        await self._delete(f"/api/teams/{self.tenant_id}/{team_id}", "Failed to delete team")

    async def set_default_team(self, team_id: str) -> None:
        await self._post(f"/api/teams/{self.tenant_id}/{team_id}/set-default", "Failed to update default team")


def _parse(model, data: object, fallback: str):
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise ApiError(f"{fallback}: malformed response ({exc.error_count()} errors)") from exc


def _sync_result(provider: str, data: object, fallback: str) -> SyncResult:
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ApiError(f"{fallback}: unexpected response")
    return _parse(SyncResult, {**data, "provider": provider}, fallback)


def _parse_list(model, data: object, fallback: str) -> list:
    if data is None:
        return []
    if not isinstance(data, list):
        raise ApiError(f"{fallback}: expected a list")
    return [_parse(model, item, fallback) for item in data]
