"""Abstract base class for OAuth-connected providers."""

from abc import ABC, abstractmethod

from pydantic import ValidationError

from killthenoise.api import ApiClient, ApiError
from killthenoise.models import AuthorizationUrl, AuthStatus, RefreshResult


class OAuthProvider(ABC):
    name: str
    label: str

    def __init__(self, client: ApiClient) -> None:
        self._client = client

    @property
    def tenant_id(self) -> str:
        return self._client.tenant_id

    async def get_auth_url(self) -> AuthorizationUrl:
        return await self._client.get_auth_url(self.name)

    async def get_auth_status(self) -> AuthStatus:
        node = await self._client.get_auth_status(self.name)
        try:
            return self._status_from_node(node)
        except ValidationError as exc:
            raise ApiError(
                f"Failed to check authentication status: malformed response ({exc.error_count()} errors)"
            ) from exc

    async def refresh_token(self, integration_id: str) -> RefreshResult:
        return await self._client.refresh_token(self.name, integration_id)

    def _common_fields(self, node: dict) -> dict:
        return {
            "provider": self.name,
            "authenticated": bool(node.get("authenticated")),
            "needs_auth": bool(node.get("needs_auth")),
            "can_refresh": bool(node.get("can_refresh")),
            "integration_id": str(node["integration_id"]) if node.get("integration_id") else None,
            "message": node.get("message") or "",
            "scopes": list(node.get("scopes") or []),
        }

    @abstractmethod
    def _status_from_node(self, node: dict) -> AuthStatus: ...
