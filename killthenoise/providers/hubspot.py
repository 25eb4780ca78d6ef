"""HubSpot portal connection."""

from killthenoise.models import AuthStatus
from killthenoise.providers.base import OAuthProvider


class HubSpotProvider(OAuthProvider):
    name = "hubspot"
    label = "HubSpot"

    def _status_from_node(self, node: dict) -> AuthStatus:
        hub_id = node.get("hub_id")
        return AuthStatus(
            **self._common_fields(node),
            domain=node.get("hub_domain"),
            workspace=str(hub_id) if hub_id is not None else None,
        )
