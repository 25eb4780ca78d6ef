"""Slack workspace connection."""

from killthenoise.models import AuthStatus
from killthenoise.providers.base import OAuthProvider


class SlackProvider(OAuthProvider):
    name = "slack"
    label = "Slack"

    def _status_from_node(self, node: dict) -> AuthStatus:
        return AuthStatus(**self._common_fields(node), workspace=node.get("team") or node.get("team_name"))
