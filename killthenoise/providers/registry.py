"""Provider lookup by name."""

from killthenoise.api import ApiClient
from killthenoise.providers.base import OAuthProvider
from killthenoise.providers.hubspot import HubSpotProvider
from killthenoise.providers.slack import SlackProvider

PROVIDERS: dict[str, type[OAuthProvider]] = {
    SlackProvider.name: SlackProvider,
    HubSpotProvider.name: HubSpotProvider,
}


def get_provider(name: str, client: ApiClient) -> OAuthProvider:
    match name.strip().lower():
        case "slack":
            return SlackProvider(client)
        case "hubspot":
            return HubSpotProvider(client)
        case _:
            raise ValueError(f"Unknown provider '{name}'. Valid: {', '.join(PROVIDERS)}")
