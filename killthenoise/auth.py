"""OAuth connect/poll controller shared by the Slack and HubSpot connect flows.

The controller never handles tokens. It asks the backend for an authorization
URL, opens it, then polls the backend's status endpoint until the account is
connected, the popup is seen closed, or the hard timeout expires.
"""

import asyncio
import time
import webbrowser
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Protocol

import structlog

from killthenoise.api import ApiError
from killthenoise.models import AuthStatus
from killthenoise.preferences import Preferences
from killthenoise.providers.base import OAuthProvider

logger = structlog.get_logger(__name__)

POLL_INTERVAL_SECONDS = 3.0
POLL_TIMEOUT_SECONDS = 300.0

POPUP_BLOCKED_MESSAGE = "The authorization window was blocked. Please allow popups for this site and try again."


class AuthState(str, Enum):
    IDLE = "idle"
    CHECKING = "checking"
    AUTHENTICATED = "authenticated"
    NEEDS_AUTH = "needs_auth"
    POLLING = "polling"
    ERROR = "error"


class StopReason(str, Enum):
    AUTHENTICATED = "authenticated"
    POPUP_CLOSED = "popup_closed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


class PopupWindow(Protocol):
    @property
    def closed(self) -> bool: ...


class BrowserPopup:
    """Handle for a URL handed to the system browser.

    The browser gives no way to observe the tab afterwards, so ``closed`` never
    fires and the polling timeout does the stopping.
    """

    def __init__(self, url: str) -> None:
        self.url = url

    @property
    def closed(self) -> bool:
        return False


def open_in_browser(url: str) -> BrowserPopup | None:
    """Open url in a new browser window; None means nothing could be opened."""
    if not webbrowser.open_new(url):
        return None
    return BrowserPopup(url)


class AuthController:
    def __init__(
        self,
        provider: OAuthProvider,
        preferences: Preferences | None = None,
        open_popup: Callable[[str], PopupWindow | None] = open_in_browser,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        poll_timeout: float = POLL_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.provider = provider
        self._preferences = preferences
        self._open_popup = open_popup
        self._poll_interval = poll_interval
        self._poll_timeout = poll_timeout
        self._clock = clock
        self._sleep = sleep
        self._poll_task: asyncio.Task | None = None
        self._polling = False
        self._log = logger.bind(provider=provider.name, tenant_id=provider.tenant_id)

        self.auth_status: AuthStatus | None = None
        self.loading = False
        self.connecting = False
        self.error: str | None = None
        self.stop_reason: StopReason | None = None

    # -- derived state ------------------------------------------------------

    @property
    def polling(self) -> bool:
        return self._polling

    @property
    def state(self) -> AuthState:
        if self.polling:
            return AuthState.POLLING
        if self.loading:
            return AuthState.CHECKING
        if self.error:
            return AuthState.ERROR
        if self.auth_status is None:
            return AuthState.IDLE
        if self.auth_status.authenticated:
            return AuthState.AUTHENTICATED
        return AuthState.NEEDS_AUTH

    @property
    def can_refresh(self) -> bool:
        return bool(self.auth_status and self.auth_status.can_refresh and not self.auth_status.authenticated)

    @property
    def integration_id(self) -> str | None:
        if self.auth_status and self.auth_status.integration_id:
            return self.auth_status.integration_id
        if self._preferences is not None:
            return self._preferences.integration_id(self.provider.name)
        return None

    # -- operations ---------------------------------------------------------

    async def check_auth(self, is_background_call: bool = False) -> None:
        """Fetch the provider status.

        Background calls (poll ticks) leave ``loading`` alone and swallow
        failures; the last known status stays in place until the next tick.
        """
        if not is_background_call:
            self.loading = True
            self.error = None
        try:
            self.auth_status = await self.provider.get_auth_status()
            if is_background_call:
                self.error = None
        except ApiError as exc:
            if is_background_call:
                self._log.warning("auth_poll_failed", error=str(exc))
            else:
                self._log.warning("auth_check_failed", error=str(exc))
                self.error = str(exc) or "Failed to check authentication status"
        finally:
            if not is_background_call:
                self.loading = False

    async def connect(self) -> bool:
        """Start the OAuth flow. Never raises; True when polling has started."""
        if self.polling:
            return True
        self.connecting = True
        self.error = None
        try:
            auth = await self.provider.get_auth_url()
        except ApiError as exc:
            self._log.warning("auth_url_failed", error=str(exc))
            self.error = str(exc) or f"Failed to start {self.provider.label} authorization"
            self.connecting = False
            return False

        popup = self._open_popup(auth.authorization_url)
        if popup is None:
            self._log.warning("auth_popup_blocked")
            self.error = POPUP_BLOCKED_MESSAGE
            self.connecting = False
            return False

        if auth.integration_id and self._preferences is not None:
            self._preferences.set_integration_id(self.provider.name, auth.integration_id)
        self.start_polling(popup)
        return True

    def start_polling(self, popup: PopupWindow | None = None) -> None:
        if self._polling:
            return
        self._polling = True
        self.stop_reason = None
        self._poll_task = asyncio.create_task(self._poll(popup))

    def stop_polling(self) -> None:
        if self._poll_task is not None and not self._poll_task.done():
            self._poll_task.cancel()
        if self._polling:
            self.stop_reason = StopReason.CANCELLED
        self._polling = False
        self.connecting = False

    async def wait_for_polling(self) -> StopReason | None:
        task = self._poll_task
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                # Only swallow the poll task's cancellation, not our own
                if not task.cancelled():
                    raise
        return self.stop_reason

    async def _poll(self, popup: PopupWindow | None) -> None:
        deadline = self._clock() + self._poll_timeout
        self._log.info("auth_polling_started", interval=self._poll_interval, timeout=self._poll_timeout)
        try:
            while True:
                await self._sleep(self._poll_interval)
                if self._clock() >= deadline:
                    reason = StopReason.TIMEOUT
                    break
                await self.check_auth(is_background_call=True)
                if self.auth_status is not None and self.auth_status.authenticated:
                    reason = StopReason.AUTHENTICATED
                    break
                if popup is not None and popup.closed:
                    reason = StopReason.POPUP_CLOSED
                    break
        finally:
            self._polling = False
            self.connecting = False

        self.stop_reason = reason
        self._log.info("auth_polling_stopped", reason=reason.value)
        if reason is not StopReason.AUTHENTICATED:
            # Resolve the final state with a normal, error-reporting check
            await self.check_auth()

    async def refresh_token(self) -> bool:
        """Refresh the stored credential. Never raises; True on success."""
        integration_id = self.integration_id
        if not integration_id:
            return False
        self.loading = True
        self.error = None
        try:
            result = await self.provider.refresh_token(integration_id)
            if not result.success:
                self.error = result.message or "Failed to refresh token"
                return False
            self._log.info("auth_token_refreshed", integration_id=integration_id)
            await self.check_auth()
            return self.error is None
        except ApiError as exc:
            self._log.warning("auth_refresh_failed", error=str(exc))
            self.error = str(exc) or "Failed to refresh token"
            return False
        finally:
            self.loading = False

    async def close(self) -> None:
        """Teardown: never leave a polling task behind."""
        self.stop_polling()
        await self.wait_for_polling()
