import asyncio
import sys
from typing import Optional

from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError

from services.channel_interface import (
    CONNECTION_LOST,
    LOGGED_OUT,
    BroadcastChannel,
    EventKind,
)
from services.log_setup import log

# Slack error codes after which the token will never work again
PERMANENT_ERRORS = {
    "invalid_auth",
    "not_authed",
    "token_revoked",
    "token_expired",
    "account_inactive",
}


class ConsoleBroadcastChannel(BroadcastChannel):
    """Console output broadcast (fallback when Slack is not configured)"""

    async def initialize(self) -> None:
        self._emit(EventKind.OPEN)

    async def send(self, group_id: str, text: str) -> bool:
        if not self.is_ready():
            return False
        print(f"[broadcast:{group_id}] {text}", file=sys.stdout)
        return True


class SlackBroadcastChannel(BroadcastChannel):
    """Posts status text to a Slack channel"""

    def __init__(
        self,
        token: str,
        reconnect_delay: float = 30.0,
        timeout: float = 15.0,
        client: Optional[WebClient] = None,
    ):
        super().__init__(reconnect_delay=reconnect_delay)
        self._token = token
        self._timeout = timeout
        self._client = client
        if self._client is None and token:
            self._client = WebClient(token=token, timeout=int(timeout))

    async def initialize(self) -> None:
        if self._client is None:
            log.warning("Slack token missing; waiting for reauthorize()")
            self._emit(EventKind.NEEDS_PAIRING)
            return

        try:
            resp = await asyncio.wait_for(
                asyncio.to_thread(self._client.auth_test), self._timeout
            )
        except SlackApiError as e:
            self._handle_api_error(e)
            return
        except Exception as e:
            log.warning("Slack connection failed: %s", str(e) or type(e).__name__)
            self._emit(EventKind.CLOSED, CONNECTION_LOST)
            return

        log.info("Slack broadcast channel open (team=%s)", resp.get("team"))
        self._emit(EventKind.OPEN)

    def _handle_api_error(self, e: SlackApiError) -> None:
        error = e.response.get("error", "") if e.response is not None else ""
        if error in PERMANENT_ERRORS:
            log.critical("Slack authentication lost (%s); broadcast disabled", error)
            self._emit(EventKind.AUTH_FAILURE, error)
            self._emit(EventKind.CLOSED, LOGGED_OUT)
        else:
            log.warning("Slack API error: %s", error or e)
            self._emit(EventKind.CLOSED, error or CONNECTION_LOST)

    async def reauthorize(self, token: str) -> None:
        self._token = token
        self._client = WebClient(token=token, timeout=int(self._timeout))
        await self.initialize()

    async def send(self, group_id: str, text: str) -> bool:
        if not self.is_ready():
            log.warning("Slack channel not ready, dropped: %s", text)
            return False

        try:
            await asyncio.wait_for(
                asyncio.to_thread(
                    self._client.chat_postMessage, channel=group_id, text=text
                ),
                self._timeout,
            )
        except SlackApiError as e:
            error = e.response.get("error", "") if e.response is not None else ""
            if error in PERMANENT_ERRORS:
                self._handle_api_error(e)
            else:
                # channel_not_found, ratelimited, ...: the session itself is fine
                log.warning("Slack send failed (%s): %s", error or e, text)
            return False
        except Exception as e:
            log.warning("Slack send failed (%s): %s", str(e) or type(e).__name__, text)
            self._emit(EventKind.CLOSED, CONNECTION_LOST)
            return False

        log.info("Broadcast to %s: %s", group_id, text)
        return True
