import asyncio
from typing import Optional

from telethon import TelegramClient, errors, events
from telethon.sessions import StringSession

from services.channel_interface import CommandChannel, ConnectionState
from services.log_setup import log


# Session is gone for good; reconnecting would loop pointlessly
PERMANENT_AUTH_ERRORS = (
    errors.AuthKeyUnregisteredError,
    errors.AuthKeyDuplicatedError,
    errors.SessionRevokedError,
    errors.UserDeactivatedError,
    errors.UserDeactivatedBanError,
)


class TelegramCommandChannel(CommandChannel):
    """Telegram user session that sends commands to one bot"""

    def __init__(
        self,
        api_id: int,
        api_hash: str,
        session: str,
        destination: str,
        timeout: float = 30.0,
        connection_retries: int = 5,
        client: Optional[TelegramClient] = None,
    ):
        super().__init__()
        self._destination = destination
        self._timeout = timeout
        self._client = client or TelegramClient(
            StringSession(session),
            api_id,
            api_hash,
            connection_retries=connection_retries,
        )
        self._listening = False

    def _mark_auth_lost(self, reason) -> None:
        self.auth_lost = True
        self.state = ConnectionState.DISCONNECTED
        log.critical("Telegram session lost permanently (%s); run `login` again", reason)

    async def connect(self) -> bool:
        if self.auth_lost:
            return False

        self.state = ConnectionState.CONNECTING
        try:
            await asyncio.wait_for(self._client.connect(), self._timeout)
            authorized = await asyncio.wait_for(
                self._client.is_user_authorized(), self._timeout
            )
        except PERMANENT_AUTH_ERRORS as e:
            self._mark_auth_lost(type(e).__name__)
            return False
        except Exception as e:
            self.state = ConnectionState.DISCONNECTED
            log.warning("Telegram connect failed: %s", str(e) or type(e).__name__)
            return False

        if not authorized:
            self._mark_auth_lost("session not authorized")
            return False

        if not self._listening:
            self._client.add_event_handler(
                self._on_incoming, events.NewMessage(incoming=True)
            )
            self._listening = True

        self.state = ConnectionState.READY
        log.info("Telegram command channel ready (destination=%s)", self._destination)
        return True

    async def _on_incoming(self, event) -> None:
        """Log replies from the destination bot"""
        sender = await event.get_sender()
        username = getattr(sender, "username", None)
        if not getattr(sender, "bot", False) or username != self._destination.lstrip("@"):
            return
        log.info("Reply from %s: %s", username, event.raw_text or "(no text)")

    async def disconnect(self) -> None:
        try:
            await asyncio.wait_for(self._client.disconnect(), self._timeout)
        except Exception as e:
            log.warning("Telegram disconnect failed: %s", str(e) or type(e).__name__)
        finally:
            self.state = ConnectionState.DISCONNECTED

    async def probe(self) -> None:
        if not self._client.is_connected():
            self.state = ConnectionState.DISCONNECTED
            raise ConnectionError("Telegram client is not connected")
        try:
            await self._client.get_me()
        except PERMANENT_AUTH_ERRORS as e:
            self._mark_auth_lost(type(e).__name__)

    async def send(self, text: str) -> bool:
        if not self.is_ready():
            log.warning("Telegram channel not ready, dropped: %s", text)
            return False

        try:
            await asyncio.wait_for(
                self._client.send_message(self._destination, text), self._timeout
            )
        except PERMANENT_AUTH_ERRORS as e:
            self._mark_auth_lost(type(e).__name__)
            return False
        except errors.FloodWaitError as e:
            log.warning("Telegram flood limit, retry after %ss: %s", e.seconds, text)
            return False
        except (asyncio.TimeoutError, ConnectionError) as e:
            self.state = ConnectionState.DISCONNECTED
            log.warning("Telegram send failed (%s): %s", type(e).__name__, text)
            return False
        except Exception as e:
            log.warning("Telegram send failed: %s (%s)", text, e)
            return False

        log.info("Sent to %s: %s", self._destination, text)
        return True

    async def login(self) -> str:
        """Interactive phone/OTP/2FA login. Returns the session string"""
        await self._client.start()
        self.state = ConnectionState.READY
        self.auth_lost = False
        return self._client.session.save()
