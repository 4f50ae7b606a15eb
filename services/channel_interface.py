import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from services.log_setup import log


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"


class EventKind(Enum):
    NEEDS_PAIRING = "needs_pairing"
    OPEN = "open"
    CLOSED = "closed"
    AUTH_FAILURE = "auth_failure"


# CLOSED reason that means the credentials are gone for good
LOGGED_OUT = "logged_out"
CONNECTION_LOST = "connection_lost"


@dataclass
class ChannelEvent:
    kind: EventKind
    reason: Optional[str] = None


class CommandChannel(ABC):
    """Persistent-session channel that sends control tokens to a bot"""

    def __init__(self):
        self.state = ConnectionState.DISCONNECTED
        self.auth_lost = False

    def is_ready(self) -> bool:
        return self.state is ConnectionState.READY

    @abstractmethod
    async def connect(self) -> bool:
        """Open the session. Returns True once the channel is READY"""
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        ...

    @abstractmethod
    async def probe(self) -> None:
        """Lightweight liveness call. Raises on failure"""
        ...

    @abstractmethod
    async def send(self, text: str) -> bool:
        ...

    async def close(self) -> None:
        await self.disconnect()


class BroadcastChannel(ABC):
    """Group-messaging channel whose readiness is driven by connection events.

    Observers registered with subscribe() receive every ChannelEvent. A CLOSED
    event whose reason is not LOGGED_OUT makes the channel run initialize()
    again after ``reconnect_delay`` seconds; LOGGED_OUT waits for
    reauthorize().
    """

    def __init__(self, reconnect_delay: float = 30.0):
        self.state = ConnectionState.DISCONNECTED
        self.auth_lost = False
        self._reconnect_delay = reconnect_delay
        self._observers: list[Callable[[ChannelEvent], None]] = []
        self._reconnect_task: Optional[asyncio.Task] = None
        self._closed = False

    def is_ready(self) -> bool:
        return self.state is ConnectionState.READY

    def subscribe(self, callback: Callable[[ChannelEvent], None]) -> None:
        self._observers.append(callback)

    def _emit(self, kind: EventKind, reason: Optional[str] = None) -> None:
        event = ChannelEvent(kind=kind, reason=reason)
        if kind is EventKind.OPEN:
            self.state = ConnectionState.READY
            self.auth_lost = False
        elif kind is EventKind.AUTH_FAILURE:
            self.auth_lost = True
            self.state = ConnectionState.DISCONNECTED
        else:
            self.state = ConnectionState.DISCONNECTED

        for callback in list(self._observers):
            try:
                callback(event)
            except Exception:
                log.exception("Broadcast observer failed on %s", kind.value)

        if kind is EventKind.CLOSED and reason != LOGGED_OUT:
            self._schedule_reinitialize()

    def _schedule_reinitialize(self) -> None:
        if self._closed:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.get_running_loop().create_task(
            self._reinitialize()
        )

    async def _reinitialize(self) -> None:
        await asyncio.sleep(self._reconnect_delay)
        if self._closed:
            return
        # cleared first so a failed attempt can schedule the next one
        self._reconnect_task = None
        log.info("Re-initializing broadcast channel")
        await self.initialize()

    @abstractmethod
    async def initialize(self) -> None:
        ...

    @abstractmethod
    async def send(self, group_id: str, text: str) -> bool:
        ...

    async def reauthorize(self, token: str) -> None:
        """External re-auth event (new credentials after a logout)"""
        await self.initialize()

    async def close(self) -> None:
        self._closed = True
        task = self._reconnect_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.state = ConnectionState.DISCONNECTED
