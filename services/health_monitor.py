import asyncio

from services.channel_interface import CommandChannel
from services.log_setup import log


class EndpointHealthMonitor:
    """Keeps a persistent-session channel alive.

    tick() runs on a fixed interval. A channel that is not READY gets a
    reconnect attempt; a READY channel gets a probe, and a probe timeout forces
    a disconnect/reconnect cycle. Only one cycle runs at a time.
    """

    def __init__(self, channel: CommandChannel, probe_timeout: float = 10.0, name: str = "command"):
        self._channel = channel
        self._probe_timeout = probe_timeout
        self._name = name
        self._in_flight = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    async def tick(self) -> None:
        if self._in_flight:
            log.debug("Health check for %s channel still running, tick skipped", self._name)
            return

        self._in_flight = True
        try:
            await self._check()
        finally:
            self._in_flight = False

    async def _check(self) -> None:
        if self._channel.auth_lost:
            log.error("%s channel auth lost; reconnect suppressed", self._name)
            return

        if not self._channel.is_ready():
            await self._reconnect()
            return

        try:
            await asyncio.wait_for(self._channel.probe(), self._probe_timeout)
        except (asyncio.TimeoutError, TimeoutError):
            log.warning("%s channel probe timed out, reconnecting", self._name)
            await self._channel.disconnect()
            await self._reconnect()
        except Exception as e:
            log.warning("%s channel probe failed: %s", self._name, str(e) or type(e).__name__)

    async def _reconnect(self) -> None:
        if await self._channel.connect():
            log.info("%s channel reconnected", self._name)
        else:
            log.warning("%s channel reconnect failed, retrying next interval", self._name)
