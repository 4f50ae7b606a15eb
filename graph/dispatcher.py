import asyncio
from dataclasses import replace
from datetime import datetime
from zoneinfo import ZoneInfo

from graph.graph import build_clock_in_graph, build_clock_out_graph
from graph.nodes.announce_node import MIN_TASK_DELAY
from graph.state import DailyAttendanceState, DispatchState, initial_state, reconcile
from services.channel_interface import BroadcastChannel, ChannelEvent, CommandChannel, EventKind
from services.log_setup import log


def _now(tz: ZoneInfo) -> datetime:
    """Current time in the schedule timezone. Patched in tests"""
    return datetime.now(tz)


class DispatchEngine:
    """Runs clock-in and clock-out and owns today's attendance flags.

    Invocations are serialized: overlapping triggers wait for the running one
    and then hit the idempotency gate.
    """

    def __init__(
        self,
        command_channel: CommandChannel,
        broadcast_channel: BroadcastChannel,
        task_source,
        group_id: str,
        timezone: str = "Asia/Jakarta",
        clock_in_command: str = "/clock_in",
        clock_out_command: str = "/clock_out",
        task_prefix: str = "",
        task_delay: float = MIN_TASK_DELAY,
        fetch_timeout: float = 30.0,
    ):
        self._tz = ZoneInfo(timezone)
        self._lock = asyncio.Lock()
        self.attendance = DailyAttendanceState()

        commands = {"clock_in": clock_in_command, "clock_out": clock_out_command}
        self._graphs = {
            "clock_in": build_clock_in_graph(
                command_channel=command_channel,
                broadcast_channel=broadcast_channel,
                task_source=task_source,
                group_id=group_id,
                commands=commands,
                fetch_timeout=fetch_timeout,
            ),
            "clock_out": build_clock_out_graph(
                command_channel=command_channel,
                broadcast_channel=broadcast_channel,
                task_source=task_source,
                group_id=group_id,
                commands=commands,
                task_prefix=task_prefix,
                task_delay=max(MIN_TASK_DELAY, task_delay),
                fetch_timeout=fetch_timeout,
            ),
        }
        broadcast_channel.subscribe(self._on_broadcast_event)

    def _on_broadcast_event(self, event: ChannelEvent) -> None:
        if event.kind is EventKind.OPEN:
            log.info("Broadcast channel open")
        elif event.kind is EventKind.AUTH_FAILURE:
            log.critical("Broadcast channel auth failure (%s); continuing without it", event.reason)
        elif event.kind is EventKind.NEEDS_PAIRING:
            log.warning("Broadcast channel needs pairing")
        else:
            log.warning("Broadcast channel closed (%s)", event.reason)

    async def clock_in(self) -> DispatchState:
        return await self._dispatch("clock_in")

    async def clock_out(self) -> DispatchState:
        return await self._dispatch("clock_out")

    async def _dispatch(self, action: str) -> DispatchState:
        async with self._lock:
            today = _now(self._tz).date()
            reconciled = reconcile(self.attendance, today)
            if reconciled is not self.attendance:
                log.info("New day %s, attendance flags reset", today.isoformat())
            self.attendance = reconciled

            log.info("Running %s for %s", action, today.isoformat())
            result = await self._graphs[action].ainvoke(initial_state(action, self.attendance))

            self.attendance = replace(
                self.attendance,
                clock_in_done=result["clock_in_done"],
                clock_out_done=result["clock_out_done"],
            )
            return result
