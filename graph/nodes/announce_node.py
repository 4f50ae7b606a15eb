import asyncio

from graph.state import DispatchState
from services.channel_interface import CommandChannel
from services.log_setup import log
from services.task_source import TimesheetEntry

MIN_TASK_DELAY = 1.0


async def _pause(seconds: float) -> None:
    """Patched in tests"""
    await asyncio.sleep(seconds)


def format_entry(entry: TimesheetEntry, prefix: str = "") -> str:
    return f"{prefix}{entry.id} : {entry.description} : {entry.hours}"


async def announce_node(
    state: DispatchState,
    channel: CommandChannel = None,
    prefix: str = "",
    delay: float = MIN_TASK_DELAY,
) -> dict:
    """Announce timesheet entries one by one, in source order.

    Incomplete entries are skipped. Consecutive sends are spaced by ``delay``
    seconds to stay under the bot's flood limit.
    """
    payload = state["payload"]
    entries = payload.entries if payload else []
    delay = max(MIN_TASK_DELAY, delay)

    announced = []
    skipped = 0
    for position, entry in enumerate(entries, start=1):
        if not entry.is_complete():
            skipped += 1
            log.warning("Skipping incomplete timesheet entry #%d: %r", position, entry)
            continue

        if announced:
            await _pause(delay)

        text = format_entry(entry, prefix)
        if not await channel.send(text):
            log.warning("Timesheet entry %s was not delivered", entry.id)
        announced.append(entry.id)

    log.info("Announced %d timesheet entries (%d skipped)", len(announced), skipped)
    return {"announced": announced, "skipped_entries": skipped}
