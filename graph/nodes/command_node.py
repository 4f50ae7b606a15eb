from graph.state import DispatchState
from services.channel_interface import CommandChannel
from services.log_setup import log


async def command_node(
    state: DispatchState,
    channel: CommandChannel = None,
    commands: dict = None,
) -> dict:
    """Send the clock-in/clock-out token to the command channel (best effort)"""
    command = commands[state["action"]]
    log.info("Sending %s command", state["action"])

    ok = await channel.send(command)
    if not ok:
        log.warning("%s command was not delivered", state["action"])
    return {"command_sent": ok}
