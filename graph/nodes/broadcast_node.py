from graph.state import DispatchState
from services.channel_interface import BroadcastChannel
from services.log_setup import log


async def broadcast_node(
    state: DispatchState,
    channel: BroadcastChannel = None,
    group_id: str = "",
) -> dict:
    """Relay the check-in/check-out message to the broadcast group"""
    payload = state["payload"]
    if state["action"] == "clock_in":
        message = payload.check_in_message if payload else None
    else:
        message = payload.check_out_message if payload else None

    if not message:
        log.info("No %s message to broadcast", state["action"])
        return {"broadcast_sent": None}

    ok = await channel.send(group_id, message)
    if not ok:
        log.warning("%s broadcast was not delivered", state["action"])
    return {"broadcast_sent": ok}
