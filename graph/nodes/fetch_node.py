import asyncio

from graph.state import DispatchState
from services.log_setup import log


async def fetch_node(state: DispatchState, task_source=None, timeout: float = 30.0) -> dict:
    """Fetch today's messages and timesheet entries from the task source.

    A failed fetch leaves payload as None. For clock-in, a missing check-in
    message defers the action so a later trigger can retry.
    """
    try:
        if task_source is None:
            raise LookupError("task source not configured")
        payload = await asyncio.wait_for(task_source.fetch(), timeout)
    except Exception as e:
        error = str(e) or type(e).__name__
        log.warning("Task source unavailable: %s", error)
        result = {"payload": None, "error_message": error}
        if state["action"] == "clock_in":
            result["action_taken"] = "deferred"
        return result

    if state["action"] == "clock_in" and not payload.check_in_message:
        log.warning("No check-in message for %s, clock-in deferred", state["today"])
        return {"payload": payload, "action_taken": "deferred"}

    return {"payload": payload}
