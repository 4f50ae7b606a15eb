from graph.state import DispatchState
from services.log_setup import log


def mark_done_node(state: DispatchState) -> dict:
    """Set today's completion flag for the action"""
    log.info("%s completed for %s", state["action"], state["today"])
    if state["action"] == "clock_in":
        return {"clock_in_done": True, "action_taken": "completed"}
    return {"clock_out_done": True, "action_taken": "completed"}
