from graph.state import DispatchState
from services.log_setup import log


def gate_node(state: DispatchState) -> dict:
    """Stops the run if today's action has already been done"""
    action = state["action"]
    done = state["clock_in_done"] if action == "clock_in" else state["clock_out_done"]

    if done:
        log.info("%s already done for %s, skipping", action, state["today"])
        return {"action_taken": "skipped"}
    return {}
