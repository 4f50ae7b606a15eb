# graph/graph.py
from functools import partial

from langgraph.graph import StateGraph, END

from graph.state import DispatchState
from graph.nodes.gate_node import gate_node
from graph.nodes.fetch_node import fetch_node
from graph.nodes.command_node import command_node
from graph.nodes.broadcast_node import broadcast_node
from graph.nodes.announce_node import announce_node, MIN_TASK_DELAY
from graph.nodes.mark_done_node import mark_done_node


def route_after_gate(state: DispatchState) -> str:
    if state["action_taken"] == "skipped":
        return "end"
    return "continue"


def route_after_clock_in_fetch(state: DispatchState) -> str:
    if state["action_taken"] == "deferred":
        return "end"
    return "command"


def route_after_clock_out_fetch(state: DispatchState) -> str:
    if state["payload"] is None:
        return "mark_done"
    return "broadcast"


def build_clock_in_graph(
    command_channel=None,
    broadcast_channel=None,
    task_source=None,
    group_id: str = "",
    commands: dict = None,
    fetch_timeout: float = 30.0,
):
    """gate -> fetch -> command -> broadcast -> mark_done

    The run stops after gate when clock-in is already done, and after fetch
    when there is no check-in message (nothing sent, flag left unset).
    """
    workflow = StateGraph(DispatchState)

    workflow.add_node("gate", gate_node)
    workflow.add_node(
        "fetch", partial(fetch_node, task_source=task_source, timeout=fetch_timeout)
    )
    workflow.add_node(
        "command", partial(command_node, channel=command_channel, commands=commands)
    )
    workflow.add_node(
        "broadcast",
        partial(broadcast_node, channel=broadcast_channel, group_id=group_id),
    )
    workflow.add_node("mark_done", mark_done_node)

    workflow.set_entry_point("gate")

    workflow.add_conditional_edges(
        "gate", route_after_gate, {"continue": "fetch", "end": END}
    )
    workflow.add_conditional_edges(
        "fetch", route_after_clock_in_fetch, {"command": "command", "end": END}
    )
    workflow.add_edge("command", "broadcast")
    workflow.add_edge("broadcast", "mark_done")
    workflow.add_edge("mark_done", END)

    return workflow.compile()


def build_clock_out_graph(
    command_channel=None,
    broadcast_channel=None,
    task_source=None,
    group_id: str = "",
    commands: dict = None,
    task_prefix: str = "",
    task_delay: float = MIN_TASK_DELAY,
    fetch_timeout: float = 30.0,
):
    """gate -> command -> fetch -> broadcast -> announce -> mark_done

    A failed fetch goes straight to mark_done: clock-out always completes.
    """
    workflow = StateGraph(DispatchState)

    workflow.add_node("gate", gate_node)
    workflow.add_node(
        "command", partial(command_node, channel=command_channel, commands=commands)
    )
    workflow.add_node(
        "fetch", partial(fetch_node, task_source=task_source, timeout=fetch_timeout)
    )
    workflow.add_node(
        "broadcast",
        partial(broadcast_node, channel=broadcast_channel, group_id=group_id),
    )
    workflow.add_node(
        "announce",
        partial(announce_node, channel=command_channel, prefix=task_prefix, delay=task_delay),
    )
    workflow.add_node("mark_done", mark_done_node)

    workflow.set_entry_point("gate")

    workflow.add_conditional_edges(
        "gate", route_after_gate, {"continue": "command", "end": END}
    )
    workflow.add_edge("command", "fetch")
    workflow.add_conditional_edges(
        "fetch",
        route_after_clock_out_fetch,
        {"broadcast": "broadcast", "mark_done": "mark_done"},
    )
    workflow.add_edge("broadcast", "announce")
    workflow.add_edge("announce", "mark_done")
    workflow.add_edge("mark_done", END)

    return workflow.compile()
