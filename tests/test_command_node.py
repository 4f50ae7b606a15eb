from unittest.mock import AsyncMock, MagicMock

import pytest

from graph.nodes.command_node import command_node

COMMANDS = {"clock_in": "/clock_in", "clock_out": "/clock_out"}


def _make_state(**overrides):
    base = {
        "today": "2026-02-23",
        "action": "clock_in",
        "clock_in_done": False,
        "clock_out_done": False,
        "payload": None,
        "command_sent": None,
        "broadcast_sent": None,
        "announced": [],
        "skipped_entries": 0,
        "action_taken": None,
        "error_message": None,
    }
    base.update(overrides)
    return base


@pytest.mark.asyncio
async def test_command_clock_in():
    channel = MagicMock()
    channel.send = AsyncMock(return_value=True)

    result = await command_node(_make_state(), channel=channel, commands=COMMANDS)

    channel.send.assert_awaited_once_with("/clock_in")
    assert result["command_sent"] is True


@pytest.mark.asyncio
async def test_command_clock_out_failure_is_not_fatal():
    channel = MagicMock()
    channel.send = AsyncMock(return_value=False)

    result = await command_node(_make_state(action="clock_out"), channel=channel, commands=COMMANDS)

    channel.send.assert_awaited_once_with("/clock_out")
    assert result["command_sent"] is False
