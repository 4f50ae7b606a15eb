import asyncio
import os
import signal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from main import (
    _close,
    create_services,
    main,
    parse_args,
    reauthorize_broadcast,
    register_jobs,
    run,
    run_once,
)
from schedulers.scheduler import AttendanceScheduler
from services.config_loader import load_config
from services.dummy_channel import ConsoleCommandChannel
from services.slack_client import ConsoleBroadcastChannel, SlackBroadcastChannel
from services.task_source import SheetTaskSource


def _env(**values):
    return patch.dict("os.environ", values, clear=True)


def _channels():
    command = MagicMock()
    command.connect = AsyncMock(return_value=True)
    command.close = AsyncMock()
    broadcast = MagicMock()
    broadcast.initialize = AsyncMock()
    broadcast.close = AsyncMock()
    return command, broadcast


def test_create_services_falls_back_to_console():
    """Without a Telegram session and with Slack disabled both channels use console output"""
    config = load_config("nonexistent.yaml")
    config["slack"]["enabled"] = False
    with _env(), patch("main.load_dotenv"):
        command, broadcast, source = create_services(config)

    assert isinstance(command, ConsoleCommandChannel)
    assert isinstance(broadcast, ConsoleBroadcastChannel)
    assert source is None


@pytest.mark.asyncio
async def test_create_services_slack_without_token_needs_pairing():
    config = load_config("nonexistent.yaml")
    with _env(), patch("main.load_dotenv"):
        _, broadcast, _ = create_services(config)

    events = []
    broadcast.subscribe(events.append)
    await broadcast.initialize()

    assert isinstance(broadcast, SlackBroadcastChannel)
    assert [e.kind.value for e in events] == ["needs_pairing"]
    await broadcast.close()


def test_create_services_with_slack_and_sheet():
    config = load_config("nonexistent.yaml")
    with _env(SLACK_BOT_TOKEN="xoxb-test", SHEET_API_URL="https://sheet.example/exec"), \
         patch("main.load_dotenv"):
        command, broadcast, source = create_services(config)

    assert isinstance(broadcast, SlackBroadcastChannel)
    assert isinstance(source, SheetTaskSource)
    source.close()


def test_register_jobs():
    config = load_config("nonexistent.yaml")
    scheduler = AttendanceScheduler(timezone=config["scheduler"]["timezone"])
    engine = MagicMock()
    engine.clock_in = AsyncMock()
    engine.clock_out = AsyncMock()
    monitor = MagicMock()
    monitor.tick = AsyncMock()

    register_jobs(scheduler, config, engine, monitor)

    for job_id in ("clock_in_0", "clock_out_1", "clock_out_2", "command_channel_health"):
        assert scheduler.get_job(job_id) is not None


@pytest.mark.asyncio
async def test_run_shuts_down_when_stopped():
    """Stop closes the scheduler, both channels and the log listener"""
    config = load_config("nonexistent.yaml")
    command, broadcast = _channels()
    task_source = MagicMock()
    listener = MagicMock()
    scheduler = MagicMock()
    stop = asyncio.Event()
    asyncio.get_running_loop().call_soon(stop.set)

    with patch("main.create_services", return_value=(command, broadcast, task_source)), \
         patch("main._start_logging", return_value=listener), \
         patch("main.create_engine"), \
         patch("main.register_jobs"), \
         patch("main.AttendanceScheduler", return_value=scheduler):
        await run(config, stop=stop)

    broadcast.initialize.assert_awaited_once()
    scheduler.start.assert_called_once()
    scheduler.stop.assert_called_once()
    command.close.assert_awaited_once()
    broadcast.close.assert_awaited_once()
    task_source.close.assert_called_once()
    listener.stop.assert_called_once()


@pytest.mark.asyncio
async def test_run_sigterm_during_startup():
    """SIGTERM while the broadcast channel is still initializing ends the run cleanly"""
    config = load_config("nonexistent.yaml")
    command, broadcast = _channels()
    broadcast.initialize = AsyncMock(side_effect=lambda: os.kill(os.getpid(), signal.SIGTERM))
    scheduler = MagicMock()

    with patch("main.create_services", return_value=(command, broadcast, None)), \
         patch("main._start_logging", return_value=None), \
         patch("main.create_engine"), \
         patch("main.register_jobs"), \
         patch("main.AttendanceScheduler", return_value=scheduler):
        await asyncio.wait_for(run(config), 5)

    scheduler.stop.assert_called_once()
    command.close.assert_awaited_once()
    broadcast.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_close_continues_after_failure():
    command, broadcast = _channels()
    command.close = AsyncMock(side_effect=ConnectionError("already gone"))
    task_source = MagicMock()

    await _close(command, broadcast, task_source)  # should not raise

    broadcast.close.assert_awaited_once()
    task_source.close.assert_called_once()


@pytest.mark.asyncio
async def test_run_once_closes_channels():
    config = load_config("nonexistent.yaml")
    command, broadcast = _channels()
    engine = MagicMock()
    engine.clock_out = AsyncMock(return_value={"action_taken": "completed"})

    with patch("main.create_services", return_value=(command, broadcast, None)), \
         patch("main._start_logging", return_value=None), \
         patch("main.create_engine", return_value=engine):
        await run_once(config, "clock_out")

    command.connect.assert_awaited_once()
    engine.clock_out.assert_awaited_once()
    command.close.assert_awaited_once()
    broadcast.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_reauthorize_broadcast_reads_token():
    broadcast = MagicMock()
    broadcast.reauthorize = AsyncMock()
    with _env(SLACK_BOT_TOKEN="xoxb-new"), patch("main.load_dotenv"):
        await reauthorize_broadcast(broadcast)

    broadcast.reauthorize.assert_awaited_once_with("xoxb-new")


@pytest.mark.asyncio
async def test_reauthorize_broadcast_without_token():
    broadcast = MagicMock()
    broadcast.reauthorize = AsyncMock()
    with _env(), patch("main.load_dotenv"):
        await reauthorize_broadcast(broadcast)

    broadcast.reauthorize.assert_not_awaited()


def test_main_clock_out_exits_zero():
    config = load_config("nonexistent.yaml")
    with patch("main.load_config", return_value=config), \
         patch("main.setup_logging"), \
         patch("main.run_once", new_callable=AsyncMock) as mock_run_once:
        with pytest.raises(SystemExit) as exc_info:
            main(["clock-out"])

    assert exc_info.value.code == 0
    mock_run_once.assert_awaited_once_with(config, "clock_out")


def test_main_run_exits_zero():
    config = load_config("nonexistent.yaml")
    with patch("main.load_config", return_value=config), \
         patch("main.setup_logging"), \
         patch("main.run", new_callable=AsyncMock) as mock_run:
        with pytest.raises(SystemExit) as exc_info:
            main([])

    assert exc_info.value.code == 0
    mock_run.assert_awaited_once_with(config)


def test_parse_args_defaults():
    args = parse_args([])
    assert args.command == "run"
    assert args.config == "config.yaml"


def test_parse_args_manual_clock_out():
    args = parse_args(["--config", "prod.yaml", "clock-out"])
    assert args.command == "clock-out"
    assert args.config == "prod.yaml"
