"""Attendance relay - entry point"""
import argparse
import asyncio
import os
import signal
import sys
from typing import Optional
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

from services.config_loader import load_config
from services.dummy_channel import ConsoleCommandChannel
from services.health_monitor import EndpointHealthMonitor
from services.log_setup import log, setup_logging
from services.slack_client import ConsoleBroadcastChannel, SlackBroadcastChannel
from services.task_source import SheetTaskSource
from graph.dispatcher import DispatchEngine
from schedulers.scheduler import AttendanceScheduler

STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def create_services(config: dict):
    """Build the command channel, broadcast channel and task source from config + env"""
    load_dotenv()

    # Command channel
    tg_config = config["telegram"]
    session = os.getenv("TELEGRAM_SESSION", "")
    if tg_config["enabled"] and session:
        from services.telegram_channel import TelegramCommandChannel
        command_channel = TelegramCommandChannel(
            api_id=int(os.getenv("TELEGRAM_API_ID", "0")),
            api_hash=os.getenv("TELEGRAM_API_HASH", ""),
            session=session,
            destination=os.getenv("BOT_USERNAME", ""),
            timeout=tg_config["timeout_seconds"],
            connection_retries=tg_config["connection_retries"],
        )
    else:
        if tg_config["enabled"]:
            log.warning("TELEGRAM_SESSION is empty; run `login` first. Using console output")
        command_channel = ConsoleCommandChannel()

    # Broadcast channel
    slack_config = config["slack"]
    slack_token = os.getenv("SLACK_BOT_TOKEN", "")
    if slack_config["enabled"]:
        if not slack_token:
            log.warning("SLACK_BOT_TOKEN is empty; broadcast waits for a token (SIGHUP to reload)")
        broadcast_channel = SlackBroadcastChannel(
            token=slack_token,
            reconnect_delay=slack_config["reconnect_delay_seconds"],
            timeout=slack_config["timeout_seconds"],
        )
    else:
        broadcast_channel = ConsoleBroadcastChannel(
            reconnect_delay=slack_config["reconnect_delay_seconds"]
        )

    # Task source
    sheet_url = os.getenv("SHEET_API_URL", "")
    task_source = None
    if sheet_url:
        task_source = SheetTaskSource(
            url=sheet_url,
            timeout=config["task_source"]["timeout_seconds"],
            log_timeout=config["task_source"]["log_timeout_seconds"],
        )

    return command_channel, broadcast_channel, task_source


def create_engine(config: dict, command_channel, broadcast_channel, task_source) -> DispatchEngine:
    dispatch = config["dispatch"]
    return DispatchEngine(
        command_channel=command_channel,
        broadcast_channel=broadcast_channel,
        task_source=task_source,
        group_id=os.getenv("SLACK_GROUP_ID", config["slack"]["group_id"]),
        timezone=config["scheduler"]["timezone"],
        clock_in_command=dispatch["clock_in_command"],
        clock_out_command=dispatch["clock_out_command"],
        task_prefix=dispatch["task_prefix"],
        task_delay=dispatch["task_delay_seconds"],
        fetch_timeout=dispatch["fetch_timeout_seconds"],
    )


def register_jobs(scheduler: AttendanceScheduler, config: dict, engine: DispatchEngine, monitor):
    actions = {"clock_in": engine.clock_in, "clock_out": engine.clock_out}
    for index, entry in enumerate(config["scheduler"]["schedules"]):
        job_id = f"{entry['action']}_{index}"
        scheduler.add_cron_job(job_id, entry["cron"], actions[entry["action"]])

    scheduler.add_interval_job(
        "command_channel_health",
        config["health"]["interval_seconds"],
        monitor.tick,
        run_immediately=True,
    )


def _start_logging(config: dict, task_source):
    log_config = config["logging"]
    remote_sink = None
    if task_source is not None and config["task_source"]["remote_logging"]:
        remote_sink = task_source.post_log
    return setup_logging(
        level=log_config["level"],
        log_file=log_config["file"] or None,
        remote_sink=remote_sink,
        tz=ZoneInfo(config["scheduler"]["timezone"]),
    )


async def _close(command_channel, broadcast_channel, task_source):
    """Best-effort release of connections"""
    for closer in (command_channel.close, broadcast_channel.close):
        try:
            await closer()
        except Exception as e:
            log.warning("Close failed: %s", e)
    if task_source is not None:
        task_source.close()


async def reauthorize_broadcast(broadcast_channel) -> None:
    """Re-read SLACK_BOT_TOKEN from the environment / .env and re-pair the broadcast channel"""
    load_dotenv(override=True)
    token = os.getenv("SLACK_BOT_TOKEN", "")
    if not token:
        log.warning("SIGHUP received but SLACK_BOT_TOKEN is empty; broadcast unchanged")
        return
    log.info("Re-authorizing broadcast channel")
    await broadcast_channel.reauthorize(token)


async def run(config: dict, stop: Optional[asyncio.Event] = None) -> None:
    command_channel, broadcast_channel, task_source = create_services(config)
    listener = _start_logging(config, task_source)
    if task_source is None:
        log.warning("SHEET_API_URL is empty; clock-in will defer and clock-out sends no tasks")

    engine = create_engine(config, command_channel, broadcast_channel, task_source)
    monitor = EndpointHealthMonitor(
        command_channel, probe_timeout=config["health"]["probe_timeout_seconds"]
    )
    scheduler = AttendanceScheduler(
        timezone=config["scheduler"]["timezone"],
        misfire_grace_seconds=config["scheduler"]["misfire_grace_seconds"],
    )
    register_jobs(scheduler, config, engine, monitor)

    if stop is None:
        stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    reauth_tasks = set()

    def on_sighup():
        task = loop.create_task(reauthorize_broadcast(broadcast_channel))
        reauth_tasks.add(task)
        task.add_done_callback(reauth_tasks.discard)

    # must be in place before the first network call
    for sig in STOP_SIGNALS:
        loop.add_signal_handler(sig, stop.set)
    loop.add_signal_handler(signal.SIGHUP, on_sighup)

    try:
        await broadcast_channel.initialize()
        if not stop.is_set():
            scheduler.start()
            log.info("Attendance relay started. Ctrl+C to stop")
        await stop.wait()
    finally:
        log.info("Stopping...")
        for sig in STOP_SIGNALS + (signal.SIGHUP,):
            loop.remove_signal_handler(sig)
        scheduler.stop()
        await _close(command_channel, broadcast_channel, task_source)
        log.info("Stopped")
        if listener is not None:
            listener.stop()


async def run_once(config: dict, action: str) -> None:
    """Run a single dispatch now (manual retry)"""
    command_channel, broadcast_channel, task_source = create_services(config)
    listener = _start_logging(config, task_source)
    try:
        engine = create_engine(config, command_channel, broadcast_channel, task_source)
        await command_channel.connect()
        await broadcast_channel.initialize()
        if action == "clock_in":
            result = await engine.clock_in()
        else:
            result = await engine.clock_out()
        log.info("%s finished: %s", action, result["action_taken"])
    finally:
        await _close(command_channel, broadcast_channel, task_source)
        if listener is not None:
            listener.stop()


async def login() -> None:
    """Interactive Telegram login; prints the session string for .env"""
    from services.telegram_channel import TelegramCommandChannel

    load_dotenv()
    channel = TelegramCommandChannel(
        api_id=int(os.getenv("TELEGRAM_API_ID", "0")),
        api_hash=os.getenv("TELEGRAM_API_HASH", ""),
        session="",
        destination=os.getenv("BOT_USERNAME", ""),
    )
    session = await channel.login()
    await channel.close()
    print("Login OK. Add this line to .env:")
    print(f"TELEGRAM_SESSION={session}")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Scheduled clock-in/clock-out relay")
    parser.add_argument("--config", default="config.yaml", help="path to config.yaml")
    parser.add_argument(
        "command",
        nargs="?",
        default="run",
        choices=["run", "login", "clock-in", "clock-out"],
    )
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    if args.command == "login":
        setup_logging()
        asyncio.run(login())
        sys.exit(0)

    config = load_config(args.config)
    setup_logging(config["logging"]["level"])
    if args.command == "run":
        asyncio.run(run(config))
    else:
        asyncio.run(run_once(config, args.command.replace("-", "_")))
    sys.exit(0)


if __name__ == "__main__":
    main()
