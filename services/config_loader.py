import copy
import yaml
from pathlib import Path

DEFAULT_CONFIG = {
    "scheduler": {
        "timezone": "Asia/Jakarta",
        "misfire_grace_seconds": 300,
        "schedules": [
            {"cron": "50 7 * * mon-fri", "action": "clock_in"},
            {"cron": "0 17 * * mon-fri", "action": "clock_out"},
            {"cron": "30 16 * * fri", "action": "clock_out"},
        ],
    },
    "dispatch": {
        "clock_in_command": "/clock_in",
        "clock_out_command": "/clock_out",
        "task_prefix": "/TS ",
        "task_delay_seconds": 1.5,
        "fetch_timeout_seconds": 30,
    },
    "health": {
        "interval_seconds": 60,
        "probe_timeout_seconds": 10,
    },
    "telegram": {
        "enabled": True,
        "timeout_seconds": 30,
        "connection_retries": 5,
    },
    "slack": {
        "enabled": True,
        "group_id": "",
        "reconnect_delay_seconds": 30,
        "timeout_seconds": 15,
    },
    "task_source": {
        "timeout_seconds": 15,
        "log_timeout_seconds": 5,
        "remote_logging": True,
    },
    "logging": {
        "level": "INFO",
        "file": "",
    },
}

ACTIONS = ("clock_in", "clock_out")


def _deep_merge(base: dict, override: dict) -> dict:
    """Merge override into a copy of base, recursing into nested dicts"""
    result = copy.deepcopy(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def validate_schedules(schedules: list) -> list:
    """Each entry needs a cron expression and a known action"""
    for entry in schedules:
        if not isinstance(entry, dict) or not entry.get("cron"):
            raise ValueError(f"Schedule entry without cron expression: {entry!r}")
        if entry.get("action") not in ACTIONS:
            raise ValueError(f"Unknown schedule action: {entry.get('action')!r}")
    return schedules


def load_config(path: str = "config.yaml") -> dict:
    """Load the YAML config file and merge it over the defaults"""
    config_path = Path(path)
    if config_path.exists():
        with open(config_path, "r", encoding="utf-8") as f:
            user_config = yaml.safe_load(f) or {}
        config = _deep_merge(DEFAULT_CONFIG, user_config)
    else:
        config = copy.deepcopy(DEFAULT_CONFIG)
    validate_schedules(config["scheduler"]["schedules"])
    return config
