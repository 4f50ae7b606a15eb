import asyncio
from dataclasses import dataclass, field
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from services.log_setup import log


class TaskSourceError(Exception):
    """The sheet endpoint could not be reached or returned unusable data"""


@dataclass
class TimesheetEntry:
    id: str
    description: str
    hours: str

    def is_complete(self) -> bool:
        return bool(self.id and self.description and self.hours)


@dataclass
class AttendancePayload:
    check_in_message: Optional[str] = None
    check_out_message: Optional[str] = None
    entries: list[TimesheetEntry] = field(default_factory=list)


def _text(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _first(data: dict, *keys):
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def _message(value) -> Optional[str]:
    text = _text(value)
    return text or None


def parse_entry(raw) -> TimesheetEntry:
    if not isinstance(raw, dict):
        return TimesheetEntry(id="", description="", hours="")
    return TimesheetEntry(
        id=_text(_first(raw, "id", "taskId")),
        description=_text(_first(raw, "description", "task")),
        hours=_text(_first(raw, "hours", "hour")),
    )


def parse_payload(data) -> AttendancePayload:
    """Convert the sheet web-app JSON into an AttendancePayload.

    Accepts either an object with messages and entries, or a bare list of
    entries (older sheet deployments).
    """
    if isinstance(data, list):
        return AttendancePayload(entries=[parse_entry(item) for item in data])

    if not isinstance(data, dict):
        raise TaskSourceError(f"Unexpected payload type: {type(data).__name__}")

    raw_entries = _first(data, "entries", "tasks") or []
    if not isinstance(raw_entries, list):
        raise TaskSourceError("Payload entries is not a list")

    return AttendancePayload(
        check_in_message=_message(_first(data, "checkInMessage", "checkIn")),
        check_out_message=_message(_first(data, "checkOutMessage", "checkOut")),
        entries=[parse_entry(item) for item in raw_entries],
    )


def create_session() -> requests.Session:
    """requests.Session with retry on gateway errors"""
    retry = Retry(
        total=3,
        backoff_factor=1,
        status_forcelist=[502, 503, 504],
        allowed_methods=["GET", "POST"],
    )
    session = requests.Session()
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


class SheetTaskSource:
    """Reads today's messages and timesheet entries from a sheet web-app"""

    def __init__(
        self,
        url: str,
        timeout: float = 15.0,
        log_url: Optional[str] = None,
        log_timeout: float = 5.0,
        session: Optional[requests.Session] = None,
        log_session: Optional[requests.Session] = None,
    ):
        self._url = url
        self._log_url = log_url or url
        self._timeout = timeout
        self._log_timeout = log_timeout
        self._session = session or create_session()
        # no retries: a slow sheet must not back up the log queue
        self._log_session = log_session or requests.Session()

    def fetch_sync(self) -> AttendancePayload:
        try:
            resp = self._session.get(self._url, timeout=self._timeout)
            resp.raise_for_status()
            data = resp.json()
        except requests.RequestException as e:
            raise TaskSourceError(f"Sheet request failed: {e}") from e
        except ValueError as e:
            raise TaskSourceError(f"Sheet returned invalid JSON: {e}") from e
        return parse_payload(data)

    async def fetch(self) -> AttendancePayload:
        return await asyncio.to_thread(self.fetch_sync)

    def post_log(self, level: str, message: str, timestamp: str) -> None:
        """One-way log forwarding. Never raises"""
        try:
            self._log_session.post(
                self._log_url,
                json={
                    "type": "log",
                    "level": level,
                    "message": message,
                    "timestamp": timestamp,
                },
                timeout=self._log_timeout,
            )
        except Exception:
            pass

    def close(self) -> None:
        self._session.close()
        self._log_session.close()
