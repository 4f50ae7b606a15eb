from dataclasses import dataclass
import datetime
from typing import TypedDict, Optional

from services.task_source import AttendancePayload


@dataclass(frozen=True)
class DailyAttendanceState:
    date: Optional[datetime.date] = None
    clock_in_done: bool = False
    clock_out_done: bool = False


def reconcile(state: DailyAttendanceState, today: datetime.date) -> DailyAttendanceState:
    """Return a fresh record for ``today`` if the stored date is stale.

    Flags never carry over to another date. On the same date the record is
    returned unchanged.
    """
    if state.date == today:
        return state
    return DailyAttendanceState(date=today, clock_in_done=False, clock_out_done=False)


class DispatchState(TypedDict):
    today: str                              # YYYY-MM-DD
    action: str                             # "clock_in" / "clock_out"
    clock_in_done: bool
    clock_out_done: bool
    payload: Optional[AttendancePayload]
    command_sent: Optional[bool]
    broadcast_sent: Optional[bool]
    announced: list[str]                    # entry ids, in send order
    skipped_entries: int
    action_taken: Optional[str]             # "skipped" / "deferred" / "completed"
    error_message: Optional[str]


def initial_state(action: str, attendance: DailyAttendanceState) -> DispatchState:
    return {
        "today": attendance.date.isoformat() if attendance.date else "",
        "action": action,
        "clock_in_done": attendance.clock_in_done,
        "clock_out_done": attendance.clock_out_done,
        "payload": None,
        "command_sent": None,
        "broadcast_sent": None,
        "announced": [],
        "skipped_entries": 0,
        "action_taken": None,
        "error_message": None,
    }
