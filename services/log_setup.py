import logging
import logging.handlers
import queue
import sys
from datetime import datetime
from typing import Callable, Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

log = logging.getLogger("attendance_relay")

# records waiting for the remote sink; further records are dropped
REMOTE_QUEUE_SIZE = 1000
# how long shutdown waits for the record being shipped
REMOTE_STOP_TIMEOUT = 0.5


class RemoteLogHandler(logging.Handler):
    """Forwards records to a remote sink: sink(level, message, timestamp).

    Failures of the sink are ignored; log shipping must never break the caller.
    """

    def __init__(self, sink: Callable[[str, str, str], None], tz=None):
        super().__init__()
        self._sink = sink
        self._tz = tz

    def emit(self, record: logging.LogRecord) -> None:
        try:
            timestamp = datetime.fromtimestamp(record.created, tz=self._tz).isoformat()
            self._sink(record.levelname.lower(), self.format(record), timestamp)
        except Exception:
            pass


class DroppingQueueHandler(logging.handlers.QueueHandler):
    """QueueHandler for a bounded queue: records that do not fit are dropped"""

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            pass


class RemoteLogListener(logging.handlers.QueueListener):
    """QueueListener whose stop() never waits for the backlog.

    Pending records are discarded and the record in flight gets at most
    stop_timeout seconds. The worker thread is a daemon, so a sink that hangs
    past that does not hold up process exit.
    """

    def __init__(self, records: queue.Queue, *handlers, stop_timeout: float = REMOTE_STOP_TIMEOUT):
        super().__init__(records, *handlers)
        self._stop_timeout = stop_timeout

    def stop(self) -> None:
        if self._thread is None:
            return
        while True:
            try:
                self.queue.get_nowait()
            except queue.Empty:
                break
            self.queue.task_done()
        try:
            self.enqueue_sentinel()
        except queue.Full:
            pass
        self._thread.join(self._stop_timeout)
        self._thread = None


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    remote_sink: Optional[Callable[[str, str, str], None]] = None,
    tz=None,
) -> Optional[logging.handlers.QueueListener]:
    """Configure the application logger.

    Returns the QueueListener driving the remote sink (caller stops it at
    shutdown), or None when no remote sink is configured.
    """
    log.setLevel(level.upper())
    log.propagate = False
    for handler in list(log.handlers):
        log.removeHandler(handler)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    log.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        log.addHandler(file_handler)

    if remote_sink is None:
        return None

    # network I/O happens on the listener thread, not the event loop
    records: queue.Queue = queue.Queue(maxsize=REMOTE_QUEUE_SIZE)
    log.addHandler(DroppingQueueHandler(records))
    remote_handler = RemoteLogHandler(remote_sink, tz=tz)
    remote_handler.setFormatter(logging.Formatter("%(message)s"))
    listener = RemoteLogListener(records, remote_handler)
    listener.start()
    return listener
