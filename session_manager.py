import logging
import time
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionStatus:
    show_warning: bool
    time_left_seconds: float
    expired: bool


class SessionWatchdog:
    """Tracks when the logged-in session expires and when to warn about it."""

    def __init__(self, timeout_seconds: float, warning_seconds: float = 60, started_at: float = None):
        self.timeout_seconds = timeout_seconds
        self.warning_seconds = min(warning_seconds, timeout_seconds)
        self.expires_at = (time.time() if started_at is None else started_at) + timeout_seconds

    def status(self, now: float = None) -> SessionStatus:
        now = time.time() if now is None else now
        time_left = max(self.expires_at - now, 0.0)
        expired = time_left <= 0
        return SessionStatus(
            show_warning=not expired and time_left <= self.warning_seconds,
            time_left_seconds=time_left,
            expired=expired,
        )

    def extend(self, now: float = None):
        now = time.time() if now is None else now
        self.expires_at = now + self.timeout_seconds
        logger.info("Session extended until %s", time.strftime("%H:%M:%S", time.localtime(self.expires_at)))


def format_time_left(seconds: float) -> str:
    seconds = int(max(seconds, 0))
    return f"{seconds // 60:02d}:{seconds % 60:02d}"
