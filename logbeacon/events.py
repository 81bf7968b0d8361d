"""
logbeacon/events.py - Log levels, log entries and the environment snapshot.
"""

import datetime
import platform
import socket
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from . import __version__
from .serialization import safe_serialize


class LogLevel(str, Enum):
    """Severity levels, ordered from least to most severe."""

    DEBUG = "debug"
    INFO = "info"
    NOTICE = "notice"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"
    ALERT = "alert"
    EMERGENCY = "emergency"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]

    @classmethod
    def parse(cls, value: "LogLevel | str") -> "LogLevel":
        """Accept a member or a case-insensitive level name. Raises ValueError."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown log level: {value!r}") from None

    def __lt__(self, other):
        if not isinstance(other, LogLevel):
            return NotImplemented
        return self.severity < other.severity

    def __le__(self, other):
        if not isinstance(other, LogLevel):
            return NotImplemented
        return self.severity <= other.severity

    def __gt__(self, other):
        if not isinstance(other, LogLevel):
            return NotImplemented
        return self.severity > other.severity

    def __ge__(self, other):
        if not isinstance(other, LogLevel):
            return NotImplemented
        return self.severity >= other.severity


_SEVERITY = {level: index for index, level in enumerate(LogLevel)}


def default_user_agent() -> str:
    return (
        f"logbeacon/{__version__} "
        f"Python/{platform.python_version()} ({platform.system() or 'unknown'})"
    )


@dataclass
class Environment:
    """
    Where the process runs and what it is currently serving.

    ``url`` and ``referrer`` are left to the host application (a web app
    can point them at the request being handled). Entries copy the values
    when they are created, so later changes never rewrite queued events.
    """

    hostname: str = field(default_factory=socket.gethostname)
    url: str | None = None
    user_agent: str | None = field(default_factory=default_user_agent)
    referrer: str | None = None

    def snapshot(self) -> dict[str, str | None]:
        return {
            "request_url": self.url,
            "user_agent": self.user_agent,
            "referrer": self.referrer,
        }


@dataclass(frozen=True)
class LogEntry:
    level: LogLevel
    message: str
    context: dict[str, Any]
    channel: str
    datetime: str
    request_url: str | None = None
    user_agent: str | None = None
    referrer: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Wire representation; environment fields that are unknown are omitted."""
        d = {
            "level": self.level.value,
            "message": self.message,
            "context": safe_serialize(self.context),
            "channel": self.channel,
            "datetime": self.datetime,
        }
        for key in ("request_url", "user_agent", "referrer"):
            value = getattr(self, key)
            if value is not None:
                d[key] = value
        return d


def utc_timestamp(now: datetime.datetime | None = None) -> str:
    now = now or datetime.datetime.now(datetime.timezone.utc)
    return now.astimezone(datetime.timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def create_entry(
    level: LogLevel,
    message: str,
    context: dict[str, Any],
    channel: str,
    environment: Environment | None = None,
    now: datetime.datetime | None = None,
) -> LogEntry:
    """
    Build an entry stamped with the current UTC time.

    The context is copied into plain JSON values here, so the entry is
    detached from any object the caller keeps mutating after log().
    """
    snapshot = environment.snapshot() if environment is not None else {}
    detached = safe_serialize(context)
    if not isinstance(detached, dict):
        detached = {"value": detached}
    return LogEntry(
        level=level,
        message=message,
        context=detached,
        channel=channel,
        datetime=utc_timestamp(now),
        **snapshot,
    )
