"""
logbeacon/dedup.py - Time-windowed fingerprint cache.
"""

from collections import OrderedDict
from typing import Any, Mapping

# Entry count above which expired fingerprints are swept.
HIGH_WATER_MARK = 1000
# Size a sweep leaves behind, evicting the oldest live fingerprints if needed.
LOW_WATER_MARK = 900


def fingerprint(level: str, message: str, context: Mapping[str, Any] | None) -> str:
    """
    ``level:message``, extended with the stack of the event when one is
    available, so equal messages raised from different places stay distinct.
    """
    key = f"{getattr(level, 'value', level)}:{message}"
    if not context:
        return key

    stack = context.get("stack")
    if stack:
        return f"{key}:{stack}"

    exception = context.get("exception")
    if isinstance(exception, Mapping) and exception.get("stack"):
        return f"{key}:{exception['stack']}"
    return key


class DeduplicationCache:
    """
    Remembers when each fingerprint was last accepted.

    INVARIANTS:
    - A fingerprint seen ``window_ms`` or more ago never suppresses.
    - Expired entries are swept only once the cache grows past
      ``high_water_mark``. A sweep always ends at or below
      ``low_water_mark`` (oldest entries go first), so a full cache costs
      one sweep per ``high - low`` new fingerprints, not one per insert.
    """

    def __init__(
        self,
        window_ms: int,
        high_water_mark: int = HIGH_WATER_MARK,
        low_water_mark: int | None = None,
    ):
        self.window_ms = window_ms
        self.high_water_mark = high_water_mark
        if low_water_mark is None:
            low_water_mark = min(LOW_WATER_MARK, high_water_mark * 9 // 10)
        self.low_water_mark = low_water_mark
        self._last_seen: OrderedDict[str, float] = OrderedDict()

    def __len__(self) -> int:
        return len(self._last_seen)

    def should_suppress(self, key: str, now_ms: float) -> bool:
        last_seen = self._last_seen.get(key)
        if last_seen is not None and now_ms - last_seen < self.window_ms:
            return True

        self._last_seen[key] = now_ms
        self._last_seen.move_to_end(key)

        if len(self._last_seen) > self.high_water_mark:
            self.compact(now_ms)
        return False

    def compact(self, now_ms: float) -> None:
        expired = [k for k, seen in self._last_seen.items() if now_ms - seen >= self.window_ms]
        for key in expired:
            del self._last_seen[key]

        while len(self._last_seen) > self.low_water_mark:
            self._last_seen.popitem(last=False)

    def clear(self) -> None:
        self._last_seen.clear()
