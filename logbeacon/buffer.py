"""
logbeacon/buffer.py - Bounded FIFO buffer with drop-oldest overflow.
"""

import threading
from collections import deque
from typing import Iterator, List, Sequence

from .events import LogEntry


class EventBuffer:
    """
    Insertion-ordered queue of accepted entries.

    Overflow strategy: drop OLDEST. Recent entries carry the context of
    whatever is going wrong right now, so a new entry is never rejected in
    favour of an old one. Evictions are counted, not reported.

    Thread Safety:
        Appends may come from any thread while the event loop takes and
        removes batches; every operation holds the buffer lock.
    """

    def __init__(self, capacity: int = 1000):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self.queue: deque[LogEntry] = deque(maxlen=capacity)
        self.evicted_count: int = 0
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self.queue)

    def __iter__(self) -> Iterator[LogEntry]:
        with self._lock:
            return iter(list(self.queue))

    def append(self, entry: LogEntry) -> None:
        with self._lock:
            if len(self.queue) >= self.capacity:
                self.evicted_count += 1
            # deque(maxlen=...) discards from the left on overflow
            self.queue.append(entry)

    def take_batch(self, n: int) -> List[LogEntry]:
        """Copy of the oldest ``n`` entries. Nothing is removed."""
        if n <= 0:
            return []
        with self._lock:
            batch = []
            for entry in self.queue:
                if len(batch) >= n:
                    break
                batch.append(entry)
            return batch

    def remove(self, n: int) -> int:
        """Remove the oldest ``n`` entries. Returns how many were removed."""
        with self._lock:
            removed = 0
            while removed < n and self.queue:
                self.queue.popleft()
                removed += 1
            return removed

    def remove_batch(self, batch: Sequence[LogEntry]) -> int:
        """
        Remove a batch previously returned by take_batch().

        Entries are matched by identity from the front, so if overflow evicted
        part of the batch while it was in flight, only the surviving members
        are removed and entries appended since are left alone.
        """
        in_batch = {id(entry) for entry in batch}
        with self._lock:
            removed = 0
            while self.queue and id(self.queue[0]) in in_batch:
                self.queue.popleft()
                removed += 1
            return removed

    def clear(self) -> None:
        with self._lock:
            self.queue.clear()
