"""
Bounded FIFO buffer of raw metric events.
"""

from collections import deque
from collections.abc import Iterable, Iterator

from .models import MetricEvent


class IngestionBuffer:
    """Keeps the most recently received events in arrival order

    The oldest events are evicted first once capacity is reached.
    """

    def __init__(self, capacity: int = 1000):
        if capacity <= 0:
            raise ValueError(f"Buffer capacity must be positive, got {capacity}")
        self._capacity = capacity
        self._events: deque[MetricEvent] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._capacity

    def append(self, events: Iterable[MetricEvent]) -> int:
        """Append a batch (or a single-event batch) and return how many were evicted"""
        evicted = 0
        for event in events:
            if len(self._events) == self._capacity:
                evicted += 1
            self._events.append(event)
        return evicted

    def clear(self) -> None:
        self._events.clear()

    def snapshot(self) -> tuple[MetricEvent, ...]:
        return tuple(self._events)

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[MetricEvent]:
        return iter(self._events)
