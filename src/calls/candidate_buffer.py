from __future__ import annotations

from collections import deque
from collections.abc import Callable
from typing import Generic, TypeVar

T = TypeVar("T")


class CandidateBuffer(Generic[T]):
    """FIFO of network-path candidates waiting for the remote description.

    `drain_into` hands every buffered candidate to `apply` exactly once, in arrival
    order, and leaves the buffer empty. If `apply` raises, the candidate that failed
    is consumed and the rest stay queued.
    """

    def __init__(self) -> None:
        self._items: deque[T] = deque()

    def enqueue(self, candidate: T) -> None:
        self._items.append(candidate)

    def drain_into(self, apply: Callable[[T], object]) -> int:
        drained = 0
        while self._items:
            candidate = self._items.popleft()
            apply(candidate)
            drained += 1
        return drained

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)
