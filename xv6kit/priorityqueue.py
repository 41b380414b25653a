"""Run queue with a fixed number of priority levels, first in first out within each."""

from __future__ import annotations

from collections import deque
from typing import Iterator, Optional, Protocol

N_PRIORITIES = 10


class _Schedulable(Protocol):
    pid: int
    priority: int
    killed: bool


class PriorityQueue:
    """Processes waiting to run; level 0 is served first."""

    def __init__(self) -> None:
        self._levels: list[deque] = [deque() for _ in range(N_PRIORITIES)]

    def __len__(self) -> int:
        return sum(len(level) for level in self._levels)

    def __iter__(self) -> Iterator[_Schedulable]:
        for level in self._levels:
            yield from level

    def search(self, proc: _Schedulable) -> Optional[_Schedulable]:
        """The queued entry that is proc, looked for at proc's own priority."""
        if not 0 <= proc.priority < N_PRIORITIES:
            return None
        return next((p for p in self._levels[proc.priority] if p is proc), None)

    def insert(self, proc: _Schedulable) -> None:
        """Queue proc at the back of its priority level unless it is already there.

        A priority outside the valid levels marks the process killed and
        raises ValueError.
        """
        if not 0 <= proc.priority < N_PRIORITIES:
            proc.killed = True
            raise ValueError(f"priority {proc.priority} outside 0..{N_PRIORITIES - 1}")
        if self.search(proc) is None:
            self._levels[proc.priority].append(proc)

    def extract(self) -> Optional[_Schedulable]:
        """Remove and return the first process of the highest non-empty level."""
        for level in self._levels:
            if level:
                return level.popleft()
        return None

    def search_extract(self, pid: int) -> Optional[_Schedulable]:
        """Remove and return the queued process with the given pid."""
        for level in self._levels:
            for i, proc in enumerate(level):
                if proc.pid == pid:
                    del level[i]
                    return proc
        return None