"""A bounded in-kernel pipe between one reading end and one writing end."""

from __future__ import annotations

import threading
from typing import Callable, Optional

PIPESIZE = 512


class Pipe:
    """A byte channel holding at most PIPESIZE unread bytes.

    ``killed`` is asked whenever a caller would have to wait; when it returns
    true the waiting call gives up with InterruptedError.
    """

    def __init__(self, killed: Optional[Callable[[], bool]] = None) -> None:
        self._cond = threading.Condition()
        self._data = bytearray()
        self._killed = killed or (lambda: False)
        self.nread = 0
        self.nwrite = 0
        self.readopen = True
        self.writeopen = True

    def write(self, data: bytes) -> int:
        """Write all of data, waiting for room; returns the number of bytes."""
        view = memoryview(bytes(data))
        with self._cond:
            while view:
                while len(self._data) == PIPESIZE:
                    if not self.readopen:
                        raise BrokenPipeError("pipe has no reader")
                    if self._killed():
                        raise InterruptedError("pipe write interrupted")
                    self._cond.notify_all()
                    self._cond.wait()
                room = PIPESIZE - len(self._data)
                chunk = view[:room]
                self._data += chunk
                self.nwrite += len(chunk)
                view = view[room:]
            self._cond.notify_all()
        return len(data)

    def read(self, n: int) -> bytes:
        """Read up to n bytes, waiting while the pipe is empty and a writer remains.

        An empty result means end of file.
        """
        with self._cond:
            while not self._data and self.writeopen:
                if self._killed():
                    raise InterruptedError("pipe read interrupted")
                self._cond.wait()
            count = max(0, min(n, len(self._data)))
            chunk = bytes(self._data[:count])
            del self._data[:count]
            self.nread += count
            self._cond.notify_all()
            return chunk

    def close(self, writable: bool) -> None:
        """Close the writing end if writable is true, otherwise the reading end."""
        with self._cond:
            if writable:
                self.writeopen = False
            else:
                self.readopen = False
            self._cond.notify_all()

    @property
    def closed(self) -> bool:
        """Whether both ends have been closed."""
        return not self.readopen and not self.writeopen