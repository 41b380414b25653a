"""Cache of disk blocks, recycled least recently used first."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field

from .layout import BSIZE, NBUF, KernelPanic


class _SleepLock:
    """A long-term lock that remembers which thread holds it."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._owner: int | None = None

    def acquire(self) -> None:
        with self._cond:
            while self._owner is not None:
                self._cond.wait()
            self._owner = threading.get_ident()

    def release(self) -> None:
        with self._cond:
            self._owner = None
            self._cond.notify_all()

    def holding(self) -> bool:
        with self._cond:
            return self._owner == threading.get_ident()


@dataclass(eq=False)
class Buffer:
    """A cached copy of one disk block.

    valid: the data has been read from disk.
    dirty: the data has been modified and must be written to disk.
    """

    dev: int = 0
    blockno: int = 0
    data: bytearray = field(default_factory=lambda: bytearray(BSIZE))
    valid: bool = False
    dirty: bool = False
    refcnt: int = 0
    lock: _SleepLock = field(default_factory=_SleepLock, repr=False)

    @property
    def held(self) -> bool:
        """Whether the calling thread holds this buffer's lock."""
        return self.lock.holding()


class BufferCache:
    """A fixed set of buffers shared by everyone reading the disk.

    Only one holder at a time may use a buffer; release it as soon as done.
    """

    def __init__(self, disk, nbuf: int = NBUF) -> None:
        self.disk = disk
        self._lock = threading.Lock()
        # Most recently used first; the last buffer created starts in front.
        self._buffers = [Buffer() for _ in range(nbuf)]
        self._buffers.reverse()

    def _get(self, dev: int, blockno: int) -> Buffer:
        with self._lock:
            found = next(
                (b for b in self._buffers if b.dev == dev and b.blockno == blockno),
                None,
            )
            if found is not None:
                found.refcnt += 1
            else:
                # A dirty buffer is still in use by the log even if unreferenced.
                found = next(
                    (
                        b
                        for b in reversed(self._buffers)
                        if b.refcnt == 0 and not b.dirty
                    ),
                    None,
                )
                if found is None:
                    raise KernelPanic("bget: no buffers")
                found.dev = dev
                found.blockno = blockno
                found.valid = False
                found.dirty = False
                found.refcnt = 1
        found.lock.acquire()
        return found

    def read(self, dev: int, blockno: int) -> Buffer:
        """A locked buffer holding the contents of the block."""
        buf = self._get(dev, blockno)
        if not buf.valid:
            self.disk.rw(buf)
        return buf

    def write(self, buf: Buffer) -> None:
        """Write a locked buffer's contents to disk."""
        if not buf.held:
            raise KernelPanic("bwrite")
        buf.dirty = True
        self.disk.rw(buf)

    def release(self, buf: Buffer) -> None:
        """Unlock a buffer; once unreferenced it becomes the most recently used."""
        if not buf.held:
            raise KernelPanic("brelse")
        buf.lock.release()
        with self._lock:
            buf.refcnt -= 1
            if buf.refcnt == 0:
                self._buffers.remove(buf)
                self._buffers.insert(0, buf)