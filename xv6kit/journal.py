"""Write-ahead redo log that makes groups of block writes atomic.

A transaction gathers the writes of several concurrent operations and
commits only when none of them is still running. On disk the log is a
header block listing block numbers, followed by copies of those blocks.
"""

from __future__ import annotations

import struct
import threading
from contextlib import contextmanager
from typing import Iterator

from .bufcache import Buffer, BufferCache
from .layout import BSIZE, LOGSIZE, MAXOPBLOCKS, KernelPanic, Superblock

_HEADER = struct.Struct(f"<i{LOGSIZE}i")


class Journal:
    """The log for one device; recovers any committed transaction on creation."""

    def __init__(self, cache: BufferCache, dev: int, sb: Superblock) -> None:
        if _HEADER.size >= BSIZE:
            raise KernelPanic("initlog: too big logheader")
        self.cache = cache
        self.dev = dev
        self.start = sb.logstart
        self.size = sb.nlog
        self.outstanding = 0
        self.committing = False
        self.blocks: list[int] = []
        self._cond = threading.Condition()
        self.recover()

    def _read_head(self) -> None:
        buf = self.cache.read(self.dev, self.start)
        n, *blocks = _HEADER.unpack_from(buf.data)
        self.blocks = blocks[:n]
        self.cache.release(buf)

    def _write_head(self) -> None:
        buf = self.cache.read(self.dev, self.start)
        blocks = self.blocks + [0] * (LOGSIZE - len(self.blocks))
        buf.data[: _HEADER.size] = _HEADER.pack(len(self.blocks), *blocks)
        self.cache.write(buf)
        self.cache.release(buf)

    def _copy_blocks(self, to_log: bool) -> None:
        for tail, blockno in enumerate(self.blocks):
            logbuf = self.cache.read(self.dev, self.start + tail + 1)
            homebuf = self.cache.read(self.dev, blockno)
            src, dst = (homebuf, logbuf) if to_log else (logbuf, homebuf)
            dst.data[:] = src.data
            self.cache.write(dst)
            if to_log:
                self.cache.release(homebuf)
                self.cache.release(logbuf)
            else:
                self.cache.release(logbuf)
                self.cache.release(homebuf)

    def _install(self) -> None:
        self._copy_blocks(to_log=False)

    def recover(self) -> None:
        """Install a committed transaction from the log, then clear the log."""
        self._read_head()
        self._install()
        self.blocks = []
        self._write_head()

    def begin_op(self) -> None:
        """Start an operation, waiting while a commit runs or log space is short."""
        with self._cond:
            while (
                self.committing
                or len(self.blocks) + (self.outstanding + 1) * MAXOPBLOCKS > LOGSIZE
            ):
                self._cond.wait()
            self.outstanding += 1

    def end_op(self) -> None:
        """Finish an operation; the last one out commits the transaction."""
        with self._cond:
            self.outstanding -= 1
            if self.committing:
                raise KernelPanic("log.committing")
            do_commit = self.outstanding == 0
            if do_commit:
                self.committing = True
            else:
                self._cond.notify_all()
        if do_commit:
            try:
                self._commit()
            finally:
                with self._cond:
                    self.committing = False
                    self._cond.notify_all()

    def _commit(self) -> None:
        if self.blocks:
            self._copy_blocks(to_log=True)
            self._write_head()  # the real commit point
            self._install()
            self.blocks = []
            self._write_head()

    def log_write(self, buf: Buffer) -> None:
        """Record a modified buffer in the transaction and pin it in the cache."""
        if len(self.blocks) >= LOGSIZE or len(self.blocks) >= self.size - 1:
            raise KernelPanic("too big a transaction")
        if self.outstanding < 1:
            raise KernelPanic("log_write outside of trans")
        with self._cond:
            if buf.blockno not in self.blocks:
                self.blocks.append(buf.blockno)
            buf.dirty = True

    @contextmanager
    def transaction(self) -> Iterator[Journal]:
        """Run the body as one operation between begin_op and end_op."""
        self.begin_op()
        try:
            yield self
        finally:
            self.end_op()