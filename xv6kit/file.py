"""Open file objects and the system-wide table that holds them."""

from __future__ import annotations

import enum
import errno
import io
import threading
from dataclasses import dataclass
from typing import Optional

from .fs import FileSystem, Inode, Stat
from .layout import BSIZE, MAXOPBLOCKS, NFILE, KernelPanic
from .pipe import Pipe

# Write a few blocks at a time so one write never overflows a log
# transaction: inode, indirect block, allocation blocks and two blocks
# of slop for unaligned writes.
MAX_WRITE = ((MAXOPBLOCKS - 1 - 1 - 2) // 2) * BSIZE


class FileKind(enum.Enum):
    """What an open file refers to."""

    NONE = 0
    PIPE = 1
    INODE = 2


@dataclass(eq=False)
class OpenFile:
    """One entry of the file table."""

    kind: FileKind = FileKind.NONE
    ref: int = 0
    readable: bool = False
    writable: bool = False
    pipe: Optional[Pipe] = None
    ip: Optional[Inode] = None
    off: int = 0


class FileTable:
    """A fixed number of open files shared by all processes."""

    def __init__(self, fs: Optional[FileSystem], nfile: int = NFILE) -> None:
        self.fs = fs
        self.files = [OpenFile() for _ in range(nfile)]
        self._lock = threading.Lock()

    def alloc(self) -> OpenFile:
        """Take a free entry with one reference."""
        with self._lock:
            for f in self.files:
                if f.ref == 0:
                    f.ref = 1
                    return f
        raise OSError(errno.ENFILE, "file table full")

    def dup(self, f: OpenFile) -> OpenFile:
        """Add a reference to f and return it."""
        with self._lock:
            if f.ref < 1:
                raise KernelPanic("filedup")
            f.ref += 1
        return f

    def close(self, f: OpenFile) -> None:
        """Drop a reference; the last one releases the pipe end or inode."""
        with self._lock:
            if f.ref < 1:
                raise KernelPanic("fileclose")
            f.ref -= 1
            if f.ref > 0:
                return
            kind, pipe, ip, writable = f.kind, f.pipe, f.ip, f.writable
            f.kind = FileKind.NONE
            f.pipe = None
            f.ip = None
            f.readable = False
            f.writable = False
            f.off = 0
        if kind is FileKind.PIPE and pipe is not None:
            pipe.close(writable)
        elif kind is FileKind.INODE and ip is not None:
            fs = self._require_fs()
            with fs.log.transaction():
                fs.iput(ip)

    def _require_fs(self) -> FileSystem:
        if self.fs is None:
            raise KernelPanic("file table has no file system")
        return self.fs

    def stat(self, f: OpenFile) -> Stat:
        """Metadata of the inode behind f."""
        if f.kind is not FileKind.INODE or f.ip is None:
            raise io.UnsupportedOperation("stat of a file without an inode")
        fs = self._require_fs()
        fs.ilock(f.ip)
        try:
            return fs.stati(f.ip)
        finally:
            fs.iunlock(f.ip)

    def read(self, f: OpenFile, n: int) -> bytes:
        """Read up to n bytes from f, advancing its offset."""
        if not f.readable:
            raise io.UnsupportedOperation("file not open for reading")
        if f.kind is FileKind.PIPE and f.pipe is not None:
            return f.pipe.read(n)
        if f.kind is FileKind.INODE and f.ip is not None:
            fs = self._require_fs()
            fs.ilock(f.ip)
            try:
                data = fs.readi(f.ip, f.off, n)
                f.off += len(data)
            finally:
                fs.iunlock(f.ip)
            return data
        raise KernelPanic("fileread")

    def write(self, f: OpenFile, data: bytes) -> int:
        """Write all of data to f, advancing its offset."""
        if not f.writable:
            raise io.UnsupportedOperation("file not open for writing")
        if f.kind is FileKind.PIPE and f.pipe is not None:
            return f.pipe.write(data)
        if f.kind is FileKind.INODE and f.ip is not None:
            fs = self._require_fs()
            data = bytes(data)
            i = 0
            while i < len(data):
                chunk = data[i : i + MAX_WRITE]
                with fs.log.transaction():
                    fs.ilock(f.ip)
                    try:
                        r = fs.writei(f.ip, chunk, f.off)
                        if r > 0:
                            f.off += r
                    finally:
                        fs.iunlock(f.ip)
                if r < 0:
                    raise OSError(errno.EIO, "write failed")
                if r != len(chunk):
                    raise KernelPanic("short filewrite")
                i += r
            return len(data)
        raise KernelPanic("filewrite")

    def pipe(self) -> tuple[OpenFile, OpenFile]:
        """A new pipe as a (read end, write end) pair of open files."""
        allocated: list[OpenFile] = []
        try:
            allocated.append(self.alloc())
            allocated.append(self.alloc())
        except OSError:
            for f in allocated:
                self.close(f)
            raise
        reader, writer = allocated
        p = Pipe()
        reader.kind, reader.readable, reader.writable, reader.pipe = (
            FileKind.PIPE,
            True,
            False,
            p,
        )
        writer.kind, writer.readable, writer.writable, writer.pipe = (
            FileKind.PIPE,
            False,
            True,
            p,
        )
        return reader, writer