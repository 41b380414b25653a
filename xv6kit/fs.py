"""File system: block allocation, inodes, directories and path names.

All operations that may write to disk must run inside a log transaction
(see ``FileSystem.log.transaction``). Inodes are locked with ``ilock`` before
their fields or contents are examined and unlocked with ``iunlock``.
"""

from __future__ import annotations

import struct
import threading
from dataclasses import dataclass, field
from typing import Callable, Optional

from .bufcache import BufferCache, _SleepLock
from .journal import Journal
from .layout import (
    BPB,
    BSIZE,
    DINODE_SIZE,
    DIRENT_SIZE,
    DIRSIZ,
    IPB,
    MAXFILE,
    NDEV,
    NDIRECT,
    NINDIRECT,
    NINODE,
    ROOTDEV,
    ROOTINO,
    Dirent,
    DiskInode,
    FileType,
    KernelPanic,
    Superblock,
    bitmap_block,
    encode_name,
    inode_block,
)

_ADDR = struct.Struct("<I")

DeviceRead = Callable[["Inode", int], bytes]
DeviceWrite = Callable[["Inode", bytes], int]


@dataclass(frozen=True)
class Stat:
    """Metadata about a file."""

    type: int
    dev: int
    ino: int
    nlink: int
    size: int


@dataclass(eq=False)
class Inode:
    """In-memory copy of an inode.

    ref, dev and inum belong to the inode cache; the other fields are only
    meaningful while the inode is locked and valid.
    """

    dev: int = 0
    inum: int = 0
    ref: int = 0
    valid: bool = False
    type: int = 0
    major: int = 0
    minor: int = 0
    nlink: int = 0
    size: int = 0
    addrs: list[int] = field(default_factory=lambda: [0] * (NDIRECT + 1))
    lock: _SleepLock = field(default_factory=_SleepLock, repr=False)

    @property
    def held(self) -> bool:
        """Whether the calling thread holds this inode's lock."""
        return self.lock.holding()


def read_superblock(cache: BufferCache, dev: int) -> Superblock:
    """Read the superblock of a device."""
    buf = cache.read(dev, 1)
    try:
        return Superblock.unpack(bytes(buf.data))
    finally:
        cache.release(buf)


def skipelem(path: str) -> Optional[tuple[str, str]]:
    """Split off the first element of a path.

    Returns the element (cut to DIRSIZ characters) and the rest of the path
    without leading slashes, or None when there is no element left.
    """
    path = path.lstrip("/")
    if not path:
        return None
    elem, _, rest = path.partition("/")
    return elem[:DIRSIZ], rest.lstrip("/")


class FileSystem:
    """The file system on one device, with its inode cache and log."""

    def __init__(self, cache: BufferCache, dev: int = ROOTDEV) -> None:
        self.cache = cache
        self.dev = dev
        self.sb = read_superblock(cache, dev)
        self.log = Journal(cache, dev, self.sb)
        self.inodes = [Inode() for _ in range(NINODE)]
        self.devsw: dict[int, tuple[Optional[DeviceRead], Optional[DeviceWrite]]] = {}
        self._icache_lock = threading.Lock()

    def register_device(
        self,
        major: int,
        read: Optional[DeviceRead],
        write: Optional[DeviceWrite],
    ) -> None:
        """Attach read and write handlers to a major device number."""
        if not 0 <= major < NDEV:
            raise ValueError(f"major device number {major} out of range")
        self.devsw[major] = (read, write)

    # Blocks.

    def _bzero(self, dev: int, bno: int) -> None:
        buf = self.cache.read(dev, bno)
        buf.data[:] = bytes(BSIZE)
        self.log.log_write(buf)
        self.cache.release(buf)

    def balloc(self, dev: int) -> int:
        """Allocate a zeroed disk block and return its number."""
        for base in range(0, self.sb.size, BPB):
            buf = self.cache.read(dev, bitmap_block(base, self.sb))
            for bi in range(min(BPB, self.sb.size - base)):
                mask = 1 << (bi % 8)
                if buf.data[bi // 8] & mask == 0:
                    buf.data[bi // 8] |= mask
                    self.log.log_write(buf)
                    self.cache.release(buf)
                    self._bzero(dev, base + bi)
                    return base + bi
            self.cache.release(buf)
        raise KernelPanic("balloc: out of blocks")

    def bfree(self, dev: int, b: int) -> None:
        """Mark a disk block free."""
        buf = self.cache.read(dev, bitmap_block(b, self.sb))
        bi = b % BPB
        mask = 1 << (bi % 8)
        if buf.data[bi // 8] & mask == 0:
            self.cache.release(buf)
            raise KernelPanic("freeing free block")
        buf.data[bi // 8] &= ~mask & 0xFF
        self.log.log_write(buf)
        self.cache.release(buf)

    # Inodes.

    def _dinode_offset(self, inum: int) -> int:
        return (inum % IPB) * DINODE_SIZE

    def ialloc(self, dev: int, type: int) -> Inode:
        """Allocate an on-disk inode of the given type; returned unlocked."""
        for inum in range(1, self.sb.ninodes):
            buf = self.cache.read(dev, inode_block(inum, self.sb))
            off = self._dinode_offset(inum)
            din = DiskInode.unpack(bytes(buf.data[off : off + DINODE_SIZE]))
            if din.type == 0:
                buf.data[off : off + DINODE_SIZE] = DiskInode(type=int(type)).pack()
                self.log.log_write(buf)
                self.cache.release(buf)
                return self.iget(dev, inum)
            self.cache.release(buf)
        raise KernelPanic("ialloc: no inodes")

    def iupdate(self, ip: Inode) -> None:
        """Copy a locked in-memory inode to disk."""
        buf = self.cache.read(ip.dev, inode_block(ip.inum, self.sb))
        off = self._dinode_offset(ip.inum)
        din = DiskInode(
            type=ip.type,
            major=ip.major,
            minor=ip.minor,
            nlink=ip.nlink,
            size=ip.size,
            addrs=list(ip.addrs),
        )
        buf.data[off : off + DINODE_SIZE] = din.pack()
        self.log.log_write(buf)
        self.cache.release(buf)

    def iget(self, dev: int, inum: int) -> Inode:
        """The cached inode for (dev, inum), referenced but neither locked nor read."""
        with self._icache_lock:
            empty = None
            for ip in self.inodes:
                if ip.ref > 0 and ip.dev == dev and ip.inum == inum:
                    ip.ref += 1
                    return ip
                if empty is None and ip.ref == 0:
                    empty = ip
            if empty is None:
                raise KernelPanic("iget: no inodes")
            empty.dev = dev
            empty.inum = inum
            empty.ref = 1
            empty.valid = False
            return empty

    def idup(self, ip: Inode) -> Inode:
        """Add a reference to ip and return it."""
        with self._icache_lock:
            ip.ref += 1
        return ip

    def ilock(self, ip: Optional[Inode]) -> None:
        """Lock an inode, reading it from disk if needed."""
        if ip is None or ip.ref < 1:
            raise KernelPanic("ilock")
        ip.lock.acquire()
        if not ip.valid:
            buf = self.cache.read(ip.dev, inode_block(ip.inum, self.sb))
            off = self._dinode_offset(ip.inum)
            din = DiskInode.unpack(bytes(buf.data[off : off + DINODE_SIZE]))
            self.cache.release(buf)
            ip.type = din.type
            ip.major = din.major
            ip.minor = din.minor
            ip.nlink = din.nlink
            ip.size = din.size
            ip.addrs = list(din.addrs)
            ip.valid = True
            if ip.type == 0:
                ip.lock.release()
                raise KernelPanic("ilock: no type")

    def iunlock(self, ip: Optional[Inode]) -> None:
        """Unlock an inode held by the caller."""
        if ip is None or not ip.held or ip.ref < 1:
            raise KernelPanic("iunlock")
        ip.lock.release()

    def iput(self, ip: Inode) -> None:
        """Drop a reference; the last one to an unlinked inode frees it on disk."""
        ip.lock.acquire()
        try:
            if ip.valid and ip.nlink == 0:
                with self._icache_lock:
                    refs = ip.ref
                if refs == 1:
                    self.itrunc(ip)
                    ip.type = 0
                    self.iupdate(ip)
                    ip.valid = False
        finally:
            ip.lock.release()
        with self._icache_lock:
            ip.ref -= 1

    def iunlockput(self, ip: Inode) -> None:
        """Unlock an inode, then drop a reference to it."""
        self.iunlock(ip)
        self.iput(ip)

    # Inode contents.

    def bmap(self, ip: Inode, bn: int) -> int:
        """Disk block holding block bn of the inode, allocated if absent."""
        if bn < 0:
            raise KernelPanic("bmap: out of range")
        if bn < NDIRECT:
            if ip.addrs[bn] == 0:
                ip.addrs[bn] = self.balloc(ip.dev)
            return ip.addrs[bn]
        bn -= NDIRECT
        if bn < NINDIRECT:
            if ip.addrs[NDIRECT] == 0:
                ip.addrs[NDIRECT] = self.balloc(ip.dev)
            buf = self.cache.read(ip.dev, ip.addrs[NDIRECT])
            (addr,) = _ADDR.unpack_from(buf.data, bn * _ADDR.size)
            if addr == 0:
                addr = self.balloc(ip.dev)
                _ADDR.pack_into(buf.data, bn * _ADDR.size, addr)
                self.log.log_write(buf)
            self.cache.release(buf)
            return addr
        raise KernelPanic("bmap: out of range")

    def itrunc(self, ip: Inode) -> None:
        """Free all blocks of a locked inode and set its size to zero."""
        for i, addr in enumerate(ip.addrs[:NDIRECT]):
            if addr:
                self.bfree(ip.dev, addr)
                ip.addrs[i] = 0
        if ip.addrs[NDIRECT]:
            buf = self.cache.read(ip.dev, ip.addrs[NDIRECT])
            entries = struct.unpack_from(f"<{NINDIRECT}I", buf.data)
            self.cache.release(buf)
            for addr in entries:
                if addr:
                    self.bfree(ip.dev, addr)
            self.bfree(ip.dev, ip.addrs[NDIRECT])
            ip.addrs[NDIRECT] = 0
        ip.size = 0
        self.iupdate(ip)

    def stati(self, ip: Inode) -> Stat:
        """Metadata of a locked inode."""
        return Stat(type=ip.type, dev=ip.dev, ino=ip.inum, nlink=ip.nlink, size=ip.size)

    def _device(self, ip: Inode, index: int):
        handlers = self.devsw.get(ip.major) if 0 <= ip.major < NDEV else None
        handler = handlers[index] if handlers else None
        if handler is None:
            raise ValueError(f"no handler for device {ip.major}")
        return handler

    def readi(self, ip: Inode, off: int, n: int) -> bytes:
        """Read up to n bytes at off from a locked inode."""
        if ip.type == FileType.DEV:
            return self._device(ip, 0)(ip, n)
        if n < 0 or off < 0 or off > ip.size:
            raise ValueError(f"read of {n} bytes at {off} outside a file of {ip.size}")
        n = min(n, ip.size - off)
        chunks = []
        tot = 0
        while tot < n:
            buf = self.cache.read(ip.dev, self.bmap(ip, off // BSIZE))
            start = off % BSIZE
            m = min(n - tot, BSIZE - start)
            chunks.append(bytes(buf.data[start : start + m]))
            self.cache.release(buf)
            tot += m
            off += m
        return b"".join(chunks)

    def writei(self, ip: Inode, data: bytes, off: int) -> int:
        """Write data at off into a locked inode, growing it as needed."""
        if ip.type == FileType.DEV:
            return self._device(ip, 1)(ip, bytes(data))
        n = len(data)
        if off < 0 or off > ip.size:
            raise ValueError(f"write at {off} beyond the end of a file of {ip.size}")
        if off + n > MAXFILE * BSIZE:
            raise ValueError("write would exceed the maximum file size")
        view = memoryview(bytes(data))
        tot = 0
        while tot < n:
            buf = self.cache.read(ip.dev, self.bmap(ip, off // BSIZE))
            start = off % BSIZE
            m = min(n - tot, BSIZE - start)
            buf.data[start : start + m] = view[tot : tot + m]
            self.log.log_write(buf)
            self.cache.release(buf)
            tot += m
            off += m
        if n > 0 and off > ip.size:
            ip.size = off
            self.iupdate(ip)
        return n

    # Directories.

    def _entries(self, dp: Inode, what: str):
        for off in range(0, dp.size, DIRENT_SIZE):
            raw = self.readi(dp, off, DIRENT_SIZE)
            if len(raw) != DIRENT_SIZE:
                raise KernelPanic(what)
            yield off, Dirent.unpack(raw)

    def dirlookup(self, dp: Inode, name: str) -> Optional[tuple[Inode, int]]:
        """Find name in a locked directory: its inode and the entry's offset."""
        if dp.type != FileType.DIR:
            raise KernelPanic("dirlookup not DIR")
        wanted = encode_name(name)
        for off, de in self._entries(dp, "dirlookup read"):
            if de.inum != 0 and encode_name(de.name) == wanted:
                return self.iget(dp.dev, de.inum), off
        return None

    def dirlink(self, dp: Inode, name: str, inum: int) -> None:
        """Add the entry (name, inum) to a locked directory."""
        found = self.dirlookup(dp, name)
        if found is not None:
            self.iput(found[0])
            raise FileExistsError(name)
        slot = dp.size
        for off, de in self._entries(dp, "dirlink read"):
            if de.inum == 0:
                slot = off
                break
        if self.writei(dp, Dirent(inum, name).pack(), slot) != DIRENT_SIZE:
            raise KernelPanic("dirlink")

    # Path names.

    def _namex(
        self, path: str, want_parent: bool, cwd: Optional[Inode]
    ) -> Optional[tuple[Inode, str]]:
        if path.startswith("/"):
            ip = self.iget(ROOTDEV, ROOTINO)
        else:
            if cwd is None:
                raise ValueError("a relative path needs a working directory")
            ip = self.idup(cwd)
        name = ""
        while (step := skipelem(path)) is not None:
            name, path = step
            self.ilock(ip)
            if ip.type != FileType.DIR:
                self.iunlockput(ip)
                return None
            if want_parent and path == "":
                self.iunlock(ip)
                return ip, name
            found = self.dirlookup(ip, name)
            if found is None:
                self.iunlockput(ip)
                return None
            self.iunlockput(ip)
            ip = found[0]
        if want_parent:
            self.iput(ip)
            return None
        return ip, name

    def namei(self, path: str, cwd: Optional[Inode] = None) -> Optional[Inode]:
        """The inode a path names, or None; must run inside a transaction."""
        found = self._namex(path, False, cwd)
        return None if found is None else found[0]

    def nameiparent(
        self, path: str, cwd: Optional[Inode] = None
    ) -> Optional[tuple[Inode, str]]:
        """The parent directory of a path and its final element, or None."""
        return self._namex(path, True, cwd)