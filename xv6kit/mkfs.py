"""Build a file system image holding a root directory and a set of files."""

from __future__ import annotations

import struct
import sys
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Iterable

from .layout import (
    BPB,
    BSIZE,
    DINODE_SIZE,
    FSSIZE,
    IPB,
    LOGSIZE,
    MAXFILE,
    NDIRECT,
    NINDIRECT,
    ROOTINO,
    Dirent,
    DiskInode,
    FileType,
    Superblock,
    inode_block,
)

NINODES = 200

# Disk layout:
# [ boot block | sb block | log | inode blocks | free bit map | data blocks ]
NBITMAP = FSSIZE // (BSIZE * 8) + 1
NINODEBLOCKS = NINODES // IPB + 1
NLOG = LOGSIZE
NMETA = 2 + NLOG + NINODEBLOCKS + NBITMAP
NBLOCKS = FSSIZE - NMETA

_INDIRECT = struct.Struct(f"<{NINDIRECT}I")


class ImageBuilder:
    """Writes a fresh file system into a seekable binary stream."""

    def __init__(self, stream: BinaryIO) -> None:
        self.stream = stream
        self.superblock = Superblock(
            size=FSSIZE,
            nblocks=NBLOCKS,
            ninodes=NINODES,
            nlog=NLOG,
            logstart=2,
            inodestart=2 + NLOG,
            bmapstart=2 + NLOG + NINODEBLOCKS,
        )
        self.freeinode = 1
        self.freeblock = NMETA
        self.root: int | None = None

    def write_sector(self, sec: int, data: bytes) -> None:
        if len(data) > BSIZE:
            raise ValueError(f"sector data longer than {BSIZE} bytes")
        self.stream.seek(sec * BSIZE)
        written = self.stream.write(bytes(data).ljust(BSIZE, b"\0"))
        if written is not None and written != BSIZE:
            raise OSError(f"short write of sector {sec}")

    def read_sector(self, sec: int) -> bytes:
        self.stream.seek(sec * BSIZE)
        data = self.stream.read(BSIZE)
        if len(data) != BSIZE:
            raise OSError(f"short read of sector {sec}")
        return data

    def _inode_slot(self, inum: int) -> tuple[int, int]:
        return inode_block(inum, self.superblock), (inum % IPB) * DINODE_SIZE

    def write_inode(self, inum: int, dinode: DiskInode) -> None:
        bn, off = self._inode_slot(inum)
        buf = bytearray(self.read_sector(bn))
        buf[off : off + DINODE_SIZE] = dinode.pack()
        self.write_sector(bn, buf)

    def read_inode(self, inum: int) -> DiskInode:
        bn, off = self._inode_slot(inum)
        return DiskInode.unpack(self.read_sector(bn)[off : off + DINODE_SIZE])

    def alloc_inode(self, type: int) -> int:
        inum = self.freeinode
        self.freeinode += 1
        self.write_inode(inum, DiskInode(type=int(type), nlink=1, size=0))
        return inum

    def _take_block(self) -> int:
        block = self.freeblock
        self.freeblock += 1
        return block

    def _block_for(self, din: DiskInode, fbn: int) -> int:
        if fbn < NDIRECT:
            if din.addrs[fbn] == 0:
                din.addrs[fbn] = self._take_block()
            return din.addrs[fbn]
        if din.addrs[NDIRECT] == 0:
            din.addrs[NDIRECT] = self._take_block()
        indirect = list(_INDIRECT.unpack(self.read_sector(din.addrs[NDIRECT])))
        slot = fbn - NDIRECT
        if indirect[slot] == 0:
            indirect[slot] = self._take_block()
            self.write_sector(din.addrs[NDIRECT], _INDIRECT.pack(*indirect))
        return indirect[slot]

    def append(self, inum: int, data: bytes) -> None:
        """Append data to the end of inode inum, allocating blocks as needed."""
        din = self.read_inode(inum)
        off = din.size
        if off + len(data) > MAXFILE * BSIZE:
            raise ValueError(f"inode {inum} would exceed the maximum file size")
        view = memoryview(bytes(data))
        while view:
            fbn = off // BSIZE
            block = self._block_for(din, fbn)
            n1 = min(len(view), (fbn + 1) * BSIZE - off)
            start = off - fbn * BSIZE
            buf = bytearray(self.read_sector(block))
            buf[start : start + n1] = view[:n1]
            self.write_sector(block, buf)
            view = view[n1:]
            off += n1
        din.size = off
        self.write_inode(inum, din)

    def write_bitmap(self, used: int) -> None:
        """Mark the first `used` blocks as allocated in the free map."""
        if used >= BPB:
            raise ValueError("too many used blocks for one bitmap block")
        bits = bytearray(BSIZE)
        for i in range(used):
            bits[i // 8] |= 1 << (i % 8)
        self.write_sector(self.superblock.bmapstart, bits)

    def format(self) -> int:
        """Zero the image, write the superblock and create the root directory."""
        zero = bytes(BSIZE)
        for sec in range(FSSIZE):
            self.write_sector(sec, zero)
        self.write_sector(1, self.superblock.pack())
        root = self.alloc_inode(FileType.DIR)
        if root != ROOTINO:
            raise RuntimeError(f"root directory got inode {root}")
        self.append(root, Dirent(root, ".").pack())
        self.append(root, Dirent(root, "..").pack())
        self.root = root
        return root

    def add_file(self, name: str, data: bytes) -> int:
        """Store data as a regular file named by the basename of name in the root."""
        if self.root is None:
            raise RuntimeError("image has not been formatted")
        inum = self.alloc_inode(FileType.FILE)
        self.append(self.root, Dirent(inum, PurePosixPath(name).name).pack())
        self.append(inum, data)
        return inum

    def finish(self) -> None:
        """Round the root directory size up a block and write the free map."""
        if self.root is None:
            raise RuntimeError("image has not been formatted")
        din = self.read_inode(self.root)
        din.size = (din.size // BSIZE + 1) * BSIZE
        self.write_inode(self.root, din)
        self.write_bitmap(self.freeblock)


def build_image(path: str | Path, files: Iterable[str | Path]) -> ImageBuilder:
    """Create the image at path holding the given host files."""
    with open(path, "w+b") as stream:
        builder = ImageBuilder(stream)
        builder.format()
        for name in files:
            builder.add_file(str(name), Path(name).read_bytes())
        builder.finish()
    return builder


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    if not args:
        print("Usage: mkfs fs.img files...", file=sys.stderr)
        return 1
    image, *files = args
    print(
        f"nmeta {NMETA} (boot, super, log blocks {NLOG} inode blocks {NINODEBLOCKS}, "
        f"bitmap blocks {NBITMAP}) blocks {NBLOCKS} total {FSSIZE}"
    )
    try:
        builder = build_image(image, files)
    except OSError as exc:
        if exc.filename is not None:
            print(f"{exc.filename}: {exc.strerror}", file=sys.stderr)
        else:
            print(str(exc), file=sys.stderr)
        return 1
    print(f"balloc: first {builder.freeblock} blocks have been allocated")
    print(f"balloc: write bitmap block at sector {builder.superblock.bmapstart}")
    return 0