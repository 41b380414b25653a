"""A disk held entirely in memory, addressed in blocks."""

from __future__ import annotations

from .layout import BSIZE, ROOTDEV, KernelPanic


class MemoryDisk:
    """Block device backed by a file system image kept in memory.

    A bytearray image is used in place, so writes show up in it; any other
    bytes-like image is copied first.
    """

    def __init__(self, image: bytes | bytearray) -> None:
        self.image = image if isinstance(image, bytearray) else bytearray(image)
        self.nblocks = len(self.image) // BSIZE

    def _span(self, blockno: int) -> slice:
        if not 0 <= blockno < self.nblocks:
            raise ValueError(f"block {blockno} outside a disk of {self.nblocks} blocks")
        start = blockno * BSIZE
        return slice(start, start + BSIZE)

    def read_block(self, blockno: int) -> bytes:
        """Contents of one block."""
        return bytes(self.image[self._span(blockno)])

    def write_block(self, blockno: int, data: bytes) -> None:
        """Replace one block; shorter data is zero padded."""
        if len(data) > BSIZE:
            raise ValueError(f"block data longer than {BSIZE} bytes")
        self.image[self._span(blockno)] = bytes(data).ljust(BSIZE, b"\0")

    def rw(self, buf) -> None:
        """Sync a locked buffer with the disk.

        A dirty buffer is written and made clean; otherwise the block is read
        into it. Either way the buffer ends up valid.
        """
        if not buf.held:
            raise KernelPanic("iderw: buf not locked")
        if buf.valid and not buf.dirty:
            raise KernelPanic("iderw: nothing to do")
        if buf.dev != ROOTDEV:
            raise KernelPanic("iderw: request not for disk 1")
        if buf.blockno >= self.nblocks:
            raise KernelPanic("iderw: block out of range")
        span = slice(buf.blockno * BSIZE, (buf.blockno + 1) * BSIZE)
        if buf.dirty:
            buf.dirty = False
            self.image[span] = bytes(buf.data)
        else:
            buf.data[:] = self.image[span]
        buf.valid = True