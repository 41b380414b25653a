import pytest

from xv6kit.bufcache import BufferCache
from xv6kit.disk import MemoryDisk
from xv6kit.layout import BSIZE, KernelPanic


def _disk(nblocks=8):
    return MemoryDisk(bytes(BSIZE * nblocks))


def test_read_returns_block_contents():
    disk = _disk()
    disk.write_block(3, b"block three")
    cache = BufferCache(disk, 4)
    buf = cache.read(1, 3)
    assert bytes(buf.data[:11]) == b"block three"
    assert buf.held and buf.valid and buf.refcnt == 1
    cache.release(buf)
    assert buf.refcnt == 0
    assert not buf.held


def test_cached_block_is_not_read_again():
    disk = _disk()
    cache = BufferCache(disk, 4)
    first = cache.read(1, 2)
    cache.release(first)
    disk.write_block(2, b"changed")
    second = cache.read(1, 2)
    assert second is first
    assert bytes(second.data) == bytes(BSIZE)
    cache.release(second)


def test_write_reaches_disk():
    disk = _disk()
    cache = BufferCache(disk, 4)
    buf = cache.read(1, 5)
    buf.data[:4] = b"save"
    cache.write(buf)
    cache.release(buf)
    assert disk.read_block(5)[:4] == b"save"
    assert not buf.dirty


def test_release_unheld_buffer_panics():
    cache = BufferCache(_disk(), 2)
    buf = cache.read(1, 1)
    cache.release(buf)
    with pytest.raises(KernelPanic, match="brelse"):
        cache.release(buf)


def test_write_unheld_buffer_panics():
    cache = BufferCache(_disk(), 2)
    buf = cache.read(1, 1)
    cache.release(buf)
    with pytest.raises(KernelPanic, match="bwrite"):
        cache.write(buf)


def test_no_free_buffers_panics():
    cache = BufferCache(_disk(), 2)
    cache.read(1, 1)
    cache.read(1, 2)
    with pytest.raises(KernelPanic, match="no buffers"):
        cache.read(1, 3)


def test_dirty_unreferenced_buffer_is_not_recycled():
    cache = BufferCache(_disk(), 1)
    buf = cache.read(1, 2)
    buf.dirty = True
    cache.release(buf)
    with pytest.raises(KernelPanic, match="no buffers"):
        cache.read(1, 3)


def test_least_recently_used_is_recycled():
    cache = BufferCache(_disk(), 2)
    a = cache.read(1, 1)
    cache.release(a)
    b = cache.read(1, 2)
    cache.release(b)
    again = cache.read(1, 1)
    cache.release(again)
    c = cache.read(1, 3)
    assert c is b
    assert (c.dev, c.blockno) == (1, 3)
    cache.release(c)
    assert cache.read(1, 1) is a