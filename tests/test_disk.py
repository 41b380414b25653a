import pytest

from xv6kit.bufcache import Buffer
from xv6kit.disk import MemoryDisk
from xv6kit.layout import BSIZE, KernelPanic


def _locked(dev=1, blockno=0, **kwargs):
    buf = Buffer(dev=dev, blockno=blockno, **kwargs)
    buf.lock.acquire()
    return buf


def test_block_count_follows_image_size():
    assert MemoryDisk(bytes(BSIZE * 4)).nblocks == 4


def test_write_then_read_block_round_trip():
    disk = MemoryDisk(bytes(BSIZE * 3))
    disk.write_block(2, b"abc")
    assert disk.read_block(2) == b"abc" + bytes(BSIZE - 3)
    assert disk.read_block(1) == bytes(BSIZE)


def test_bytearray_image_is_shared():
    image = bytearray(BSIZE * 2)
    disk = MemoryDisk(image)
    disk.write_block(1, b"xyz")
    assert image[BSIZE:BSIZE + 3] == b"xyz"


def test_read_block_out_of_range():
    disk = MemoryDisk(bytes(BSIZE * 2))
    with pytest.raises(ValueError):
        disk.read_block(2)


def test_write_block_too_long():
    disk = MemoryDisk(bytes(BSIZE * 2))
    with pytest.raises(ValueError):
        disk.write_block(0, bytes(BSIZE + 1))


def test_rw_reads_into_buffer():
    disk = MemoryDisk(bytes(BSIZE * 3))
    disk.write_block(1, b"data")
    buf = _locked(blockno=1)
    disk.rw(buf)
    assert buf.valid and not buf.dirty
    assert bytes(buf.data[:4]) == b"data"


def test_rw_writes_dirty_buffer():
    disk = MemoryDisk(bytes(BSIZE * 3))
    buf = _locked(blockno=2)
    buf.data[:3] = b"out"
    buf.dirty = True
    disk.rw(buf)
    assert disk.read_block(2)[:3] == b"out"
    assert buf.valid and not buf.dirty


def test_rw_requires_locked_buffer():
    disk = MemoryDisk(bytes(BSIZE * 2))
    with pytest.raises(KernelPanic, match="not locked"):
        disk.rw(Buffer(dev=1, blockno=0))


def test_rw_nothing_to_do():
    disk = MemoryDisk(bytes(BSIZE * 2))
    with pytest.raises(KernelPanic, match="nothing to do"):
        disk.rw(_locked(valid=True))


def test_rw_wrong_device():
    disk = MemoryDisk(bytes(BSIZE * 2))
    with pytest.raises(KernelPanic, match="disk 1"):
        disk.rw(_locked(dev=2))


def test_rw_block_out_of_range():
    disk = MemoryDisk(bytes(BSIZE * 2))
    with pytest.raises(KernelPanic, match="out of range"):
        disk.rw(_locked(blockno=2))