import threading

import pytest

from xv6kit.pipe import PIPESIZE, Pipe


def test_write_then_read_round_trip():
    p = Pipe()
    assert p.write(b"hello") == 5
    assert p.read(100) == b"hello"


def test_read_takes_at_most_n_bytes():
    p = Pipe()
    p.write(b"abcdef")
    assert p.read(2) == b"ab"
    assert p.read(10) == b"cdef"
    assert p.nread == p.nwrite


def test_read_after_writer_closed_is_eof():
    p = Pipe()
    p.write(b"xy")
    p.close(writable=True)
    assert p.read(10) == b"xy"
    assert p.read(10) == b""


def test_write_with_room_succeeds_without_reader():
    p = Pipe()
    p.close(writable=False)
    assert p.write(b"abc") == 3


def test_write_to_full_pipe_without_reader_raises():
    p = Pipe()
    p.close(writable=False)
    with pytest.raises(BrokenPipeError):
        p.write(bytes(PIPESIZE + 1))


def test_killed_reader_is_interrupted():
    p = Pipe(killed=lambda: True)
    with pytest.raises(InterruptedError):
        p.read(1)


def test_killed_writer_is_interrupted_when_full():
    p = Pipe(killed=lambda: True)
    with pytest.raises(InterruptedError):
        p.write(bytes(PIPESIZE + 1))


def test_large_write_with_concurrent_reader():
    p = Pipe()
    payload = bytes(range(256)) * 8
    received = bytearray()

    def reader():
        while True:
            chunk = p.read(100)
            if not chunk:
                break
            received.extend(chunk)

    t = threading.Thread(target=reader)
    t.start()
    assert p.write(payload) == len(payload)
    p.close(writable=True)
    t.join(timeout=5)
    assert bytes(received) == payload


def test_closed_after_both_ends():
    p = Pipe()
    p.close(writable=True)
    assert not p.closed
    p.close(writable=False)
    assert p.closed