"""Console: kernel formatted output, line editing of typed input, and reads."""

from __future__ import annotations

import sys
import threading
from collections import deque
from typing import Callable, Iterable, Optional, Union

from .layout import KernelPanic

CONSOLE = 1  # major device number of the console
BACKSPACE = 0x100
INPUT_BUF = 128


def _ctrl(ch: str) -> int:
    return ord(ch) - ord("@")


_CTRL_D = _ctrl("D")
_CTRL_H = _ctrl("H")
_CTRL_P = _ctrl("P")
_CTRL_U = _ctrl("U")
_DEL = 0x7F


def format_kernel(fmt: str, *args) -> str:
    """Format like the kernel's printf, which knows only %d, %x, %p and %s."""
    out: list[str] = []
    values = iter(args)

    def next_arg():
        try:
            return next(values)
        except StopIteration:
            raise TypeError("not enough arguments for format") from None

    chars = iter(fmt)
    for c in chars:
        if c == "\0":
            break
        if c != "%":
            out.append(c)
            continue
        c = next(chars, "\0")
        if c == "\0":
            break
        if c == "d":
            v = int(next_arg()) & 0xFFFFFFFF
            out.append(str(v - (1 << 32) if v & 0x80000000 else v))
        elif c in "xp":
            out.append(format(int(next_arg()) & 0xFFFFFFFF, "x"))
        elif c == "s":
            s = next_arg()
            out.append("(null)" if s is None else str(s))
        elif c == "%":
            out.append("%")
        else:
            # Show unknown sequences to draw attention.
            out.append("%" + c)
    return "".join(out)


class Console:
    """Echoes typed characters, edits the current line and hands out whole lines."""

    def __init__(
        self,
        output: Optional[Callable[[str], object]] = None,
        procdump: Optional[Callable[[], object]] = None,
    ) -> None:
        self._output = output if output is not None else sys.stdout.write
        self._procdump = procdump
        self._lock = threading.RLock()
        self._cond = threading.Condition(self._lock)
        self._ready: deque[int] = deque()
        self._edit: list[int] = []
        self.panicked = False

    def putc(self, c: Union[int, str]) -> None:
        """Emit one character; BACKSPACE erases the previous one."""
        if self.panicked:
            raise KernelPanic("console frozen after panic")
        code = ord(c) if isinstance(c, str) else c
        if code == BACKSPACE:
            self._output("\b \b")
        else:
            self._output(chr(code & 0xFF))

    def printf(self, fmt: Optional[str], *args) -> None:
        """Print formatted text as format_kernel does."""
        if fmt is None:
            self.panic("null fmt")
        text = format_kernel(fmt, *args)
        with self._lock:
            for ch in text:
                self.putc(ch)

    def panic(self, message: str) -> None:
        """Report a fatal error, freeze the console and raise KernelPanic."""
        for ch in f"lapicid 0: panic: {message}\n":
            self.putc(ch)
        self.panicked = True
        raise KernelPanic(message)

    def interrupt(self, chars: Iterable[Union[int, str]]) -> None:
        """Handle typed characters: edit the line, echo, and wake readers."""
        dump = False
        with self._cond:
            for raw in chars:
                c = ord(raw) if isinstance(raw, str) else raw
                if c == _CTRL_P:
                    dump = True
                elif c == _CTRL_U:
                    while self._edit and self._edit[-1] != ord("\n"):
                        self._edit.pop()
                        self.putc(BACKSPACE)
                elif c in (_CTRL_H, _DEL):
                    if self._edit:
                        self._edit.pop()
                        self.putc(BACKSPACE)
                elif c != 0 and len(self._ready) + len(self._edit) < INPUT_BUF:
                    c = ord("\n") if c == ord("\r") else c & 0xFF
                    self._edit.append(c)
                    self.putc(c)
                    full = len(self._ready) + len(self._edit) == INPUT_BUF
                    if c in (ord("\n"), _CTRL_D) or full:
                        self._ready.extend(self._edit)
                        self._edit.clear()
                        self._cond.notify_all()
        if dump and self._procdump is not None:
            self._procdump()

    def read(self, n: int) -> bytes:
        """Read up to n bytes, stopping after a newline; empty at end of file."""
        out = bytearray()
        with self._cond:
            while len(out) < n:
                while not self._ready:
                    self._cond.wait()
                c = self._ready.popleft()
                if c == _CTRL_D:
                    if out:
                        # Keep ^D so the next read returns nothing.
                        self._ready.appendleft(c)
                    break
                out.append(c)
                if c == ord("\n"):
                    break
        return bytes(out)

    def write(self, data: bytes) -> int:
        """Write raw bytes to the console."""
        with self._lock:
            for b in bytes(data):
                self.putc(b)
        return len(data)