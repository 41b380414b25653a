import threading

import pytest

from xv6kit.console import BACKSPACE, INPUT_BUF, Console, format_kernel
from xv6kit.layout import KernelPanic


def make_console(dumps=None):
    out = []
    con = Console(out.append, (lambda: dumps.append(1)) if dumps is not None else None)
    return con, out


def test_format_decimal_and_string():
    assert format_kernel("%d %s", -5, "ok") == "-5 ok"


def test_format_hex_is_unsigned():
    assert format_kernel("%x", 255) == "ff"
    assert format_kernel("%x", -1) == "ffffffff"


def test_format_null_string_and_percent():
    assert format_kernel("%s", None) == "(null)"
    assert format_kernel("100%%") == "100%"


def test_format_unknown_and_trailing_percent():
    assert format_kernel("%q") == "%q"
    assert format_kernel("abc%") == "abc"


def test_format_missing_argument():
    with pytest.raises(TypeError):
        format_kernel("%d")


def test_printf_writes_output():
    con, out = make_console()
    con.printf("cpu%d: starting %d\n", 0, 0)
    assert "".join(out) == "cpu0: starting 0\n"


def test_line_is_echoed_and_read():
    con, out = make_console()
    con.interrupt("hi\r")
    assert "".join(out) == "hi\n"
    assert con.read(10) == b"hi\n"


def test_backspace_edits_line():
    con, out = make_console()
    con.interrupt("ab\x7fc\n")
    assert con.read(10) == b"ac\n"
    assert "\b \b" in "".join(out)


def test_kill_line():
    con, _ = make_console()
    con.interrupt("abc\x15d\n")
    assert con.read(10) == b"d\n"


def test_ctrl_d_ends_input():
    con, _ = make_console()
    con.interrupt("ab\x04")
    assert con.read(10) == b"ab"
    assert con.read(10) == b""


def test_short_read_leaves_rest():
    con, _ = make_console()
    con.interrupt("hello\n")
    assert con.read(2) == b"he"
    assert con.read(10) == b"llo\n"


def test_input_buffer_limit():
    con, _ = make_console()
    con.interrupt("a" * (INPUT_BUF + 5))
    assert con.read(INPUT_BUF) == b"a" * INPUT_BUF


def test_ctrl_p_calls_procdump():
    dumps = []
    con, _ = make_console(dumps)
    con.interrupt("\x10")
    assert dumps == [1]


def test_blocked_read_wakes_on_line():
    con, out = make_console()
    results = {}

    def reader():
        results["data"] = con.read(10)

    t = threading.Thread(target=reader)
    t.start()
    con.interrupt("x\n")
    t.join(timeout=5)
    assert not t.is_alive()
    data = results.get("data")
    assert data == b"x\n"
    assert "".join(out) == "x\n"


def test_putc_backspace_and_write():
    con, out = make_console()
    con.putc(BACKSPACE)
    assert con.write(b"ok") == 2
    assert "".join(out) == "\b \bok"


def test_panic_freezes_console():
    con, out = make_console()
    with pytest.raises(KernelPanic):
        con.panic("boom")
    assert "".join(out) == "lapicid 0: panic: boom\n"
    with pytest.raises(KernelPanic):
        con.putc("x")


def test_printf_null_format_panics():
    con, _ = make_console()
    with pytest.raises(KernelPanic):
        con.printf(None)