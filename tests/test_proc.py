import pytest

from xv6kit.layout import KernelPanic
from xv6kit.proc import ProcessTable, ProcState


def by_pid(table, pid):
    return next(p for p in table.procs if p.pid == pid)


def test_userinit():
    t = ProcessTable()
    init = t.userinit()
    assert (init.pid, init.name, init.priority) == (1, "initcode", 5)
    assert init.state is ProcState.RUNNABLE
    assert t.schedule() is init
    assert init.state is ProcState.RUNNING
    assert t.schedule() is None


def test_fork_inherits():
    t = ProcessTable()
    init = t.userinit()
    t.schedule()
    pid = t.fork(init)
    child = by_pid(t, pid)
    assert pid == init.pid + 1
    assert child.parent is init
    assert child.priority == init.priority
    assert child.name == init.name
    assert child.state is ProcState.RUNNABLE


def test_schedule_by_priority():
    t = ProcessTable()
    init = t.userinit()
    t.schedule()
    a = t.fork(init)
    b = t.fork(init)
    t.setprio(b, 1)
    assert t.getprio(b) == 1
    assert t.schedule().pid == b
    assert t.schedule().pid == a


def test_setprio_invalid_and_unknown():
    t = ProcessTable()
    init = t.userinit()
    with pytest.raises(ValueError):
        t.setprio(init.pid, 10)
    with pytest.raises(ProcessLookupError):
        t.setprio(99, 1)
    with pytest.raises(ProcessLookupError):
        t.getprio(99)


def test_alloc_exhausted():
    t = ProcessTable(nproc=2)
    init = t.userinit()
    t.fork(init)
    with pytest.raises(OSError):
        t.fork(init)


def test_init_cannot_exit():
    t = ProcessTable()
    init = t.userinit()
    with pytest.raises(KernelPanic):
        t.exit(init, 0)


def test_wait_reaps_zombie():
    t = ProcessTable()
    init = t.userinit()
    t.schedule()
    pid = t.fork(init)
    child = by_pid(t, pid)
    t.exit(child, 7)
    assert child.state is ProcState.ZOMBIE
    assert t.wait(init) == (pid, 7)
    assert child.state is ProcState.UNUSED
    with pytest.raises(ChildProcessError):
        t.wait(init)


def test_wait_sleeps_until_child_exits():
    t = ProcessTable()
    init = t.userinit()
    t.schedule()
    pid = t.fork(init)
    assert t.wait(init) is None
    assert init.state is ProcState.SLEEPING
    child = t.schedule()
    assert child.pid == pid
    t.exit(child, 3)
    assert init.state is ProcState.RUNNABLE
    assert t.schedule() is init
    assert t.wait(init) == (pid, 3)


def test_orphans_go_to_init():
    t = ProcessTable()
    init = t.userinit()
    mid = by_pid(t, t.fork(init))
    leaf = by_pid(t, t.fork(mid))
    t.exit(mid, 0)
    assert leaf.parent is init


def test_sleep_and_wakeup():
    t = ProcessTable()
    init = t.userinit()
    chan = object()
    t.sleep(init, chan)
    assert init.state is ProcState.SLEEPING
    assert t.schedule() is None
    t.wakeup(object())
    assert init.state is ProcState.SLEEPING
    t.wakeup(chan)
    assert t.schedule() is init


def test_kill_wakes_sleeper():
    t = ProcessTable()
    init = t.userinit()
    t.sleep(init, "chan")
    t.kill(init.pid)
    assert init.killed is True
    assert t.schedule() is init
    with pytest.raises(ProcessLookupError):
        t.kill(99)


def test_yield_requeues():
    t = ProcessTable()
    init = t.userinit()
    assert t.schedule() is init
    t.yield_cpu(init)
    assert init.state is ProcState.RUNNABLE
    assert t.schedule() is init


def test_procdump():
    t = ProcessTable()
    init = t.userinit()
    t.sleep(init, "chan")
    assert t.procdump() == ["1 sleep  initcode"]
    t.wakeup("chan")
    assert t.procdump() == ["1 runble initcode"]