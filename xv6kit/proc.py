"""Process table: creation, exit, waiting, sleeping and priority scheduling."""

from __future__ import annotations

import enum
import errno
import threading
from dataclasses import dataclass
from typing import Any, Optional

from .layout import NPROC, KernelPanic
from .priorityqueue import N_PRIORITIES, PriorityQueue

DEFAULT_PRIORITY = 5


class ProcState(enum.IntEnum):
    """Life cycle of a process slot."""

    UNUSED = 0
    EMBRYO = 1
    SLEEPING = 2
    RUNNABLE = 3
    RUNNING = 4
    ZOMBIE = 5

    @property
    def label(self) -> str:
        return _LABELS[self]


_LABELS = {
    ProcState.UNUSED: "unused",
    ProcState.EMBRYO: "embryo",
    ProcState.SLEEPING: "sleep ",
    ProcState.RUNNABLE: "runble",
    ProcState.RUNNING: "run   ",
    ProcState.ZOMBIE: "zombie",
}


@dataclass(eq=False)
class Proc:
    """One slot of the process table."""

    pid: int = 0
    name: str = ""
    state: ProcState = ProcState.UNUSED
    priority: int = 0
    parent: Optional[Proc] = None
    status: int = 0
    killed: bool = False
    chan: Any = None


class ProcessTable:
    """A fixed number of process slots and the run queue that orders them."""

    def __init__(self, nproc: int = NPROC) -> None:
        self.procs = [Proc() for _ in range(nproc)]
        self.queue = PriorityQueue()
        self.nextpid = 1
        self.initproc: Optional[Proc] = None
        self.running: Optional[Proc] = None
        self._lock = threading.RLock()

    def _find(self, pid: int) -> Proc:
        found = next(
            (p for p in self.procs if p.state is not ProcState.UNUSED and p.pid == pid),
            None,
        )
        if found is None:
            raise ProcessLookupError(f"no process {pid}")
        return found

    def _enqueue(self, proc: Proc) -> None:
        proc.state = ProcState.RUNNABLE
        try:
            self.queue.insert(proc)
        except ValueError as exc:
            raise KernelPanic(str(exc)) from exc

    def _stop_running(self, proc: Proc) -> None:
        if self.running is proc:
            self.running = None

    def alloc(self) -> Proc:
        """Claim an unused slot as an embryo with a fresh pid."""
        with self._lock:
            slot = next((p for p in self.procs if p.state is ProcState.UNUSED), None)
            if slot is None:
                raise OSError(errno.EAGAIN, "process table full")
            slot.state = ProcState.EMBRYO
            slot.pid = self.nextpid
            self.nextpid += 1
            slot.name = ""
            slot.parent = None
            slot.status = 0
            slot.killed = False
            slot.chan = None
            return slot

    def userinit(self) -> Proc:
        """Create the first process and make it runnable."""
        p = self.alloc()
        with self._lock:
            self.initproc = p
            p.name = "initcode"
            p.priority = DEFAULT_PRIORITY
            self._enqueue(p)
        return p

    def fork(self, parent: Proc) -> int:
        """Create a runnable child of parent with its name and priority; returns its pid."""
        child = self.alloc()
        with self._lock:
            child.parent = parent
            child.name = parent.name
            child.priority = parent.priority
            self._enqueue(child)
            return child.pid

    def exit(self, proc: Proc, status: int) -> None:
        """End proc; it stays a zombie until its parent waits for it."""
        with self._lock:
            if proc is self.initproc:
                raise KernelPanic("init exiting")
            proc.status = status
            if proc.parent is not None:
                self._wakeup1(proc.parent)
            for p in self.procs:
                if p.parent is proc:
                    p.parent = self.initproc
                    if p.state is ProcState.ZOMBIE and self.initproc is not None:
                        self._wakeup1(self.initproc)
            if proc.state is ProcState.RUNNABLE:
                self.queue.search_extract(proc.pid)
            proc.chan = None
            proc.state = ProcState.ZOMBIE
            self._stop_running(proc)

    def wait(self, proc: Proc) -> Optional[tuple[int, int]]:
        """Reap an exited child: (pid, status).

        Returns None after putting proc to sleep when children exist but none
        has exited yet; the exit of a child wakes it to try again.
        """
        with self._lock:
            havekids = False
            for p in self.procs:
                if p.parent is not proc:
                    continue
                havekids = True
                if p.state is ProcState.ZOMBIE:
                    result = (p.pid, p.status)
                    p.pid = 0
                    p.parent = None
                    p.name = ""
                    p.killed = False
                    p.state = ProcState.UNUSED
                    return result
            if not havekids:
                raise ChildProcessError(f"process {proc.pid} has no children")
            if proc.killed:
                raise InterruptedError(f"process {proc.pid} was killed")
            self.sleep(proc, proc)
            return None

    def getprio(self, pid: int) -> int:
        """Priority of the process with the given pid."""
        with self._lock:
            return self._find(pid).priority

    def setprio(self, pid: int, prio: int) -> int:
        """Change a process's priority, moving it in the run queue if queued."""
        if not 0 <= prio < N_PRIORITIES:
            raise ValueError(f"priority {prio} outside 0..{N_PRIORITIES - 1}")
        with self._lock:
            proc = self._find(pid)
            if proc.state is ProcState.RUNNABLE and proc.priority != prio:
                if self.queue.search_extract(proc.pid) is None:
                    raise KernelPanic("A runnable process it is not in the queue")
                proc.priority = prio
                self.queue.insert(proc)
            else:
                proc.priority = prio
            return proc.priority

    def sleep(self, proc: Optional[Proc], chan: Any) -> None:
        """Put proc to sleep on chan until a wakeup on the same channel."""
        if proc is None:
            raise KernelPanic("sleep")
        with self._lock:
            if proc.state is ProcState.RUNNABLE:
                if self.queue.search_extract(proc.pid) is None:
                    raise KernelPanic("A runnable process it is not in the queue")
            proc.chan = chan
            proc.state = ProcState.SLEEPING
            self._stop_running(proc)

    def _wakeup1(self, chan: Any) -> None:
        for p in self.procs:
            if p.state is ProcState.SLEEPING and p.chan is chan:
                p.chan = None
                self._enqueue(p)

    def wakeup(self, chan: Any) -> None:
        """Make every process sleeping on chan runnable."""
        with self._lock:
            self._wakeup1(chan)

    def yield_cpu(self, proc: Proc) -> None:
        """Give up the processor: proc goes back to the run queue."""
        with self._lock:
            self._stop_running(proc)
            self._enqueue(proc)

    def kill(self, pid: int) -> None:
        """Mark a process killed, waking it if it sleeps."""
        with self._lock:
            proc = next((p for p in self.procs if p.pid == pid and pid != 0), None)
            if proc is None:
                raise ProcessLookupError(f"no process {pid}")
            proc.killed = True
            if proc.state is ProcState.SLEEPING:
                proc.chan = None
                self._enqueue(proc)

    def schedule(self) -> Optional[Proc]:
        """Take the next process from the run queue and mark it running."""
        with self._lock:
            p = self.queue.extract()
            if p is None:
                return None
            p.state = ProcState.RUNNING
            self.running = p
            return p

    def procdump(self) -> list[str]:
        """One line per used slot: pid, state and name."""
        return [
            f"{p.pid} {p.state.label} {p.name}"
            for p in self.procs
            if p.state is not ProcState.UNUSED
        ]