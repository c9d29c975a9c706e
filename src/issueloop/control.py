from __future__ import annotations

import logging
import os
import signal
import time
from pathlib import Path
from types import FrameType
from typing import Callable

import psutil

from .config import Config
from .notify import Notifier, NullNotifier, workflow_stopped


class AlreadyRunningError(RuntimeError):
    def __init__(self, pid: int):
        super().__init__(f"Another instance is running (PID: {pid})")
        self.pid = pid


class StopRequested(Exception):
    """Raised at a checkpoint once a graceful stop has been honored."""


def read_lock_pid(lock_path: Path) -> int | None:
    try:
        raw = lock_path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def pid_alive(pid: int | None) -> bool:
    if pid is None or pid <= 0:
        return False
    try:
        proc = psutil.Process(pid)
        return proc.status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False
    except psutil.AccessDenied:
        return True


def kill_process_tree(pid: int, grace_seconds: float = 1.0) -> bool:
    """TERM then KILL ``pid`` and all of its descendants. Returns True once gone."""
    log = logging.getLogger(__name__)
    try:
        root = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return True
    children = root.children(recursive=True)
    for proc in children:
        try:
            proc.terminate()
        except psutil.NoSuchProcess:
            continue
    _, alive = psutil.wait_procs(children, timeout=grace_seconds)
    for proc in alive:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            continue
    try:
        root.terminate()
        root.wait(timeout=grace_seconds)
    except psutil.NoSuchProcess:
        return True
    except psutil.TimeoutExpired:
        log.warning("process still alive, sending SIGKILL pid=%s", pid)
        try:
            root.kill()
            root.wait(timeout=grace_seconds)
        except psutil.NoSuchProcess:
            return True
        except psutil.TimeoutExpired:
            return False
    return not pid_alive(pid)


class ProcessLock:
    """Single-instance lock: a file holding the owner's PID."""

    def __init__(self, path: Path, pid: int | None = None):
        self.path = path
        self.pid = pid if pid is not None else os.getpid()
        self.held = False
        self.log = logging.getLogger(__name__)

    def acquire(self) -> None:
        owner = read_lock_pid(self.path)
        if self.path.exists():
            if owner is not None and owner != self.pid and pid_alive(owner):
                raise AlreadyRunningError(owner)
            self.log.warning("stale lock file found, reclaiming path=%s pid=%s", self.path, owner)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(f"{self.pid}\n", encoding="utf-8")
        self.held = True
        self.log.debug("lock acquired pid=%s", self.pid)

    def release(self) -> None:
        if not self.held:
            return
        if read_lock_pid(self.path) == self.pid:
            self.path.unlink(missing_ok=True)
        self.held = False
        self.log.debug("lock released pid=%s", self.pid)


class StopToken:
    """Cooperative cancellation backed by the stop sentinel file.

    The sentinel is the record of a pending stop, so ``stop --cancel``
    withdraws a stop armed by a signal just as it withdraws one requested
    from another shell. The in-memory flag is only set when the sentinel
    cannot be written.
    """

    def __init__(self, sentinel: Path):
        self.sentinel = sentinel
        self._armed = False

    @property
    def armed(self) -> bool:
        return self._armed

    def arm(self) -> None:
        try:
            self.sentinel.touch()
        except OSError:
            self._armed = True

    def requested(self) -> bool:
        return self.sentinel.exists() or self._armed

    def consume(self) -> None:
        self.sentinel.unlink(missing_ok=True)
        self._armed = False


class RunContext:
    """Process-wide run state shared by every component of one run.

    Entering the context acquires the single-instance lock and clears a
    leftover stop sentinel. Leaving it always releases the lock and restores
    any signal handlers installed with ``install_signal_handlers``.
    """

    def __init__(
        self,
        config: Config,
        notifier: Notifier | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        pid: int | None = None,
    ):
        self.config = config
        self.notifier = notifier or NullNotifier()
        self.sleep = sleep
        self.clock = clock
        self.lock = ProcessLock(config.lock_path, pid=pid)
        self.stop = StopToken(config.stop_path)
        self.log = logging.getLogger(__name__)
        self._previous_handlers: dict[int, object] = {}

    def __enter__(self) -> RunContext:
        self.config.ensure_directories()
        self.lock.acquire()
        self.config.stop_path.unlink(missing_ok=True)
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.restore_signal_handlers()
        self.lock.release()

    def install_signal_handlers(self) -> None:
        def _handler(signum: int, _frame: FrameType | None) -> None:
            self.stop.arm()

        for signum in (signal.SIGINT, signal.SIGTERM):
            self._previous_handlers[signum] = signal.signal(signum, _handler)

    def restore_signal_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers.clear()

    def check_stop(self) -> None:
        if not self.stop.requested():
            return
        self.log.warning("stop requested, halting autonomous workflow")
        self.stop.consume()
        self.notifier.notify(workflow_stopped())
        self.lock.release()
        raise StopRequested()
