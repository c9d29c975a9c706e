from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from . import notify
from .config import Config
from .control import kill_process_tree, pid_alive, read_lock_pid
from .notify import Notifier, NullNotifier
from .polling import PollPolicy, poll_until


@dataclass(slots=True)
class ControlResult:
    ok: bool
    message: str


class StopController:
    """Controls a running loop from another process through the lock and stop files."""

    def __init__(
        self,
        config: Config,
        notifier: Notifier | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.notifier = notifier or NullNotifier()
        self.sleep = sleep
        self.clock = clock
        self.log = logging.getLogger(__name__)

    def owner_pid(self) -> int | None:
        return read_lock_pid(self.config.lock_path)

    def is_running(self) -> bool:
        return pid_alive(self.owner_pid())

    def stop_pending(self) -> bool:
        return self.config.stop_path.exists()

    def _clear_files(self) -> None:
        self.config.lock_path.unlink(missing_ok=True)
        self.config.stop_path.unlink(missing_ok=True)

    def request_stop(self) -> ControlResult:
        if not self.is_running():
            self._clear_files()
            return ControlResult(True, "Nothing to stop.")
        if self.stop_pending():
            return ControlResult(True, "Stop already requested. Use --force to kill immediately.")
        self.config.stop_path.touch()
        self.log.info("graceful stop requested pid=%s", self.owner_pid())
        self.notifier.notify(notify.stop_requested())
        return ControlResult(True, "Stop requested. Workflow will halt at the next checkpoint.")

    def cancel_stop(self) -> ControlResult:
        if not self.stop_pending():
            return ControlResult(True, "No pending stop request to cancel.")
        self.config.stop_path.unlink(missing_ok=True)
        self.log.info("stop request cancelled")
        self.notifier.notify(notify.stop_cancelled())
        return ControlResult(True, "Stop request cancelled. Workflow will continue.")

    def force_stop(self) -> ControlResult:
        pid = self.owner_pid()
        if pid is None:
            self._clear_files()
            return ControlResult(True, "No PID found in lock file.")
        if not pid_alive(pid):
            self._clear_files()
            return ControlResult(True, f"Process {pid} is not running.")
        self.log.warning("force stop killing process tree pid=%s", pid)
        if not kill_process_tree(pid):
            return ControlResult(False, f"Failed to kill process {pid}")
        self._clear_files()
        self.log.info("force stop executed pid=%s", pid)
        self.notifier.notify(notify.force_stopped())
        return ControlResult(True, "Process killed and cleaned up.")

    def wait_for_stop(self, timeout_seconds: float = 300, *, escalate: bool = False) -> ControlResult:
        pid = self.owner_pid()
        if not pid_alive(pid):
            return ControlResult(True, "Workflow is not running.")
        if not self.stop_pending():
            self.config.stop_path.touch()
            self.log.info("graceful stop requested with wait pid=%s", pid)

        result = poll_until(
            lambda: True if not pid_alive(pid) else None,
            PollPolicy(timeout_seconds=timeout_seconds, interval_seconds=1),
            sleep=self.sleep,
            clock=self.clock,
        )
        if not result.timed_out:
            self._clear_files()
            return ControlResult(True, "Workflow stopped gracefully.")
        if escalate:
            self.log.warning("graceful stop timed out, escalating pid=%s", pid)
            return self.force_stop()
        return ControlResult(False, "Timeout reached. Workflow still running; use --force to kill.")

    def cleanup_stale(self) -> list[str]:
        cleaned: list[str] = []
        pid = self.owner_pid()
        if self.config.lock_path.exists():
            if pid_alive(pid):
                self.log.info("lock file is valid pid=%s", pid)
            else:
                self.config.lock_path.unlink(missing_ok=True)
                cleaned.append(f"Removed stale lock file (PID {pid} not running)")
        if self.stop_pending() and not pid_alive(pid):
            self.config.stop_path.unlink(missing_ok=True)
            cleaned.append("Removed orphaned stop file")
        return cleaned
