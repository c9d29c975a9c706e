from __future__ import annotations

import os
import subprocess
import sys
from unittest import mock

from issueloop.config import Config
from issueloop.controller import StopController

from fakes import FakeClock, RecordingNotifier


def dead_pid() -> int:
    proc = subprocess.Popen([sys.executable, "-c", "pass"])
    proc.wait()
    return proc.pid


def write_lock(config: Config, pid: int) -> None:
    config.ensure_directories()
    config.lock_path.write_text(f"{pid}\n", encoding="utf-8")


def controller(config: Config, notifier: RecordingNotifier | None = None, clock: FakeClock | None = None):
    clock = clock or FakeClock()
    return StopController(config, notifier, sleep=clock.sleep, clock=clock)


def test_request_stop_when_nothing_runs_clears_leftovers(config: Config):
    write_lock(config, dead_pid())
    config.stop_path.touch()

    result = controller(config).request_stop()

    assert result.ok
    assert result.message == "Nothing to stop."
    assert not config.lock_path.exists()
    assert not config.stop_path.exists()


def test_request_stop_touches_sentinel_once(config: Config):
    write_lock(config, os.getpid())
    notifier = RecordingNotifier()
    ctl = controller(config, notifier)

    first = ctl.request_stop()
    second = ctl.request_stop()

    assert config.stop_path.exists()
    assert "halt at the next checkpoint" in first.message
    assert "already requested" in second.message
    assert notifier.titles == ["⏹️ Stop Requested"]


def test_cancel_stop(config: Config):
    write_lock(config, os.getpid())
    config.stop_path.touch()
    notifier = RecordingNotifier()

    result = controller(config, notifier).cancel_stop()

    assert result.ok
    assert not config.stop_path.exists()
    assert notifier.titles == ["▶️ Stop Cancelled"]
    assert controller(config).cancel_stop().message == "No pending stop request to cancel."


def test_cleanup_removes_stale_files(config: Config):
    pid = dead_pid()
    write_lock(config, pid)
    config.stop_path.touch()

    cleaned = controller(config).cleanup_stale()

    assert cleaned == [f"Removed stale lock file (PID {pid} not running)", "Removed orphaned stop file"]
    assert not config.lock_path.exists()
    assert not config.stop_path.exists()


def test_cleanup_keeps_live_lock(config: Config):
    write_lock(config, os.getpid())
    config.stop_path.touch()

    assert controller(config).cleanup_stale() == []
    assert config.lock_path.exists()
    assert config.stop_path.exists()


def test_wait_for_stop_times_out_while_owner_alive(config: Config):
    write_lock(config, os.getpid())
    clock = FakeClock()

    result = controller(config, clock=clock).wait_for_stop(3)

    assert not result.ok
    assert config.stop_path.exists()
    assert clock.sleeps == [1, 1, 1]


def test_wait_for_stop_returns_once_owner_exits(config: Config):
    write_lock(config, 4242)
    liveness = iter([True, True, True, False])

    with mock.patch("issueloop.controller.pid_alive", side_effect=lambda pid: next(liveness)):
        result = controller(config).wait_for_stop(30)

    assert result.ok
    assert result.message == "Workflow stopped gracefully."
    assert not config.lock_path.exists()
    assert not config.stop_path.exists()


def test_wait_for_stop_escalates_to_force(config: Config):
    write_lock(config, 4242)

    with mock.patch("issueloop.controller.pid_alive", return_value=True), mock.patch(
        "issueloop.controller.kill_process_tree", return_value=True
    ) as kill:
        result = controller(config).wait_for_stop(2, escalate=True)

    kill.assert_called_once_with(4242)
    assert result.ok
    assert not config.lock_path.exists()


def test_force_stop_kills_running_owner(config: Config):
    proc = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(60)"])
    try:
        write_lock(config, proc.pid)
        notifier = RecordingNotifier()

        result = controller(config, notifier).force_stop()

        assert result.ok
        assert not config.lock_path.exists()
        assert notifier.titles == ["🛑 Force Stopped"]
    finally:
        if proc.poll() is None:
            proc.kill()
        proc.wait()


def test_force_stop_without_lock(config: Config):
    result = controller(config).force_stop()

    assert result.ok
    assert result.message == "No PID found in lock file."
