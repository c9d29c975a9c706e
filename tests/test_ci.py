from __future__ import annotations

import pytest

from issueloop.ci import CiWatcher, classify
from issueloop.config import Config
from issueloop.control import RunContext, StopRequested
from issueloop.models import CheckRun, CheckStatus, PollOutcome

from fakes import FakeClock, RecordingNotifier, gh_error


def passed(name: str = "build") -> CheckRun:
    return CheckRun(name=name, state="COMPLETED", conclusion="SUCCESS")


def failed(name: str = "tests", conclusion: str = "FAILURE") -> CheckRun:
    return CheckRun(name=name, state="COMPLETED", conclusion=conclusion, link=f"https://ci.example/{name}")


def pending(name: str = "lint") -> CheckRun:
    return CheckRun(name=name, state="IN_PROGRESS")


class ScriptedGh:
    """Returns one check list (or raises) per ``pr_checks`` call, repeating the last."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = 0
        self.on_call = None

    def pr_checks(self, pr_number: int) -> list[CheckRun]:
        self.calls += 1
        if self.on_call is not None:
            self.on_call()
        response = self.responses[0] if len(self.responses) == 1 else self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class TestClassify:
    def test_no_checks(self):
        assert classify([]) is CheckStatus.NO_CHECKS

    def test_pending_takes_precedence_over_failure(self):
        assert classify([failed(), pending(), passed()]) is CheckStatus.PENDING

    def test_any_failure_fails(self):
        assert classify([passed(), failed()]) is CheckStatus.FAILED

    @pytest.mark.parametrize("conclusion", ["CANCELLED", "TIMED_OUT", "ERROR", "STARTUP_FAILURE"])
    def test_other_failed_conclusions(self, conclusion):
        assert classify([passed(), failed(conclusion=conclusion)]) is CheckStatus.FAILED

    def test_skipped_and_neutral_count_as_passed(self):
        checks = [
            passed(),
            CheckRun(name="docs", state="COMPLETED", conclusion="SKIPPED"),
            CheckRun(name="optional", state="COMPLETED", conclusion="NEUTRAL"),
        ]
        assert classify(checks) is CheckStatus.PASSED


class TestPoll:
    def watcher(self, gh: ScriptedGh, clock: FakeClock, checkpoint=None) -> CiWatcher:
        return CiWatcher(gh, checkpoint=checkpoint, sleep=clock.sleep, clock=clock)

    def test_waits_while_pending_then_passes(self, clock):
        gh = ScriptedGh([pending()], [pending()], [passed()])

        assert self.watcher(gh, clock).poll(7, 5, 30) is PollOutcome.PASSED
        assert gh.calls == 3
        assert clock.sleeps == [30, 30]

    def test_failure_is_terminal(self, clock):
        gh = ScriptedGh([pending()], [failed()])

        assert self.watcher(gh, clock).poll(7, 5, 30) is PollOutcome.FAILED
        assert gh.calls == 2

    def test_no_checks_counts_as_passed(self, clock):
        gh = ScriptedGh([])

        assert self.watcher(gh, clock).poll(7, 5, 30) is PollOutcome.PASSED
        assert clock.sleeps == []

    def test_times_out_when_always_pending(self, clock):
        gh = ScriptedGh([pending()])

        assert self.watcher(gh, clock).poll(7, 1, 30) is PollOutcome.TIMEOUT
        assert clock.sleeps == [30, 30]
        assert gh.calls == 3

    def test_lookup_errors_keep_polling(self, clock):
        gh = ScriptedGh(gh_error("502 bad gateway"), [passed()])

        assert self.watcher(gh, clock).poll(7, 5, 30) is PollOutcome.PASSED
        assert gh.calls == 2

    def test_stop_requested_during_poll_halts_before_next_check(self, config: Config, clock):
        ctx = RunContext(config, RecordingNotifier(), sleep=clock.sleep, clock=clock)
        gh = ScriptedGh([pending()])
        gh.on_call = lambda: config.stop_path.touch()

        with ctx:
            with pytest.raises(StopRequested):
                self.watcher(gh, clock, checkpoint=ctx.check_stop).poll(7, 30, 30)

        assert gh.calls == 1
        assert clock.sleeps == [30]
        assert not config.stop_path.exists()
        assert not config.lock_path.exists()


def test_failure_detail_lists_only_failed_checks(clock):
    gh = ScriptedGh([passed(), failed("unit"), failed("e2e", "CANCELLED"), pending()])

    detail = CiWatcher(gh, sleep=clock.sleep, clock=clock).failure_detail(7)

    assert [check.name for check in detail] == ["unit", "e2e"]


def test_failure_detail_tolerates_lookup_errors(clock):
    gh = ScriptedGh(gh_error())

    assert CiWatcher(gh, sleep=clock.sleep, clock=clock).failure_detail(7) == []
