from __future__ import annotations

import pytest

from issueloop.polling import PollPolicy, poll_until

from fakes import FakeClock


def test_returns_first_non_none_value_without_sleeping(clock: FakeClock):
    result = poll_until(lambda: "done", PollPolicy(10, 3), sleep=clock.sleep, clock=clock)

    assert result.value == "done"
    assert not result.timed_out
    assert result.attempts == 1
    assert clock.sleeps == []


def test_times_out_and_clamps_last_sleep_to_remaining_time(clock: FakeClock):
    result = poll_until(lambda: None, PollPolicy(10, 3), sleep=clock.sleep, clock=clock)

    assert result.timed_out
    assert result.value is None
    assert clock.sleeps == [3, 3, 3, 1]
    assert result.attempts == 5
    assert result.elapsed_seconds == 10


def test_zero_timeout_still_checks_once(clock: FakeClock):
    calls = []

    def check():
        calls.append(1)
        return None

    result = poll_until(check, PollPolicy(0, 5), sleep=clock.sleep, clock=clock)

    assert result.timed_out
    assert calls == [1]
    assert clock.sleeps == []


def test_value_after_a_few_attempts(clock: FakeClock):
    answers = iter([None, None, 42])
    result = poll_until(lambda: next(answers), PollPolicy(60, 5), sleep=clock.sleep, clock=clock)

    assert result.value == 42
    assert result.attempts == 3
    assert clock.sleeps == [5, 5]


def test_checkpoint_runs_before_each_check_and_can_abort(clock: FakeClock):
    class Halt(Exception):
        pass

    checks = []
    attempts = []

    def checkpoint():
        checks.append(1)
        if len(checks) == 2:
            raise Halt()

    def check():
        attempts.append(1)
        return None

    with pytest.raises(Halt):
        poll_until(check, PollPolicy(60, 5), checkpoint=checkpoint, sleep=clock.sleep, clock=clock)

    assert attempts == [1]
    assert clock.sleeps == [5]


def test_policy_from_minutes():
    policy = PollPolicy.minutes(2, 15)

    assert policy.timeout_seconds == 120
    assert policy.interval_seconds == 15
