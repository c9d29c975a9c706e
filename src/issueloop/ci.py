from __future__ import annotations

import logging
import time
from typing import Callable, Iterable

from .gh import FAILED_CONCLUSIONS, PENDING_STATES, GhClient, GhError
from .models import CheckRun, CheckStatus, PollOutcome
from .polling import PollPolicy, poll_until


def is_pending(check: CheckRun) -> bool:
    return check.state.upper() in PENDING_STATES


def is_failed(check: CheckRun) -> bool:
    return (check.conclusion or "").upper() in FAILED_CONCLUSIONS


def classify(checks: Iterable[CheckRun]) -> CheckStatus:
    """Collapse individual check results into one status.

    Pending is evaluated before failure so a re-run in progress is never
    mistaken for a final failure.
    """
    checks = list(checks)
    if not checks:
        return CheckStatus.NO_CHECKS
    if any(is_pending(check) for check in checks):
        return CheckStatus.PENDING
    if any(is_failed(check) for check in checks):
        return CheckStatus.FAILED
    return CheckStatus.PASSED


class CiWatcher:
    def __init__(
        self,
        gh: GhClient,
        *,
        checkpoint: Callable[[], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.gh = gh
        self.checkpoint = checkpoint
        self.sleep = sleep
        self.clock = clock
        self.log = logging.getLogger(__name__)

    def status(self, pr_number: int) -> CheckStatus:
        return classify(self.gh.pr_checks(pr_number))

    def poll(self, pr_number: int, max_minutes: float, interval_seconds: float) -> PollOutcome:
        self.log.info("waiting for ci pr=%s max_minutes=%s", pr_number, max_minutes)

        def check() -> PollOutcome | None:
            try:
                status = self.status(pr_number)
            except GhError as exc:
                self.log.warning("check status lookup failed pr=%s error=%s", pr_number, exc)
                return None
            if status is CheckStatus.PASSED:
                self.log.info("ci checks passed pr=%s", pr_number)
                return PollOutcome.PASSED
            if status is CheckStatus.NO_CHECKS:
                self.log.info("no ci checks configured pr=%s", pr_number)
                return PollOutcome.PASSED
            if status is CheckStatus.FAILED:
                self.log.error("ci checks failed pr=%s", pr_number)
                return PollOutcome.FAILED
            self.log.debug("ci still running pr=%s", pr_number)
            return None

        result = poll_until(
            check,
            PollPolicy.minutes(max_minutes, interval_seconds),
            checkpoint=self.checkpoint,
            sleep=self.sleep,
            clock=self.clock,
        )
        if result.timed_out:
            self.log.error("ci timeout pr=%s max_minutes=%s", pr_number, max_minutes)
            return PollOutcome.TIMEOUT
        return result.value

    def failure_detail(self, pr_number: int) -> list[CheckRun]:
        try:
            checks = self.gh.pr_checks(pr_number)
        except GhError as exc:
            self.log.warning("failed check lookup failed pr=%s error=%s", pr_number, exc)
            return []
        return [check for check in checks if is_failed(check)]
