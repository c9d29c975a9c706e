from __future__ import annotations

import logging

from . import notify
from .control import RunContext
from .models import SessionStats
from .polling import PollPolicy, poll_until
from .workflow import IssueWorkflow


class DaemonService:
    """Runs the iteration state machine up to ``max_iterations`` times."""

    def __init__(self, ctx: RunContext, workflow: IssueWorkflow):
        self.ctx = ctx
        self.config = ctx.config
        self.workflow = workflow
        self.log = logging.getLogger(__name__)

    def run(self) -> SessionStats:
        cfg = self.config
        stats = SessionStats()
        self.log.info(
            "workflow started repo=%s max_iterations=%s review_wait_minutes=%s auto_merge=%s "
            "ci_required=%s ci_wait_minutes=%s stop_on_no_issues=%s notifications=%s",
            cfg.repo_root,
            cfg.max_iterations,
            cfg.review_wait_minutes,
            cfg.auto_merge,
            cfg.ci_required,
            cfg.ci_wait_minutes,
            cfg.stop_on_no_issues,
            "enabled" if cfg.discord_webhook_url else "disabled",
        )
        self.ctx.notifier.notify(notify.workflow_started(cfg.max_iterations, cfg.auto_merge))

        for iteration in range(1, cfg.max_iterations + 1):
            stats.iterations = iteration
            self.log.info("iteration start iteration=%s max_iterations=%s", iteration, cfg.max_iterations)
            outcome = self.workflow.process(iteration)

            if not outcome.found_issue:
                if outcome.discovery_error is None and cfg.stop_on_no_issues:
                    self.log.info("no more issues to process, stopping")
                    break
                self.log.info("no issue processed, waiting before retry seconds=%s", cfg.no_issue_backoff_seconds)
                self._backoff(cfg.no_issue_backoff_seconds)
                continue

            stats.record(outcome.status)

        self.log.info(
            "workflow complete completed=%s failed=%s pending_merge=%s",
            stats.completed,
            stats.failed,
            stats.pending_merge,
        )
        self.ctx.notifier.notify(notify.workflow_finished(stats.completed, stats.failed))
        return stats

    def _backoff(self, seconds: int) -> None:
        # Nothing ever satisfies the check: this is an interruptible sleep.
        poll_until(
            lambda: None,
            PollPolicy(timeout_seconds=seconds, interval_seconds=min(5, max(seconds, 1))),
            checkpoint=self.ctx.check_stop,
            sleep=self.ctx.sleep,
            clock=self.ctx.clock,
        )
