from __future__ import annotations

import logging
from dataclasses import dataclass

from . import notify
from .ci import CiWatcher
from .control import RunContext, StopRequested
from .gh import GhClient, GhError
from .git import GitError
from .models import ApprovalState, Issue, IterationStatus, PollOutcome, PullRequest
from .pr import PRManager
from .prompts import build_ci_fix_prompt, build_issue_prompt, build_review_prompt
from .runner import AgentRunner
from .state import StateStore
from .workspace import Workspace


@dataclass(slots=True)
class IterationOutcome:
    issue_number: int | None
    status: IterationStatus | None
    pr: PullRequest | None = None
    ci_fix_attempts: int = 0
    discovery_error: str | None = None

    @property
    def found_issue(self) -> bool:
        return self.issue_number is not None


@dataclass(slots=True)
class _IssueRun:
    iteration: int
    issue: Issue
    branch: str = ""
    pr: PullRequest | None = None
    ci_fix_attempts: int = 0
    # Status recorded if the current step dies with an unexpected error.
    failure_status: IterationStatus = IterationStatus.CLAUDE_FAILED


class IssueWorkflow:
    """Drives one issue from discovery to merge or park.

    Steps run strictly in order and the stop token is checked between each of
    them. Every terminal branch writes the state snapshot before returning.
    """

    def __init__(
        self,
        ctx: RunContext,
        gh: GhClient,
        workspace: Workspace,
        runner: AgentRunner,
        ci: CiWatcher,
        pr_manager: PRManager,
        state: StateStore,
    ):
        self.ctx = ctx
        self.config = ctx.config
        self.gh = gh
        self.workspace = workspace
        self.runner = runner
        self.ci = ci
        self.pr_manager = pr_manager
        self.state = state
        self.log = logging.getLogger(__name__)

    def process(self, iteration: int) -> IterationOutcome:
        self.ctx.check_stop()
        try:
            issue = self._discover()
        except GhError as exc:
            self.log.error("issue discovery failed iteration=%s error=%s", iteration, exc)
            return IterationOutcome(issue_number=None, status=None, discovery_error=str(exc))
        if issue is None:
            return IterationOutcome(issue_number=None, status=None)

        self.log.info("processing issue issue=%s title=%s", issue.number, issue.title)
        self.ctx.notifier.notify(notify.issue_started(issue.number, issue.title, issue.url))

        run = _IssueRun(iteration=iteration, issue=issue)
        try:
            status = self._run_issue(run)
        except StopRequested:
            raise
        except Exception as exc:
            self.log.exception("unexpected error handling issue=%s", issue.number)
            self.ctx.notifier.notify(notify.error("Workflow Error", str(exc), issue.number))
            status = self._finish(run, run.failure_status)

        self._reset_workspace()
        self.log.info("iteration complete iteration=%s issue=%s status=%s", iteration, issue.number, status.value)
        return IterationOutcome(
            issue_number=issue.number,
            status=status,
            pr=run.pr,
            ci_fix_attempts=run.ci_fix_attempts,
        )

    def _discover(self) -> Issue | None:
        self.log.info("fetching next open issue")
        number = self.gh.find_next_issue(self.config.labels_to_process, self.config.exclude_labels)
        if number is None:
            return None
        return self.gh.view_issue(number)

    def _run_issue(self, run: _IssueRun) -> IterationStatus:
        cfg = self.config
        issue = run.issue

        run.branch = self.workspace.prepare_branch(issue.number)
        self.ctx.check_stop()

        result = self.runner.run(
            build_issue_prompt(issue),
            cfg.claude_timeout_minutes,
            label=f"issue-{issue.number}",
        )
        if not result.succeeded:
            if result.exit_ok:
                self.log.error("agent completed but made no commits issue=%s", issue.number)
            else:
                self.log.error("agent failed issue=%s status=%s error=%s", issue.number, result.status, result.error)
            self.ctx.notifier.notify(
                notify.error("Claude Implementation Failed", "Failed to implement solution for issue", issue.number)
            )
            return self._finish(run, IterationStatus.CLAUDE_FAILED)
        self.log.info("agent made commits issue=%s commits=%s", issue.number, result.commit_delta)
        self.ctx.check_stop()

        run.failure_status = IterationStatus.PR_FAILED
        run.pr = self.pr_manager.publish(issue, run.branch)
        if run.pr is None:
            self.log.error("failed to create or find pr issue=%s", issue.number)
            self.ctx.notifier.notify(notify.error("PR Creation Failed", "Could not create pull request", issue.number))
            return self._finish(run, IterationStatus.PR_FAILED)
        pr = run.pr
        self.log.info("pr created pr=%s issue=%s", pr.number, issue.number)
        self.ctx.notifier.notify(notify.pr_created(pr.number, issue.number, pr.url))
        self.ctx.check_stop()

        run.failure_status = IterationStatus.CI_FAILED
        ci_failed = False
        if cfg.ci_required and not self._verify_ci(run):
            ci_failed = True
            self.log.error("ci failed pr=%s retry_attempts=%s", pr.number, run.ci_fix_attempts)
            self.ctx.notifier.notify(
                notify.error(
                    "CI Failed",
                    f"CI checks did not pass after {run.ci_fix_attempts} retries",
                    issue.number,
                )
            )
            if not cfg.require_approval:
                return self._finish(run, IterationStatus.CI_FAILED)
            self._save(run, IterationStatus.CI_FAILED)
            self.log.info("proceeding to review wait despite ci failure pr=%s", pr.number)

        run.failure_status = IterationStatus.CI_FAILED if ci_failed else IterationStatus.PENDING_MERGE
        self.ctx.check_stop()
        self._await_review()
        self.ctx.check_stop()
        self._incorporate_feedback(run)
        self.ctx.check_stop()
        return self._merge(run, ci_failed)

    def _verify_ci(self, run: _IssueRun) -> bool:
        cfg = self.config
        pr = run.pr
        for _ in range(cfg.ci_max_retries + 1):
            outcome = self.ci.poll(pr.number, cfg.ci_wait_minutes, cfg.ci_check_interval_seconds)
            self.ctx.notifier.notify(notify.ci_status(pr.number, outcome.value, pr.url))
            if outcome is PollOutcome.PASSED:
                return True
            if cfg.ci_retry_on_failure and run.ci_fix_attempts < cfg.ci_max_retries:
                run.ci_fix_attempts += 1
                self._attempt_ci_fix(run, run.ci_fix_attempts)
                self.log.info("waiting for ci after fix attempt pr=%s attempt=%s", pr.number, run.ci_fix_attempts)
            else:
                break
        return False

    def _attempt_ci_fix(self, run: _IssueRun, attempt: int) -> None:
        pr = run.pr
        self.log.info("attempting ci fix pr=%s attempt=%s max=%s", pr.number, attempt, self.config.ci_max_retries)
        failed_checks = self.ci.failure_detail(pr.number)
        try:
            self.workspace.sync_branch(run.branch)
        except GitError as exc:
            self.log.warning("branch sync failed before ci fix branch=%s error=%s", run.branch, exc)
        result = self.runner.run(
            build_ci_fix_prompt(pr.number, failed_checks, attempt),
            self.config.claude_timeout_minutes,
            label=f"ci-fix-{pr.number}-{attempt}",
        )
        if not result.succeeded:
            self.log.warning("ci fix produced no commits pr=%s attempt=%s status=%s", pr.number, attempt, result.status)
        try:
            self.workspace.publish(run.branch)
        except GitError as exc:
            self.log.error("push after ci fix failed branch=%s error=%s", run.branch, exc)

    def _await_review(self) -> None:
        minutes = self.config.review_wait_minutes
        self.log.info("waiting for pr review minutes=%s", minutes)
        if minutes > 0:
            self.ctx.sleep(minutes * 60)

    def _incorporate_feedback(self, run: _IssueRun) -> None:
        cfg = self.config
        pr = run.pr
        self.log.info("checking pr for review comments pr=%s", pr.number)
        try:
            feedback = self.gh.pr_feedback(pr.number)
        except GhError as exc:
            self.log.warning("could not fetch review comments pr=%s error=%s", pr.number, exc)
            return
        if not feedback:
            self.log.info("no review comments found pr=%s", pr.number)
            return

        self.log.info("found review comments pr=%s count=%s", pr.number, len(feedback))
        try:
            self.workspace.sync_branch(run.branch)
        except GitError as exc:
            self.log.warning("branch sync failed before review branch=%s error=%s", run.branch, exc)
        before = self._commits_ahead_of_remote_main()
        self.runner.run(
            build_review_prompt(pr.number, feedback),
            cfg.claude_timeout_minutes,
            label=f"review-{pr.number}",
        )
        try:
            self.workspace.publish(run.branch)
        except GitError as exc:
            self.log.warning("push after review failed branch=%s error=%s", run.branch, exc)

        after = self._commits_ahead_of_remote_main()
        # Only commits made while handling this feedback warrant another CI wait.
        if after > before and cfg.ci_required:
            self.log.info("new commits from review processing, waiting for ci pr=%s commits=%s", pr.number, after - before)
            outcome = self.ci.poll(pr.number, cfg.ci_wait_minutes, cfg.ci_check_interval_seconds)
            self.ctx.notifier.notify(notify.ci_status(pr.number, outcome.value, pr.url))
            if outcome is not PollOutcome.PASSED:
                self.log.warning("ci after review changes did not pass pr=%s outcome=%s", pr.number, outcome.value)

    def _merge(self, run: _IssueRun, ci_failed: bool) -> IterationStatus:
        cfg = self.config
        pr = run.pr
        if cfg.require_approval:
            try:
                decision = self.gh.review_decision(pr.number)
            except GhError as exc:
                self.log.warning("could not fetch review decision pr=%s error=%s", pr.number, exc)
                decision = ApprovalState.UNKNOWN
            if decision is not ApprovalState.APPROVED:
                self.log.warning("pr not approved yet, skipping merge pr=%s decision=%s", pr.number, decision.value)
                status = IterationStatus.CI_FAILED if ci_failed else IterationStatus.PENDING_MERGE
                return self._finish(run, status)

        if cfg.auto_merge:
            self.log.info("merging pr pr=%s", pr.number)
            try:
                self.gh.merge_pr(pr.number)
            except GhError as exc:
                self.log.error("merge failed pr=%s error=%s", pr.number, exc)
                self.ctx.notifier.notify(notify.error("Merge Failed", f"Could not merge PR #{pr.number}", run.issue.number))
                return self._finish(run, IterationStatus.PENDING_MERGE)
            self.ctx.notifier.notify(notify.pr_merged(pr.number, run.issue.number, pr.url))
        else:
            self.log.info("auto-merge disabled, pr ready for manual merge pr=%s", pr.number)
            self.ctx.notifier.notify(notify.pr_ready(pr.number, run.issue.number, pr.url))
        return self._finish(run, IterationStatus.COMPLETED)

    def _commits_ahead_of_remote_main(self) -> int:
        try:
            return self.workspace.commits_ahead_of_remote_main()
        except GitError as exc:
            self.log.warning("could not count commits error=%s", exc)
            return 0

    def _save(self, run: _IssueRun, status: IterationStatus) -> None:
        self.state.save(run.iteration, run.issue.number, status)

    def _finish(self, run: _IssueRun, status: IterationStatus) -> IterationStatus:
        self._save(run, status)
        if status is IterationStatus.COMPLETED:
            self.log.info("issue completed issue=%s", run.issue.number)
        elif status is IterationStatus.PENDING_MERGE:
            self.log.warning("issue pending merge issue=%s pr=%s", run.issue.number, run.pr.number if run.pr else None)
        else:
            self.log.error("issue failed issue=%s status=%s", run.issue.number, status.value)
        return status

    def _reset_workspace(self) -> None:
        try:
            self.workspace.reset_to_main()
        except GitError as exc:
            self.log.error("workspace reset failed error=%s", exc)
