from __future__ import annotations

import logging

from .gh import GhClient, GhError
from .git import GitError
from .models import Issue, PullRequest
from .workspace import Workspace


class PRManager:
    def __init__(self, gh: GhClient, workspace: Workspace, repo_url: str = ""):
        self.gh = gh
        self.workspace = workspace
        self.repo_url = repo_url.rstrip("/")
        self.log = logging.getLogger(__name__)

    def publish(self, issue: Issue, branch: str) -> PullRequest | None:
        """Push ``branch`` and open a PR for it; ``None`` when no PR can be located."""
        try:
            self.workspace.publish(branch, force=True)
        except GitError as exc:
            self.log.error("branch push failed issue=%s branch=%s error=%s", issue.number, branch, exc)
            return None

        self.log.info("creating pr issue=%s branch=%s base=%s", issue.number, branch, self.workspace.main_branch)
        create_out = ""
        try:
            create_out = self.gh.create_pr(
                branch=branch,
                base_branch=self.workspace.main_branch,
                title=f"Fix #{issue.number}: {issue.title}",
                body=self._build_pr_body(issue),
            )
        except GhError as exc:
            self.log.warning("pr create failed issue=%s branch=%s error=%s", issue.number, branch, exc)

        pr_number = self.gh.parse_pr_number_from_url(create_out)
        pr_url = create_out if pr_number is not None else ""
        if pr_number is None:
            pr_number, pr_url = self._lookup_open_pr(branch)
        if pr_number is None:
            return None
        if not pr_url and self.repo_url:
            pr_url = f"{self.repo_url}/pull/{pr_number}"
        self.log.info("pr ready issue=%s pr_number=%s pr_url=%s", issue.number, pr_number, pr_url)
        return PullRequest(number=pr_number, issue_number=issue.number, branch=branch, url=pr_url)

    def _lookup_open_pr(self, branch: str) -> tuple[int | None, str]:
        try:
            existing = self.gh.list_open_prs_for_branch(branch)
        except GhError as exc:
            self.log.warning("pr lookup failed branch=%s error=%s", branch, exc)
            return None, ""
        for entry in existing:
            if isinstance(entry, dict) and entry.get("number") is not None:
                self.log.info("found open pr for branch branch=%s pr=%s", branch, entry.get("number"))
                return int(entry["number"]), str(entry.get("url") or "")
        return None, ""

    @staticmethod
    def _build_pr_body(issue: Issue) -> str:
        return "\n".join(
            [
                f"This PR addresses issue #{issue.number}.",
                "",
                "## Changes",
                "Automated implementation by the coding agent.",
                "",
                "## Checklist",
                "- [ ] CI checks pass",
                "- [ ] Code review complete",
                "",
                f"Closes #{issue.number}",
            ]
        )
