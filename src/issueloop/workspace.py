from __future__ import annotations

import logging

from .git import GitClient, GitError


def branch_name_for(issue_number: int) -> str:
    return f"issue-{issue_number}"


class Workspace:
    """The single working copy shared by every iteration."""

    def __init__(self, git: GitClient, main_branch: str):
        self.git = git
        self.main_branch = main_branch
        self.log = logging.getLogger(__name__)

    @property
    def remote_main(self) -> str:
        return f"{self.git.remote}/{self.main_branch}"

    def sync_main(self) -> None:
        self.git.fetch(self.main_branch)
        self.git.checkout(self.main_branch)
        self.git.pull(self.main_branch)

    def prepare_branch(self, issue_number: int) -> str:
        branch = branch_name_for(issue_number)
        if self.git.has_tracked_changes():
            self.log.warning("discarding uncommitted changes branch=%s", self.git.current_branch())
            self.git.reset_hard()
        self.sync_main()

        if self.git.local_branch_exists(branch):
            self.log.info("deleting stale local branch branch=%s", branch)
            self.git.delete_local_branch(branch)

        if self.git.remote_branch_exists(branch):
            self.log.warning("remote branch exists, deleting branch=%s", branch)
            try:
                self.git.delete_remote_branch(branch)
            except GitError as exc:
                self.log.warning("remote branch delete failed branch=%s error=%s", branch, exc)

        self.git.create_branch(branch)
        self.log.info("prepared branch issue=%s branch=%s base=%s", issue_number, branch, self.main_branch)
        return branch

    def sync_branch(self, branch: str) -> None:
        self.git.checkout(branch)
        try:
            self.git.pull(branch)
        except GitError as exc:
            self.log.debug("branch pull skipped branch=%s error=%s", branch, exc)

    def publish(self, branch: str, *, force: bool = False) -> None:
        self.git.push(branch, force=force, set_upstream=force)

    def commits_ahead_of_main(self) -> int:
        return self.git.commits_ahead(self.main_branch)

    def commits_ahead_of_remote_main(self) -> int:
        return self.git.commits_ahead(self.remote_main)

    def reset_to_main(self) -> None:
        self.git.checkout(self.main_branch)
        self.git.pull(self.main_branch)
