from __future__ import annotations

import logging
import subprocess
from pathlib import Path


class GitError(RuntimeError):
    pass


class GitClient:
    def __init__(self, repo_root: Path, remote: str = "origin"):
        self.repo_root = repo_root
        self.remote = remote
        self.log = logging.getLogger(__name__)

    def _git(self, args: list[str]) -> subprocess.CompletedProcess[str]:
        cmd = ["git", *args]
        self.log.debug("running %s", " ".join(cmd))
        proc = subprocess.run(
            cmd,
            cwd=self.repo_root,
            text=True,
            capture_output=True,
            check=False,
        )
        if proc.returncode != 0:
            raise GitError(f"Command failed ({proc.returncode}): {' '.join(cmd)}\n{proc.stderr}")
        return proc

    def _git_output(self, args: list[str]) -> str:
        return self._git(args).stdout or ""

    def _git_ok(self, args: list[str]) -> bool:
        proc = subprocess.run(
            ["git", *args],
            cwd=self.repo_root,
            text=True,
            capture_output=True,
            check=False,
        )
        return proc.returncode == 0

    def fetch(self, branch: str) -> None:
        self._git(["fetch", self.remote, branch])

    def checkout(self, branch: str) -> None:
        self._git(["checkout", branch])

    def pull(self, branch: str) -> None:
        self._git(["pull", "--ff-only", self.remote, branch])

    def current_branch(self) -> str:
        return self._git_output(["branch", "--show-current"]).strip()

    def local_branch_exists(self, branch: str) -> bool:
        return self._git_ok(["show-ref", "--verify", "--quiet", f"refs/heads/{branch}"])

    def create_branch(self, branch: str) -> None:
        self._git(["checkout", "-b", branch])

    def delete_local_branch(self, branch: str) -> None:
        self._git(["branch", "-D", branch])

    def remote_branch_exists(self, branch: str) -> bool:
        out = self._git_output(["ls-remote", "--heads", self.remote, branch])
        return any(line.endswith(f"refs/heads/{branch}") for line in out.splitlines())

    def delete_remote_branch(self, branch: str) -> None:
        self._git(["push", self.remote, "--delete", branch])

    def push(self, branch: str, *, force: bool = False, set_upstream: bool = False) -> None:
        args = ["push"]
        if set_upstream:
            args.append("-u")
        args.extend([self.remote, branch])
        if force:
            args.append("--force")
        self._git(args)

    def commits_ahead(self, ref: str) -> int:
        """Count commits on HEAD that are not reachable from ``ref``."""
        out = self._git_output(["rev-list", "--count", f"{ref}..HEAD"]).strip()
        return int(out or 0)

    def has_tracked_changes(self) -> bool:
        out = self._git_output(["status", "--porcelain", "--untracked-files=no"])
        return bool(out.strip())

    def reset_hard(self) -> None:
        self._git(["reset", "--hard", "HEAD"])
