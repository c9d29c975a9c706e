from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

from issueloop.git import GitClient
from issueloop.workspace import Workspace, branch_name_for

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


def git(cwd: Path, *args: str) -> str:
    proc = subprocess.run(
        ["git", "-c", "commit.gpgsign=false", *args],
        cwd=cwd,
        text=True,
        capture_output=True,
        check=True,
    )
    return proc.stdout.strip()


def commit_file(repo: Path, name: str, content: str) -> None:
    (repo / name).write_text(content, encoding="utf-8")
    git(repo, "add", name)
    git(repo, "commit", "-m", f"update {name}")


@pytest.fixture
def clone(tmp_path: Path) -> Path:
    origin = tmp_path / "origin.git"
    work = tmp_path / "work"
    git(tmp_path, "init", "--bare", str(origin))
    git(origin, "symbolic-ref", "HEAD", "refs/heads/main")
    git(tmp_path, "clone", str(origin), str(work))
    git(work, "config", "user.email", "loop@example.com")
    git(work, "config", "user.name", "Loop")
    git(work, "symbolic-ref", "HEAD", "refs/heads/main")
    commit_file(work, "README.md", "hello\n")
    git(work, "push", "-u", "origin", "main")
    return work


@pytest.fixture
def workspace(clone: Path) -> Workspace:
    return Workspace(GitClient(clone), "main")


def test_branch_name():
    assert branch_name_for(42) == "issue-42"


def test_prepare_branch_starts_from_main(workspace: Workspace, clone: Path):
    branch = workspace.prepare_branch(5)

    assert branch == "issue-5"
    assert workspace.git.current_branch() == "issue-5"
    assert workspace.commits_ahead_of_main() == 0


def test_commits_are_counted_against_main(workspace: Workspace, clone: Path):
    workspace.prepare_branch(5)
    commit_file(clone, "fix.txt", "one\n")
    commit_file(clone, "fix.txt", "two\n")

    assert workspace.commits_ahead_of_main() == 2
    assert workspace.commits_ahead_of_remote_main() == 2


def test_prepare_is_idempotent(workspace: Workspace, clone: Path):
    workspace.prepare_branch(5)
    commit_file(clone, "fix.txt", "attempt one\n")
    workspace.publish("issue-5", force=True)
    assert workspace.git.remote_branch_exists("issue-5")

    workspace.prepare_branch(5)

    assert workspace.git.current_branch() == "issue-5"
    assert workspace.commits_ahead_of_main() == 0
    assert not (clone / "fix.txt").exists()
    assert not workspace.git.remote_branch_exists("issue-5")


def test_prepare_discards_uncommitted_tracked_changes(workspace: Workspace, clone: Path):
    (clone / "README.md").write_text("dirty\n", encoding="utf-8")

    workspace.prepare_branch(6)

    assert (clone / "README.md").read_text(encoding="utf-8") == "hello\n"
    assert not workspace.git.has_tracked_changes()


def test_prepare_picks_up_new_upstream_commits(workspace: Workspace, clone: Path, tmp_path: Path):
    other = tmp_path / "other"
    git(tmp_path, "clone", str(tmp_path / "origin.git"), str(other))
    git(other, "config", "user.email", "peer@example.com")
    git(other, "config", "user.name", "Peer")
    commit_file(other, "CHANGELOG.md", "merged elsewhere\n")
    git(other, "push", "origin", "main")

    workspace.prepare_branch(8)

    assert (clone / "CHANGELOG.md").exists()


def test_reset_to_main_returns_to_default_branch(workspace: Workspace):
    workspace.prepare_branch(5)

    workspace.reset_to_main()

    assert workspace.git.current_branch() == "main"
