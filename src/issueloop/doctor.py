from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

from .config import Config


@dataclass(slots=True)
class CheckResult:
    name: str
    ok: bool
    message: str


def _run(cmd: list[str], cwd: Path | None = None) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        cmd,
        cwd=cwd,
        text=True,
        capture_output=True,
        check=False,
    )


def _binary_check(name: str, cmd: str, hint: str) -> CheckResult:
    path = shutil.which(cmd)
    if path:
        return CheckResult(name, True, path)
    return CheckResult(name, False, f"{cmd!r} not found in PATH; {hint}")


def _command_check(name: str, cmd: list[str], cwd: Path, fallback: str) -> CheckResult:
    proc = _run(cmd, cwd=cwd)
    output = proc.stdout.strip()
    if proc.returncode == 0 and output:
        return CheckResult(name, True, output)
    return CheckResult(name, False, proc.stderr.strip() or output or fallback)


def _git_checks(config: Config) -> list[CheckResult]:
    root = config.repo_root
    main = config.main_branch
    results = [
        _command_check("git repository", ["git", "rev-parse", "--show-toplevel"], root, "not a git repository"),
        _command_check("git origin remote", ["git", "remote", "get-url", "origin"], root, "missing origin remote"),
    ]

    refs = (f"refs/heads/{main}", f"refs/remotes/origin/{main}")
    found = [ref for ref in refs if _run(["git", "show-ref", "--verify", ref], cwd=root).returncode == 0]
    if found:
        where = "local" if found[0] == refs[0] else "origin"
        results.append(CheckResult("main branch", True, f"{main} found ({where})"))
    else:
        results.append(CheckResult("main branch", False, f"{main} not found locally or at origin/{main}"))

    # Prepare discards uncommitted tracked changes; surface them without failing.
    dirty = _run(["git", "status", "--porcelain", "--untracked-files=no"], cwd=root)
    if dirty.returncode == 0 and dirty.stdout.strip():
        results.append(CheckResult("working tree", True, "uncommitted changes will be discarded on the next run"))
    return results


def _gh_checks(config: Config) -> list[CheckResult]:
    auth = _run(["gh", "auth", "status"], cwd=config.repo_root)
    if auth.returncode == 0:
        results = [CheckResult("gh auth", True, "authenticated")]
    else:
        msg = auth.stderr.strip() or auth.stdout.strip() or "authentication check failed"
        results = [CheckResult("gh auth", False, msg)]
    results.append(
        _command_check(
            "repo access",
            ["gh", "repo", "view", "--json", "nameWithOwner", "--jq", ".nameWithOwner"],
            config.repo_root,
            "cannot access repository",
        )
    )
    return results


def run_doctor(config: Config) -> tuple[list[CheckResult], bool]:
    git_check = _binary_check("git binary", "git", "install git")
    gh_check = _binary_check("gh binary", "gh", "install the GitHub CLI")
    results = [
        git_check,
        gh_check,
        _binary_check("agent binary", config.agent_cmd, "set agent_cmd or install the agent CLI"),
    ]

    if config.config_path is not None:
        results.append(CheckResult("config file", True, str(config.config_path)))
    else:
        results.append(CheckResult("config file", False, "no config file; `issueloop run` requires one"))

    if git_check.ok:
        results.extend(_git_checks(config))
    if gh_check.ok:
        results.extend(_gh_checks(config))

    try:
        config.ensure_directories()
        marker = config.state_dir / ".doctor_write_test"
        marker.write_text("ok", encoding="utf-8")
        marker.unlink(missing_ok=True)
        results.append(CheckResult("state dir writable", True, str(config.state_dir)))
    except OSError as exc:
        results.append(CheckResult("state dir writable", False, str(exc)))

    success = all(item.ok for item in results)
    webhook = "configured" if config.discord_webhook_url else "not set (notifications disabled)"
    results.append(CheckResult("discord webhook", True, webhook))
    return results, success


def print_doctor_report(results: list[CheckResult]) -> None:
    for item in results:
        status = "PASS" if item.ok else "FAIL"
        print(f"[{status}] {item.name}: {item.message}")
