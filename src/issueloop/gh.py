from __future__ import annotations

import json
import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .models import ApprovalState, CheckRun, Issue, PullRequestView

# Run states of check runs and commit status contexts that are not final yet.
PENDING_STATES = frozenset({"PENDING", "QUEUED", "IN_PROGRESS", "WAITING", "REQUESTED", "EXPECTED"})
FAILED_CONCLUSIONS = frozenset({"FAILURE", "CANCELLED", "TIMED_OUT", "ERROR", "STARTUP_FAILURE"})


@dataclass(slots=True)
class GhError(RuntimeError):
    cmd: list[str]
    exit_code: int
    stdout: str
    stderr: str

    def __str__(self) -> str:
        return (
            f"GitHub CLI command failed ({self.exit_code}): {' '.join(self.cmd)}\n"
            f"stderr: {self.stderr.strip()}"
        )


def _search_label(label: str) -> str:
    return f'label:"{label}"'


def _label_names(raw: Any) -> tuple[str, ...]:
    if not isinstance(raw, list):
        return ()
    return tuple(
        str(label["name"]) for label in raw if isinstance(label, dict) and label.get("name")
    )


def _approval_state(raw: Any) -> ApprovalState:
    decision = str(raw or "").upper()
    if decision == "APPROVED":
        return ApprovalState.APPROVED
    if decision in {"CHANGES_REQUESTED", "REVIEW_REQUIRED"}:
        return ApprovalState.NOT_APPROVED
    return ApprovalState.UNKNOWN


def _check_from_rollup(entry: dict[str, Any]) -> CheckRun:
    # CheckRun entries carry status/conclusion; legacy StatusContext entries carry state.
    if entry.get("__typename") == "StatusContext" or "context" in entry:
        state = str(entry.get("state") or "").upper()
        name = str(entry.get("context") or entry.get("name") or "")
        link = entry.get("targetUrl")
        if state in PENDING_STATES:
            return CheckRun(name=name, state=state, conclusion=None, link=link)
        return CheckRun(name=name, state="COMPLETED", conclusion=state or None, link=link)
    status = str(entry.get("status") or "").upper()
    conclusion = str(entry.get("conclusion") or "").upper() or None
    return CheckRun(
        name=str(entry.get("name") or ""),
        state=status,
        conclusion=conclusion,
        link=entry.get("detailsUrl"),
    )


class GhClient:
    def __init__(self, repo_root: Path, gh_cmd: str = "gh"):
        self.repo_root = repo_root
        self.gh_cmd = gh_cmd
        self.log = logging.getLogger(__name__)

    def _run(self, args: list[str]) -> str:
        cmd = [self.gh_cmd, *args]
        self.log.debug("running %s", " ".join(cmd))
        proc = subprocess.run(
            cmd,
            cwd=self.repo_root,
            text=True,
            capture_output=True,
            check=False,
        )
        if proc.returncode != 0:
            raise GhError(
                cmd=cmd,
                exit_code=proc.returncode,
                stdout=proc.stdout or "",
                stderr=proc.stderr or "",
            )
        return proc.stdout or ""

    def gh_json(self, args: list[str]) -> Any:
        raw = self._run(args)
        if not raw.strip():
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise GhError(args, 1, raw, f"Invalid JSON from gh: {exc}") from exc

    def gh_text(self, args: list[str]) -> str:
        return self._run(args)

    def find_next_issue(self, include_labels: list[str], exclude_labels: list[str]) -> int | None:
        terms = ["sort:created-asc"]
        terms.extend(_search_label(label) for label in include_labels)
        terms.extend("-" + _search_label(label) for label in exclude_labels)
        data = self.gh_json(
            [
                "issue",
                "list",
                "--state",
                "open",
                "--limit",
                "1",
                "--search",
                " ".join(terms),
                "--json",
                "number,title,labels,url",
            ]
        )
        if not isinstance(data, list) or not data:
            return None
        first = data[0]
        if not isinstance(first, dict) or first.get("number") is None:
            return None
        number = int(first["number"])
        excluded = sorted(set(_label_names(first.get("labels"))) & set(exclude_labels))
        if excluded:
            self.log.info("issue has excluded label issue=%s labels=%s", number, ",".join(excluded))
            return None
        return number

    def view_issue(self, issue_id: int) -> Issue:
        data = self.gh_json(
            [
                "issue",
                "view",
                str(issue_id),
                "--json",
                "number,title,body,labels,url",
            ]
        )
        if not isinstance(data, dict):
            raise GhError(["issue", "view", str(issue_id)], 1, str(data), "Unexpected issue payload")
        return Issue(
            number=int(data.get("number", issue_id)),
            title=str(data.get("title") or ""),
            body=str(data.get("body") or ""),
            labels=_label_names(data.get("labels")),
            url=str(data.get("url") or ""),
        )

    def create_pr(self, branch: str, base_branch: str, title: str, body: str) -> str:
        return self.gh_text(
            [
                "pr",
                "create",
                "--head",
                branch,
                "--base",
                base_branch,
                "--title",
                title,
                "--body",
                body,
            ]
        ).strip()

    def list_open_prs_for_branch(self, branch: str) -> list[dict[str, Any]]:
        data = self.gh_json(
            [
                "pr",
                "list",
                "--head",
                branch,
                "--state",
                "open",
                "--json",
                "number,url",
            ]
        )
        if not isinstance(data, list):
            return []
        return data

    def pr_checks(self, pr_number: int) -> list[CheckRun]:
        data = self.gh_json(["pr", "view", str(pr_number), "--json", "statusCheckRollup"])
        if not isinstance(data, dict):
            return []
        rollup = data.get("statusCheckRollup") or []
        return [_check_from_rollup(entry) for entry in rollup if isinstance(entry, dict)]

    def pr_feedback(self, pr_number: int) -> list[str]:
        data = self.gh_json(["pr", "view", str(pr_number), "--json", "comments,reviews"])
        if not isinstance(data, dict):
            return []
        bodies: list[str] = []
        for key in ("comments", "reviews"):
            for item in data.get(key) or []:
                if not isinstance(item, dict):
                    continue
                body = str(item.get("body") or "").strip()
                if body:
                    bodies.append(body)
        return bodies

    def view_pr(self, pr_number: int) -> PullRequestView:
        data = self.gh_json(
            ["pr", "view", str(pr_number), "--json", "number,url,headRefName,reviewDecision"]
        )
        if not isinstance(data, dict):
            raise GhError(["pr", "view", str(pr_number)], 1, str(data), "Unexpected pull request payload")
        return PullRequestView(
            number=int(data.get("number") or pr_number),
            url=str(data.get("url") or ""),
            branch=str(data.get("headRefName") or ""),
            approval=_approval_state(data.get("reviewDecision")),
        )

    def review_decision(self, pr_number: int) -> ApprovalState:
        return self.view_pr(pr_number).approval

    def merge_pr(self, pr_number: int) -> None:
        self.gh_text(["pr", "merge", str(pr_number), "--squash", "--delete-branch"])

    def repo_url(self) -> str:
        data = self.gh_json(["repo", "view", "--json", "url"])
        if isinstance(data, dict):
            return str(data.get("url") or "")
        return ""

    def count_open_issues(self) -> int:
        data = self.gh_json(["issue", "list", "--state", "open", "--limit", "1000", "--json", "number"])
        return len(data) if isinstance(data, list) else 0

    def list_workflow_prs(self) -> list[dict[str, Any]]:
        data = self.gh_json(
            [
                "pr",
                "list",
                "--state",
                "open",
                "--search",
                "head:issue-",
                "--json",
                "number,title,headRefName",
            ]
        )
        return data if isinstance(data, list) else []

    @staticmethod
    def parse_pr_number_from_url(url: str | None) -> int | None:
        if not url:
            return None
        match = re.search(r"/pull/(\d+)", url)
        if not match:
            return None
        return int(match.group(1))
