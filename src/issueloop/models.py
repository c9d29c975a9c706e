from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class CheckStatus(str, Enum):
    NO_CHECKS = "no_checks"
    PENDING = "pending"
    PASSED = "passed"
    FAILED = "failed"


class PollOutcome(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    TIMEOUT = "timeout"


class ApprovalState(str, Enum):
    UNKNOWN = "unknown"
    APPROVED = "approved"
    NOT_APPROVED = "not_approved"


class IterationStatus(str, Enum):
    CLAUDE_FAILED = "claude_failed"
    PR_FAILED = "pr_failed"
    CI_FAILED = "ci_failed"
    COMPLETED = "completed"
    PENDING_MERGE = "pending_merge"

    @property
    def is_failure(self) -> bool:
        return self in {
            IterationStatus.CLAUDE_FAILED,
            IterationStatus.PR_FAILED,
            IterationStatus.CI_FAILED,
        }


@dataclass(frozen=True, slots=True)
class Issue:
    number: int
    title: str
    body: str
    labels: tuple[str, ...]
    url: str


@dataclass(frozen=True, slots=True)
class PullRequest:
    number: int
    issue_number: int
    branch: str
    url: str


@dataclass(frozen=True, slots=True)
class PullRequestView:
    number: int
    url: str
    branch: str
    approval: ApprovalState


@dataclass(frozen=True, slots=True)
class CheckRun:
    name: str
    state: str
    conclusion: str | None = None
    link: str | None = None


@dataclass(slots=True)
class AgentResult:
    status: str  # ok|failed|timeout
    exit_code: int | None
    commit_delta: int
    run_dir: Path | None = None
    error: str | None = None

    @property
    def exit_ok(self) -> bool:
        return self.status == "ok"

    @property
    def succeeded(self) -> bool:
        return self.exit_ok and self.commit_delta > 0


@dataclass(slots=True)
class IterationRecord:
    iteration: int
    issue_number: int
    status: IterationStatus
    timestamp: str


@dataclass(slots=True)
class SessionStats:
    iterations: int = 0
    completed: int = 0
    failed: int = 0
    pending_merge: int = 0
    statuses: list[IterationStatus] = field(default_factory=list)

    def record(self, status: IterationStatus) -> None:
        self.statuses.append(status)
        if status is IterationStatus.COMPLETED:
            self.completed += 1
        elif status is IterationStatus.PENDING_MERGE:
            self.pending_merge += 1
        elif status.is_failure:
            self.failed += 1
