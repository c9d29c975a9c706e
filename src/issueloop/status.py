from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

import psutil

from .config import Config
from .control import pid_alive, read_lock_pid
from .gh import GhClient, GhError
from .state import StateStore, utcnow_iso

log = logging.getLogger(__name__)

_STAT_PATTERNS = {
    "iterations": re.compile(r"iteration start iteration="),
    "completed": re.compile(r"issue completed issue="),
    "failed": re.compile(r"issue failed issue="),
    "prs_created": re.compile(r"pr created pr="),
}


@dataclass(slots=True)
class StatusReport:
    running: bool
    pid: int | None
    stale_lock: bool
    stop_requested: bool
    state: dict[str, object]
    runtime_seconds: int | None = None
    agent_pids: list[int] = field(default_factory=list)
    stats: dict[str, int] = field(default_factory=dict)
    recent_log: list[str] = field(default_factory=list)
    timestamp: str = field(default_factory=utcnow_iso)

    def to_json(self) -> dict[str, object]:
        return {
            "running": self.running,
            "pid": self.pid,
            "stop_requested": self.stop_requested,
            "state": self.state,
            "timestamp": self.timestamp,
        }


def tail_lines(path: Path, count: int) -> list[str]:
    if not path.exists():
        return []
    lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
    return lines[-count:]


def log_statistics(path: Path) -> dict[str, int]:
    counts = {key: 0 for key in _STAT_PATTERNS}
    if not path.exists():
        return counts
    with path.open(encoding="utf-8", errors="replace") as handle:
        for line in handle:
            for key, pattern in _STAT_PATTERNS.items():
                if pattern.search(line):
                    counts[key] += 1
    return counts


def human_time_diff(seconds: int) -> str:
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m {seconds % 60}s"
    if seconds < 86400:
        return f"{seconds // 3600}h {seconds % 3600 // 60}m"
    return f"{seconds // 86400}d {seconds % 86400 // 3600}h"


def collect_status(config: Config, log_lines: int = 10) -> StatusReport:
    pid = read_lock_pid(config.lock_path)
    running = pid_alive(pid)
    runtime: int | None = None
    agent_pids: list[int] = []
    if running and pid is not None:
        try:
            proc = psutil.Process(pid)
            runtime = int(datetime.now().timestamp() - proc.create_time())
            agent_pids = [child.pid for child in proc.children(recursive=False)]
        except psutil.Error as exc:
            log.debug("process details unavailable pid=%s error=%s", pid, exc)

    record = StateStore(config.state_path).load()
    state: dict[str, object] = {}
    if record is not None:
        state = {
            "last_iteration": record.iteration,
            "last_issue": record.issue_number,
            "last_status": record.status.value,
            "timestamp": record.timestamp,
        }
    return StatusReport(
        running=running,
        pid=pid,
        stale_lock=config.lock_path.exists() and not running,
        stop_requested=config.stop_path.exists(),
        state=state,
        runtime_seconds=runtime,
        agent_pids=agent_pids,
        stats=log_statistics(config.log_path),
        recent_log=tail_lines(config.log_path, log_lines),
    )


def _state_age(timestamp: str) -> str | None:
    try:
        parsed = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    except ValueError:
        return None
    seconds = int((datetime.now(timezone.utc) - parsed).total_seconds())
    return f"{human_time_diff(max(seconds, 0))} ago"


def render_status(report: StatusReport, config: Config, gh: GhClient | None = None) -> str:
    lines = ["Autonomous Workflow Status", f"Project: {config.repo_root}", ""]

    lines.append("Process Status")
    if report.running:
        lines.append(f"  Workflow:        running (PID {report.pid})")
        if report.runtime_seconds is not None:
            lines.append(f"  Runtime:         {human_time_diff(report.runtime_seconds)}")
        if report.agent_pids:
            lines.append(f"  Agent:           active (PID {', '.join(map(str, report.agent_pids))})")
    elif report.stale_lock:
        lines.append("  Workflow:        stopped")
        lines.append(f"  Note:            stale lock file exists (PID {report.pid} not running)")
    else:
        lines.append("  Workflow:        inactive")
    if report.stop_requested:
        lines.append("  Stop Requested:  yes - will halt at the next checkpoint")

    lines.extend(["", "Last Known State"])
    if report.state:
        lines.append(f"  Iteration:       {report.state['last_iteration']}")
        lines.append(f"  Issue:           #{report.state['last_issue']}")
        lines.append(f"  Status:          {report.state['last_status']}")
        age = _state_age(str(report.state.get("timestamp", "")))
        lines.append(f"  Last Update:     {age or report.state.get('timestamp', '')}")
    else:
        lines.append("  No state file found")

    lines.extend(["", "Configuration"])
    if config.config_path is None:
        lines.append("  Config file not found, showing defaults")
    lines.append(f"  Max Iterations:  {config.max_iterations}")
    lines.append(f"  Auto Merge:      {str(config.auto_merge).lower()}")
    lines.append(f"  CI Required:     {str(config.ci_required).lower()}")
    lines.append(f"  Discord:         {'configured' if config.discord_webhook_url else 'not set'}")
    lines.append(f"  Labels:          {', '.join(config.labels_to_process) or 'all'}")

    if gh is not None:
        lines.extend(["", "GitHub Status"])
        try:
            lines.append(f"  Open Issues:     {gh.count_open_issues()}")
            prs = gh.list_workflow_prs()
            lines.append(f"  Workflow PRs:    {len(prs)}")
            for pr in prs:
                lines.append(f"    #{pr.get('number')} {pr.get('title')} ({pr.get('headRefName')})")
        except GhError as exc:
            lines.append(f"  unavailable: {exc.stderr.strip() or exc.exit_code}")
        except OSError as exc:
            lines.append(f"  unavailable: {exc}")

    lines.extend(["", "Recent Log Activity"])
    if report.recent_log:
        lines.extend(f"    {line}" for line in report.recent_log)
    else:
        lines.append("  No log file found")

    stats = report.stats
    lines.extend(["", "Session Statistics"])
    lines.append(f"  Total Iterations: {stats.get('iterations', 0)}")
    lines.append(f"  Completed:        {stats.get('completed', 0)}")
    lines.append(f"  Failed:           {stats.get('failed', 0)}")
    lines.append(f"  PRs Created:      {stats.get('prs_created', 0)}")
    if stats.get("iterations"):
        lines.append(f"  Success Rate:     {stats['completed'] * 100 // stats['iterations']}%")
    return "\n".join(lines)
