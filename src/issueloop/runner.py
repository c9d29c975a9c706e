from __future__ import annotations

import json
import logging
import subprocess
import time
from datetime import datetime, timezone
from pathlib import Path

from .config import Config
from .control import kill_process_tree
from .git import GitError
from .models import AgentResult
from .state import utcnow_iso
from .workspace import Workspace


class AgentError(RuntimeError):
    pass


def _utc_now_compact() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


class AgentRunner:
    """Runs the coding agent against the shared working copy.

    Completion is judged from the repository, not from the agent's output:
    the number of commits on HEAD that are not on the default branch is
    counted before and after every invocation.
    """

    _HEARTBEAT_SECONDS = 20
    _REAP_SECONDS = 5.0

    def __init__(self, config: Config, workspace: Workspace):
        self.config = config
        self.workspace = workspace
        self.log = logging.getLogger(__name__)

    def build_command(self, prompt: str) -> list[str]:
        cmd = [self.config.agent_cmd, *self.config.agent_args]
        if self.config.agent_prompt_flag:
            cmd.extend([self.config.agent_prompt_flag, prompt])
        else:
            cmd.append(prompt)
        return cmd

    def run(self, prompt: str, timeout_minutes: float, label: str = "agent") -> AgentResult:
        timeout_seconds = timeout_minutes * 60
        run_dir = self.config.runs_dir / f"{label}-{_utc_now_compact()}"
        run_dir.mkdir(parents=True, exist_ok=True)
        (run_dir / "prompt.md").write_text(prompt, encoding="utf-8")
        log_path = run_dir / "agent.log"

        started_at = utcnow_iso()
        status = "failed"
        exit_code: int | None = None
        error: str | None = None
        commits_before = self._count_commits()
        commits_after = commits_before

        try:
            exit_code = self._run_with_heartbeat(
                self.build_command(prompt),
                log_path=log_path,
                label=label,
                timeout_seconds=timeout_seconds,
            )
            if exit_code == 0:
                status = "ok"
            else:
                error = f"Agent exited with code {exit_code}"
                self.log.error("agent failed label=%s exit_code=%s", label, exit_code)
        except subprocess.TimeoutExpired:
            status = "timeout"
            error = f"Agent timed out after {timeout_minutes} minutes"
            self.log.error("agent timed out label=%s timeout_minutes=%s", label, timeout_minutes)
        except (OSError, AgentError) as exc:
            error = str(exc)
            self.log.error("agent could not run label=%s error=%s", label, exc)
        finally:
            commits_after = self._count_commits()
            summary = {
                "label": label,
                "status": status,
                "exit_code": exit_code,
                "error": error,
                "commits_before": commits_before,
                "commits_after": commits_after,
                "started_at": started_at,
                "finished_at": utcnow_iso(),
                "artifacts": {
                    "prompt": str(run_dir / "prompt.md"),
                    "log": str(log_path),
                },
            }
            (run_dir / "summary.json").write_text(
                json.dumps(summary, indent=2, sort_keys=True), encoding="utf-8"
            )

        delta = max(commits_after - commits_before, 0)
        self.log.info(
            "agent finished label=%s status=%s exit_code=%s commit_delta=%s run_dir=%s",
            label,
            status,
            exit_code,
            delta,
            run_dir,
        )
        return AgentResult(status=status, exit_code=exit_code, commit_delta=delta, run_dir=run_dir, error=error)

    def _count_commits(self) -> int:
        try:
            return self.workspace.commits_ahead_of_main()
        except GitError as exc:
            self.log.warning("could not count commits error=%s", exc)
            return 0

    def _run_with_heartbeat(
        self,
        cmd: list[str],
        log_path: Path,
        label: str,
        timeout_seconds: float,
    ) -> int:
        started = time.monotonic()
        self.log.info(
            "starting agent label=%s timeout_seconds=%s log=%s",
            label,
            int(timeout_seconds),
            log_path,
        )
        with log_path.open("w", encoding="utf-8") as log_handle:
            # Own session: a terminal Ctrl+C reaches only us, and we defer the stop.
            try:
                proc = subprocess.Popen(
                    cmd,
                    cwd=self.config.repo_root,
                    text=True,
                    stdin=subprocess.DEVNULL,
                    stdout=log_handle,
                    stderr=subprocess.STDOUT,
                    start_new_session=True,
                )
            except OSError as exc:
                raise AgentError(f"Agent command could not be started: {exc}") from exc
            while True:
                remaining = timeout_seconds - (time.monotonic() - started)
                if remaining <= 0:
                    if not kill_process_tree(proc.pid):
                        self.log.error("agent process tree survived kill label=%s pid=%s", label, proc.pid)
                        proc.kill()
                    try:
                        proc.wait(timeout=self._REAP_SECONDS)
                    except subprocess.TimeoutExpired:
                        self.log.error("agent process could not be reaped label=%s pid=%s", label, proc.pid)
                    raise subprocess.TimeoutExpired(cmd=cmd, timeout=timeout_seconds)
                try:
                    return proc.wait(timeout=min(self._HEARTBEAT_SECONDS, remaining))
                except subprocess.TimeoutExpired:
                    self.log.info(
                        "agent still running label=%s elapsed_seconds=%s",
                        label,
                        int(time.monotonic() - started),
                    )
