from __future__ import annotations

import argparse
import json
import logging
import subprocess
import sys
import time
from pathlib import Path

from .ci import CiWatcher
from .config import Config, ConfigError, load_config
from .control import AlreadyRunningError, RunContext, StopRequested
from .controller import StopController
from .daemon import DaemonService
from .doctor import print_doctor_report, run_doctor
from .gh import GhClient, GhError
from .git import GitClient
from .notify import build_notifier
from .pr import PRManager
from .runner import AgentRunner
from .state import StateStore
from .status import collect_status, render_status, tail_lines
from .workflow import IssueWorkflow
from .workspace import Workspace

log = logging.getLogger(__name__)


def detect_repo_root(repo_root: str | None = None) -> Path:
    if repo_root:
        candidate = Path(repo_root).expanduser().resolve()
        if not candidate.exists():
            raise FileNotFoundError(f"Repo root not found: {candidate}")
        if not candidate.is_dir():
            raise NotADirectoryError(f"Repo root is not a directory: {candidate}")
        proc = subprocess.run(
            ["git", "rev-parse", "--show-toplevel"],
            cwd=candidate,
            text=True,
            capture_output=True,
            check=False,
        )
        if proc.returncode == 0:
            return Path(proc.stdout.strip()).resolve()
        return candidate

    proc = subprocess.run(
        ["git", "rev-parse", "--show-toplevel"],
        text=True,
        capture_output=True,
        check=False,
    )
    if proc.returncode != 0:
        return Path.cwd()
    return Path(proc.stdout.strip()).resolve()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Autonomous issue -> PR -> CI -> review -> merge loop")

    def add_common_args(target: argparse.ArgumentParser, *, with_defaults: bool) -> None:
        def default(value: object) -> object:
            return value if with_defaults else argparse.SUPPRESS

        target.add_argument("--config", default=default(None), help="Path to config TOML file")
        target.add_argument(
            "--repo-root",
            default=default(None),
            help="Path to git repository root to operate on (defaults to current repository)",
        )
        target.add_argument(
            "--log-level",
            default=default(None),
            choices=["DEBUG", "INFO", "WARNING", "ERROR"],
            help="Logging level (defaults to INFO, or DEBUG when debug=true)",
        )
        target.add_argument(
            "--log-file",
            default=default(None),
            help="Log file path (defaults to run.log in the state directory for `run`)",
        )

    add_common_args(parser, with_defaults=True)

    sub = parser.add_subparsers(dest="command", required=True)
    add_common_args(sub.add_parser("run", help="Run the autonomous workflow loop"), with_defaults=False)

    status_parser = sub.add_parser("status", help="Show workflow state and recent activity")
    add_common_args(status_parser, with_defaults=False)
    status_mode = status_parser.add_mutually_exclusive_group()
    status_mode.add_argument("--json", action="store_true", help="Output status as JSON")
    status_mode.add_argument("--log", action="store_true", help="Show the last 50 log lines")
    status_mode.add_argument("--watch", action="store_true", help="Refresh every 5 seconds")

    stop_parser = sub.add_parser("stop", help="Request a graceful stop (default) or control a running loop")
    add_common_args(stop_parser, with_defaults=False)
    stop_mode = stop_parser.add_mutually_exclusive_group()
    stop_mode.add_argument("--force", "-f", action="store_true", help="Kill the process tree immediately")
    stop_mode.add_argument("--cancel", "-c", action="store_true", help="Cancel a pending stop request")
    stop_mode.add_argument(
        "--wait",
        "-w",
        type=int,
        nargs="?",
        const=300,
        metavar="SECONDS",
        help="Request stop and wait for the loop to exit (default 300s)",
    )
    stop_mode.add_argument("--cleanup", action="store_true", help="Remove stale lock/stop files")
    stop_mode.add_argument("--status", "-s", action="store_true", help="Show whether the loop is running")
    stop_parser.add_argument(
        "--escalate",
        action="store_true",
        help="With --wait: force kill if the loop has not stopped before the timeout",
    )

    add_common_args(sub.add_parser("doctor", help="Run environment readiness checks"), with_defaults=False)
    return parser


def configure_logging(level: str, log_file: Path | None) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        handlers=handlers,
        force=True,
    )


def build_service(ctx: RunContext) -> DaemonService:
    config = ctx.config
    git = GitClient(config.repo_root)
    workspace = Workspace(git, config.main_branch)
    gh = GhClient(config.repo_root)
    try:
        repo_url = gh.repo_url()
    except GhError as exc:
        log.warning("could not determine repository url error=%s", exc)
        repo_url = ""
    workflow = IssueWorkflow(
        ctx=ctx,
        gh=gh,
        workspace=workspace,
        runner=AgentRunner(config, workspace),
        ci=CiWatcher(gh, checkpoint=ctx.check_stop, sleep=ctx.sleep, clock=ctx.clock),
        pr_manager=PRManager(gh, workspace, repo_url),
        state=StateStore(config.state_path),
    )
    return DaemonService(ctx, workflow)


def cmd_run(config: Config) -> int:
    notifier = build_notifier(config.discord_webhook_url, config.repo_root.name)
    ctx = RunContext(config, notifier)
    try:
        with ctx:
            ctx.install_signal_handlers()
            stats = build_service(ctx).run()
    except AlreadyRunningError as exc:
        log.error("%s", exc)
        return 1
    except StopRequested:
        log.info("workflow stopped by request")
        return 0
    finally:
        notifier.close()
    log.info("session summary completed=%s failed=%s", stats.completed, stats.failed)
    return 0


def cmd_status(config: Config, *, as_json: bool, show_log: bool, watch: bool) -> int:
    if as_json:
        print(json.dumps(collect_status(config).to_json(), indent=2))
        return 0
    if show_log:
        lines = tail_lines(config.log_path, 50)
        print("\n".join(lines) if lines else "No log file found")
        return 0
    gh = GhClient(config.repo_root)
    while True:
        print(render_status(collect_status(config), config, gh))
        if not watch:
            return 0
        print("\nRefreshing in 5s... (Ctrl+C to exit)")
        time.sleep(5)


def cmd_stop(config: Config, args: argparse.Namespace) -> int:
    notifier = build_notifier(config.discord_webhook_url, config.repo_root.name)
    try:
        return _stop_command(StopController(config, notifier), args)
    finally:
        notifier.close()


def _stop_command(controller: StopController, args: argparse.Namespace) -> int:
    if args.status:
        pid = controller.owner_pid()
        print(f"Workflow is running (PID: {pid})" if controller.is_running() else "Workflow is not running")
        if controller.stop_pending():
            print("Stop already requested")
        return 0
    if args.cleanup:
        cleaned = controller.cleanup_stale()
        print("\n".join(cleaned) if cleaned else "No stale files to clean.")
        return 0
    if args.force:
        result = controller.force_stop()
    elif args.cancel:
        result = controller.cancel_stop()
    elif args.wait is not None:
        print(f"Waiting up to {args.wait}s for workflow to stop...")
        result = controller.wait_for_stop(args.wait, escalate=args.escalate)
    else:
        result = controller.request_stop()
    print(result.message)
    return 0 if result.ok else 1


def cmd_doctor(config: Config) -> int:
    results, ok = run_doctor(config)
    print_doctor_report(results)
    return 0 if ok else 1


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    repo_root = detect_repo_root(args.repo_root)

    try:
        config = load_config(repo_root, args.config, required=args.command == "run")
    except ConfigError as exc:
        configure_logging(args.log_level or "INFO", None)
        log.error("configuration error: %s", exc)
        return 1

    level = args.log_level or ("DEBUG" if config.debug else "INFO")
    log_file = Path(args.log_file).expanduser().resolve() if args.log_file else None
    if log_file is None and args.command in {"run", "stop"}:
        log_file = config.log_path
    configure_logging(level, log_file)

    try:
        if args.command == "run":
            return cmd_run(config)
        if args.command == "status":
            return cmd_status(config, as_json=args.json, show_log=args.log, watch=args.watch)
        if args.command == "stop":
            return cmd_stop(config, args)
        if args.command == "doctor":
            return cmd_doctor(config)
    except KeyboardInterrupt:
        return 130
    except Exception as exc:
        log.exception("fatal error: %s", exc)
        return 1
    parser.print_help(sys.stderr)
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
