from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
import tomllib


class ConfigError(ValueError):
    pass


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _coalesce_env(name: str) -> str | None:
    prefixed = f"ISSUELOOP_{name}"
    if prefixed in os.environ:
        return os.environ[prefixed]
    if name in os.environ:
        return os.environ[name]
    return None


DEFAULT_STATE_DIR = ".issueloop"
DEFAULT_AGENT_ARGS = ["--dangerously-skip-permissions", "--output-format", "text"]


def default_config_path(repo_root: Path) -> Path:
    return (repo_root / DEFAULT_STATE_DIR / "config.toml").resolve()


@dataclass(slots=True)
class Config:
    repo_root: Path
    state_dir: Path
    max_iterations: int = 10
    review_wait_minutes: int = 5
    stop_on_no_issues: bool = True
    no_issue_backoff_seconds: int = 300
    auto_merge: bool = False
    require_approval: bool = True
    main_branch: str = "main"
    discord_webhook_url: str | None = None
    debug: bool = False
    ci_wait_minutes: int = 30
    ci_check_interval_seconds: int = 30
    ci_required: bool = True
    ci_retry_on_failure: bool = False
    ci_max_retries: int = 2
    claude_timeout_minutes: int = 30
    labels_to_process: list[str] = field(default_factory=list)
    exclude_labels: list[str] = field(default_factory=list)
    agent_cmd: str = "claude"
    agent_args: list[str] = field(default_factory=lambda: list(DEFAULT_AGENT_ARGS))
    agent_prompt_flag: str = "-p"
    config_path: Path | None = None

    def ensure_directories(self) -> None:
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self.runs_dir.mkdir(parents=True, exist_ok=True)

    def validate(self) -> None:
        if self.max_iterations < 1:
            raise ConfigError("max_iterations must be at least 1")
        if self.ci_check_interval_seconds <= 0:
            raise ConfigError("ci_check_interval_seconds must be positive")
        if self.claude_timeout_minutes <= 0:
            raise ConfigError("claude_timeout_minutes must be positive")
        for name in (
            "review_wait_minutes",
            "no_issue_backoff_seconds",
            "ci_wait_minutes",
            "ci_max_retries",
        ):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must not be negative")
        if not self.main_branch.strip():
            raise ConfigError("main_branch must not be empty")
        if not self.agent_cmd.strip():
            raise ConfigError("agent_cmd must not be empty")

    @property
    def lock_path(self) -> Path:
        return self.state_dir / ".lock"

    @property
    def stop_path(self) -> Path:
        return self.state_dir / "STOP"

    @property
    def state_path(self) -> Path:
        return self.state_dir / "state.json"

    @property
    def log_path(self) -> Path:
        return self.state_dir / "run.log"

    @property
    def runs_dir(self) -> Path:
        return self.state_dir / "runs"


def load_config(
    repo_root: Path,
    config_path: str | Path | None = None,
    *,
    required: bool = True,
) -> Config:
    raw: dict[str, object] = {}
    candidate = Path(config_path).expanduser() if config_path else default_config_path(repo_root)
    resolved_config_path: Path | None = None
    if candidate.exists():
        resolved_config_path = candidate.resolve()
        try:
            with candidate.open("rb") as handle:
                raw = tomllib.load(handle)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"Invalid config file {candidate}: {exc}") from exc
    elif required:
        raise ConfigError(f"Config file not found: {candidate}")

    def int_value(key: str, default: int) -> int:
        env = _coalesce_env(key.upper())
        val = raw.get(key) if env is None else env
        if val is None:
            return default
        try:
            return int(val)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"{key} must be an integer, got {val!r}") from exc

    def str_value(key: str, default: str) -> str:
        env = _coalesce_env(key.upper())
        if env is not None:
            return env
        val = raw.get(key)
        return default if val is None else str(val)

    def optional_str_value(key: str) -> str | None:
        env = _coalesce_env(key.upper())
        if env is not None:
            return env.strip() or None
        val = raw.get(key)
        if val is None:
            return None
        val_str = str(val).strip()
        return val_str or None

    def list_value(key: str, default: list[str]) -> list[str]:
        env = _coalesce_env(key.upper())
        if env is not None:
            return _parse_list(env)
        val = raw.get(key)
        if val is None:
            return list(default)
        if isinstance(val, list):
            return [str(item) for item in val]
        return _parse_list(str(val))

    def bool_value(key: str, default: bool) -> bool:
        env = _coalesce_env(key.upper())
        if env is not None:
            return _parse_bool(env)
        val = raw.get(key)
        if val is None:
            return default
        if isinstance(val, bool):
            return val
        return _parse_bool(str(val))

    state_dir = Path(str_value("state_dir", DEFAULT_STATE_DIR)).expanduser()
    if not state_dir.is_absolute():
        state_dir = (repo_root / state_dir).resolve()

    cfg = Config(
        repo_root=repo_root,
        state_dir=state_dir,
        max_iterations=int_value("max_iterations", 10),
        review_wait_minutes=int_value("review_wait_minutes", 5),
        stop_on_no_issues=bool_value("stop_on_no_issues", True),
        no_issue_backoff_seconds=int_value("no_issue_backoff_seconds", 300),
        auto_merge=bool_value("auto_merge", False),
        require_approval=bool_value("require_approval", True),
        main_branch=str_value("main_branch", "main"),
        discord_webhook_url=optional_str_value("discord_webhook_url"),
        debug=bool_value("debug", False),
        ci_wait_minutes=int_value("ci_wait_minutes", 30),
        ci_check_interval_seconds=int_value("ci_check_interval_seconds", 30),
        ci_required=bool_value("ci_required", True),
        ci_retry_on_failure=bool_value("ci_retry_on_failure", False),
        ci_max_retries=int_value("ci_max_retries", 2),
        claude_timeout_minutes=int_value("claude_timeout_minutes", 30),
        labels_to_process=list_value("labels_to_process", []),
        exclude_labels=list_value("exclude_labels", []),
        agent_cmd=str_value("agent_cmd", "claude"),
        agent_args=list_value("agent_args", DEFAULT_AGENT_ARGS),
        agent_prompt_flag=str_value("agent_prompt_flag", "-p"),
        config_path=resolved_config_path,
    )
    cfg.validate()
    return cfg
