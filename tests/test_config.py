from __future__ import annotations

from pathlib import Path

import pytest

from issueloop.config import DEFAULT_AGENT_ARGS, ConfigError, default_config_path, load_config


def write_config(repo_root: Path, text: str) -> Path:
    path = default_config_path(repo_root)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def test_missing_config_is_an_error_when_required(tmp_path: Path):
    with pytest.raises(ConfigError, match="Config file not found"):
        load_config(tmp_path)


def test_missing_config_falls_back_to_defaults_when_optional(tmp_path: Path):
    cfg = load_config(tmp_path, required=False)

    assert cfg.config_path is None
    assert cfg.max_iterations == 10
    assert cfg.review_wait_minutes == 5
    assert cfg.stop_on_no_issues is True
    assert cfg.auto_merge is False
    assert cfg.require_approval is True
    assert cfg.ci_required is True
    assert cfg.ci_retry_on_failure is False
    assert cfg.ci_max_retries == 2
    assert cfg.claude_timeout_minutes == 30
    assert cfg.agent_args == DEFAULT_AGENT_ARGS
    assert cfg.discord_webhook_url is None
    assert cfg.state_dir == (tmp_path / ".issueloop").resolve()
    assert cfg.lock_path.name == ".lock"
    assert cfg.stop_path.name == "STOP"


def test_values_read_from_file(tmp_path: Path):
    path = write_config(
        tmp_path,
        "\n".join(
            [
                "max_iterations = 3",
                "auto_merge = true",
                'main_branch = "trunk"',
                'labels_to_process = ["autofix", "good first issue"]',
                'exclude_labels = ["wontfix"]',
                'discord_webhook_url = "https://discord.example/hook"',
                "ci_retry_on_failure = true",
            ]
        ),
    )

    cfg = load_config(tmp_path)

    assert cfg.config_path == path.resolve()
    assert cfg.max_iterations == 3
    assert cfg.auto_merge is True
    assert cfg.main_branch == "trunk"
    assert cfg.labels_to_process == ["autofix", "good first issue"]
    assert cfg.exclude_labels == ["wontfix"]
    assert cfg.discord_webhook_url == "https://discord.example/hook"
    assert cfg.ci_retry_on_failure is True


def test_environment_overrides_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    write_config(tmp_path, "max_iterations = 3\nauto_merge = false\n")
    monkeypatch.setenv("ISSUELOOP_MAX_ITERATIONS", "7")
    monkeypatch.setenv("ISSUELOOP_AUTO_MERGE", "yes")
    monkeypatch.setenv("ISSUELOOP_EXCLUDE_LABELS", "wontfix, blocked")
    monkeypatch.setenv("DISCORD_WEBHOOK_URL", "https://discord.example/env")

    cfg = load_config(tmp_path)

    assert cfg.max_iterations == 7
    assert cfg.auto_merge is True
    assert cfg.exclude_labels == ["wontfix", "blocked"]
    assert cfg.discord_webhook_url == "https://discord.example/env"


def test_prefixed_environment_wins_over_bare(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("MAX_ITERATIONS", "4")
    monkeypatch.setenv("ISSUELOOP_MAX_ITERATIONS", "6")

    assert load_config(tmp_path, required=False).max_iterations == 6


def test_relative_state_dir_is_resolved_against_repo_root(tmp_path: Path):
    write_config(tmp_path, 'state_dir = "var/loop"\n')

    cfg = load_config(tmp_path)

    assert cfg.state_dir == (tmp_path / "var" / "loop").resolve()
    assert cfg.log_path == cfg.state_dir / "run.log"


def test_explicit_config_path(tmp_path: Path):
    other = tmp_path / "elsewhere.toml"
    other.write_text("review_wait_minutes = 0\n", encoding="utf-8")

    cfg = load_config(tmp_path, other)

    assert cfg.review_wait_minutes == 0
    assert cfg.config_path == other.resolve()


@pytest.mark.parametrize(
    "text, message",
    [
        ("max_iterations = 0", "max_iterations"),
        ("ci_check_interval_seconds = 0", "ci_check_interval_seconds"),
        ("ci_wait_minutes = -1", "ci_wait_minutes"),
        ("claude_timeout_minutes = 0", "claude_timeout_minutes"),
        ('main_branch = "  "', "main_branch"),
        ('max_iterations = "many"', "integer"),
    ],
)
def test_invalid_values_rejected(tmp_path: Path, text: str, message: str):
    write_config(tmp_path, text)

    with pytest.raises(ConfigError, match=message):
        load_config(tmp_path)


def test_invalid_toml_rejected(tmp_path: Path):
    write_config(tmp_path, "max_iterations = = 3")

    with pytest.raises(ConfigError, match="Invalid config file"):
        load_config(tmp_path)
