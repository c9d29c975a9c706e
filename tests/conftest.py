from __future__ import annotations

import dataclasses
from pathlib import Path

import pytest

from issueloop.config import Config

from fakes import FakeClock, RecordingNotifier, make_config


@pytest.fixture(autouse=True)
def _clean_config_env(monkeypatch: pytest.MonkeyPatch) -> None:
    # Config keys are read from the environment, bare or ISSUELOOP_-prefixed.
    for item in dataclasses.fields(Config):
        key = item.name.upper()
        monkeypatch.delenv(key, raising=False)
        monkeypatch.delenv(f"ISSUELOOP_{key}", raising=False)


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return make_config(tmp_path)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()
