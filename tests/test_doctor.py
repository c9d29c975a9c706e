from __future__ import annotations

import pytest

from issueloop.config import Config
from issueloop.doctor import print_doctor_report, run_doctor


def test_missing_tools_fail_the_check(config: Config, monkeypatch: pytest.MonkeyPatch, capsys):
    monkeypatch.setattr("issueloop.doctor.shutil.which", lambda cmd: None)

    results, ok = run_doctor(config)

    assert not ok
    by_name = {item.name: item for item in results}
    assert not by_name["git binary"].ok
    assert not by_name["gh binary"].ok
    assert "agent_cmd" in by_name["agent binary"].message
    assert not by_name["config file"].ok
    assert by_name["state dir writable"].ok
    assert by_name["discord webhook"].ok
    assert "git repository" not in by_name

    print_doctor_report(results)
    assert "[FAIL] git binary" in capsys.readouterr().out
