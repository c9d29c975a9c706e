from __future__ import annotations

from issueloop.models import CheckRun
from issueloop.prompts import build_ci_fix_prompt, build_issue_prompt, build_review_prompt

from fakes import make_issue


def test_issue_prompt_carries_issue_and_commit_instruction():
    prompt = build_issue_prompt(make_issue(12, "Crash on start"))

    assert "issue #12" in prompt
    assert "ISSUE TITLE: Crash on start" in prompt
    assert "Body of issue 12" in prompt
    assert "referencing #12" in prompt


def test_ci_fix_prompt_lists_failed_checks():
    checks = [
        CheckRun(name="unit", state="COMPLETED", conclusion="FAILURE", link="https://ci.example/unit"),
        CheckRun(name="e2e", state="COMPLETED", conclusion="TIMED_OUT"),
    ]

    prompt = build_ci_fix_prompt(30, checks, 2)

    assert "unit: https://ci.example/unit" in prompt
    assert "e2e: (no link)" in prompt
    assert "(attempt 2)" in prompt


def test_ci_fix_prompt_without_details():
    assert "(No failing check details available.)" in build_ci_fix_prompt(30, [], 1)


def test_review_prompt_includes_every_comment():
    prompt = build_review_prompt(30, ["Add a test", "Rename foo"])

    assert "Add a test\n\nRename foo" in prompt
    assert "PR #30" in prompt
