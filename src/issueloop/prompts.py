from __future__ import annotations

from .models import CheckRun, Issue


def build_issue_prompt(issue: Issue) -> str:
    body = issue.body.strip() or "(No issue body provided.)"
    return "\n".join(
        [
            f"You are working on issue #{issue.number}.",
            "",
            f"ISSUE TITLE: {issue.title}",
            "",
            "ISSUE BODY:",
            body,
            "",
            "INSTRUCTIONS:",
            "1. First, read CLAUDE.md to understand project context and conventions",
            "2. Analyze the issue requirements and success criteria",
            "3. Implement the solution following the project's coding standards",
            "4. Run any tests if they exist",
            f"5. Commit your changes with a meaningful commit message referencing #{issue.number}",
            "6. When done, output TASK_COMPLETE",
            "",
            "Do not ask for clarification - make reasonable assumptions based on the codebase.",
        ]
    )


def format_failed_checks(checks: list[CheckRun]) -> str:
    if not checks:
        return "(No failing check details available.)"
    return "\n".join(f"{check.name}: {check.link or '(no link)'}" for check in checks)


def build_ci_fix_prompt(pr_number: int, checks: list[CheckRun], attempt: int) -> str:
    return "\n".join(
        [
            f"CI checks have failed for PR #{pr_number}. Please fix the issues.",
            "",
            "FAILED CHECKS:",
            format_failed_checks(checks),
            "",
            "INSTRUCTIONS:",
            "1. Analyze the CI failure logs/URLs above",
            "2. Identify the root cause of each failure",
            "3. Fix the issues in the code",
            "4. Run tests locally if possible to verify the fix",
            f"5. Commit with message 'fix CI failures for PR #{pr_number} (attempt {attempt})'",
            "6. Output CI_FIX_COMPLETE when done",
        ]
    )


def build_review_prompt(pr_number: int, feedback: list[str]) -> str:
    return "\n".join(
        [
            f"You are processing PR review comments for PR #{pr_number}.",
            "",
            "REVIEW COMMENTS:",
            "\n\n".join(feedback),
            "",
            "INSTRUCTIONS:",
            "1. Read CLAUDE.md first",
            "2. Analyze each comment - determine if it's:",
            "   - Valid feedback that should be addressed",
            "   - A question (answer in code comments if appropriate)",
            "   - Invalid/incorrect feedback (ignore but note why)",
            "3. Make necessary code changes for valid feedback",
            "4. Update CLAUDE.md if you learned something new about the project conventions",
            f"5. Commit changes with message 'address PR review comments for #{pr_number}'",
            "6. Output REVIEW_COMPLETE when done",
        ]
    )
