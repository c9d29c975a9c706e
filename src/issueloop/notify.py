from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Protocol

import httpx


class Severity(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    PENDING = "pending"


# Discord embed colors (decimal RGB).
SEVERITY_COLORS = {
    Severity.SUCCESS: 3066993,
    Severity.ERROR: 15158332,
    Severity.WARNING: 15105570,
    Severity.INFO: 3447003,
    Severity.PENDING: 9807270,
}


@dataclass(frozen=True, slots=True)
class Field:
    name: str
    value: str
    inline: bool = True


@dataclass(frozen=True, slots=True)
class Notification:
    title: str
    description: str
    severity: Severity = Severity.INFO
    url: str | None = None
    fields: tuple[Field, ...] = field(default_factory=tuple)


class Notifier(Protocol):
    def notify(self, event: Notification) -> None: ...

    def close(self) -> None: ...


class NullNotifier:
    def __init__(self) -> None:
        self.log = logging.getLogger(__name__)

    def notify(self, event: Notification) -> None:
        self.log.debug("webhook not configured, skipping notification title=%s", event.title)

    def close(self) -> None:
        pass


class DiscordNotifier:
    """Posts embeds to a Discord webhook. Delivery failures never propagate."""

    _TIMEOUT_SECONDS = 10.0

    def __init__(self, webhook_url: str, source: str, client: httpx.Client | None = None):
        self.webhook_url = webhook_url
        self.source = source
        self._client = client or httpx.Client(timeout=self._TIMEOUT_SECONDS)
        self.log = logging.getLogger(__name__)

    def build_payload(self, event: Notification) -> dict[str, object]:
        embed: dict[str, object] = {
            "title": event.title,
            "description": event.description,
            "color": SEVERITY_COLORS[event.severity],
            "fields": [
                {"name": item.name, "value": item.value, "inline": item.inline} for item in event.fields
            ],
            "footer": {"text": f"{self.source} • issueloop"},
            "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        }
        if event.url:
            embed["url"] = event.url
        return {"embeds": [embed]}

    def notify(self, event: Notification) -> None:
        try:
            response = self._client.post(self.webhook_url, json=self.build_payload(event))
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            self.log.warning("notification delivery failed title=%s error=%s", event.title, exc)

    def close(self) -> None:
        self._client.close()


def build_notifier(webhook_url: str | None, source: str) -> Notifier:
    if not webhook_url:
        return NullNotifier()
    return DiscordNotifier(webhook_url, source)


def workflow_started(max_iterations: int, auto_merge: bool) -> Notification:
    return Notification(
        title="🤖 Autonomous Workflow Started",
        description="Beginning automated issue processing",
        fields=(
            Field("Max Iterations", str(max_iterations)),
            Field("Auto Merge", str(auto_merge).lower()),
        ),
    )


def workflow_finished(completed: int, failed: int) -> Notification:
    return Notification(
        title="🏁 Autonomous Workflow Complete",
        description="Finished processing issues",
        severity=Severity.SUCCESS,
        fields=(Field("Completed", str(completed)), Field("Failed", str(failed))),
    )


def issue_started(issue_number: int, title: str, url: str) -> Notification:
    return Notification(title=f"📋 Processing Issue #{issue_number}", description=title, url=url or None)


def pr_created(pr_number: int, issue_number: int, url: str) -> Notification:
    return Notification(
        title=f"🔀 PR #{pr_number} Created",
        description=f"Automated PR for issue #{issue_number}",
        severity=Severity.PENDING,
        url=url or None,
        fields=(Field("Status", "Awaiting CI"),),
    )


def ci_status(pr_number: int, status: str, url: str) -> Notification:
    severity, emoji = {
        "passed": (Severity.SUCCESS, "✅"),
        "failed": (Severity.ERROR, "❌"),
        "pending": (Severity.PENDING, "🔄"),
    }.get(status, (Severity.PENDING, "⏳"))
    return Notification(
        title=f"{emoji} CI Status: {status}",
        description=f"PR #{pr_number} CI checks {status}",
        severity=severity,
        url=url or None,
    )


def pr_merged(pr_number: int, issue_number: int, url: str) -> Notification:
    return Notification(
        title=f"🎉 PR #{pr_number} Merged",
        description=f"Issue #{issue_number} has been resolved",
        severity=Severity.SUCCESS,
        url=url or None,
    )


def pr_ready(pr_number: int, issue_number: int, url: str) -> Notification:
    return Notification(
        title=f"✅ PR #{pr_number} Ready",
        description=f"Issue #{issue_number} is ready for manual merge",
        severity=Severity.SUCCESS,
        url=url or None,
    )


def error(title: str, description: str, issue_number: int | None = None) -> Notification:
    fields = (Field("Issue", f"#{issue_number}"),) if issue_number is not None else ()
    return Notification(title=f"❌ {title}", description=description, severity=Severity.ERROR, fields=fields)


def workflow_stopped() -> Notification:
    return Notification(
        title="⏹️ Workflow Stopped",
        description="Stop file detected, halting gracefully",
        severity=Severity.WARNING,
    )


def stop_requested() -> Notification:
    return Notification(
        title="⏹️ Stop Requested",
        description="Graceful shutdown initiated - will halt after current step",
        severity=Severity.WARNING,
    )


def stop_cancelled() -> Notification:
    return Notification(
        title="▶️ Stop Cancelled",
        description="Workflow will continue processing",
        severity=Severity.SUCCESS,
    )


def force_stopped() -> Notification:
    return Notification(
        title="🛑 Force Stopped",
        description="Workflow forcefully terminated",
        severity=Severity.ERROR,
    )
