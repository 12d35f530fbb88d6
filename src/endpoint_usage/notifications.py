"""Report delivery channels and the fan-out dispatcher.

Rendering is pure; channels are thin I/O shims. A channel signals failure by
raising DeliveryError, and the dispatcher turns each outcome into a
DeliveryResult so one failing channel never affects another.
"""

from __future__ import annotations

import asyncio
import html
import logging
import smtplib
import ssl
from email.message import EmailMessage
from pathlib import Path
from typing import Any, Protocol

import httpx

from endpoint_usage.clock import to_epoch_ms
from endpoint_usage.config import (
    EmailSettings,
    HtmlReportSettings,
    ReporterSettings,
    SlackSettings,
    WebhookSettings,
)
from endpoint_usage.errors import DeliveryError
from endpoint_usage.models import DeliveryResult, UsageReport

logger = logging.getLogger(__name__)

REPORT_TYPE = "endpoint_usage_report"


def webhook_payload(report: UsageReport) -> dict[str, Any]:
    """JSON body posted to generic webhooks."""
    return {
        "type": REPORT_TYPE,
        "report": {
            "summary": report.summary.to_payload(),
            "unusedEndpoints": [e.to_payload() for e in report.top_unused_endpoints],
            "recommendations": list(report.recommendations),
        },
    }


def report_color(report: UsageReport) -> str:
    """Severity color for chat attachments."""
    summary = report.summary
    if (
        summary.unused_percentage > 30
        or summary.slow_endpoints > 5
        or summary.high_error_rate_endpoints > 3
    ):
        return "danger"
    if (
        summary.unused_percentage > 15
        or summary.slow_endpoints > 2
        or summary.high_error_rate_endpoints > 1
    ):
        return "warning"
    return "good"


def slack_message(report: UsageReport, channel: str | None = None) -> dict[str, Any]:
    """Slack-compatible incoming webhook message."""
    summary = report.summary
    top_unused = "\n".join(
        f"• {e.method} {e.path} ({e.days_since_last_use}d)"
        for e in report.top_unused_endpoints[:3]
    )
    issues = [
        f"🐌 {e.method} {e.path} ({round(e.average_response_time)}ms)"
        for e in report.performance_issues.slow_endpoints[:2]
    ] + [
        f"❌ {e.method} {e.path} ({round(e.error_rate * 100)}% errors)"
        for e in report.performance_issues.high_error_rate_endpoints[:2]
    ]

    message: dict[str, Any] = {
        "text": "🔍 Endpoint Usage & Performance Report",
        "attachments": [
            {
                "color": report_color(report),
                "fields": [
                    {
                        "title": "Usage Summary",
                        "value": (
                            f"Total: {summary.total_routes}\n"
                            f"Active: {summary.active_routes}\n"
                            f"Unused: {summary.unused_routes} "
                            f"({summary.unused_percentage}%)"
                        ),
                        "short": True,
                    },
                    {
                        "title": "Performance Summary",
                        "value": (
                            f"Avg Response: {round(summary.average_response_time)}ms\n"
                            f"Slow Endpoints: {summary.slow_endpoints}\n"
                            f"High Error Rate: {summary.high_error_rate_endpoints}"
                        ),
                        "short": True,
                    },
                    {
                        "title": "Top Unused Endpoints",
                        "value": top_unused or "None",
                        "short": False,
                    },
                    {
                        "title": "Performance Issues",
                        "value": "\n".join(issues) or "No issues detected",
                        "short": False,
                    },
                ],
                "footer": "Endpoint Usage Tracker",
                "ts": to_epoch_ms(report.generated_at) // 1000,
            }
        ],
    }
    if channel:
        message["channel"] = channel
    return message


_HTML_STYLE = """
        body { font-family: Arial, sans-serif; margin: 20px; }
        .summary { background: #f5f5f5; padding: 15px; border-radius: 5px; margin-bottom: 20px; }
        .unused-endpoint { background: #fff2f2; padding: 10px; margin: 5px 0; border-left: 4px solid #ff6b6b; }
        .recommendations { background: #f0f8ff; padding: 15px; border-radius: 5px; }
"""


def render_html(report: UsageReport) -> str:
    """Static HTML document: summary, unused endpoints, recommendations."""
    esc = html.escape
    summary = report.summary
    unused_rows = "".join(
        f"""
    <div class="unused-endpoint">
        <strong>{esc(e.method)} {esc(e.path)}</strong><br>
        Last used: {e.days_since_last_use} days ago<br>
        Total requests: {e.total_requests}
    </div>"""
        for e in report.unused_endpoints
    )
    recommendations = "".join(f"<li>{esc(r)}</li>" for r in report.recommendations)
    generated = report.generated_at.strftime("%Y-%m-%d %H:%M:%S UTC")

    return f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>Endpoint Usage Report</title>
    <style>{_HTML_STYLE}    </style>
</head>
<body>
    <h1>🔍 Endpoint Usage Report</h1>
    <p><strong>Generated At:</strong> {generated}</p>

    <div class="summary">
        <h2>📊 Summary</h2>
        <p><strong>Total Endpoints:</strong> {summary.total_routes}</p>
        <p><strong>Active Endpoints:</strong> {summary.active_routes}</p>
        <p><strong>Unused Endpoints:</strong> {summary.unused_routes} ({summary.unused_percentage}%)</p>
    </div>

    <h2>🚫 Unused Endpoints</h2>{unused_rows}

    <div class="recommendations">
        <h2>💡 Recommendations</h2>
        <ul>{recommendations}</ul>
    </div>
</body>
</html>
"""


class NotificationChannel(Protocol):
    name: str

    async def send(self, report: UsageReport) -> None: ...


async def _post_json(
    channel: str,
    url: str,
    payload: dict[str, Any],
    *,
    headers: dict[str, str],
    timeout: float,
) -> None:
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.post(url, json=payload, headers=headers)
    except httpx.HTTPError as exc:
        raise DeliveryError(channel, str(exc) or type(exc).__name__) from exc
    if not response.is_success:
        raise DeliveryError(channel, f"HTTP {response.status_code}")


class WebhookChannel:
    name = "webhook"

    def __init__(self, settings: WebhookSettings, *, timeout: float = 5.0) -> None:
        self._settings = settings
        self._timeout = timeout

    async def send(self, report: UsageReport) -> None:
        headers = {"Content-Type": "application/json", **self._settings.headers}
        await _post_json(
            self.name,
            self._settings.url,
            webhook_payload(report),
            headers=headers,
            timeout=self._timeout,
        )


class SlackChannel:
    name = "slack"

    def __init__(self, settings: SlackSettings, *, timeout: float = 5.0) -> None:
        self._settings = settings
        self._timeout = timeout

    async def send(self, report: UsageReport) -> None:
        await _post_json(
            self.name,
            self._settings.webhook_url,
            slack_message(report, self._settings.channel),
            headers={"Content-Type": "application/json"},
            timeout=self._timeout,
        )


class EmailChannel:
    name = "email"

    def __init__(self, settings: EmailSettings, *, timeout: float = 5.0) -> None:
        self._settings = settings
        self._timeout = timeout

    def build_message(self, report: UsageReport) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = self._settings.subject
        message["From"] = self._settings.sender
        message["To"] = ", ".join(self._settings.recipients)
        message.set_content("\n".join(report.recommendations) or "Endpoint usage report")
        message.add_alternative(render_html(report), subtype="html")
        return message

    def _deliver(self, message: EmailMessage) -> None:
        smtp = self._settings.smtp
        if smtp.secure:
            client: smtplib.SMTP = smtplib.SMTP_SSL(
                smtp.host,
                smtp.port,
                timeout=self._timeout,
                context=ssl.create_default_context(),
            )
        else:
            client = smtplib.SMTP(smtp.host, smtp.port, timeout=self._timeout)
        with client:
            if not smtp.secure and client.has_extn("starttls"):
                client.starttls(context=ssl.create_default_context())
            if smtp.username:
                client.login(smtp.username, smtp.password or "")
            client.send_message(message)

    async def send(self, report: UsageReport) -> None:
        if not self._settings.recipients:
            raise DeliveryError(self.name, "no recipients configured")
        message = self.build_message(report)
        try:
            await asyncio.to_thread(self._deliver, message)
        except (smtplib.SMTPException, OSError) as exc:
            raise DeliveryError(self.name, str(exc) or type(exc).__name__) from exc


class HtmlReportChannel:
    """Writes the rendered report to disk instead of sending it."""

    name = "html_report"

    def __init__(self, settings: HtmlReportSettings) -> None:
        self._settings = settings

    def output_path(self, report: UsageReport) -> Path:
        if self._settings.output_path:
            return Path(self._settings.output_path)
        return Path(f"endpoint-report-{to_epoch_ms(report.generated_at)}.html")

    async def send(self, report: UsageReport) -> None:
        path = self.output_path(report)
        try:
            await asyncio.to_thread(self._write, path, render_html(report))
        except OSError as exc:
            raise DeliveryError(self.name, str(exc)) from exc
        logger.info("HTML report saved to %s", path)

    @staticmethod
    def _write(path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")


def build_channels(settings: ReporterSettings) -> list[NotificationChannel]:
    """Instantiate every configured channel, in a fixed order."""
    notifications = settings.notifications
    timeout = max(0.1, notifications.timeout_seconds)
    channels: list[NotificationChannel] = []
    if notifications.webhook is not None:
        channels.append(WebhookChannel(notifications.webhook, timeout=timeout))
    if notifications.slack is not None:
        channels.append(SlackChannel(notifications.slack, timeout=timeout))
    if notifications.email is not None:
        channels.append(EmailChannel(notifications.email, timeout=timeout))
    if settings.html_report.enabled:
        channels.append(HtmlReportChannel(settings.html_report))
    return channels


class NotificationDispatcher:
    """Delivers one report to every channel concurrently."""

    def __init__(self, channels: list[NotificationChannel]) -> None:
        self._channels = list(channels)

    @classmethod
    def from_settings(cls, settings: ReporterSettings) -> NotificationDispatcher:
        return cls(build_channels(settings))

    @property
    def channels(self) -> list[NotificationChannel]:
        return list(self._channels)

    async def dispatch(self, report: UsageReport) -> list[DeliveryResult]:
        if not self._channels:
            return []
        return list(
            await asyncio.gather(*(self._deliver(ch, report) for ch in self._channels))
        )

    async def _deliver(
        self, channel: NotificationChannel, report: UsageReport
    ) -> DeliveryResult:
        try:
            await channel.send(report)
        except DeliveryError as exc:
            logger.warning("Notification via %s failed: %s", channel.name, exc.reason)
            return DeliveryResult(channel=channel.name, delivered=False, error=exc.reason)
        except Exception as exc:
            logger.exception("Notification via %s raised unexpectedly", channel.name)
            return DeliveryResult(channel=channel.name, delivered=False, error=str(exc))
        return DeliveryResult(channel=channel.name, delivered=True)
