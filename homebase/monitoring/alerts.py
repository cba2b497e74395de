"""
HOMEBASE - Alerting System
===========================
Webhook-based alerting for security incidents and threshold breaches.
"""

from datetime import datetime, timezone
from typing import Optional

import httpx
import structlog

from homebase.config import settings

logger = structlog.get_logger(__name__)

SEVERITY_COLORS = {
    "critical": 15158332,  # Red
    "high": 15105570,  # Orange
    "medium": 15844367,  # Yellow
    "low": 3447003,  # Blue
}


async def send_security_alert(
    alert_type: str,
    severity: str,
    message: str,
    details: Optional[dict] = None,
    webhook_url: Optional[str] = None,
) -> bool:
    """
    Post a security alert to the configured webhook.

    Args:
        alert_type: Incident or alert type (e.g. "brute_force_detected")
        severity: low / medium / high / critical
        message: Human readable summary
        details: Structured context, included verbatim in the generic payload
        webhook_url: Override for the configured ALERT_WEBHOOK_URL

    Returns:
        True if alert was sent successfully
    """
    url = webhook_url or settings.alert_webhook_url
    if not url:
        logger.debug("alert_skipped_no_webhook", alert_type=alert_type)
        return False

    payload = {
        "type": alert_type,
        "severity": severity,
        "message": message,
        "details": details or {},
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": settings.environment,
        "service": "HOMEBASE",
    }

    if "slack.com" in url:
        payload = _format_slack_message(alert_type, severity, message)
    elif "discord.com" in url:
        payload = _format_discord_message(alert_type, severity, message)

    try:
        async with httpx.AsyncClient(timeout=10) as client:
            response = await client.post(
                url,
                json=payload,
                headers={"Content-Type": "application/json"}
            )
            response.raise_for_status()

        logger.info(
            "alert_sent",
            alert_type=alert_type,
            severity=severity,
            webhook_status=response.status_code
        )
        return True

    except httpx.TimeoutException:
        logger.warning("alert_timeout", alert_type=alert_type)
        return False
    except httpx.HTTPStatusError as e:
        logger.error(
            "alert_failed",
            alert_type=alert_type,
            status_code=e.response.status_code,
            error=str(e)
        )
        return False
    except Exception as e:
        logger.error("alert_error", alert_type=alert_type, error=str(e))
        return False


def _format_slack_message(alert_type: str, severity: str, message: str) -> dict:
    """Format alert as Slack message."""
    return {
        "text": f"[{severity.upper()}] {alert_type}",
        "blocks": [
            {
                "type": "header",
                "text": {
                    "type": "plain_text",
                    "text": f"Security alert: {alert_type}",
                }
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Severity:*\n{severity.upper()}"},
                    {"type": "mrkdwn", "text": f"*Type:*\n`{alert_type}`"},
                ]
            },
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": message[:500]}
            },
            {
                "type": "context",
                "elements": [
                    {
                        "type": "mrkdwn",
                        "text": f"Environment: {settings.environment} | {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')}"
                    }
                ]
            }
        ]
    }


def _format_discord_message(alert_type: str, severity: str, message: str) -> dict:
    """Format alert as Discord message."""
    return {
        "embeds": [
            {
                "title": f"Security alert: {alert_type}",
                "color": SEVERITY_COLORS.get(severity.lower(), SEVERITY_COLORS["low"]),
                "description": message[:500],
                "fields": [
                    {"name": "Severity", "value": severity.upper(), "inline": True},
                ],
                "footer": {
                    "text": f"Environment: {settings.environment}"
                },
                "timestamp": datetime.now(timezone.utc).isoformat()
            }
        ]
    }
