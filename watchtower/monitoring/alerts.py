"""
WATCHTOWER - Alerting System
============================
Webhook-based alerting for failed sweeps.
"""

from datetime import datetime, timezone
from typing import Optional

import httpx
import structlog

from watchtower.config import get_settings

logger = structlog.get_logger(__name__)


async def send_sweep_failure_alert(
    error_message: str,
    checked: int = 0,
    webhook_url: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> bool:
    """
    Send an alert when a whole breach monitoring sweep fails.

    Args:
        error_message: Error that aborted the sweep
        checked: Subjects checked before the failure
        webhook_url: Override for the configured webhook

    Returns:
        True if alert was sent successfully
    """
    settings = get_settings()
    url = webhook_url or settings.alert_webhook_url
    if not url:
        logger.debug("alert_skipped_no_webhook")
        return False

    payload = {
        "type": "sweep_failure",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "error_message": error_message,
        "checked": checked,
        "environment": settings.environment,
        "service": "watchtower",
    }

    # Format for Slack if URL looks like Slack webhook
    if "slack.com" in url:
        payload = _format_slack_message(error_message, checked, settings.environment)
    # Format for Discord if URL looks like Discord webhook
    elif "discord.com" in url:
        payload = _format_discord_message(error_message, checked, settings.environment)

    try:
        async with httpx.AsyncClient(timeout=10, transport=transport) as client:
            response = await client.post(
                url,
                json=payload,
                headers={"Content-Type": "application/json"}
            )
            response.raise_for_status()

        logger.info("alert_sent", webhook_status=response.status_code)
        return True

    except httpx.TimeoutException:
        logger.warning("alert_timeout")
        return False
    except httpx.HTTPStatusError as e:
        logger.error(
            "alert_failed",
            status_code=e.response.status_code,
            error=str(e)
        )
        return False
    except httpx.HTTPError as e:
        logger.error("alert_error", error=str(e))
        return False


def _format_slack_message(error_message: str, checked: int, environment: str) -> dict:
    """Format alert as Slack message."""
    return {
        "text": "Watchtower breach sweep failed",
        "blocks": [
            {
                "type": "header",
                "text": {
                    "type": "plain_text",
                    "text": "Breach Sweep Failed",
                }
            },
            {
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": f"*Error:*\n```{error_message[:500]}```\nSubjects checked: {checked}"
                }
            },
            {
                "type": "context",
                "elements": [
                    {
                        "type": "mrkdwn",
                        "text": f"Environment: {environment} | {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')}"
                    }
                ]
            }
        ]
    }


def _format_discord_message(error_message: str, checked: int, environment: str) -> dict:
    """Format alert as Discord message."""
    return {
        "embeds": [
            {
                "title": "Watchtower breach sweep failed",
                "color": 15158332,  # Red
                "fields": [
                    {
                        "name": "Error",
                        "value": f"```{error_message[:500]}```",
                        "inline": False
                    },
                    {
                        "name": "Subjects checked",
                        "value": str(checked),
                        "inline": True
                    },
                ],
                "footer": {
                    "text": f"Environment: {environment}"
                },
                "timestamp": datetime.now(timezone.utc).isoformat()
            }
        ]
    }
