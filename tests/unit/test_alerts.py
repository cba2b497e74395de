"""
HOMEBASE - Alerting Unit Tests
===============================
"""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from homebase.monitoring.alerts import send_security_alert


def _mock_client(mock_client_cls, post):
    mock_client_cls.return_value.__aenter__.return_value.post = post


class TestSendSecurityAlert:
    """Test webhook delivery and payload formatting."""

    @pytest.mark.asyncio
    async def test_skipped_without_webhook(self):
        assert await send_security_alert("brute_force_detected", "high", "Blocked") is False

    @pytest.mark.asyncio
    async def test_generic_payload(self):
        response = MagicMock(status_code=200)
        post = AsyncMock(return_value=response)

        with patch("httpx.AsyncClient") as mock_client:
            _mock_client(mock_client, post)
            sent = await send_security_alert(
                "brute_force_detected",
                "high",
                "Brute force from 1.2.3.4",
                details={"ip": "1.2.3.4"},
                webhook_url="https://hooks.example.com/alerts",
            )

        assert sent is True
        payload = post.call_args.kwargs["json"]
        assert payload["type"] == "brute_force_detected"
        assert payload["severity"] == "high"
        assert payload["details"] == {"ip": "1.2.3.4"}
        assert payload["service"] == "HOMEBASE"

    @pytest.mark.asyncio
    async def test_slack_format(self):
        post = AsyncMock(return_value=MagicMock(status_code=200))

        with patch("httpx.AsyncClient") as mock_client:
            _mock_client(mock_client, post)
            await send_security_alert(
                "session_hijacking", "critical", "Hijack", webhook_url="https://hooks.slack.com/services/x"
            )

        payload = post.call_args.kwargs["json"]
        assert payload["text"] == "[CRITICAL] session_hijacking"
        assert "blocks" in payload

    @pytest.mark.asyncio
    async def test_discord_format(self):
        post = AsyncMock(return_value=MagicMock(status_code=200))

        with patch("httpx.AsyncClient") as mock_client:
            _mock_client(mock_client, post)
            await send_security_alert(
                "privilege_escalation", "high", "Escalation", webhook_url="https://discord.com/api/webhooks/x"
            )

        embed = post.call_args.kwargs["json"]["embeds"][0]
        assert embed["color"] == 15105570

    @pytest.mark.asyncio
    async def test_timeout_returns_false(self):
        post = AsyncMock(side_effect=httpx.TimeoutException("timed out"))

        with patch("httpx.AsyncClient") as mock_client:
            _mock_client(mock_client, post)
            sent = await send_security_alert("x", "low", "y", webhook_url="https://hooks.example.com/a")

        assert sent is False
