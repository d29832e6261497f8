"""Unit tests for notification channels."""
from __future__ import annotations

import smtplib
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from credit_engine.config import EmailConfig, TelegramConfig
from credit_engine.notifications.email import EmailNotifier
from credit_engine.notifications.telegram import TelegramNotifier


def _mock_session(status: int) -> AsyncMock:
    mock_response = AsyncMock()
    mock_response.status = status
    mock_response.__aenter__ = AsyncMock(return_value=mock_response)
    mock_response.__aexit__ = AsyncMock(return_value=None)

    mock_session = AsyncMock()
    mock_session.post = MagicMock(return_value=mock_response)
    mock_session.__aenter__ = AsyncMock(return_value=mock_session)
    mock_session.__aexit__ = AsyncMock(return_value=None)
    return mock_session


# ---------------------------------------------------------------------------
# TelegramNotifier
# ---------------------------------------------------------------------------


@pytest.fixture()
def telegram_notifier() -> TelegramNotifier:
    return TelegramNotifier(
        TelegramConfig(
            enabled=True,
            alert_bot_token="alert-tok",
            log_bot_token="log-tok",
            chat_id="12345",
        )
    )


class TestTelegramNotifier:
    @pytest.mark.asyncio
    async def test_send_alert_success(self, telegram_notifier: TelegramNotifier) -> None:
        session = _mock_session(200)
        with patch("credit_engine.notifications.telegram.aiohttp.ClientSession", return_value=session):
            with patch("credit_engine.notifications.telegram.aiohttp.TCPConnector"):
                result = await telegram_notifier.send_alert("2 breaches", subject="WARNING")

        assert result is True
        url = session.post.call_args.args[0]
        payload = session.post.call_args.kwargs["json"]
        assert "botalert-tok" in url
        assert payload["text"] == "WARNING\n\n2 breaches"
        assert payload["chat_id"] == "12345"
        assert payload["disable_notification"] is False

    @pytest.mark.asyncio
    async def test_send_alert_failure(self, telegram_notifier: TelegramNotifier) -> None:
        session = _mock_session(403)
        with patch("credit_engine.notifications.telegram.aiohttp.ClientSession", return_value=session):
            with patch("credit_engine.notifications.telegram.aiohttp.TCPConnector"):
                result = await telegram_notifier.send_alert("test alert")

        assert result is False

    @pytest.mark.asyncio
    async def test_send_log_uses_log_bot(self, telegram_notifier: TelegramNotifier) -> None:
        session = _mock_session(200)
        with patch("credit_engine.notifications.telegram.aiohttp.ClientSession", return_value=session):
            with patch("credit_engine.notifications.telegram.aiohttp.TCPConnector"):
                result = await telegram_notifier.send_log("scan done")

        assert result is True
        assert "botlog-tok" in session.post.call_args.args[0]
        assert session.post.call_args.kwargs["json"]["disable_notification"] is True

    @pytest.mark.asyncio
    async def test_unconfigured_returns_false(self) -> None:
        notifier = TelegramNotifier(TelegramConfig(enabled=True))
        assert await notifier.send_alert("test") is False
        assert await notifier.send_log("test") is False


# ---------------------------------------------------------------------------
# EmailNotifier
# ---------------------------------------------------------------------------


@pytest.fixture()
def email_notifier() -> EmailNotifier:
    return EmailNotifier(
        EmailConfig(
            enabled=True,
            alert_email="risk@example.com",
            smtp_server="smtp.example.com",
            smtp_port=587,
            sender_email="sender@example.com",
            sender_password="password123",
        )
    )


class TestEmailNotifier:
    @pytest.mark.asyncio
    async def test_send_alert_success(self, email_notifier: EmailNotifier) -> None:
        mock_smtp = MagicMock()
        mock_smtp.__enter__.return_value = mock_smtp
        with patch("credit_engine.notifications.email.smtplib.SMTP", return_value=mock_smtp):
            result = await email_notifier.send_alert("body", subject="CRITICAL")

        assert result is True
        mock_smtp.starttls.assert_called_once()
        mock_smtp.login.assert_called_once_with("sender@example.com", "password123")
        msg = mock_smtp.send_message.call_args.args[0]
        assert msg["Subject"] == "CRITICAL"
        assert msg["To"] == "risk@example.com"

    @pytest.mark.asyncio
    async def test_default_subject(self, email_notifier: EmailNotifier) -> None:
        mock_smtp = MagicMock()
        mock_smtp.__enter__.return_value = mock_smtp
        with patch("credit_engine.notifications.email.smtplib.SMTP", return_value=mock_smtp):
            await email_notifier.send_alert("body")

        assert mock_smtp.send_message.call_args.args[0]["Subject"] == "Credit engine risk alert"

    @pytest.mark.asyncio
    async def test_connection_error(self, email_notifier: EmailNotifier) -> None:
        with patch(
            "credit_engine.notifications.email.smtplib.SMTP",
            side_effect=ConnectionError("SMTP down"),
        ):
            result = await email_notifier.send_alert("body", subject="Test")
        assert result is False

    @pytest.mark.asyncio
    async def test_auth_error(self, email_notifier: EmailNotifier) -> None:
        mock_smtp = MagicMock()
        mock_smtp.__enter__.return_value = mock_smtp
        mock_smtp.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad credentials")
        with patch("credit_engine.notifications.email.smtplib.SMTP", return_value=mock_smtp):
            result = await email_notifier.send_alert("body")
        assert result is False

    @pytest.mark.asyncio
    async def test_no_alert_email_returns_false(self) -> None:
        assert await EmailNotifier(EmailConfig(enabled=True)).send_alert("test") is False

    @pytest.mark.asyncio
    async def test_no_credentials_returns_false(self) -> None:
        notifier = EmailNotifier(EmailConfig(enabled=True, alert_email="risk@example.com"))
        assert await notifier.send_alert("test") is False

    @pytest.mark.asyncio
    async def test_send_log_is_noop(self, email_notifier: EmailNotifier) -> None:
        assert await email_notifier.send_log("test") is False
