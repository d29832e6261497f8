"""Telegram risk alert channel."""
import logging
import ssl

import aiohttp
import certifi

from ..config import TelegramConfig

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"
REQUEST_TIMEOUT = 15


class TelegramNotifier:
    """Deliver risk alerts (alert bot) and scan logs (log bot) via Telegram."""

    def __init__(self, config: TelegramConfig) -> None:
        self.alert_bot_token = config.alert_bot_token
        self.log_bot_token = config.log_bot_token
        self.chat_id = config.chat_id

    async def _send_message(self, text: str, bot_token: str, silent: bool = False) -> bool:
        """Post one message with the given bot; True on HTTP 200."""
        if not bot_token or not self.chat_id:
            logger.warning("Telegram credentials not configured")
            return False

        url = f"{TELEGRAM_API}/bot{bot_token}/sendMessage"
        payload = {
            "chat_id": self.chat_id,
            "text": text,
            "disable_notification": silent,
            "disable_web_page_preview": True,
        }

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        async with aiohttp.ClientSession(connector=connector) as session:
            async with session.post(
                url, json=payload, timeout=aiohttp.ClientTimeout(total=REQUEST_TIMEOUT)
            ) as response:
                if response.status == 200:
                    return True
                logger.error("Telegram sendMessage returned HTTP %s", response.status)
                return False

    async def send_alert(self, message: str, subject: str = "") -> bool:
        """Send a risk alert through the unmuted alert bot."""
        text = f"{subject}\n\n{message}" if subject else message
        sent = await self._send_message(text, self.alert_bot_token, silent=False)
        if sent:
            logger.info("Telegram risk alert sent")
        return sent

    async def send_log(self, message: str, silent: bool = True) -> bool:
        """Send a scan log line through the log bot."""
        return await self._send_message(message, self.log_bot_token, silent=silent)
