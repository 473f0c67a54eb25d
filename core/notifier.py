"""Success and failure notifications.

Notifications always go to the log.  When ``alert_webhook_url`` is
configured they are also posted as a Slack-style payload (which Discord
and Teams incoming webhooks accept as well).  Identical notifications
inside the cooldown window are dropped.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

import aiohttp

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Challenge Solver"
SUCCESS_MESSAGE = "Captcha Solved Successfully!"


class Notifier:
    """Deduplicating notification sink.

    Attributes:
        enabled: When ``False`` every call is a no-op returning ``False``.
        webhook_url: Optional incoming-webhook URL.
        cooldown_seconds: Window in which a repeated notification is dropped.
    """

    ALERT_COOLDOWN_SECONDS = 60

    def __init__(
        self,
        enabled: bool = True,
        webhook_url: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
        cooldown_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.enabled = enabled
        self.webhook_url = webhook_url
        self.session = session
        self.cooldown_seconds = (
            self.ALERT_COOLDOWN_SECONDS if cooldown_seconds is None else cooldown_seconds
        )
        self._clock = clock
        self.alert_cooldowns: Dict[str, float] = {}

    async def _get_session(self) -> aiohttp.ClientSession:
        if not self.session or self.session.closed:
            self.session = aiohttp.ClientSession()
        return self.session

    async def notify(self, title: str, message: str, level: int = logging.INFO) -> bool:
        """Emit one notification.

        Returns:
            ``True`` if it was emitted, ``False`` if disabled or a
            duplicate inside the cooldown window.
        """
        if not self.enabled:
            return False

        alert_key = f"{title}:{message}"
        now = self._clock()
        last = self.alert_cooldowns.get(alert_key)
        if last is not None and now - last < self.cooldown_seconds:
            logger.debug("Suppressed duplicate notification: %s", alert_key)
            return False
        self.alert_cooldowns[alert_key] = now

        logger.log(level, "[%s] %s", title, message)
        if self.webhook_url:
            await self._send_webhook(title, message)
        return True

    async def _send_webhook(self, title: str, message: str) -> None:
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
        payload = {
            "text": f"*{title}*",
            "attachments": [{
                "text": message,
                "footer": timestamp,
            }],
        }
        try:
            session = await self._get_session()
            async with session.post(
                self.webhook_url,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=10),
            ) as resp:
                if resp.status == 200:
                    logger.info("Sent webhook notification")
                else:
                    logger.warning("Webhook returned status %s", resp.status)
        except Exception as e:
            logger.error("Failed to send webhook notification: %s", e)

    async def close(self) -> None:
        if self.session and not self.session.closed:
            await self.session.close()
            self.session = None
