"""Worker that emails subscription digests and the weekly newsletter."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from notifications import NotificationDispatcher, is_digest_due

# Configure logging
logger = logging.getLogger(__name__)

class DigestSender:
    """Periodically dispatches due digests, and newsletters on Sundays."""

    def __init__(self, dispatcher: Optional[NotificationDispatcher] = None, interval: int = 86400):
        """Initialize the sender.

        Args:
            dispatcher: Dispatcher that composes and sends the email
            interval: Seconds between runs
        """
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.interval = interval
        self._stop_requested = False
        self._last_newsletter_day = None

    def stop(self):
        """Signal the sender to stop."""
        self._stop_requested = True

    async def run_once(self, now: Optional[datetime] = None) -> int:
        """Send everything due at now.

        Returns:
            Number of emails sent
        """
        now = now or datetime.now(timezone.utc)
        sent = await self.dispatcher.send_digests(now)

        if is_digest_due('weekly', now) and self._last_newsletter_day != now.date():
            sent += await self.dispatcher.send_newsletters(now)
            self._last_newsletter_day = now.date()

        return sent

    async def run(self):
        """Main dispatch loop."""
        logger.info(f"Starting digest sender (every {self.interval}s)")

        while not self._stop_requested:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in digest sender: {e}")
            await asyncio.sleep(self.interval)

        logger.info("Digest sender stopped")
