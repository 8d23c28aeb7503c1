"""Digest and newsletter dispatch."""

import logging
import smtplib
from datetime import datetime, timedelta
from typing import Optional

from asyncpg import PostgresError

from database import get_pool
from database.exceptions import DatabaseError
from .digest import is_digest_due, build_digest, build_newsletter, next_week_window
from .mailer import Mailer

logger = logging.getLogger(__name__)

DIGEST_ITEM_LIMIT = 10

class NotificationDispatcher:
    """Sends due digests and newsletters to subscribers.

    A failure to deliver one email is logged and does not stop the run.
    """

    def __init__(self, pool=None, mailer: Optional[Mailer] = None):
        """Initialize the dispatcher.

        Args:
            pool: Optional database pool. If not provided, will get from database module.
            mailer: Mailer used to deliver email, built from settings when omitted
        """
        self.pool = pool
        if mailer is None:
            from config import settings_conf
            mailer = Mailer.from_settings(settings_conf)
        self.mailer = mailer

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def send_digests(self, now: datetime) -> int:
        """Email each subscriber whose frequency is due and who has not had today's digest.

        Args:
            now: Current time

        Returns:
            Number of digests sent
        """
        await self.ensure_pool()
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)

        try:
            async with self.pool.acquire() as conn:
                subscriptions = await conn.fetch(
                    '''
                    SELECT s.id, s.user_id, s.frequency, s.categories, u.email
                    FROM subscriptions s
                    JOIN users u ON u.id = s.user_id
                    WHERE s.last_sent_at IS NULL OR s.last_sent_at < $1
                    ''',
                    start_of_day
                )
                auctions = await conn.fetch(
                    '''
                    SELECT title, start_date FROM auctions
                    WHERE status = 'open' AND start_date > $1
                    ORDER BY start_date
                    LIMIT $2
                    ''',
                    now,
                    DIGEST_ITEM_LIMIT
                )
                bids = await conn.fetch(
                    '''
                    SELECT b.amount, a.title AS auction_title
                    FROM bids b
                    JOIN auctions a ON a.id = b.auction_id
                    WHERE b.bid_date > $1
                    ORDER BY b.bid_date DESC
                    LIMIT $2
                    ''',
                    now - timedelta(days=1),
                    DIGEST_ITEM_LIMIT
                )

            # Mail goes out with no connection checked out of the pool
            delivered = []
            for subscription in subscriptions:
                if not is_digest_due(subscription['frequency'], now):
                    continue

                subject, text, html = build_digest(subscription['categories'], auctions, bids)
                try:
                    await self.mailer.send(subscription['email'], subject, text, html)
                except (smtplib.SMTPException, OSError) as e:
                    logger.error(f"Failed to send digest to {subscription['email']}: {e}")
                    continue
                delivered.append(subscription['id'])

            if delivered:
                async with self.pool.acquire() as conn:
                    await conn.execute(
                        'UPDATE subscriptions SET last_sent_at = $2 WHERE id = ANY($1::uuid[])',
                        delivered,
                        now
                    )

            logger.info(f"Sent {len(delivered)} notification digests")
            return len(delivered)

        except PostgresError as e:
            logger.error(f"Database error sending digests: {e}")
            raise DatabaseError(f"Failed to send digests: {e}")

    async def send_newsletters(self, now: datetime) -> int:
        """Email the newsletter to every subscriber with content for their type.

        Args:
            now: Current time

        Returns:
            Number of newsletters sent
        """
        await self.ensure_pool()
        week_start, week_end = next_week_window(now)

        try:
            async with self.pool.acquire() as conn:
                auctions = await conn.fetch(
                    '''
                    SELECT title, start_date FROM auctions
                    WHERE start_date >= $1 AND start_date < $2
                    ORDER BY start_date
                    ''',
                    week_start,
                    week_end
                )
                subscriptions = await conn.fetch(
                    '''
                    SELECT n.subscription_type, u.email
                    FROM newsletter_subscriptions n
                    JOIN users u ON u.id = n.user_id
                    '''
                )

            sent = 0
            for subscription in subscriptions:
                content = build_newsletter(subscription['subscription_type'], auctions)
                if content is None:
                    continue

                subject, text, html = content
                try:
                    await self.mailer.send(subscription['email'], subject, text, html)
                except (smtplib.SMTPException, OSError) as e:
                    logger.error(f"Failed to send newsletter to {subscription['email']}: {e}")
                    continue
                sent += 1

            logger.info(f"Sent {sent} newsletters")
            return sent

        except PostgresError as e:
            logger.error(f"Database error sending newsletters: {e}")
            raise DatabaseError(f"Failed to send newsletters: {e}")
