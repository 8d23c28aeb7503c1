"""Notifications module for subscriptions, newsletters and email digests.

This module provides functionality for:
- Notification subscriptions (frequency + categories, one per user)
- Newsletter subscriptions (one per user)
- Composing and dispatching digests and newsletters by email
"""

import logging
import uuid
from typing import Any, Dict, List, Optional, Union

from asyncpg import PostgresError

from database import get_pool
from database.exceptions import DatabaseError
from database.lib.records import serialize_value, affected_rows
from errors import MarketplaceError, ValidationError, NotFoundError, ConflictError
from errors.validation import require_choice, require_choices
from users import user_exists
from .digest import is_digest_due, build_digest, build_newsletter, next_week_window
from .mailer import Mailer
from .dispatch import NotificationDispatcher

logger = logging.getLogger(__name__)

FREQUENCIES = ('daily', 'weekly', 'monthly')
CATEGORIES = ('auctions', 'bids', 'system_updates')
NOTIFICATION_TYPES = ('new_auctions', 'auction_updates', 'offers', 'other')

class SubscriptionNotFoundError(NotFoundError):
    """Raised when a user has no subscription."""
    pass

class AlreadySubscribedError(ConflictError):
    """Raised when a user is already subscribed to the newsletter."""
    pass

def subscription_to_dict(row) -> Optional[Dict[str, Any]]:
    """Convert a subscriptions row to a dict."""
    if row is None:
        return None
    return {
        'id': serialize_value(row['id']),
        'user': serialize_value(row['user_id']),
        'frequency': row['frequency'],
        'categories': list(row['categories'] or []),
        'last_sent_at': serialize_value(row.get('last_sent_at')),
        'created_at': serialize_value(row['created_at']),
        'updated_at': serialize_value(row['updated_at'])
    }

def newsletter_to_dict(row) -> Optional[Dict[str, Any]]:
    """Convert a newsletter_subscriptions row to a dict."""
    if row is None:
        return None
    return {
        'id': serialize_value(row['id']),
        'user': serialize_value(row['user_id']),
        'subscription_type': row['subscription_type'],
        'notification_types': list(row['notification_types'] or []),
        'created_at': serialize_value(row['created_at']),
        'updated_at': serialize_value(row['updated_at'])
    }

class SubscriptionManager:
    """Manager class for notification subscriptions."""

    def __init__(self, pool=None):
        """Initialize the subscription manager.

        Args:
            pool: Optional database pool. If not provided, will get from database module.
        """
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def subscribe(
        self,
        user_id: Union[str, uuid.UUID],
        frequency: str,
        categories: List[str]
    ) -> Dict[str, Any]:
        """Create or replace a user's notification subscription.

        Raises:
            ValidationError: If frequency or a category is unknown
            NotFoundError: If the user doesn't exist
        """
        frequency = require_choice(frequency, FREQUENCIES, 'frequency')
        categories = require_choices(categories, CATEGORIES, 'category')

        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                if not await user_exists(conn, user_id):
                    raise NotFoundError("User not found")

                row = await conn.fetchrow(
                    '''
                    INSERT INTO subscriptions (user_id, frequency, categories)
                    VALUES ($1, $2, $3)
                    ON CONFLICT (user_id) DO UPDATE SET
                        frequency = EXCLUDED.frequency,
                        categories = EXCLUDED.categories
                    RETURNING *
                    ''',
                    user_id,
                    frequency,
                    categories
                )

            logger.info(f"User {user_id} subscribed to {frequency} notifications: {categories}")
            return subscription_to_dict(row)

        except MarketplaceError:
            raise
        except PostgresError as e:
            logger.error(f"Database error subscribing user {user_id}: {e}")
            raise DatabaseError(f"Failed to subscribe: {e}")

    async def get_subscription(self, user_id: Union[str, uuid.UUID]) -> Dict[str, Any]:
        """Get a user's notification subscription.

        Raises:
            SubscriptionNotFoundError: If the user has none
        """
        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow('SELECT * FROM subscriptions WHERE user_id = $1', user_id)
            if not row:
                raise SubscriptionNotFoundError("Subscription not found")
            return subscription_to_dict(row)

        except MarketplaceError:
            raise
        except PostgresError as e:
            logger.error(f"Database error getting subscription for {user_id}: {e}")
            raise DatabaseError(f"Failed to get subscription: {e}")

    async def unsubscribe(self, user_id: Union[str, uuid.UUID]) -> None:
        """Remove a user's notification subscription.

        Raises:
            SubscriptionNotFoundError: If the user has none
        """
        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                result = await conn.execute('DELETE FROM subscriptions WHERE user_id = $1', user_id)
            if affected_rows(result) == 0:
                raise SubscriptionNotFoundError("Subscription not found")
            logger.info(f"User {user_id} unsubscribed from notifications")

        except MarketplaceError:
            raise
        except PostgresError as e:
            logger.error(f"Database error unsubscribing {user_id}: {e}")
            raise DatabaseError(f"Failed to unsubscribe: {e}")

class NewsletterManager:
    """Manager class for newsletter subscriptions."""

    def __init__(self, pool=None):
        """Initialize the newsletter manager.

        Args:
            pool: Optional database pool. If not provided, will get from database module.
        """
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def subscribe(
        self,
        user_id: Union[str, uuid.UUID],
        subscription_type: str,
        notification_types: List[str]
    ) -> Dict[str, Any]:
        """Subscribe a user to the newsletter.

        Raises:
            ValidationError: If subscription_type or a notification type is unknown
            NotFoundError: If the user doesn't exist
            AlreadySubscribedError: If the user is already subscribed
        """
        subscription_type = require_choice(subscription_type, FREQUENCIES, 'subscription type')
        notification_types = require_choices(notification_types, NOTIFICATION_TYPES, 'notification type')

        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                if not await user_exists(conn, user_id):
                    raise NotFoundError("User not found")

                row = await conn.fetchrow(
                    '''
                    INSERT INTO newsletter_subscriptions (
                        user_id, subscription_type, notification_types
                    ) VALUES ($1, $2, $3)
                    ON CONFLICT (user_id) DO NOTHING
                    RETURNING *
                    ''',
                    user_id,
                    subscription_type,
                    notification_types
                )
            if not row:
                raise AlreadySubscribedError("User is already subscribed")

            logger.info(f"User {user_id} subscribed to the {subscription_type} newsletter")
            return newsletter_to_dict(row)

        except MarketplaceError:
            raise
        except PostgresError as e:
            logger.error(f"Database error subscribing {user_id} to newsletter: {e}")
            raise DatabaseError(f"Failed to subscribe to newsletter: {e}")

    async def update(
        self,
        user_id: Union[str, uuid.UUID],
        subscription_type: Optional[str] = None,
        notification_types: Optional[List[str]] = None
    ) -> Dict[str, Any]:
        """Change a user's newsletter preferences.

        Raises:
            SubscriptionNotFoundError: If the user is not subscribed
        """
        columns = {}
        if subscription_type is not None:
            columns['subscription_type'] = require_choice(
                subscription_type, FREQUENCIES, 'subscription type'
            )
        if notification_types is not None:
            columns['notification_types'] = require_choices(
                notification_types, NOTIFICATION_TYPES, 'notification type'
            )
        if not columns:
            raise ValidationError("No fields to update")

        fields = []
        values = []
        for i, (field, value) in enumerate(columns.items(), start=1):
            fields.append(f"{field} = ${i}")
            values.append(value)
        values.append(user_id)

        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    f'''
                    UPDATE newsletter_subscriptions
                    SET {', '.join(fields)}
                    WHERE user_id = ${len(values)}
                    RETURNING *
                    ''',
                    *values
                )
            if not row:
                raise SubscriptionNotFoundError("Subscription not found")
            return newsletter_to_dict(row)

        except MarketplaceError:
            raise
        except PostgresError as e:
            logger.error(f"Database error updating newsletter for {user_id}: {e}")
            raise DatabaseError(f"Failed to update newsletter subscription: {e}")

    async def unsubscribe(self, user_id: Union[str, uuid.UUID]) -> None:
        """Remove a user's newsletter subscription.

        Raises:
            SubscriptionNotFoundError: If the user is not subscribed
        """
        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                result = await conn.execute(
                    'DELETE FROM newsletter_subscriptions WHERE user_id = $1',
                    user_id
                )
            if affected_rows(result) == 0:
                raise SubscriptionNotFoundError("Subscription not found")
            logger.info(f"User {user_id} unsubscribed from the newsletter")

        except MarketplaceError:
            raise
        except PostgresError as e:
            logger.error(f"Database error unsubscribing {user_id} from newsletter: {e}")
            raise DatabaseError(f"Failed to unsubscribe from newsletter: {e}")

__all__ = [
    'SubscriptionManager',
    'NewsletterManager',
    'NotificationDispatcher',
    'Mailer',
    'SubscriptionNotFoundError',
    'AlreadySubscribedError',
    'FREQUENCIES',
    'CATEGORIES',
    'NOTIFICATION_TYPES',
    'is_digest_due',
    'build_digest',
    'build_newsletter',
    'next_week_window'
]
