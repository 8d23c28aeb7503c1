"""Bids module for placing and maintaining auction bids.

Every bid write takes the auction row lock first (see auctions.lifecycle), so
the compare against the current highest bid and the repointing of
auctions.highest_bid_id happen as one step per auction.
"""

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from asyncpg import PostgresError

from auctions import AuctionNotFoundError, BIDS_WITH_BIDDER_SELECT, bid_with_bidder_to_dict
from auctions.lifecycle import (
    lock_auction, repoint_highest_bid, select_highest_bid, settle, utcnow
)
from database import get_pool
from database.exceptions import DatabaseError
from database.lib.records import serialize_value
from errors import MarketplaceError, ForbiddenError, NotFoundError, ConflictError
from errors.validation import require_amount
from users import ADMIN_ROLES

logger = logging.getLogger(__name__)

class BidNotFoundError(NotFoundError):
    """Raised when a bid is not found."""
    pass

class BidRejectedError(ConflictError):
    """Raised when a bid cannot be accepted."""
    pass

class AuctionNotOpenError(BidRejectedError):
    """Raised when bidding on an auction that is not open."""
    pass

class BidTooLowError(BidRejectedError):
    """Raised when a bid does not beat the current highest bid."""
    pass

def evaluate_bid(
    auction: Dict[str, Any],
    amount: Decimal,
    now: Optional[datetime] = None
) -> None:
    """Check a bid amount against a locked auction.

    A bid is accepted only on an open auction that has not passed its end
    date, and only when it is strictly greater than the current highest bid.
    Equal amounts lose to the earlier bid.

    Args:
        auction: Row from lock_auction()
        amount: Proposed bid amount
        now: Current time

    Raises:
        AuctionNotOpenError: If the auction is closed, cancelled or expired
        BidTooLowError: If amount <= the current highest bid amount
    """
    now = now or utcnow()
    if auction['status'] != 'open' or now > auction['end_date']:
        raise AuctionNotOpenError("Auction is not open for bidding")

    highest = auction['highest_bid_amount']
    if highest is not None and amount <= highest:
        raise BidTooLowError("Bid amount must be higher than the current highest bid")

def bid_to_dict(row) -> Optional[Dict[str, Any]]:
    """Convert a bids row to a dict."""
    if row is None:
        return None
    return {
        'id': serialize_value(row['id']),
        'amount': serialize_value(row['amount']),
        'auction': serialize_value(row['auction_id']),
        'bidder': serialize_value(row['bidder_id']),
        'bid_date': serialize_value(row['bid_date']),
        'status': row['status']
    }

def _check_owner(bid, actor: Dict[str, Any]) -> None:
    if actor['role'] not in ADMIN_ROLES and str(bid['bidder_id']) != str(actor['user_id']):
        raise ForbiddenError("You can only change your own bids")

class BidManager:
    """Manager class for handling bid operations."""

    def __init__(self, pool=None):
        """Initialize the bid manager.

        Args:
            pool: Optional database pool. If not provided, will get from database module.
        """
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def create_bid(
        self,
        auction_id: Union[str, uuid.UUID],
        amount: Any,
        bidder_id: Union[str, uuid.UUID],
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """Place a bid and make it the auction's highest bid.

        Args:
            auction_id: The auction to bid on
            amount: Bid amount
            bidder_id: The bidding user
            now: Current time

        Returns:
            The created bid

        Raises:
            ValidationError: If the amount is negative or not a number
            AuctionNotFoundError: If the auction doesn't exist
            AuctionNotOpenError: If the auction is not open
            BidTooLowError: If the amount does not beat the highest bid
        """
        amount = require_amount(amount)
        now = now or utcnow()
        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    auction = await lock_auction(conn, auction_id)
                    if auction is None:
                        raise AuctionNotFoundError("Auction not found")

                    evaluate_bid(auction, amount, now)

                    row = await conn.fetchrow(
                        '''
                        INSERT INTO bids (amount, auction_id, bidder_id, bid_date)
                        VALUES ($1, $2, $3, $4)
                        RETURNING *
                        ''',
                        amount,
                        auction_id,
                        bidder_id,
                        now
                    )

                    await conn.execute(
                        'UPDATE auctions SET highest_bid_id = $2 WHERE id = $1',
                        auction_id,
                        row['id']
                    )
                    await settle(conn, auction_id, now)

            logger.info(f"Bid {row['id']} of {amount} placed on auction {auction_id}")
            return bid_to_dict(row)

        except MarketplaceError:
            raise
        except PostgresError as e:
            logger.error(f"Database error creating bid on auction {auction_id}: {e}")
            raise DatabaseError(f"Failed to create bid: {e}")

    async def update_bid(
        self,
        bid_id: Union[str, uuid.UUID],
        amount: Any,
        actor: Dict[str, Any],
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """Raise the amount of an existing bid.

        The new amount must beat the auction's current highest bid (including
        this bid's own amount when it already leads).

        Raises:
            BidNotFoundError: If the bid doesn't exist
            ForbiddenError: If the caller doesn't own the bid
            AuctionNotOpenError: If the auction is not open
            BidTooLowError: If the amount does not beat the highest bid
        """
        amount = require_amount(amount)
        now = now or utcnow()
        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    bid = await conn.fetchrow('SELECT * FROM bids WHERE id = $1', bid_id)
                    if not bid:
                        raise BidNotFoundError("Bid not found")
                    _check_owner(bid, actor)

                    auction = await lock_auction(conn, bid['auction_id'])
                    if auction is None:
                        raise AuctionNotFoundError("Auction not found")

                    evaluate_bid(auction, amount, now)

                    row = await conn.fetchrow(
                        'UPDATE bids SET amount = $2 WHERE id = $1 RETURNING *',
                        bid_id,
                        amount
                    )
                    if not row:
                        raise BidNotFoundError("Bid not found")
                    await conn.execute(
                        'UPDATE auctions SET highest_bid_id = $2 WHERE id = $1',
                        bid['auction_id'],
                        bid['id']
                    )
                    await settle(conn, bid['auction_id'], now)

            logger.info(f"Bid {bid_id} raised to {amount}")
            return bid_to_dict(row)

        except MarketplaceError:
            raise
        except PostgresError as e:
            logger.error(f"Database error updating bid {bid_id}: {e}")
            raise DatabaseError(f"Failed to update bid: {e}")

    async def delete_bid(
        self,
        bid_id: Union[str, uuid.UUID],
        actor: Dict[str, Any],
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """Delete a bid, repointing the auction's highest bid if needed.

        Returns:
            Dict with the deleted bid id and the auction's new highest bid id

        Raises:
            BidNotFoundError: If the bid doesn't exist
            ForbiddenError: If the caller doesn't own the bid
        """
        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    bid = await conn.fetchrow('SELECT * FROM bids WHERE id = $1', bid_id)
                    if not bid:
                        raise BidNotFoundError("Bid not found")
                    _check_owner(bid, actor)

                    auction = await lock_auction(conn, bid['auction_id'])
                    highest_bid_id = auction['highest_bid_id'] if auction else None

                    await conn.execute('DELETE FROM bids WHERE id = $1', bid_id)

                    if auction is not None and highest_bid_id == bid['id']:
                        highest_bid_id = await repoint_highest_bid(conn, bid['auction_id'])

                    if auction is not None:
                        await settle(conn, bid['auction_id'], now)

            logger.info(f"Deleted bid {bid_id} from auction {bid['auction_id']}")
            return {
                'message': 'Bid deleted successfully',
                'id': serialize_value(bid['id']),
                'highest_bid': serialize_value(highest_bid_id)
            }

        except MarketplaceError:
            raise
        except PostgresError as e:
            logger.error(f"Database error deleting bid {bid_id}: {e}")
            raise DatabaseError(f"Failed to delete bid: {e}")

    async def get_bid(self, bid_id: Union[str, uuid.UUID]) -> Dict[str, Any]:
        """Get a bid with its bidder's name and email.

        Raises:
            BidNotFoundError: If the bid doesn't exist
        """
        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(f'{BIDS_WITH_BIDDER_SELECT} WHERE b.id = $1', bid_id)
            if not row:
                raise BidNotFoundError("Bid not found")
            return bid_with_bidder_to_dict(row)

        except MarketplaceError:
            raise
        except PostgresError as e:
            logger.error(f"Database error getting bid {bid_id}: {e}")
            raise DatabaseError(f"Failed to get bid: {e}")

    async def get_bids_by_auction(self, auction_id: Union[str, uuid.UUID]) -> List[Dict[str, Any]]:
        """All bids on an auction, highest first.

        Raises:
            AuctionNotFoundError: If the auction doesn't exist
        """
        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                exists = await conn.fetchval(
                    'SELECT EXISTS(SELECT 1 FROM auctions WHERE id = $1)',
                    auction_id
                )
                if not exists:
                    raise AuctionNotFoundError("Auction not found")

                rows = await conn.fetch(
                    f'''
                    {BIDS_WITH_BIDDER_SELECT}
                    WHERE b.auction_id = $1
                    ORDER BY b.amount DESC, b.bid_date
                    ''',
                    auction_id
                )
            return [bid_with_bidder_to_dict(row) for row in rows]

        except MarketplaceError:
            raise
        except PostgresError as e:
            logger.error(f"Database error getting bids for auction {auction_id}: {e}")
            raise DatabaseError(f"Failed to get bids: {e}")

__all__ = [
    'BidManager',
    'BidNotFoundError',
    'BidRejectedError',
    'AuctionNotOpenError',
    'BidTooLowError',
    'evaluate_bid',
    'select_highest_bid',
    'bid_to_dict'
]
