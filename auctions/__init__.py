"""Auctions module for the auction lifecycle.

This module provides functionality for:
- Creating, updating and force-closing auctions
- Filtering auctions and listing the active ones
- Auction details with bids and marketplace statistics
- Closing expired auctions and settling their winners
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from asyncpg import PostgresError

from database import get_pool
from database.exceptions import DatabaseError
from database.lib.records import serialize_value
from errors import MarketplaceError, ValidationError, NotFoundError, ConflictError
from errors.validation import require_text, require_choice, require_amount, parse_datetime
from .lifecycle import (
    AUCTION_STATUSES, lock_auction, settle, settle_decision, validate_schedule, utcnow
)

logger = logging.getLogger(__name__)

# Fields an auction manager may change with an update
MUTABLE_FIELDS = {
    'title',
    'description',
    'scrap_item',
    'start_date',
    'end_date',
    'status',
    'reserve_price'
}

# Fields maintained by bidding and settlement only
SYSTEM_FIELDS = {
    'id',
    'highest_bid',
    'winner',
    'closed_at',
    'created_at',
    'updated_at'
}

AUCTION_SELECT = '''
    SELECT a.*, b.amount AS highest_bid_amount
    FROM auctions a
    LEFT JOIN bids b ON b.id = a.highest_bid_id
'''

BIDS_WITH_BIDDER_SELECT = '''
    SELECT b.*, u.name AS bidder_name, u.email AS bidder_email
    FROM bids b
    JOIN users u ON u.id = b.bidder_id
'''

class AuctionNotFoundError(NotFoundError):
    """Raised when an auction is not found."""
    pass

class AuctionStateError(ConflictError):
    """Raised when an auction's status does not allow the requested change."""
    pass

def auction_to_dict(row) -> Optional[Dict[str, Any]]:
    """Convert an auctions row (joined with its highest bid amount) to a dict."""
    if row is None:
        return None
    highest_amount = row.get('highest_bid_amount')
    return {
        'id': serialize_value(row['id']),
        'title': row['title'],
        'description': row['description'],
        'scrap_item': serialize_value(row['scrap_item_id']),
        'start_date': serialize_value(row['start_date']),
        'end_date': serialize_value(row['end_date']),
        'status': row['status'],
        'highest_bid': serialize_value(row['highest_bid_id']),
        'highest_bid_amount': serialize_value(highest_amount),
        'reserve_price': serialize_value(row['reserve_price']),
        'reserve_met': highest_amount is not None and highest_amount >= row['reserve_price'],
        'winner': serialize_value(row['winner_id']),
        'closed_at': serialize_value(row.get('closed_at')),
        'created_at': serialize_value(row['created_at']),
        'updated_at': serialize_value(row['updated_at'])
    }

def bid_with_bidder_to_dict(row) -> Dict[str, Any]:
    """Convert a bids row joined with its bidder's name and email."""
    return {
        'id': serialize_value(row['id']),
        'amount': serialize_value(row['amount']),
        'auction': serialize_value(row['auction_id']),
        'bidder': {
            'id': serialize_value(row['bidder_id']),
            'name': row['bidder_name'],
            'email': row['bidder_email']
        },
        'bid_date': serialize_value(row['bid_date']),
        'status': row['status']
    }

class AuctionManager:
    """Manager class for handling auction operations."""

    def __init__(self, pool=None):
        """Initialize the auction manager.

        Args:
            pool: Optional database pool. If not provided, will get from database module.
        """
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def _fetch_auction(self, conn, auction_id) -> Dict[str, Any]:
        row = await conn.fetchrow(f'{AUCTION_SELECT} WHERE a.id = $1', auction_id)
        if not row:
            raise AuctionNotFoundError("Auction not found")
        return auction_to_dict(row)

    async def create_auction(
        self,
        title: str,
        description: str,
        scrap_item_id: Union[str, uuid.UUID],
        start_date: Union[str, datetime],
        end_date: Union[str, datetime],
        reserve_price: Any = 0,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """Create a new open auction for a scrap item.

        Args:
            title: Auction title
            description: Auction description
            scrap_item_id: The scrap item being auctioned
            start_date: When bidding opens
            end_date: When bidding closes, must be after start_date
            reserve_price: Non-negative reserve price
            now: Current time used when settling

        Returns:
            Dict containing the created auction

        Raises:
            ValidationError: If a field is missing or start_date >= end_date
            NotFoundError: If the scrap item does not exist
        """
        title = require_text(title, 'title')
        description = require_text(description, 'description')
        start = parse_datetime(start_date, 'start date')
        end = parse_datetime(end_date, 'end date')
        validate_schedule(start, end)
        reserve = require_amount(reserve_price if reserve_price is not None else 0, 'reserve price')
        if not scrap_item_id:
            raise ValidationError("scrap_item is required")

        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    exists = await conn.fetchval(
                        'SELECT EXISTS(SELECT 1 FROM scrap_items WHERE id = $1)',
                        scrap_item_id
                    )
                    if not exists:
                        raise NotFoundError("Scrap item not found")

                    auction_id = await conn.fetchval(
                        '''
                        INSERT INTO auctions (
                            title, description, scrap_item_id,
                            start_date, end_date, reserve_price
                        ) VALUES ($1, $2, $3, $4, $5, $6)
                        RETURNING id
                        ''',
                        title, description, scrap_item_id, start, end, reserve
                    )

                    await settle(conn, auction_id, now)
                    auction = await self._fetch_auction(conn, auction_id)

            logger.info(f"Created auction {auction_id} for scrap item {scrap_item_id}")
            return auction

        except MarketplaceError:
            raise
        except PostgresError as e:
            logger.error(f"Database error creating auction: {e}")
            raise DatabaseError(f"Failed to create auction: {e}")

    async def get_auction(self, auction_id: Union[str, uuid.UUID]) -> Dict[str, Any]:
        """Get an auction by ID.

        Raises:
            AuctionNotFoundError: If the auction doesn't exist
        """
        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                return await self._fetch_auction(conn, auction_id)
        except MarketplaceError:
            raise
        except PostgresError as e:
            logger.error(f"Database error getting auction {auction_id}: {e}")
            raise DatabaseError(f"Failed to get auction: {e}")

    async def update_auction(
        self,
        auction_id: Union[str, uuid.UUID],
        updates: Dict[str, Any],
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """Update an auction's details.

        Args:
            auction_id: The auction UUID
            updates: Fields to change, see MUTABLE_FIELDS
            now: Current time used when settling

        Returns:
            Updated auction

        Raises:
            AuctionNotFoundError: If the auction doesn't exist
            AuctionStateError: If a closed auction would be reopened
            ValidationError: If update contains invalid fields
        """
        invalid_fields = set(updates) - MUTABLE_FIELDS
        if invalid_fields:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(invalid_fields))}")

        columns = {}
        if 'title' in updates:
            columns['title'] = require_text(updates['title'], 'title')
        if 'description' in updates:
            columns['description'] = require_text(updates['description'], 'description')
        if 'scrap_item' in updates:
            if not updates['scrap_item']:
                raise ValidationError("scrap_item is required")
            columns['scrap_item_id'] = updates['scrap_item']
        if 'start_date' in updates:
            columns['start_date'] = parse_datetime(updates['start_date'], 'start date')
        if 'end_date' in updates:
            columns['end_date'] = parse_datetime(updates['end_date'], 'end date')
        if 'status' in updates:
            columns['status'] = require_choice(updates['status'], AUCTION_STATUSES, 'status')
        if 'reserve_price' in updates:
            columns['reserve_price'] = require_amount(updates['reserve_price'], 'reserve price')

        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    current = await lock_auction(conn, auction_id)
                    if current is None:
                        raise AuctionNotFoundError("Auction not found")

                    validate_schedule(
                        columns.get('start_date', current['start_date']),
                        columns.get('end_date', current['end_date'])
                    )

                    if current['status'] == 'closed' and columns.get('status', 'closed') != 'closed':
                        raise AuctionStateError("A closed auction cannot be reopened")

                    if 'scrap_item_id' in columns:
                        exists = await conn.fetchval(
                            'SELECT EXISTS(SELECT 1 FROM scrap_items WHERE id = $1)',
                            columns['scrap_item_id']
                        )
                        if not exists:
                            raise NotFoundError("Scrap item not found")

                    if columns:
                        fields = []
                        values = []
                        for i, (field, value) in enumerate(columns.items(), start=1):
                            fields.append(f"{field} = ${i}")
                            values.append(value)
                        values.append(auction_id)
                        await conn.execute(
                            f'''
                            UPDATE auctions
                            SET {', '.join(fields)}
                            WHERE id = ${len(values)}
                            ''',
                            *values
                        )

                    await settle(conn, auction_id, now)
                    auction = await self._fetch_auction(conn, auction_id)

            logger.info(f"Updated auction {auction_id}: {', '.join(sorted(updates)) or 'no fields'}")
            return auction

        except MarketplaceError:
            raise
        except PostgresError as e:
            logger.error(f"Database error updating auction {auction_id}: {e}")
            raise DatabaseError(f"Failed to update auction: {e}")

    async def end_auction(self, auction_id: Union[str, uuid.UUID]) -> Dict[str, Any]:
        """Force-close an auction and record its winner.

        Returns:
            The closed auction

        Raises:
            AuctionNotFoundError: If the auction doesn't exist
            AuctionStateError: If the auction is already closed or was cancelled
        """
        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    current = await lock_auction(conn, auction_id)
                    if current is None:
                        raise AuctionNotFoundError("Auction not found")
                    if current['status'] == 'closed':
                        raise AuctionStateError("Auction already ended")
                    if current['status'] == 'cancelled':
                        raise AuctionStateError("Auction was cancelled")

                    await conn.execute(
                        '''
                        UPDATE auctions
                        SET status = 'closed', winner_id = $2, closed_at = now()
                        WHERE id = $1
                        ''',
                        auction_id,
                        current['highest_bidder_id']
                    )
                    auction = await self._fetch_auction(conn, auction_id)

            logger.info(f"Ended auction {auction_id}, winner {auction['winner']}")
            return auction

        except MarketplaceError:
            raise
        except PostgresError as e:
            logger.error(f"Database error ending auction {auction_id}: {e}")
            raise DatabaseError(f"Failed to end auction: {e}")

    async def filter_auctions(
        self,
        start_date: Optional[Union[str, datetime]] = None,
        end_date: Optional[Union[str, datetime]] = None,
        status: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Filter auctions by schedule and status.

        Args:
            start_date: Auctions starting on or after this time
            end_date: Auctions ending on or before this time
            status: Exact status to match

        Raises:
            ValidationError: If a date cannot be parsed or the status is unknown
        """
        start = parse_datetime(start_date, 'start date')
        end = parse_datetime(end_date, 'end date')
        if status:
            require_choice(status, AUCTION_STATUSES, 'status')

        query = f'{AUCTION_SELECT} WHERE 1=1'
        params = []
        param_idx = 1

        if start is not None:
            query += f" AND a.start_date >= ${param_idx}"
            params.append(start)
            param_idx += 1

        if end is not None:
            query += f" AND a.end_date <= ${param_idx}"
            params.append(end)
            param_idx += 1

        if status:
            query += f" AND a.status = ${param_idx}"
            params.append(status)
            param_idx += 1

        query += " ORDER BY a.start_date"

        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(query, *params)
            return [auction_to_dict(row) for row in rows]
        except PostgresError as e:
            logger.error(f"Database error filtering auctions: {e}")
            raise DatabaseError(f"Failed to filter auctions: {e}")

    async def get_active_auctions(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Open auctions whose schedule contains now."""
        now = now or utcnow()
        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    f'''
                    {AUCTION_SELECT}
                    WHERE a.status = 'open'
                    AND a.start_date <= $1
                    AND a.end_date >= $1
                    ORDER BY a.end_date
                    ''',
                    now
                )
            return [auction_to_dict(row) for row in rows]
        except PostgresError as e:
            logger.error(f"Database error getting active auctions: {e}")
            raise DatabaseError(f"Failed to get active auctions: {e}")

    async def get_auction_with_bids(self, auction_id: Union[str, uuid.UUID]) -> Dict[str, Any]:
        """Get an auction with its scrap item summary and every bid.

        Bids are ordered highest first and carry the bidder's name and email.

        Raises:
            AuctionNotFoundError: If the auction doesn't exist
        """
        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    '''
                    SELECT
                        a.*,
                        b.amount AS highest_bid_amount,
                        s.description AS scrap_description,
                        s.weight AS scrap_weight
                    FROM auctions a
                    LEFT JOIN bids b ON b.id = a.highest_bid_id
                    LEFT JOIN scrap_items s ON s.id = a.scrap_item_id
                    WHERE a.id = $1
                    ''',
                    auction_id
                )
                if not row:
                    raise AuctionNotFoundError("Auction not found")

                bids = await conn.fetch(
                    f'''
                    {BIDS_WITH_BIDDER_SELECT}
                    WHERE b.auction_id = $1
                    ORDER BY b.amount DESC, b.bid_date
                    ''',
                    auction_id
                )

            auction = auction_to_dict(row)
            auction['scrap_item'] = {
                'id': serialize_value(row['scrap_item_id']),
                'description': row['scrap_description'],
                'weight': serialize_value(row['scrap_weight'])
            }
            auction['bids'] = [bid_with_bidder_to_dict(bid) for bid in bids]
            return auction

        except MarketplaceError:
            raise
        except PostgresError as e:
            logger.error(f"Database error getting auction details {auction_id}: {e}")
            raise DatabaseError(f"Failed to get auction details: {e}")

    async def get_auctions_with_bids(self) -> List[Dict[str, Any]]:
        """Every auction with its bids and the maximum bid amount."""
        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(f'{AUCTION_SELECT} ORDER BY a.created_at DESC')
                bids = await conn.fetch(
                    f'{BIDS_WITH_BIDDER_SELECT} ORDER BY b.amount DESC, b.bid_date'
                )

            bids_by_auction: Dict[str, List[Dict[str, Any]]] = {}
            for bid in bids:
                bids_by_auction.setdefault(str(bid['auction_id']), []).append(
                    bid_with_bidder_to_dict(bid)
                )

            auctions = []
            for row in rows:
                auction = auction_to_dict(row)
                auction['bids'] = bids_by_auction.get(auction['id'], [])
                amounts = [bid['amount'] for bid in auction['bids']]
                auction['max_bid_amount'] = max(amounts) if amounts else None
                auctions.append(auction)
            return auctions

        except PostgresError as e:
            logger.error(f"Database error getting auctions with bids: {e}")
            raise DatabaseError(f"Failed to get auctions with bids: {e}")

    async def get_auction_stats(self) -> Dict[str, Any]:
        """Total auctions, total bids and the highest bid amount placed."""
        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    '''
                    SELECT
                        (SELECT COUNT(*) FROM auctions) AS total_auctions,
                        (SELECT COUNT(*) FROM bids) AS total_bids,
                        (SELECT COALESCE(MAX(amount), 0) FROM bids) AS highest_bid
                    '''
                )
            return {
                'total_auctions': row['total_auctions'],
                'total_bids': row['total_bids'],
                'highest_bid': serialize_value(row['highest_bid'])
            }
        except PostgresError as e:
            logger.error(f"Database error getting auction stats: {e}")
            raise DatabaseError(f"Failed to get auction stats: {e}")

    async def get_user_bids(self, user_id: Union[str, uuid.UUID]) -> List[Dict[str, Any]]:
        """Bids placed by a user, with the auction each belongs to.

        Raises:
            NotFoundError: If the user has placed no bids
        """
        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    '''
                    SELECT
                        b.*,
                        a.title AS auction_title,
                        a.start_date AS auction_start_date,
                        a.end_date AS auction_end_date,
                        a.status AS auction_status
                    FROM bids b
                    JOIN auctions a ON a.id = b.auction_id
                    WHERE b.bidder_id = $1
                    ORDER BY b.bid_date DESC
                    ''',
                    user_id
                )
            if not rows:
                raise NotFoundError("No bids found for this user")

            return [
                {
                    'id': serialize_value(row['id']),
                    'amount': serialize_value(row['amount']),
                    'bid_date': serialize_value(row['bid_date']),
                    'status': row['status'],
                    'auction': {
                        'id': serialize_value(row['auction_id']),
                        'title': row['auction_title'],
                        'start_date': serialize_value(row['auction_start_date']),
                        'end_date': serialize_value(row['auction_end_date']),
                        'status': row['auction_status']
                    }
                }
                for row in rows
            ]

        except MarketplaceError:
            raise
        except PostgresError as e:
            logger.error(f"Database error getting bids for user {user_id}: {e}")
            raise DatabaseError(f"Failed to get user bids: {e}")

    async def close_expired_auctions(self, now: Optional[datetime] = None) -> int:
        """Close every open auction whose end date has passed.

        Auctions locked by an in-flight bid are skipped and picked up by the
        next sweep.

        Returns:
            Number of auctions closed
        """
        now = now or utcnow()
        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    rows = await conn.fetch(
                        '''
                        SELECT id FROM auctions
                        WHERE status = 'open' AND end_date < $1
                        ORDER BY end_date
                        FOR UPDATE SKIP LOCKED
                        ''',
                        now
                    )

                    closed = 0
                    for row in rows:
                        if await settle(conn, row['id'], now) == 'closed':
                            closed += 1

            if closed > 0:
                logger.info(f"Closed {closed} expired auctions")
            return closed

        except PostgresError as e:
            logger.error(f"Database error closing expired auctions: {e}")
            raise DatabaseError(f"Failed to close expired auctions: {e}")

__all__ = [
    'AuctionManager',
    'AuctionNotFoundError',
    'AuctionStateError',
    'AUCTION_STATUSES',
    'auction_to_dict',
    'lock_auction',
    'settle',
    'settle_decision',
    'validate_schedule'
]
