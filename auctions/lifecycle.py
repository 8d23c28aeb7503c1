"""Auction state rules shared by auction and bid writes.

Every write that touches an auction row runs inside a transaction that first
locks the row with lock_auction(), and finishes by calling settle(), which
closes an expired auction and keeps the winner in step with the highest bid.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, Tuple

from errors import ValidationError

logger = logging.getLogger(__name__)

AUCTION_STATUSES = ('open', 'closed', 'cancelled')

LOCK_AUCTION_QUERY = '''
    SELECT
        id,
        status,
        start_date,
        end_date,
        reserve_price,
        highest_bid_id,
        winner_id
    FROM auctions
    WHERE id = $1
    FOR UPDATE
'''

# Read after the lock is held, in its own statement, so it sees bids
# committed by the previous lock holder
HIGHEST_BID_QUERY = 'SELECT amount, bidder_id FROM bids WHERE id = $1'

REMAINING_BIDS_QUERY = 'SELECT id, amount, bid_date FROM bids WHERE auction_id = $1'

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def validate_schedule(start_date: Optional[datetime], end_date: Optional[datetime]) -> None:
    """Require both dates and start_date strictly before end_date."""
    if start_date is None:
        raise ValidationError("start_date is required")
    if end_date is None:
        raise ValidationError("end_date is required")
    if start_date >= end_date:
        raise ValidationError("Start date must be before end date")

def settle_decision(
    auction: Dict[str, Any],
    now: Optional[datetime] = None
) -> Tuple[str, Any]:
    """Work out the status and winner an auction should have.

    An open auction past its end date closes. A closed auction's winner is the
    bidder of its highest bid (None when there is no bid).

    Args:
        auction: Row from lock_auction()
        now: Current time

    Returns:
        Tuple of (status, winner_id)
    """
    now = now or utcnow()
    status = auction['status']
    winner = auction['winner_id']

    if status == 'open' and now > auction['end_date']:
        status = 'closed'
    if status == 'closed':
        winner = auction['highest_bidder_id']

    return status, winner

def select_highest_bid(bids: Iterable[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Pick the highest bid, the earliest one winning ties.

    Returns:
        The winning bid, or None when there are no bids
    """
    best = None
    for bid in bids:
        if (
            best is None
            or bid['amount'] > best['amount']
            or (bid['amount'] == best['amount'] and bid['bid_date'] < best['bid_date'])
        ):
            best = bid
    return best

async def lock_auction(conn, auction_id) -> Optional[Dict[str, Any]]:
    """Lock an auction row for the rest of the transaction.

    Returns:
        The auction state with highest_bid_amount and highest_bidder_id
        filled in from its highest bid, or None if missing
    """
    row = await conn.fetchrow(LOCK_AUCTION_QUERY, auction_id)
    if row is None:
        return None

    auction = dict(row)
    auction['highest_bid_amount'] = None
    auction['highest_bidder_id'] = None
    if auction['highest_bid_id'] is not None:
        bid = await conn.fetchrow(HIGHEST_BID_QUERY, auction['highest_bid_id'])
        if bid is not None:
            auction['highest_bid_amount'] = bid['amount']
            auction['highest_bidder_id'] = bid['bidder_id']
    return auction

async def repoint_highest_bid(conn, auction_id) -> Any:
    """Point an auction at the highest of its remaining bids.

    The auction must already be locked by the caller.

    Returns:
        The new highest bid id, or None when no bids remain
    """
    remaining = await conn.fetch(REMAINING_BIDS_QUERY, auction_id)
    highest = select_highest_bid(remaining)
    highest_bid_id = highest['id'] if highest else None
    await conn.execute(
        'UPDATE auctions SET highest_bid_id = $2 WHERE id = $1',
        auction_id,
        highest_bid_id
    )
    return highest_bid_id

async def settle(conn, auction_id, now: Optional[datetime] = None) -> Optional[str]:
    """Apply settle_decision() to a stored auction.

    Must run inside the caller's transaction.

    Returns:
        The auction's status after settling, or None if it does not exist
    """
    auction = await lock_auction(conn, auction_id)
    if auction is None:
        return None

    status, winner = settle_decision(auction, now)
    if status != auction['status'] or winner != auction['winner_id']:
        await conn.execute(
            '''
            UPDATE auctions
            SET
                status = $2,
                winner_id = $3,
                closed_at = CASE WHEN $2 = 'closed' THEN COALESCE(closed_at, now()) ELSE closed_at END
            WHERE id = $1
            ''',
            auction_id,
            status,
            winner
        )
        if status != auction['status']:
            logger.info(f"Auction {auction_id} moved from {auction['status']} to {status}")

    return status
