"""Tests for the auctions module."""

import uuid
import pytest
import pytest_asyncio
from datetime import timedelta
from decimal import Decimal

from auctions import (
    AuctionManager,
    AuctionNotFoundError,
    AuctionStateError,
    settle_decision,
    validate_schedule
)
from auctions.lifecycle import lock_auction
from bids import BidManager
from errors import ConflictError, NotFoundError, ValidationError

from conftest import NOW, locked, make_auction_state, make_auction_row, make_bid_row

@pytest_asyncio.fixture
async def auction_manager(pool):
    """Create an AuctionManager on the fake pool."""
    return AuctionManager(pool=pool)

@pytest_asyncio.fixture
async def bid_manager(pool):
    """Create a BidManager on the fake pool."""
    return BidManager(pool=pool)

def test_validate_schedule():
    """Start must come strictly before end."""
    validate_schedule(NOW, NOW + timedelta(seconds=1))

    with pytest.raises(ValidationError) as exc:
        validate_schedule(NOW, NOW)
    assert exc.value.message == "Start date must be before end date"

    with pytest.raises(ValidationError):
        validate_schedule(NOW + timedelta(days=1), NOW)

def test_settle_decision_closes_expired_auction():
    """An open auction past its end date closes with the highest bidder as winner."""
    bidder = uuid.uuid4()
    state = make_auction_state(end_date=NOW - timedelta(minutes=1), highest_bidder_id=bidder)

    assert settle_decision(state, NOW) == ('closed', bidder)

def test_settle_decision_leaves_running_auction():
    """An open auction before its end date is untouched."""
    state = make_auction_state(highest_bidder_id=uuid.uuid4())

    assert settle_decision(state, NOW) == ('open', None)

def test_settle_decision_cancelled_is_terminal():
    """A cancelled auction never closes or gains a winner."""
    state = make_auction_state(
        status='cancelled',
        end_date=NOW - timedelta(days=1),
        highest_bidder_id=uuid.uuid4()
    )

    assert settle_decision(state, NOW) == ('cancelled', None)

def test_settle_decision_closed_without_bids():
    """A closed auction with no bids has no winner."""
    state = make_auction_state(status='closed', end_date=NOW - timedelta(days=1))

    assert settle_decision(state, NOW) == ('closed', None)

@pytest.mark.asyncio
async def test_create_auction(auction_manager, conn):
    """Test creating an auction."""
    row = make_auction_row(reserve_price=Decimal('1000'))
    conn.fetchval.side_effect = [True, row['id']]
    conn.fetchrow.side_effect = [make_auction_state(id=row['id']), row]

    auction = await auction_manager.create_auction(
        title=row['title'],
        description=row['description'],
        scrap_item_id=row['scrap_item_id'],
        start_date=row['start_date'].isoformat(),
        end_date=row['end_date'].isoformat(),
        reserve_price='1000',
        now=NOW
    )

    assert auction['id'] == str(row['id'])
    assert auction['status'] == 'open'
    assert auction['highest_bid'] is None
    assert auction['reserve_price'] == 1000.0
    assert auction['reserve_met'] is False
    conn.execute.assert_not_awaited()

@pytest.mark.asyncio
async def test_create_auction_start_after_end(auction_manager, conn):
    """Test that start_date >= end_date is rejected before touching the database."""
    with pytest.raises(ValidationError):
        await auction_manager.create_auction(
            title='Steel beams',
            description='Structural offcuts',
            scrap_item_id=uuid.uuid4(),
            start_date=NOW,
            end_date=NOW,
            now=NOW
        )

    conn.fetchval.assert_not_awaited()

@pytest.mark.asyncio
async def test_create_auction_missing_scrap_item(auction_manager, conn):
    """Test creating an auction for an unknown scrap item."""
    conn.fetchval.side_effect = [False]

    with pytest.raises(NotFoundError):
        await auction_manager.create_auction(
            title='Steel beams',
            description='Structural offcuts',
            scrap_item_id=uuid.uuid4(),
            start_date=NOW,
            end_date=NOW + timedelta(days=1),
            now=NOW
        )

@pytest.mark.asyncio
async def test_end_auction_records_winner(auction_manager, conn):
    """Test ending an open auction makes the highest bidder the winner."""
    winner = uuid.uuid4()
    state = make_auction_state(
        highest_bid_id=uuid.uuid4(),
        highest_bid_amount=Decimal('250'),
        highest_bidder_id=winner
    )
    closed = make_auction_row(id=state['id'], status='closed', winner_id=winner, closed_at=NOW)
    conn.fetchrow.side_effect = [*locked(state), closed]

    auction = await auction_manager.end_auction(state['id'])

    assert auction['status'] == 'closed'
    assert auction['winner'] == str(winner)
    assert conn.execute.await_args.args[1:] == (state['id'], winner)

@pytest.mark.asyncio
async def test_end_auction_already_closed(auction_manager, conn):
    """Test ending an auction twice."""
    conn.fetchrow.side_effect = [make_auction_state(status='closed')]

    with pytest.raises(ConflictError) as exc:
        await auction_manager.end_auction(uuid.uuid4())
    assert exc.value.message == "Auction already ended"
    conn.execute.assert_not_awaited()

@pytest.mark.asyncio
async def test_end_auction_cancelled(auction_manager, conn):
    """Test ending a cancelled auction."""
    conn.fetchrow.side_effect = [make_auction_state(status='cancelled')]

    with pytest.raises(AuctionStateError):
        await auction_manager.end_auction(uuid.uuid4())

@pytest.mark.asyncio
async def test_end_auction_not_found(auction_manager, conn):
    """Test ending an auction that doesn't exist."""
    conn.fetchrow.side_effect = [None]

    with pytest.raises(AuctionNotFoundError) as exc:
        await auction_manager.end_auction(uuid.uuid4())
    assert exc.value.message == "Auction not found"

@pytest.mark.asyncio
async def test_update_auction_cannot_reopen_closed(auction_manager, conn):
    """Test that a closed auction stays closed."""
    conn.fetchrow.side_effect = [make_auction_state(status='closed')]

    with pytest.raises(AuctionStateError):
        await auction_manager.update_auction(uuid.uuid4(), {'status': 'open'}, now=NOW)

@pytest.mark.asyncio
async def test_update_auction_checks_merged_schedule(auction_manager, conn):
    """Test that a new start date is checked against the stored end date."""
    state = make_auction_state()
    conn.fetchrow.side_effect = [state]

    with pytest.raises(ValidationError):
        await auction_manager.update_auction(
            state['id'],
            {'start_date': (state['end_date'] + timedelta(hours=1)).isoformat()},
            now=NOW
        )

@pytest.mark.asyncio
async def test_update_auction_rejects_system_fields(auction_manager, conn):
    """Test that the highest bid and winner can't be written directly."""
    with pytest.raises(ValidationError):
        await auction_manager.update_auction(uuid.uuid4(), {'winner': str(uuid.uuid4())})

@pytest.mark.asyncio
async def test_update_auction_extends_end_date(auction_manager, conn):
    """Test moving the end date of a running auction."""
    state = make_auction_state()
    new_end = state['end_date'] + timedelta(days=2)
    row = make_auction_row(id=state['id'], end_date=new_end)
    conn.fetchrow.side_effect = [state, dict(state, end_date=new_end), row]

    auction = await auction_manager.update_auction(
        state['id'], {'end_date': new_end.isoformat()}, now=NOW
    )

    assert auction['end_date'] == new_end.isoformat()
    assert 'end_date = $1' in conn.execute.await_args.args[0]

@pytest.mark.asyncio
async def test_filter_auctions_validates_input(auction_manager, conn):
    """Test that bad filters are rejected."""
    with pytest.raises(ValidationError):
        await auction_manager.filter_auctions(status='paused')

    with pytest.raises(ValidationError):
        await auction_manager.filter_auctions(start_date='not-a-date')

@pytest.mark.asyncio
async def test_filter_auctions_builds_query(auction_manager, conn):
    """Test filtering by start date and status."""
    conn.fetch.return_value = [make_auction_row()]

    auctions = await auction_manager.filter_auctions(
        start_date='2024-06-01T00:00:00Z', status='open'
    )

    assert len(auctions) == 1
    query, *params = conn.fetch.await_args.args
    assert 'a.start_date >= $1' in query
    assert 'a.status = $2' in query
    assert params[1] == 'open'

@pytest.mark.asyncio
async def test_get_user_bids_none(auction_manager, conn):
    """Test a user with no bids."""
    conn.fetch.return_value = []

    with pytest.raises(NotFoundError) as exc:
        await auction_manager.get_user_bids(uuid.uuid4())
    assert exc.value.message == "No bids found for this user"

@pytest.mark.asyncio
async def test_get_auction_stats(auction_manager, conn):
    """Test the totals endpoint."""
    conn.fetchrow.return_value = {
        'total_auctions': 3,
        'total_bids': 7,
        'highest_bid': Decimal('1200')
    }

    stats = await auction_manager.get_auction_stats()

    assert stats == {'total_auctions': 3, 'total_bids': 7, 'highest_bid': 1200.0}

@pytest.mark.asyncio
async def test_close_expired_auctions(auction_manager, conn):
    """Test the sweep closes expired auctions and skips ones extended meanwhile."""
    winner = uuid.uuid4()
    expired = make_auction_state(
        end_date=NOW - timedelta(minutes=1),
        highest_bid_id=uuid.uuid4(),
        highest_bid_amount=Decimal('300'),
        highest_bidder_id=winner
    )
    extended = make_auction_state(end_date=NOW + timedelta(hours=1))

    conn.fetch.return_value = [{'id': expired['id']}, {'id': extended['id']}]
    conn.fetchrow.side_effect = [*locked(expired), *locked(extended)]

    closed = await auction_manager.close_expired_auctions(NOW)

    assert closed == 1
    conn.execute.assert_awaited_once()
    assert conn.execute.await_args.args[1:] == (expired['id'], 'closed', winner)
    assert 'SKIP LOCKED' in conn.fetch.await_args.args[0]

@pytest.mark.asyncio
async def test_reserve_auction_scenario(auction_manager, bid_manager, conn):
    """Test reserve 1000: X bids 1200, Y's 900 is rejected, ending makes X the winner."""
    bidder_x = uuid.uuid4()
    bidder_y = uuid.uuid4()
    row = make_auction_row(reserve_price=Decimal('1000'))
    state = make_auction_state(id=row['id'], reserve_price=Decimal('1000'))

    # Create
    conn.fetchval.side_effect = [True, row['id']]
    conn.fetchrow.side_effect = [state, row]
    await auction_manager.create_auction(
        title=row['title'],
        description=row['description'],
        scrap_item_id=row['scrap_item_id'],
        start_date=row['start_date'],
        end_date=row['end_date'],
        reserve_price=1000,
        now=NOW
    )

    # X bids 1200
    bid_x = make_bid_row(amount=Decimal('1200'), auction_id=row['id'], bidder_id=bidder_x)
    leading = dict(
        state,
        highest_bid_id=bid_x['id'],
        highest_bid_amount=Decimal('1200'),
        highest_bidder_id=bidder_x
    )
    conn.fetchrow.side_effect = [*locked(state), bid_x, *locked(leading)]
    placed = await bid_manager.create_bid(row['id'], '1200', bidder_x, now=NOW)
    assert placed['amount'] == 1200.0

    # Y bids 900
    conn.fetchrow.side_effect = locked(leading)
    with pytest.raises(ConflictError):
        await bid_manager.create_bid(row['id'], '900', bidder_y, now=NOW)

    # End
    closed_row = dict(
        row,
        status='closed',
        highest_bid_id=bid_x['id'],
        highest_bid_amount=Decimal('1200'),
        winner_id=bidder_x,
        closed_at=NOW
    )
    conn.fetchrow.side_effect = [*locked(leading), closed_row]
    auction = await auction_manager.end_auction(row['id'])

    assert auction['status'] == 'closed'
    assert auction['winner'] == str(bidder_x)
    assert auction['reserve_met'] is True

@pytest.mark.asyncio
async def test_lock_auction_reads_highest_bid_after_locking(conn):
    """The highest bid comes from its own query issued once the row is locked."""
    bid_id = uuid.uuid4()
    bidder_id = uuid.uuid4()
    row = {
        'id': uuid.uuid4(),
        'status': 'open',
        'start_date': NOW - timedelta(days=1),
        'end_date': NOW + timedelta(days=1),
        'reserve_price': Decimal('0'),
        'highest_bid_id': bid_id,
        'winner_id': None
    }
    conn.fetchrow.side_effect = [row, {'amount': Decimal('150'), 'bidder_id': bidder_id}]

    auction = await lock_auction(conn, row['id'])

    assert auction['highest_bid_amount'] == Decimal('150')
    assert auction['highest_bidder_id'] == bidder_id
    lock_call, bid_call = conn.fetchrow.await_args_list
    assert 'FOR UPDATE' in lock_call.args[0]
    assert 'JOIN' not in lock_call.args[0]
    assert bid_call.args[1] == bid_id

@pytest.mark.asyncio
async def test_lock_auction_without_bids(conn):
    """An auction with no highest bid is locked with a single query."""
    conn.fetchrow.side_effect = [make_auction_state()]

    auction = await lock_auction(conn, uuid.uuid4())

    assert auction['highest_bid_amount'] is None
    conn.fetchrow.assert_awaited_once()
