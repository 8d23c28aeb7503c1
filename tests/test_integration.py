"""Bidding tests against a running PostgreSQL.

Set MARKET_TEST_DB_URL to choose the database; otherwise the configured
db_url is used with the scrap_market_test database. The tests are skipped
when the server cannot be reached.
"""

import asyncio
import os
import uuid
from datetime import timedelta
from decimal import Decimal
from urllib.parse import urlparse, urlunparse

import asyncpg
import pytest
import pytest_asyncio

from auctions import AuctionManager
from auctions.lifecycle import utcnow
from auth import AuthManager
from bids import BidManager, BidTooLowError
from config import settings_conf
from database import init_db, get_pool, close as close_db
from scrap_items import ScrapItemManager
from users import UserManager

pytestmark = pytest.mark.integration

def integration_db_url() -> str:
    """Database URL the integration tests run against."""
    url = os.environ.get('MARKET_TEST_DB_URL')
    if url:
        return url
    parsed = urlparse(settings_conf['db_url'])
    return urlunparse(parsed._replace(path='/scrap_market_test'))

async def server_reachable(url: str) -> bool:
    maintenance = urlunparse(urlparse(url)._replace(path='/postgres'))
    try:
        conn = await asyncpg.connect(maintenance, timeout=3)
    except (OSError, asyncio.TimeoutError, asyncpg.PostgresError):
        return False
    await conn.close()
    return True

@pytest_asyncio.fixture
async def db_pool():
    """Initialize the test database and empty it before each test."""
    url = integration_db_url()
    if not await server_reachable(url):
        pytest.skip(f"PostgreSQL not reachable at {urlparse(url).hostname}")

    await init_db(url)
    pool = await get_pool()
    async with pool.acquire() as conn:
        await conn.execute('TRUNCATE users, scrap_items, auctions, bids CASCADE')
    yield pool
    await close_db()

@pytest_asyncio.fixture
async def market(db_pool):
    """Managers sharing the test pool."""
    return {
        'auth': AuthManager(pool=db_pool),
        'users': UserManager(pool=db_pool),
        'scrap': ScrapItemManager(pool=db_pool),
        'auctions': AuctionManager(pool=db_pool),
        'bids': BidManager(pool=db_pool)
    }

async def register(market, name: str) -> uuid.UUID:
    """Register a buyer and return their id."""
    session = await market['auth'].register(
        name=name,
        email=f"{name.lower()}-{uuid.uuid4().hex[:8]}@example.com",
        password='correct horse battery'
    )
    return uuid.UUID(session['user']['id'])

async def open_auction(market, reserve_price=0) -> uuid.UUID:
    """Create a scrap item and an auction for it that is open now."""
    staff_id = await register(market, 'Warehouse')
    item = await market['scrap'].create_scrap_item(
        description='Copper pipe offcuts',
        weight='120.5',
        category={'type': 'metal'},
        location={'type': 'warehouse', 'details': {'address': '1 Foundry Lane'}},
        received_by=staff_id
    )
    now = utcnow()
    auction = await market['auctions'].create_auction(
        title='Copper pipe lot',
        description='Mixed copper pipe offcuts',
        scrap_item_id=uuid.UUID(item['id']),
        start_date=now - timedelta(hours=1),
        end_date=now + timedelta(hours=1),
        reserve_price=reserve_price
    )
    return uuid.UUID(auction['id'])

async def place(market, auction_id, amount, bidder_id) -> uuid.UUID:
    bid = await market['bids'].create_bid(auction_id, amount, bidder_id)
    return uuid.UUID(bid['id'])

async def stored_bids(pool, auction_id):
    async with pool.acquire() as conn:
        return await conn.fetch(
            'SELECT id, amount FROM bids WHERE auction_id = $1 ORDER BY amount DESC',
            auction_id
        )

@pytest.mark.asyncio
async def test_equal_and_lower_bids_rejected(market):
    """Test a bid must be strictly above the current highest bid."""
    auction_id = await open_auction(market)
    first = await register(market, 'First')
    second = await register(market, 'Second')

    leading = await place(market, auction_id, '100', first)

    with pytest.raises(BidTooLowError):
        await place(market, auction_id, '100', second)
    with pytest.raises(BidTooLowError):
        await place(market, auction_id, '90', second)

    auction = await market['auctions'].get_auction(auction_id)
    assert auction['highest_bid'] == str(leading)
    assert auction['highest_bid_amount'] == 100.0

    raised = await place(market, auction_id, '100.01', second)
    auction = await market['auctions'].get_auction(auction_id)
    assert auction['highest_bid'] == str(raised)

@pytest.mark.asyncio
async def test_delete_highest_bid_repoints(market, db_pool):
    """Test deleting the 100 bid over 60, 80 and 95 leaves 95 as highest."""
    auction_id = await open_auction(market)
    bidders = [await register(market, f'Bidder{i}') for i in range(4)]

    ids = {}
    for bidder_id, amount in zip(bidders, ('60', '80', '95', '100')):
        ids[amount] = await place(market, auction_id, amount, bidder_id)

    result = await market['bids'].delete_bid(
        ids['100'], {'user_id': str(bidders[3]), 'role': 'buyer'}
    )

    assert result['highest_bid'] == str(ids['95'])
    auction = await market['auctions'].get_auction(auction_id)
    assert auction['highest_bid'] == str(ids['95'])
    assert auction['highest_bid_amount'] == 95.0
    assert [row['amount'] for row in await stored_bids(db_pool, auction_id)] == [
        Decimal('95'), Decimal('80'), Decimal('60')
    ]

@pytest.mark.asyncio
async def test_end_auction_records_winner(market):
    """Test ending an auction makes the highest bidder the winner."""
    auction_id = await open_auction(market)
    loser = await register(market, 'Loser')
    winner = await register(market, 'Winner')
    await place(market, auction_id, '200', loser)
    await place(market, auction_id, '250', winner)

    auction = await market['auctions'].end_auction(auction_id)

    assert auction['status'] == 'closed'
    assert auction['winner'] == str(winner)
    assert auction['closed_at'] is not None

@pytest.mark.asyncio
async def test_reserve_auction_scenario(market):
    """Test reserve 1000: X bids 1200, Y's 900 is rejected, ending makes X the winner."""
    auction_id = await open_auction(market, reserve_price=1000)
    bidder_x = await register(market, 'Xavier')
    bidder_y = await register(market, 'Yara')

    await place(market, auction_id, '1200', bidder_x)
    with pytest.raises(BidTooLowError):
        await place(market, auction_id, '900', bidder_y)

    auction = await market['auctions'].end_auction(auction_id)

    assert auction['winner'] == str(bidder_x)
    assert auction['highest_bid_amount'] == 1200.0
    assert auction['reserve_met'] is True

@pytest.mark.asyncio
async def test_concurrent_bids_keep_highest_consistent(market, db_pool):
    """Test racing bids leave the auction pointing at its largest stored bid."""
    auction_id = await open_auction(market)
    bidders = [await register(market, f'Racer{i}') for i in range(10)]
    amounts = [str(amount) for amount in range(200, 100, -10)]

    results = await asyncio.gather(
        *(place(market, auction_id, amount, bidder_id)
          for amount, bidder_id in zip(amounts, bidders)),
        return_exceptions=True
    )

    accepted = [r for r in results if isinstance(r, uuid.UUID)]
    rejected = [r for r in results if not isinstance(r, uuid.UUID)]
    assert all(isinstance(r, BidTooLowError) for r in rejected)

    rows = await stored_bids(db_pool, auction_id)
    assert len(rows) == len(accepted)

    # 200 beats every other bid, so it is always accepted and always leads
    auction = await market['auctions'].get_auction(auction_id)
    assert rows[0]['amount'] == Decimal('200')
    assert auction['highest_bid'] == str(rows[0]['id'])

@pytest.mark.asyncio
async def test_delete_user_repoints_their_leading_bid(market, db_pool):
    """Test removing the leading bidder hands the lead to the next bid."""
    auction_id = await open_auction(market)
    staying = await register(market, 'Staying')
    leaving = await register(market, 'Leaving')
    late = await register(market, 'Late')

    kept = await place(market, auction_id, '100', staying)
    await place(market, auction_id, '150', leaving)

    await market['users'].delete_user(leaving)

    auction = await market['auctions'].get_auction(auction_id)
    assert auction['highest_bid'] == str(kept)
    assert auction['highest_bid_amount'] == 100.0

    with pytest.raises(BidTooLowError):
        await place(market, auction_id, '100', late)
    accepted = await place(market, auction_id, '120', late)

    auction = await market['auctions'].get_auction(auction_id)
    assert auction['highest_bid'] == str(accepted)
