"""Shared fixtures: an in-memory stand-in for the asyncpg pool and row builders."""

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List
from unittest.mock import AsyncMock

import pytest

# A Sunday, the 2nd of the month
NOW = datetime(2024, 6, 2, 12, 0, tzinfo=timezone.utc)

class FakeTransaction:
    """Async context manager returned by FakeConnection.transaction()."""

    def __init__(self, conn):
        self.conn = conn

    async def __aenter__(self):
        self.conn.transactions += 1
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is not None:
            self.conn.rollbacks += 1
        return False

class FakeConnection:
    """Connection whose query methods are AsyncMocks scripted per test."""

    def __init__(self):
        self.fetchrow = AsyncMock(return_value=None)
        self.fetch = AsyncMock(return_value=[])
        self.fetchval = AsyncMock(return_value=None)
        self.execute = AsyncMock(return_value='UPDATE 1')
        self.transactions = 0
        self.rollbacks = 0

    def transaction(self):
        return FakeTransaction(self)

class FakePool:
    """Pool that always hands out the same FakeConnection."""

    def __init__(self, conn: FakeConnection):
        self.conn = conn
        self.in_use = 0

    @asynccontextmanager
    async def acquire(self):
        self.in_use += 1
        try:
            yield self.conn
        finally:
            self.in_use -= 1

@pytest.fixture
def conn() -> FakeConnection:
    return FakeConnection()

@pytest.fixture
def pool(conn) -> FakePool:
    return FakePool(conn)

def make_auction_state(**overrides) -> Dict[str, Any]:
    """A row as returned by the auction lock query."""
    state = {
        'id': uuid.uuid4(),
        'status': 'open',
        'start_date': NOW - timedelta(days=1),
        'end_date': NOW + timedelta(days=1),
        'reserve_price': Decimal('0'),
        'highest_bid_id': None,
        'winner_id': None,
        'highest_bid_amount': None,
        'highest_bidder_id': None
    }
    state.update(overrides)
    return state

def locked(state: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Rows lock_auction() reads for state: the auction, then its highest bid."""
    rows = [state]
    if state['highest_bid_id'] is not None:
        rows.append({
            'amount': state['highest_bid_amount'],
            'bidder_id': state['highest_bidder_id']
        })
    return rows

def make_auction_row(**overrides) -> Dict[str, Any]:
    """A full auctions row joined with its highest bid amount."""
    row = {
        'id': uuid.uuid4(),
        'title': 'Copper wire lot',
        'description': '2t of stripped copper wire',
        'scrap_item_id': uuid.uuid4(),
        'start_date': NOW - timedelta(days=1),
        'end_date': NOW + timedelta(days=1),
        'status': 'open',
        'highest_bid_id': None,
        'highest_bid_amount': None,
        'reserve_price': Decimal('0'),
        'winner_id': None,
        'closed_at': None,
        'created_at': NOW - timedelta(days=2),
        'updated_at': NOW - timedelta(days=2)
    }
    row.update(overrides)
    return row

def make_bid_row(**overrides) -> Dict[str, Any]:
    """A bids row."""
    row = {
        'id': uuid.uuid4(),
        'amount': Decimal('100'),
        'auction_id': uuid.uuid4(),
        'bidder_id': uuid.uuid4(),
        'bid_date': NOW,
        'status': 'active',
        'created_at': NOW,
        'updated_at': NOW
    }
    row.update(overrides)
    return row

def make_user_row(**overrides) -> Dict[str, Any]:
    """A users row without the password hash."""
    row = {
        'id': uuid.uuid4(),
        'name': 'Ada Buyer',
        'email': 'ada@example.com',
        'role': 'buyer',
        'address_street': '1 Foundry Lane',
        'address_city': 'Sheffield',
        'address_country': 'UK',
        'phone': '+44 114 000 0000',
        'created_at': NOW,
        'updated_at': NOW
    }
    row.update(overrides)
    return row
