"""Tests for the background workers."""

import pytest
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

from workers import AuctionCloser, DigestSender

from conftest import NOW

@pytest.mark.asyncio
async def test_auction_closer_run_once():
    manager = MagicMock()
    manager.close_expired_auctions = AsyncMock(return_value=2)

    closer = AuctionCloser(manager=manager, interval=1)

    assert await closer.run_once() == 2

@pytest.mark.asyncio
async def test_auction_closer_survives_errors():
    """Test that a failed sweep doesn't stop the loop."""
    manager = MagicMock()
    closer = AuctionCloser(manager=manager, interval=0)
    calls = []

    async def sweep():
        calls.append(len(calls))
        if len(calls) == 1:
            raise RuntimeError("database went away")
        closer.stop()
        return 0

    manager.close_expired_auctions = sweep

    await closer.run()

    assert len(calls) == 2

@pytest.mark.asyncio
async def test_digest_sender_newsletter_once_per_sunday():
    """Test newsletters go out on Sunday and only once that day."""
    dispatcher = MagicMock()
    dispatcher.send_digests = AsyncMock(return_value=3)
    dispatcher.send_newsletters = AsyncMock(return_value=2)

    sender = DigestSender(dispatcher=dispatcher, interval=1)

    assert await sender.run_once(NOW) == 5
    assert await sender.run_once(NOW + timedelta(hours=1)) == 3
    assert await sender.run_once(NOW + timedelta(days=1)) == 3
    dispatcher.send_newsletters.assert_awaited_once_with(NOW)
