"""Tests for the notifications module."""

import smtplib
import uuid
import pytest
import pytest_asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

from notifications import (
    SubscriptionManager,
    NewsletterManager,
    NotificationDispatcher,
    Mailer,
    SubscriptionNotFoundError,
    AlreadySubscribedError,
    is_digest_due,
    build_digest,
    build_newsletter,
    next_week_window
)
from notifications.digest import NO_UPDATES
from errors import NotFoundError, ValidationError

from conftest import NOW

USER_ID = uuid.uuid4()

@pytest.fixture
def mailer():
    """A mailer whose send is recorded instead of delivered."""
    fake = MagicMock(spec=Mailer)
    fake.send = AsyncMock()
    return fake

@pytest_asyncio.fixture
async def dispatcher(pool, mailer):
    return NotificationDispatcher(pool=pool, mailer=mailer)

@pytest_asyncio.fixture
async def subscription_manager(pool):
    return SubscriptionManager(pool=pool)

@pytest_asyncio.fixture
async def newsletter_manager(pool):
    return NewsletterManager(pool=pool)

def test_digest_schedule():
    """Daily always, weekly on Sundays, monthly on the 1st."""
    sunday = datetime(2024, 6, 2, tzinfo=timezone.utc)
    monday = sunday + timedelta(days=1)
    first = datetime(2024, 7, 1, tzinfo=timezone.utc)

    assert is_digest_due('daily', monday)
    assert is_digest_due('weekly', sunday)
    assert not is_digest_due('weekly', monday)
    assert is_digest_due('monthly', first)
    assert not is_digest_due('monthly', sunday)
    assert not is_digest_due('hourly', sunday)

def test_next_week_window():
    """Next week runs Sunday to Sunday."""
    wednesday = datetime(2024, 6, 5, 15, 30, tzinfo=timezone.utc)

    start, end = next_week_window(wednesday)

    assert start == datetime(2024, 6, 9, tzinfo=timezone.utc)
    assert end == datetime(2024, 6, 16, tzinfo=timezone.utc)

def test_build_digest_sections():
    """Each subscribed category gets its own section."""
    auctions = [{'title': 'Copper wire lot', 'start_date': NOW}]
    bids = [{'amount': 1200, 'auction_title': 'Copper wire lot'}]

    subject, text, html = build_digest(['auctions', 'bids'], auctions, bids)

    assert subject == 'Your Subscription Updates'
    assert 'Upcoming Auctions' in text
    assert 'Copper wire lot - starts Jun 02, 2024' in text
    assert 'Recent Bids' in text
    assert 'System Updates' not in text
    assert '<h2>Recent Bids</h2>' in html

def test_build_digest_without_categories():
    subject, text, html = build_digest([])

    assert text == NO_UPDATES
    assert NO_UPDATES in html

def test_build_digest_escapes_html():
    _, _, html = build_digest(['auctions'], [{'title': '<b>Lead</b>', 'start_date': NOW}])

    assert '<b>Lead</b>' not in html
    assert '&lt;b&gt;Lead&lt;/b&gt;' in html

def test_build_newsletter():
    """Only weekly subscribers get a newsletter."""
    auctions = [{'title': 'Steel beams', 'start_date': NOW}]

    subject, text, _ = build_newsletter('weekly', auctions)
    assert subject == 'Weekly Auction Newsletter'
    assert 'Steel beams' in text

    assert build_newsletter('daily', auctions) is None
    assert build_newsletter('monthly', auctions) is None

@pytest.mark.asyncio
async def test_mailer_without_host_does_not_connect():
    """Test that an unconfigured mailer only logs."""
    with patch('notifications.mailer.smtplib.SMTP') as smtp:
        await Mailer().send('ada@example.com', 'Hello', 'Body')
    smtp.assert_not_called()

@pytest.mark.asyncio
async def test_mailer_sends_over_smtp():
    """Test sending through a configured server."""
    mailer = Mailer(smtp_host='mail.local', smtp_user='bot', smtp_password='pw')

    with patch('notifications.mailer.smtplib.SMTP') as smtp:
        await mailer.send('ada@example.com', 'Hello', 'Body', '<p>Body</p>')

    server = smtp.return_value.__enter__.return_value
    server.starttls.assert_called_once()
    server.login.assert_called_once_with('bot', 'pw')
    message = server.send_message.call_args.args[0]
    assert message['To'] == 'ada@example.com'
    assert message['Subject'] == 'Hello'

@pytest.mark.asyncio
async def test_send_digests(dispatcher, pool, conn, mailer):
    """Test due subscribers are mailed and a failed send is skipped."""
    daily = {'id': uuid.uuid4(), 'user_id': uuid.uuid4(), 'frequency': 'daily',
             'categories': ['auctions'], 'email': 'daily@example.com'}
    weekly = {'id': uuid.uuid4(), 'user_id': uuid.uuid4(), 'frequency': 'weekly',
              'categories': ['bids'], 'email': 'weekly@example.com'}
    monthly = {'id': uuid.uuid4(), 'user_id': uuid.uuid4(), 'frequency': 'monthly',
               'categories': ['auctions'], 'email': 'monthly@example.com'}

    conn.fetch.side_effect = [[daily, weekly, monthly], [], []]
    outcomes = iter([None, smtplib.SMTPException('refused')])
    held_while_sending = []

    async def send(*args):
        held_while_sending.append(pool.in_use)
        outcome = next(outcomes)
        if outcome is not None:
            raise outcome

    mailer.send.side_effect = send

    sent = await dispatcher.send_digests(NOW)

    assert sent == 1
    recipients = [call.args[0] for call in mailer.send.await_args_list]
    assert recipients == ['daily@example.com', 'weekly@example.com']
    assert held_while_sending == [0, 0]
    conn.execute.assert_awaited_once()
    assert conn.execute.await_args.args[1:] == ([daily['id']], NOW)

@pytest.mark.asyncio
async def test_send_newsletters(dispatcher, conn, mailer):
    """Test only weekly newsletter subscribers are mailed."""
    conn.fetch.side_effect = [
        [{'title': 'Steel beams', 'start_date': NOW + timedelta(days=8)}],
        [
            {'subscription_type': 'weekly', 'email': 'weekly@example.com'},
            {'subscription_type': 'daily', 'email': 'daily@example.com'}
        ]
    ]

    sent = await dispatcher.send_newsletters(NOW)

    assert sent == 1
    mailer.send.assert_awaited_once()
    assert mailer.send.await_args.args[1] == 'Weekly Auction Newsletter'

@pytest.mark.asyncio
async def test_subscribe(subscription_manager, conn):
    """Test creating a subscription de-duplicates categories."""
    conn.fetchval.return_value = True
    conn.fetchrow.return_value = {
        'id': uuid.uuid4(), 'user_id': USER_ID, 'frequency': 'weekly',
        'categories': ['auctions', 'bids'], 'last_sent_at': None,
        'created_at': NOW, 'updated_at': NOW
    }

    subscription = await subscription_manager.subscribe(
        USER_ID, 'weekly', ['auctions', 'bids', 'auctions']
    )

    assert subscription['frequency'] == 'weekly'
    assert conn.fetchrow.await_args.args[3] == ['auctions', 'bids']
    assert 'ON CONFLICT (user_id) DO UPDATE' in conn.fetchrow.await_args.args[0]

@pytest.mark.asyncio
async def test_subscribe_validation(subscription_manager, conn):
    with pytest.raises(ValidationError):
        await subscription_manager.subscribe(USER_ID, 'hourly', ['auctions'])

    with pytest.raises(ValidationError):
        await subscription_manager.subscribe(USER_ID, 'daily', ['gossip'])

@pytest.mark.asyncio
async def test_subscribe_unknown_user(subscription_manager, conn):
    conn.fetchval.return_value = False

    with pytest.raises(NotFoundError):
        await subscription_manager.subscribe(uuid.uuid4(), 'daily', ['auctions'])

@pytest.mark.asyncio
async def test_unsubscribe_without_subscription(subscription_manager, conn):
    conn.execute.return_value = 'DELETE 0'

    with pytest.raises(SubscriptionNotFoundError):
        await subscription_manager.unsubscribe(USER_ID)

@pytest.mark.asyncio
async def test_newsletter_already_subscribed(newsletter_manager, conn):
    """Test subscribing to the newsletter twice."""
    conn.fetchval.return_value = True
    conn.fetchrow.return_value = None

    with pytest.raises(AlreadySubscribedError) as exc:
        await newsletter_manager.subscribe(USER_ID, 'weekly', ['new_auctions'])
    assert exc.value.message == "User is already subscribed"

@pytest.mark.asyncio
async def test_newsletter_update_missing(newsletter_manager, conn):
    conn.fetchrow.return_value = None

    with pytest.raises(SubscriptionNotFoundError):
        await newsletter_manager.update(USER_ID, subscription_type='daily')

    with pytest.raises(ValidationError):
        await newsletter_manager.update(USER_ID)
