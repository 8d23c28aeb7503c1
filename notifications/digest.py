"""Digest and newsletter composition.

Pure functions: they decide when a subscriber is due and render the email
bodies from data the dispatcher has already loaded.
"""

import html
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

DIGEST_SUBJECT = 'Your Subscription Updates'
NEWSLETTER_SUBJECT = 'Weekly Auction Newsletter'
NO_UPDATES = 'No updates available at the moment.'

def is_digest_due(frequency: str, now: datetime) -> bool:
    """Daily subscribers are always due, weekly on Sundays, monthly on the 1st."""
    if frequency == 'daily':
        return True
    if frequency == 'weekly':
        return now.weekday() == 6
    if frequency == 'monthly':
        return now.day == 1
    return False

def next_week_window(now: datetime) -> Tuple[datetime, datetime]:
    """Start (Sunday 00:00) and end (the following Sunday 00:00) of next week."""
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    start_of_week = today - timedelta(days=(now.weekday() + 1) % 7)
    start = start_of_week + timedelta(days=7)
    return start, start + timedelta(days=7)

def _format_date(value: Any) -> str:
    if isinstance(value, datetime):
        return value.strftime('%b %d, %Y')
    return str(value)

def _section(title: str, lines: List[str]) -> Tuple[str, str]:
    text = '\n'.join([title, '-' * len(title)] + [f'* {line}' for line in lines])
    items = ''.join(f'<li>{html.escape(line)}</li>' for line in lines)
    return text, f'<h2>{html.escape(title)}</h2><ul>{items}</ul>'

def build_digest(
    categories: Iterable[str],
    auctions: Iterable[Dict[str, Any]] = (),
    bids: Iterable[Dict[str, Any]] = (),
    system_updates: Iterable[str] = ()
) -> Tuple[str, str, str]:
    """Render a subscription digest.

    Args:
        categories: Subscribed categories (auctions, bids, system_updates)
        auctions: Upcoming auctions with title and start_date
        bids: Recent bids with amount and auction_title
        system_updates: Announcement lines

    Returns:
        Tuple of (subject, text, html)
    """
    categories = set(categories)
    sections = []

    if 'auctions' in categories:
        lines = [f"{a['title']} - starts {_format_date(a['start_date'])}" for a in auctions]
        sections.append(_section('Upcoming Auctions', lines or ['No upcoming auctions.']))

    if 'bids' in categories:
        lines = [f"{b['amount']} on {b['auction_title']}" for b in bids]
        sections.append(_section('Recent Bids', lines or ['No recent bids.']))

    if 'system_updates' in categories:
        lines = list(system_updates)
        sections.append(_section('System Updates', lines or ['No system updates.']))

    if not sections:
        return DIGEST_SUBJECT, NO_UPDATES, f'<p>{NO_UPDATES}</p>'

    text = '\n\n'.join(section[0] for section in sections)
    body = ''.join(section[1] for section in sections)
    return DIGEST_SUBJECT, text, f'<h1>{DIGEST_SUBJECT}</h1>{body}'

def build_newsletter(
    subscription_type: str,
    upcoming_auctions: Iterable[Dict[str, Any]]
) -> Optional[Tuple[str, str, str]]:
    """Render the newsletter for a subscription type.

    Only weekly subscribers receive a newsletter: the auctions starting next
    week. Daily and monthly newsletters have no content yet.

    Returns:
        Tuple of (subject, text, html), or None when nothing is sent
    """
    if subscription_type != 'weekly':
        return None

    auctions = list(upcoming_auctions)
    text = "Here are the auctions happening next week:\n\n" + '\n'.join(
        f"{a['title']} - {_format_date(a['start_date'])}" for a in auctions
    )
    items = ''.join(
        f"<li>{html.escape(a['title'])} - {_format_date(a['start_date'])}</li>"
        for a in auctions
    )
    body = f"<p>Here are the auctions happening next week:</p><ul>{items}</ul>"
    return NEWSLETTER_SUBJECT, text, body
