"""Background workers run alongside the API."""

from .auction_closer import AuctionCloser
from .digest_sender import DigestSender

__all__ = ['AuctionCloser', 'DigestSender']
