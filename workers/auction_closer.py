"""Worker that closes auctions once their end date has passed."""

import asyncio
import logging
from typing import Optional

from auctions import AuctionManager

# Configure logging
logger = logging.getLogger(__name__)

class AuctionCloser:
    """Periodically sweeps open auctions past their end date."""

    def __init__(self, manager: Optional[AuctionManager] = None, interval: int = 60):
        """Initialize the sweeper.

        Args:
            manager: Auction manager to sweep with
            interval: Seconds between sweeps
        """
        self.manager = manager or AuctionManager()
        self.interval = interval
        self._stop_requested = False

    def stop(self):
        """Signal the sweeper to stop."""
        self._stop_requested = True

    async def run_once(self) -> int:
        """Run a single sweep.

        Returns:
            Number of auctions closed
        """
        return await self.manager.close_expired_auctions()

    async def run(self):
        """Main sweep loop."""
        logger.info(f"Starting auction closer (every {self.interval}s)")

        while not self._stop_requested:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in auction closer: {e}")
            await asyncio.sleep(self.interval)

        logger.info("Auction closer stopped")
