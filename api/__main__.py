"""Command line interface for running the API server."""
import asyncio
import logging
import signal
import sys

import uvicorn

from config import settings_conf
from database import init_db, close as db_close

# Configure logging
logging.basicConfig(
    level=settings_conf['log_level'],
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Global instances
server = None
should_exit = False

def handle_shutdown(signum, frame):
    """Handle shutdown signals gracefully."""
    global should_exit
    logger.info("Shutdown signal received. Cleaning up...")
    should_exit = True

async def startup():
    """Initialize the database."""
    logger.info("Initializing database...")
    await init_db()

class UvicornServer:
    """Wrapper for running uvicorn with proper lifecycle management."""

    def __init__(self, app_path: str = "api:app", host: str = "0.0.0.0", port: int = 8000):
        self.config = uvicorn.Config(
            app_path,
            host=host,
            port=port,
            log_level=settings_conf['log_level'].lower()
        )
        self.server = uvicorn.Server(self.config)

    async def run(self):
        """Run the server in a way that can be stopped."""
        await self.server.serve()

    async def stop(self):
        """Stop the server."""
        self.server.should_exit = True
        if hasattr(self.server, 'force_exit'):
            self.server.force_exit = True

async def run_api():
    """Run the API server."""
    global server
    server = UvicornServer(
        host=settings_conf['api_host'],
        port=settings_conf['api_port']
    )
    await server.run()

async def main() -> int:
    """Run the API server until a shutdown signal arrives.

    Returns:
        Process exit code
    """
    global server, should_exit
    exit_code = 0

    try:
        # Register signal handlers in main thread
        signal.signal(signal.SIGINT, handle_shutdown)
        signal.signal(signal.SIGTERM, handle_shutdown)

        try:
            await startup()
        except Exception as e:
            logger.error(f"Could not connect to the database: {e}")
            return 1

        api_task = asyncio.create_task(run_api(), name="api")
        logger.info("API server started")

        # Wait for shutdown signal
        while not should_exit:
            await asyncio.sleep(1)

            # Check if the server stopped on its own
            if api_task.done() and not api_task.cancelled():
                exc = api_task.exception()
                if exc:
                    logger.error(f"Task {api_task.get_name()} failed with error: {exc}")
                    exit_code = 1
                should_exit = True

        # Cleanup started
        logger.info("Starting cleanup...")

    except Exception as e:
        logger.error(f"Fatal error: {e}")
        exit_code = 1
    finally:
        if server:
            logger.info("Stopping API server...")
            await server.stop()

        # Cancel all tasks
        for task in asyncio.all_tasks():
            if task is not asyncio.current_task() and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        logger.info("Closing database connections...")
        await db_close()

        logger.info("Cleanup complete.")

    return exit_code

if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
