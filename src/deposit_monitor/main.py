"""Main entry point - runs the deposit monitor and its control API."""

import asyncio
import logging
import signal
from typing import Optional

import uvicorn

from deposit_monitor.api.app import create_app
from deposit_monitor.config import get_settings
from deposit_monitor.scanner.factory import build_watchers
from deposit_monitor.services.address_directory import AddressDirectory
from deposit_monitor.services.delivery import LedgerClient
from deposit_monitor.services.dispatcher import DepositDispatcher
from deposit_monitor.services.pricing import PriceOracle

logger = logging.getLogger(__name__)


class Application:
    """Wires the monitor together and runs it alongside the API server."""

    def __init__(self):
        self.settings = get_settings()
        self.price_oracle = PriceOracle(
            timeout=self.settings.price_timeout,
            cache_ttl=self.settings.price_cache_ttl,
        )
        self.directory = AddressDirectory(
            base_url=self.settings.main_server_url,
            secret_key=self.settings.monitor_secret_key,
            timeout=self.settings.http_timeout,
        )
        self.ledger = LedgerClient(
            base_url=self.settings.main_server_url,
            secret_key=self.settings.monitor_secret_key,
            source=self.settings.delivery_source,
            timeout=self.settings.http_timeout,
        )
        self.dispatcher: Optional[DepositDispatcher] = None
        self._shutdown_event = asyncio.Event()

    async def start(self):
        """Start all services."""
        log_level = logging.DEBUG if self.settings.debug else logging.INFO
        logging.basicConfig(
            level=log_level,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )

        logger.info("Starting deposit monitor...")
        logger.info(f"Environment: {self.settings.environment}")
        logger.info(f"Main server: {self.settings.main_server_url}")

        watchers = build_watchers(self.settings, self.directory, self.price_oracle)
        for watcher in watchers:
            extras = []
            if watcher.push_channel is not None:
                extras.append("push")
            if watcher.quick_poll_interval:
                extras.append(f"quick poll {watcher.quick_poll_interval}s")
            logger.info(f"Watching {watcher.label} ({', '.join(extras) or 'polling only'})")

        self.dispatcher = DepositDispatcher(
            self.directory,
            watchers,
            self.ledger,
            check_interval=self.settings.check_interval,
            address_refresh_interval=self.settings.address_refresh_interval,
        )
        self.dispatcher.start()

        api_task = asyncio.create_task(self._run_api())
        logger.info("API task created")

        await self._shutdown_event.wait()

        api_task.cancel()
        await asyncio.gather(api_task, return_exceptions=True)

        await self._cleanup()

    async def _run_api(self):
        """Run the FastAPI server."""
        try:
            app = create_app(self.dispatcher, self.settings)
            config = uvicorn.Config(
                app,
                host=self.settings.api_host,
                port=self.settings.api_port,
                log_level="debug" if self.settings.debug else "info",
            )
            server = uvicorn.Server(config)
            logger.info(f"Starting API server on {self.settings.api_host}:{self.settings.api_port}")
            await server.serve()
        except asyncio.CancelledError:
            logger.info("API server cancelled")
        except Exception as e:
            logger.error(f"API error: {e}")
            raise

    async def _cleanup(self):
        """Cleanup resources."""
        logger.info("Cleaning up...")

        if self.dispatcher:
            await self.dispatcher.close()
        await self.price_oracle.close()

        logger.info("Cleanup complete")

    def shutdown(self):
        """Signal shutdown."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()


def main():
    """Main entry point."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    app = Application()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, app.shutdown)

    try:
        loop.run_until_complete(app.start())
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    finally:
        loop.close()


if __name__ == "__main__":
    main()
