"""Deposit dispatcher: schedules checks across chains and forwards results.

Owns every timer in the process: the full check cycle, the address
directory refresh, quick polls, and the lifecycle of the watchers' push
channels.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Optional, Sequence, Union

from deposit_monitor.errors import UnsupportedNetworkError
from deposit_monitor.models import Deposit, Network
from deposit_monitor.scanner.base import ChainWatcher
from deposit_monitor.services.address_directory import AddressDirectory
from deposit_monitor.services.delivery import DeliveryResult, LedgerClient

logger = logging.getLogger(__name__)


class DepositDispatcher:
    """Fans a check out to every watcher and delivers the merged batch."""

    def __init__(
        self,
        directory: AddressDirectory,
        watchers: Sequence[ChainWatcher],
        ledger: LedgerClient,
        check_interval: float = 30,
        address_refresh_interval: float = 300,
    ):
        """Initialize dispatcher.

        Args:
            directory: Shared address directory
            watchers: Watchers in the order their deposits are concatenated
            ledger: Delivery client for deposit batches
            check_interval: Seconds between full checks
            address_refresh_interval: Seconds between directory refreshes
        """
        self.directory = directory
        self.ledger = ledger
        self.check_interval = check_interval
        self.address_refresh_interval = address_refresh_interval
        self.watchers: dict[Network, ChainWatcher] = {}
        for watcher in watchers:
            watcher.set_deposit_callback(self.forward)
            self.watchers[watcher.network] = watcher

        self._tasks: list[asyncio.Task] = []
        self._deliveries: set[asyncio.Task] = set()
        self._initial_check_done = False
        self.last_check_at: Optional[datetime] = None
        self.last_delivery: Optional[DeliveryResult] = None

    @property
    def monitoring(self) -> bool:
        return bool(self._tasks)

    def get_watcher(self, network: Union[str, Network]) -> ChainWatcher:
        """Look up the watcher for a network tag.

        Raises:
            UnsupportedNetworkError: If no watcher handles the network
        """
        try:
            key = Network(network)
        except ValueError:
            raise UnsupportedNetworkError(str(network)) from None

        watcher = self.watchers.get(key)
        if watcher is None:
            raise UnsupportedNetworkError(key.value)
        return watcher

    async def forward(self, deposits: Sequence[Deposit]) -> DeliveryResult:
        """Hand a batch to the ledger; failures are logged, never retried.

        The submission runs in its own task: cancelling the caller (e.g. a
        push channel restart) must not abort a batch whose hashes are claimed.
        """
        task = asyncio.create_task(self._deliver(list(deposits)), name="monitor-delivery")
        self._deliveries.add(task)
        task.add_done_callback(self._deliveries.discard)
        return await asyncio.shield(task)

    async def _deliver(self, deposits: list[Deposit]) -> DeliveryResult:
        result = await self.ledger.submit(deposits)
        self.last_delivery = result
        if not result.success:
            logger.error(
                f"Delivery of {len(deposits)} deposits failed: {result.message}. "
                f"Their hashes stay marked as processed."
            )
        return result

    async def check_all_chains(self) -> list[Deposit]:
        """Check every chain in order and forward the combined batch once."""
        all_deposits: list[Deposit] = []

        for watcher in self.watchers.values():
            try:
                all_deposits.extend(await watcher.check_all_addresses())
            except Exception as e:
                logger.error(f"Error checking {watcher.label} deposits: {e}")

        self.last_check_at = datetime.now(timezone.utc)

        if all_deposits:
            await self.forward(all_deposits)

        return all_deposits

    async def check_address(self, network: Union[str, Network], address: str) -> list[Deposit]:
        """Check a single address on one network and forward what it finds.

        Found hashes are claimed like in a scheduled cycle, so the batch is
        delivered here; a later cycle would skip them.
        """
        deposits = await self.get_watcher(network).check_address(address)
        if deposits:
            await self.forward(deposits)
        return deposits

    async def refresh_addresses(self) -> bool:
        """Refresh the directory; reconnect push channels whose address set changed."""
        previous = self.directory.all_addresses()

        if not await self.directory.refresh():
            return False

        if not self.monitoring:
            return True

        current = self.directory.all_addresses()
        for network, watcher in self.watchers.items():
            if set(previous.get(network, ())) == set(current.get(network, ())):
                continue
            if watcher.push_channel is not None:
                logger.info(f"{watcher.label} address list changed, resubscribing push channel")
                await watcher.restart_push()

        return True

    def start(self) -> None:
        """Start scheduled checks, directory refreshes and push channels."""
        if self.monitoring:
            logger.warning("Deposit monitoring already running")
            return

        logger.info(
            f"Starting deposit monitoring (check every {self.check_interval}s, "
            f"address refresh every {self.address_refresh_interval}s)"
        )

        self._tasks = [
            asyncio.create_task(self._startup(), name="monitor-startup"),
            asyncio.create_task(self._poll_loop(), name="monitor-poll"),
            asyncio.create_task(self._refresh_loop(), name="monitor-refresh"),
        ]

        for watcher in self.watchers.values():
            if watcher.quick_poll_interval:
                logger.info(
                    f"Starting {watcher.label} quick polling (every {watcher.quick_poll_interval}s)"
                )
                self._tasks.append(
                    asyncio.create_task(
                        self._quick_poll_loop(watcher), name=f"monitor-quick-{watcher.network.value}"
                    )
                )

    async def stop(self) -> None:
        """Cancel all timers and close push channels without reconnecting."""
        logger.info("Stopping deposit monitoring...")

        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        for watcher in self.watchers.values():
            await watcher.stop_push()

        self._initial_check_done = False

    async def _startup(self) -> None:
        refreshed = await self.directory.refresh()

        for watcher in self.watchers.values():
            watcher.start_push()

        if refreshed:
            await self._initial_check()
        else:
            logger.warning("Initial address fetch failed, first check waits for a successful refresh")

    async def _initial_check(self) -> None:
        self._initial_check_done = True
        await self._run_check()

    async def _run_check(self) -> None:
        try:
            await self.check_all_chains()
        except Exception as e:
            logger.error(f"Error in deposit check: {e}")

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.check_interval)
            await self._run_check()

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self.address_refresh_interval)
            try:
                refreshed = await self.refresh_addresses()
            except Exception as e:
                logger.error(f"Error refreshing addresses: {e}")
                continue

            if refreshed and not self._initial_check_done:
                await self._initial_check()

    async def _quick_poll_loop(self, watcher: ChainWatcher) -> None:
        while True:
            await asyncio.sleep(watcher.quick_poll_interval)
            logger.debug(f"Quick polling {watcher.label} transactions...")
            try:
                deposits = await watcher.check_all_addresses()
                if deposits:
                    await self.forward(deposits)
            except Exception as e:
                logger.error(f"Error in {watcher.label} quick poll: {e}")

    def status(self) -> dict[str, Any]:
        """Monitoring state for the control API."""
        addresses = self.directory.all_addresses()
        processed = {
            network.value: watcher.processed_count for network, watcher in self.watchers.items()
        }

        return {
            "monitoring": self.monitoring,
            "addresses": {network.value: len(values) for network, values in addresses.items()},
            "processed_transactions": {**processed, "total": sum(processed.values())},
            "realtime_enabled": {
                network.value: watcher.realtime_enabled for network, watcher in self.watchers.items()
            },
            "push_channels": {
                network.value: watcher.push_channel.state
                for network, watcher in self.watchers.items()
                if watcher.push_channel is not None
            },
            "last_check_at": self.last_check_at.isoformat() if self.last_check_at else None,
            "last_refresh_ok": self.directory.last_refresh_ok,
        }

    async def close(self) -> None:
        """Stop monitoring and release HTTP clients."""
        await self.stop()
        for watcher in self.watchers.values():
            await watcher.close()

        if self._deliveries:
            logger.info(f"Waiting for {len(self._deliveries)} deposit deliveries to finish...")
            await asyncio.gather(*self._deliveries, return_exceptions=True)
        await self.ledger.close()
        await self.directory.close()
