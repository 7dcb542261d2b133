"""Base interface for chain watchers.

A watcher tracks one asset on one network. It polls a history provider for
every watched address and, where the provider offers one, listens on a push
channel. Both paths share the watcher's dedup record, so a transaction hash
turns into deposits at most once per process.
"""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional

import httpx

from deposit_monitor.errors import ProviderError
from deposit_monitor.models import Deposit, Network
from deposit_monitor.scanner.stream import PushChannel
from deposit_monitor.services.address_directory import AddressDirectory, UserId
from deposit_monitor.utils.dedup import DedupRecord

logger = logging.getLogger(__name__)

DepositCallback = Callable[[list[Deposit]], Awaitable[Any]]

_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


def parse_iso_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 provider timestamp into an aware UTC datetime."""
    # Some providers send nanosecond fractions
    trimmed = _FRACTION_RE.sub(r"\1", value.strip()).replace("Z", "+00:00")
    parsed = datetime.fromisoformat(trimmed)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def from_unix(seconds: float) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


@dataclass
class TransactionInfo:
    """A transfer to one of our addresses, already in human units."""

    txid: str
    to_address: str
    amount: Decimal
    confirmations: int
    timestamp: datetime
    from_address: Optional[str] = None
    block_height: Optional[int] = None
    # False when the provider gave no count and only returns final transfers
    confirmations_reported: bool = True


class ChainWatcher(ABC):
    """Abstract base class for per-chain deposit watchers.

    Subclasses supply the provider call and the chain-specific parsing;
    filtering, owner resolution, dedup and normalization live here.
    """

    network: Network
    asset: str
    label: str

    def __init__(
        self,
        directory: AddressDirectory,
        min_confirmations: int = 1,
        request_delay: float = 0.2,
        timeout: float = 30.0,
        dedup_max_entries: int = 0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize watcher.

        Args:
            directory: Shared address directory (read-only here)
            min_confirmations: Polled transactions below this are ignored
            request_delay: Pause between per-address provider requests
            timeout: Provider request timeout in seconds
            dedup_max_entries: Cap on remembered hashes (0 = unbounded)
            client: Optional preconfigured HTTP client
        """
        self.directory = directory
        self.min_confirmations = min_confirmations
        self.request_delay = request_delay
        self.timeout = timeout
        self.dedup = DedupRecord(max_entries=dedup_max_entries, name=self.label)
        self.push_channel: Optional[PushChannel] = None
        self.quick_poll_interval: Optional[float] = None
        self._client = client
        self._on_deposit_callback: Optional[DepositCallback] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    @abstractmethod
    async def fetch_transactions(self, address: str) -> list[dict[str, Any]]:
        """Fetch raw transaction history for an address.

        Raises:
            ProviderError: If the provider reports a failure
            httpx.HTTPError: On transport errors or bad status codes
        """

    @abstractmethod
    def parse_transaction(self, tx: dict[str, Any], address: str) -> Optional[TransactionInfo]:
        """Normalize one raw transaction.

        Returns:
            TransactionInfo for a transfer of our asset to ``address``, else None
        """

    async def get_fiat_price(self) -> Optional[Decimal]:
        """USD price used to value deposits (None when not tracked)."""
        return None

    def set_deposit_callback(self, callback: DepositCallback) -> None:
        """Set callback for deposits detected outside the poll cycle.

        Callback signature: async def callback(deposits: list[Deposit]) -> None
        """
        self._on_deposit_callback = callback

    @property
    def processed_count(self) -> int:
        return len(self.dedup)

    @property
    def realtime_enabled(self) -> bool:
        return self.push_channel is not None

    # ------------------------------------------------------------------
    # Polling path
    # ------------------------------------------------------------------

    async def check_address(self, address: str) -> list[Deposit]:
        """Check one address for new deposits.

        Provider failures are logged and yield an empty list.
        """
        logger.debug(f"Checking {self.label} address: {address}")

        try:
            raw_transactions = await self.fetch_transactions(address)
        except (httpx.HTTPError, ProviderError, ValueError) as e:
            logger.error(f"Error checking {self.label} address {address}: {e}")
            return []

        logger.debug(f"Found {len(raw_transactions)} {self.label} transactions for address {address}")

        accepted: list[tuple[TransactionInfo, UserId]] = []
        for raw in raw_transactions:
            tx = self.parse_transaction(raw, address)
            if tx is None:
                continue
            if tx.confirmations_reported and tx.confirmations < self.min_confirmations:
                continue
            user_id = self._claim(tx)
            if user_id is not None:
                accepted.append((tx, user_id))

        return await self._build_deposits(accepted)

    async def check_all_addresses(self) -> list[Deposit]:
        """Check every watched address, one after the other.

        Works on the address list as it was when the cycle started.
        """
        addresses = self.directory.list_addresses(self.network)

        if not addresses:
            logger.info(f"No {self.label} addresses to monitor")
            return []

        logger.info(f"Checking {self.label} deposits for {len(addresses)} addresses...")

        all_deposits: list[Deposit] = []
        for i, address in enumerate(addresses):
            try:
                all_deposits.extend(await self.check_address(address))
            except Exception as e:
                logger.error(f"Error scanning {self.label} address {address}: {e}")

            # Stay under provider rate limits
            if i < len(addresses) - 1 and self.request_delay > 0:
                await asyncio.sleep(self.request_delay)

        if all_deposits:
            logger.info(f"Found {len(all_deposits)} new {self.label} deposits")
        else:
            logger.info(f"No new {self.label} deposits found")

        return all_deposits

    # ------------------------------------------------------------------
    # Push path
    # ------------------------------------------------------------------

    def extract_push_transactions(self, message: dict[str, Any]) -> list[TransactionInfo]:
        """Turn a push frame into candidate transfers (none by default)."""
        return []

    async def handle_push_message(self, message: dict[str, Any]) -> list[Deposit]:
        """Process one push frame and return the new deposits it carried.

        Candidates are unconfirmed and stamped with the receipt time. All
        transfers in one transaction are accepted or skipped together.
        """
        candidates = self.extract_push_transactions(message)
        if not candidates:
            return []

        txid = candidates[0].txid
        if self.dedup.seen(txid):
            return []

        accepted: list[tuple[TransactionInfo, UserId]] = []
        for tx in candidates:
            user_id = self.directory.resolve_owner(tx.to_address, self.network)
            if user_id is not None:
                accepted.append((tx, user_id))

        if not accepted or not self.dedup.claim(txid):
            return []

        logger.info(f"{self.label} push notification matched transaction {txid}")
        return await self._build_deposits(accepted)

    async def _on_push_message(self, message: dict[str, Any]) -> None:
        deposits = await self.handle_push_message(message)
        if deposits and self._on_deposit_callback:
            await self._on_deposit_callback(deposits)

    def subscription_frames(self) -> list[dict[str, Any]]:
        """Frames sent after the push channel (re)connects."""
        return []

    def start_push(self) -> None:
        if self.push_channel is not None:
            self.push_channel.start()

    async def stop_push(self) -> None:
        if self.push_channel is not None:
            await self.push_channel.stop()

    async def restart_push(self) -> None:
        if self.push_channel is not None:
            await self.push_channel.restart()

    # ------------------------------------------------------------------
    # Normalization
    # ------------------------------------------------------------------

    def _claim(self, tx: TransactionInfo) -> Optional[UserId]:
        """Resolve the owner and claim the hash; no await may happen in here."""
        if self.dedup.seen(tx.txid):
            return None

        user_id = self.directory.resolve_owner(tx.to_address, self.network)
        if user_id is None:
            # Directory may lag behind address churn
            logger.debug(f"No owner for {self.label} address {tx.to_address}, skipping {tx.txid}")
            return None

        if not self.dedup.claim(tx.txid):
            return None
        return user_id

    async def _build_deposits(
        self, accepted: list[tuple[TransactionInfo, UserId]]
    ) -> list[Deposit]:
        if not accepted:
            return []

        price = await self.get_fiat_price()

        deposits = []
        for tx, user_id in accepted:
            deposit = Deposit(
                user_id=user_id,
                asset=self.asset,
                network=self.network,
                amount=tx.amount,
                amount_usd=tx.amount * price if price is not None else None,
                tx_hash=tx.txid,
                from_address=tx.from_address or "unknown",
                to_address=tx.to_address,
                timestamp=tx.timestamp,
                confirmations=max(0, tx.confirmations),
            )
            logger.info(
                f"New {self.label} deposit: user={user_id} amount={deposit.amount} "
                f"{self.asset.upper()} to={deposit.to_address} from={deposit.from_address} "
                f"hash={deposit.tx_hash} confirmations={deposit.confirmations}"
            )
            deposits.append(deposit)

        return deposits

    async def close(self) -> None:
        """Stop push notifications and close the HTTP client."""
        await self.stop_push()
        if self._client:
            await self._client.aclose()
            self._client = None
