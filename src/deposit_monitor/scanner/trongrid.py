"""TRC20 token watcher using the TronGrid API.

API Docs: https://developers.tron.network/reference/get-trc20-transaction-info-by-account-address

TronGrid has no reliable push feed, so with an API key configured the
watcher is also polled on a shorter "quick poll" interval.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from deposit_monitor.errors import ProviderError
from deposit_monitor.models import Network
from deposit_monitor.scanner.base import ChainWatcher, TransactionInfo, from_unix
from deposit_monitor.services.address_directory import AddressDirectory

logger = logging.getLogger(__name__)

TRONGRID_MAINNET = "https://api.trongrid.io"

USDT_CONTRACT = "TR7NHqjeKQxGTCi8q8ZY4pL8otSzgjLj6t"

# Used when the provider omits token metadata
DEFAULT_DECIMALS = 6

HISTORY_LIMIT = 100


class TRC20Watcher(ChainWatcher):
    """USDT (TRC20) deposit watcher."""

    network = Network.TRC20
    asset = "usdt"
    label = "TRC20"

    def __init__(
        self,
        directory: AddressDirectory,
        api_key: Optional[str] = None,
        contract: str = USDT_CONTRACT,
        base_url: str = TRONGRID_MAINNET,
        quick_poll_interval: Optional[float] = None,
        **kwargs,
    ):
        """Initialize TRC20 watcher.

        Args:
            directory: Shared address directory
            api_key: Optional TronGrid API key for higher rate limits
            contract: TRC20 contract to track (base58, compared exactly)
            base_url: TronGrid endpoint
            quick_poll_interval: Extra polling interval in seconds (None = off)
        """
        super().__init__(directory, **kwargs)
        self.api_key = api_key
        self.contract = contract
        self.base_url = base_url.rstrip("/")
        self.quick_poll_interval = quick_poll_interval

        self._headers = {"Accept": "application/json"}
        if api_key:
            self._headers["TRON-PRO-API-KEY"] = api_key

    @property
    def realtime_enabled(self) -> bool:
        return bool(self.quick_poll_interval)

    async def fetch_transactions(self, address: str) -> list[dict[str, Any]]:
        client = await self._get_client()

        params = {
            "limit": HISTORY_LIMIT,
            "only_confirmed": "true",
            "only_to": "true",
        }

        response = await client.get(
            f"{self.base_url}/v1/accounts/{address}/transactions/trc20",
            headers=self._headers,
            params=params,
        )
        response.raise_for_status()
        data = response.json()

        if not isinstance(data, dict) or not data.get("success", False):
            raise ProviderError("TronGrid", f"non-success status for {address}")

        result = data.get("data")
        return result if isinstance(result, list) else []

    def parse_transaction(self, tx: dict[str, Any], address: str) -> Optional[TransactionInfo]:
        """Parse a TronGrid TRC20 transfer (only tracked contract, only incoming)."""
        try:
            token_info = tx.get("token_info") or {}
            if token_info.get("address") != self.contract:
                return None
            if tx.get("to") != address:
                return None

            txid = tx.get("transaction_id")
            if not txid:
                return None

            decimals = token_info.get("decimals")
            decimals = DEFAULT_DECIMALS if decimals is None else int(decimals)
            amount = Decimal(str(tx.get("value", "0"))) / (Decimal(10) ** decimals)

            confirmations = tx.get("confirmations")

            return TransactionInfo(
                txid=txid,
                to_address=tx["to"],
                amount=amount,
                # only_confirmed=true already filters; TronGrid rarely reports a count
                confirmations=1 if confirmations is None else int(confirmations),
                confirmations_reported=confirmations is not None,
                timestamp=from_unix(int(tx.get("block_timestamp") or 0) / 1000),
                from_address=tx.get("from") or None,
            )

        except (KeyError, TypeError, ValueError, InvalidOperation) as e:
            logger.warning(f"Error parsing TRC20 transaction for {address}: {e}")
            return None
