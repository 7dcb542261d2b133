"""BTC watcher using the BlockCypher API, with blockchain.info push.

BlockCypher docs: https://www.blockcypher.com/dev/bitcoin/
Push docs: https://www.blockchain.com/explorer/api/api_websocket
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import httpx

from deposit_monitor.errors import ProviderError
from deposit_monitor.models import Network
from deposit_monitor.scanner.base import ChainWatcher, TransactionInfo, parse_iso_timestamp
from deposit_monitor.scanner.stream import PushChannel
from deposit_monitor.services.address_directory import AddressDirectory
from deposit_monitor.services.pricing import PriceOracle

logger = logging.getLogger(__name__)

BLOCKCYPHER_MAINNET = "https://api.blockcypher.com/v1/btc/main"
BLOCKCHAIN_INFO_WS = "wss://ws.blockchain.info/inv"

# 1 BTC = 100,000,000 satoshis
SATOSHI_DIVISOR = Decimal("100000000")

# Transactions per history request
HISTORY_LIMIT = 50


class BTCWatcher(ChainWatcher):
    """BTC deposit watcher.

    Polling: BlockCypher full address history, confirmed transactions only.
    Push: blockchain.info unconfirmed-transaction feed plus per-address
    subscriptions. Free tier: 200 requests/hour without a token.
    """

    network = Network.BTC
    asset = "btc"
    label = "BTC"

    def __init__(
        self,
        directory: AddressDirectory,
        price_oracle: Optional[PriceOracle] = None,
        api_key: Optional[str] = None,
        base_url: str = BLOCKCYPHER_MAINNET,
        push_url: Optional[str] = None,
        reconnect_delay: float = 5.0,
        connect: Optional[Any] = None,
        **kwargs,
    ):
        """Initialize BTC watcher.

        Args:
            directory: Shared address directory
            price_oracle: USD price source (None disables fiat values)
            api_key: Optional BlockCypher token for higher rate limits
            base_url: BlockCypher chain endpoint
            push_url: Websocket URL; push is disabled when None
            reconnect_delay: Seconds before a dropped push channel reconnects
            connect: Websocket connection factory override
        """
        super().__init__(directory, **kwargs)
        self.price_oracle = price_oracle
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

        if push_url:
            self.push_channel = PushChannel(
                name=self.label,
                url=push_url,
                subscriptions=self.subscription_frames,
                on_message=self._on_push_message,
                reconnect_delay=reconnect_delay,
                open_timeout=self.timeout,
                connect=connect,
            )

    async def fetch_transactions(self, address: str) -> list[dict[str, Any]]:
        client = await self._get_client()

        params: dict[str, Any] = {
            "limit": HISTORY_LIMIT,
            "confirmations": self.min_confirmations,
        }
        if self.api_key:
            params["token"] = self.api_key

        response = await client.get(f"{self.base_url}/addrs/{address}/full", params=params)
        response.raise_for_status()
        data = response.json()

        if not isinstance(data, dict) or not isinstance(data.get("txs"), list):
            raise ProviderError("BlockCypher", f"invalid payload for {address}")

        return data["txs"]

    def parse_transaction(self, tx: dict[str, Any], address: str) -> Optional[TransactionInfo]:
        """Parse a BlockCypher transaction, summing the outputs to ``address``."""
        try:
            txid = tx.get("hash")
            if not txid:
                return None

            total_satoshis = Decimal("0")
            matched = False
            for output in tx.get("outputs") or []:
                if address in (output.get("addresses") or []):
                    matched = True
                    total_satoshis += Decimal(str(output.get("value", 0)))

            if not matched:
                return None

            from_address = None
            inputs = tx.get("inputs") or []
            if inputs and inputs[0].get("addresses"):
                from_address = inputs[0]["addresses"][0]

            received = tx.get("received") or tx.get("confirmed")
            timestamp = parse_iso_timestamp(received) if received else datetime.now(timezone.utc)

            return TransactionInfo(
                txid=txid,
                to_address=address,
                amount=total_satoshis / SATOSHI_DIVISOR,
                confirmations=int(tx.get("confirmations") or 0),
                timestamp=timestamp,
                from_address=from_address,
                block_height=tx.get("block_height"),
            )

        except (TypeError, ValueError, InvalidOperation, AttributeError) as e:
            logger.warning(f"Error parsing BTC transaction for {address}: {e}")
            return None

    async def get_fiat_price(self) -> Optional[Decimal]:
        if self.price_oracle is None:
            return None
        return await self.price_oracle.get_price_usd(self.asset)

    def subscription_frames(self) -> list[dict[str, Any]]:
        addresses = self.directory.list_addresses(self.network)
        if not addresses:
            return []

        frames: list[dict[str, Any]] = [{"op": "unconfirmed_sub"}]
        frames.extend({"op": "addr_sub", "addr": address} for address in addresses)
        return frames

    def extract_push_transactions(self, message: dict[str, Any]) -> list[TransactionInfo]:
        """Outputs to watched addresses in a ``utx``/``tx`` frame, grouped per address."""
        if message.get("op") not in ("utx", "tx"):
            return []

        tx = message.get("x")
        if not isinstance(tx, dict) or not tx.get("hash"):
            return []

        watched = set(self.directory.list_addresses(self.network))
        received: dict[str, Decimal] = {}

        try:
            for output in tx.get("out") or []:
                output_address = output.get("addr")
                if output_address and output_address in watched:
                    value = Decimal(str(output.get("value", 0)))
                    received[output_address] = received.get(output_address, Decimal("0")) + value
        except (TypeError, InvalidOperation, AttributeError) as e:
            logger.warning(f"Malformed BTC push transaction {tx.get('hash')}: {e}")
            return []

        if not received:
            return []

        from_address = None
        inputs = tx.get("inputs") or []
        if inputs and isinstance(inputs[0], dict):
            from_address = (inputs[0].get("prev_out") or {}).get("addr")

        now = datetime.now(timezone.utc)
        return [
            TransactionInfo(
                txid=tx["hash"],
                to_address=output_address,
                amount=satoshis / SATOSHI_DIVISOR,
                confirmations=0,
                timestamp=now,
                from_address=from_address,
            )
            for output_address, satoshis in received.items()
        ]
