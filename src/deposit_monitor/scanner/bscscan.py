"""BEP20 token watcher using the BscScan API.

Push notifications are optional: when a BSC JSON-RPC websocket URL is
configured, the watcher subscribes to ERC-20 ``Transfer`` logs of the
tracked contract addressed to watched wallets.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from deposit_monitor.errors import ProviderError
from deposit_monitor.models import Network
from deposit_monitor.scanner.base import ChainWatcher, TransactionInfo, from_unix
from deposit_monitor.scanner.stream import PushChannel
from deposit_monitor.services.address_directory import AddressDirectory

logger = logging.getLogger(__name__)

BSCSCAN_MAINNET = "https://api.bscscan.com/api"

USDT_CONTRACT = "0x55d398326f99059ff775485246999027b3197955"

# keccak256("Transfer(address,address,uint256)")
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"

# BEP20 USDT uses 18 decimals
TOKEN_DIVISOR = Decimal(10**18)


def address_to_topic(address: str) -> str:
    """Left-pad a 20-byte address into a 32-byte log topic."""
    return "0x" + address.lower().replace("0x", "").zfill(64)


def topic_to_address(topic: str) -> str:
    return "0x" + topic[-40:].lower()


class BEP20Watcher(ChainWatcher):
    """USDT (BEP20) deposit watcher.

    Free BscScan tier: 5 calls/second.
    """

    network = Network.BEP20
    asset = "usdt"
    label = "BEP20"

    def __init__(
        self,
        directory: AddressDirectory,
        api_key: Optional[str] = None,
        contract: str = USDT_CONTRACT,
        base_url: str = BSCSCAN_MAINNET,
        push_url: Optional[str] = None,
        reconnect_delay: float = 5.0,
        connect: Optional[Any] = None,
        **kwargs,
    ):
        """Initialize BEP20 watcher.

        Args:
            directory: Shared address directory
            api_key: BscScan API key
            contract: Token contract to track
            base_url: BscScan API endpoint
            push_url: BSC websocket JSON-RPC URL; push is disabled when None
            reconnect_delay: Seconds before a dropped push channel reconnects
            connect: Websocket connection factory override
        """
        super().__init__(directory, **kwargs)
        self.api_key = api_key or "YourApiKeyToken"
        self.contract = contract.lower()
        self.base_url = base_url

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

        params = {
            "module": "account",
            "action": "tokentx",
            "address": address,
            "startblock": 0,
            "endblock": 999999999,
            "sort": "desc",
            "apikey": self.api_key,
        }

        response = await client.get(self.base_url, params=params)
        response.raise_for_status()
        data = response.json()

        if not isinstance(data, dict) or data.get("status") != "1":
            message = data.get("message") if isinstance(data, dict) else "invalid payload"
            raise ProviderError("BscScan", f"non-success status for {address}: {message}")

        result = data.get("result")
        return result if isinstance(result, list) else []

    def parse_transaction(self, tx: dict[str, Any], address: str) -> Optional[TransactionInfo]:
        """Parse a BscScan token transfer (only tracked contract, only incoming)."""
        try:
            if str(tx.get("contractAddress", "")).lower() != self.contract:
                return None
            if str(tx.get("to", "")).lower() != address.lower():
                return None

            txid = tx.get("hash")
            if not txid:
                return None

            return TransactionInfo(
                txid=txid,
                to_address=tx["to"],
                amount=Decimal(str(tx.get("value", "0"))) / TOKEN_DIVISOR,
                confirmations=int(tx.get("confirmations") or 0),
                timestamp=from_unix(int(tx.get("timeStamp") or 0)),
                from_address=tx.get("from") or None,
                block_height=int(tx["blockNumber"]) if tx.get("blockNumber") else None,
            )

        except (KeyError, TypeError, ValueError, InvalidOperation) as e:
            logger.warning(f"Error parsing BEP20 transaction for {address}: {e}")
            return None

    def subscription_frames(self) -> list[dict[str, Any]]:
        addresses = self.directory.list_addresses(self.network)
        if not addresses:
            return []

        return [
            {
                "jsonrpc": "2.0",
                "id": 1,
                "method": "eth_subscribe",
                "params": [
                    "logs",
                    {
                        "address": self.contract,
                        "topics": [
                            TRANSFER_TOPIC,
                            None,
                            [address_to_topic(address) for address in addresses],
                        ],
                    },
                ],
            }
        ]

    def extract_push_transactions(self, message: dict[str, Any]) -> list[TransactionInfo]:
        """Decode a ``Transfer`` log notification to a watched address."""
        if message.get("method") != "eth_subscription":
            if "result" in message and message.get("id") is not None:
                logger.info(f"BEP20 log subscription confirmed: {message['result']}")
            return []

        log = (message.get("params") or {}).get("result")
        if not isinstance(log, dict) or log.get("removed"):
            return []

        try:
            topics = log.get("topics") or []
            if len(topics) < 3 or str(topics[0]).lower() != TRANSFER_TOPIC:
                return []
            if str(log.get("address", "")).lower() != self.contract:
                return []

            to_address = topic_to_address(topics[2])
            watched = {addr.lower(): addr for addr in self.directory.list_addresses(self.network)}
            if to_address not in watched:
                return []

            txid = log.get("transactionHash")
            if not txid:
                return []

            value = int(log.get("data") or "0x0", 16)
            return [
                TransactionInfo(
                    txid=txid,
                    to_address=watched[to_address],
                    amount=Decimal(value) / TOKEN_DIVISOR,
                    confirmations=0,
                    timestamp=datetime.now(timezone.utc),
                    from_address=topic_to_address(topics[1]),
                )
            ]

        except (TypeError, ValueError) as e:
            logger.warning(f"Malformed BEP20 log notification: {e}")
            return []
