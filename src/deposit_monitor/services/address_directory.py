"""Address directory backed by the main server's wallet registry.

The main server (identity authority) owns the mapping of deposit addresses
to users. This module keeps a read-only snapshot of it in memory and swaps
the whole snapshot on every successful refresh.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Union

import httpx

from deposit_monitor.errors import DirectoryError
from deposit_monitor.models import Network

logger = logging.getLogger(__name__)

ADDRESSES_PATH = "/api/wallet/admin/addresses"

# Keys of the "grouped" section of the registry response
GROUPED_KEYS = {
    Network.BEP20: "bep20Addresses",
    Network.TRC20: "trc20Addresses",
    Network.BTC: "btcAddresses",
}

UserId = Union[str, int]


@dataclass(frozen=True)
class DirectorySnapshot:
    """One consistent view of the registry.

    ``addresses`` keeps the server's order per network; ``owners`` is keyed by
    (network, lowercased address).
    """

    addresses: dict[Network, tuple[str, ...]] = field(default_factory=dict)
    owners: dict[tuple[Network, str], UserId] = field(default_factory=dict)

    @classmethod
    def empty(cls) -> "DirectorySnapshot":
        return cls(addresses={network: () for network in Network}, owners={})

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "DirectorySnapshot":
        """Build a snapshot from the registry's ``data`` object.

        Raises:
            DirectoryError: If either section is missing or malformed
        """
        grouped = data.get("grouped")
        detailed = data.get("detailed")
        if not isinstance(grouped, dict) or not isinstance(detailed, list):
            raise DirectoryError("Registry response lacks grouped/detailed sections")

        addresses: dict[Network, tuple[str, ...]] = {}
        for network, key in GROUPED_KEYS.items():
            values = grouped.get(key) or []
            if not isinstance(values, list):
                raise DirectoryError(f"Registry field {key} is not a list")
            addresses[network] = tuple(str(addr) for addr in values if addr)

        owners: dict[tuple[Network, str], UserId] = {}
        for record in detailed:
            if not isinstance(record, dict):
                raise DirectoryError("Registry detailed record is not an object")
            user_id = record.get("userId")
            wallet = record.get("addresses") or {}
            if user_id is None or not isinstance(wallet, dict):
                continue

            for network in Network:
                address = wallet.get(network.value)
                if not address:
                    continue
                key = (network, str(address).lower())
                existing = owners.get(key)
                if existing is not None and existing != user_id:
                    # First owner wins; an address belongs to one user per chain
                    logger.warning(
                        f"Address {address} ({network.value}) claimed by users "
                        f"{existing} and {user_id}, keeping {existing}"
                    )
                    continue
                owners[key] = user_id

        return cls(addresses=addresses, owners=owners)


class AddressDirectory:
    """Read-mostly cache of watched addresses and their owners.

    Watchers only read from it. ``refresh`` is all-or-nothing: a failed
    refresh keeps the previous snapshot.
    """

    def __init__(
        self,
        base_url: str,
        secret_key: str = "",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the directory.

        Args:
            base_url: Main server base URL
            secret_key: Bearer token for the registry endpoint
            timeout: Request timeout in seconds
            client: Optional preconfigured HTTP client
        """
        self.base_url = base_url.rstrip("/")
        self.secret_key = secret_key
        self.timeout = timeout
        self._client = client
        self._snapshot = DirectorySnapshot.empty()
        self.last_refresh_ok: Optional[bool] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    @property
    def snapshot(self) -> DirectorySnapshot:
        return self._snapshot

    async def refresh(self) -> bool:
        """Fetch the full address set and replace the snapshot.

        Returns:
            True on success, False if the previous snapshot was kept
        """
        logger.info("Fetching wallet addresses from main server...")

        try:
            snapshot = await self._fetch_snapshot()
        except (httpx.HTTPError, DirectoryError, ValueError) as e:
            logger.error(f"Error fetching addresses: {e}")
            self.last_refresh_ok = False
            return False

        # Single reference swap keeps both structures consistent
        self._snapshot = snapshot
        self.last_refresh_ok = True

        for network in Network:
            logger.info(f"Fetched {len(snapshot.addresses[network])} {network.value.upper()} addresses")

        return True

    async def _fetch_snapshot(self) -> DirectorySnapshot:
        client = await self._get_client()
        response = await client.get(
            f"{self.base_url}{ADDRESSES_PATH}",
            headers={"Authorization": f"Bearer {self.secret_key}"},
        )
        response.raise_for_status()
        body = response.json()

        if not isinstance(body, dict) or not body.get("success"):
            raise DirectoryError(f"Registry returned failure: {body}")

        data = body.get("data")
        if not isinstance(data, dict):
            raise DirectoryError("Registry response has no data object")

        return DirectorySnapshot.from_payload(data)

    def list_addresses(self, network: Network) -> tuple[str, ...]:
        """Addresses watched on a network, from the latest good snapshot."""
        return self._snapshot.addresses.get(network, ())

    def all_addresses(self) -> dict[Network, tuple[str, ...]]:
        snapshot = self._snapshot
        return {network: snapshot.addresses.get(network, ()) for network in Network}

    def resolve_owner(self, address: str, network: Network) -> Optional[UserId]:
        """Case-insensitive owner lookup.

        Returns:
            The user ID, or None when nobody owns the address
        """
        return self._snapshot.owners.get((network, address.lower()))

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
