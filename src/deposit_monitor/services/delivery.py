"""Client for the main server's deposit processing endpoint."""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import httpx

from deposit_monitor.models import Deposit

logger = logging.getLogger(__name__)

PROCESS_DEPOSITS_PATH = "/api/wallet/process-deposits"


@dataclass
class DeliveryResult:
    """Outcome of one batch submission."""

    success: bool
    processed: int = 0
    message: Optional[str] = None


class LedgerClient:
    """Posts deposit batches to the ledger.

    Failures are reported in the result, never raised. A failed batch is not
    retried: its hashes are already marked as seen by the watchers.
    """

    def __init__(
        self,
        base_url: str,
        secret_key: str = "",
        source: str = "monitor",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.secret_key = secret_key
        self.source = source
        self.timeout = timeout
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def submit(self, deposits: Sequence[Deposit]) -> DeliveryResult:
        """Send a batch of deposits.

        Args:
            deposits: Deposits to apply

        Returns:
            DeliveryResult with the count the ledger applied
        """
        if not deposits:
            return DeliveryResult(success=True, processed=0)

        logger.info(f"Processing {len(deposits)} deposits...")

        payload = {
            "deposits": [deposit.to_payload() for deposit in deposits],
            "source": self.source,
        }

        try:
            client = await self._get_client()
            response = await client.post(
                f"{self.base_url}{PROCESS_DEPOSITS_PATH}",
                json=payload,
                headers={"Authorization": f"Bearer {self.secret_key}"},
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Error sending deposits to main server: {e}")
            return DeliveryResult(success=False, message=str(e))

        if not isinstance(data, dict) or not data.get("success"):
            message = data.get("message") if isinstance(data, dict) else str(data)
            logger.error(f"Error processing deposits: {message}")
            return DeliveryResult(success=False, message=message)

        try:
            processed = int(data.get("processed") or 0)
        except (TypeError, ValueError):
            logger.warning(f"Main server reported a non-numeric processed count: {data.get('processed')!r}")
            processed = 0

        logger.info(f"Deposits processed by main server, updated {processed} wallets")
        return DeliveryResult(success=True, processed=processed)

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
