"""Pytest configuration and fixtures."""

import asyncio
import json
import os
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Optional

import httpx
import pytest
import pytest_asyncio

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["MAIN_SERVER_URL"] = "http://main.test"
os.environ["MONITOR_SECRET_KEY"] = "test-secret"

from deposit_monitor.models import Deposit, Network
from deposit_monitor.services.address_directory import AddressDirectory

MAIN_URL = "http://main.test"

BTC_A = "1A1zP1eP5QGefi2DMPTfTL5SLmv7DivfNa"
BTC_B = "bc1qxy2kgdygjrsqtzq2n0yrf2493p83kkfjhx0wlh"
BEP20_ADDR = "0xAbC0000000000000000000000000000000000001"
TRC20_ADDR = "TJYeasTPa6gpEEfYfGj2Vb4uS2kRgYvVQ2"


def registry_payload(
    btc: Optional[list[str]] = None,
    bep20: Optional[list[str]] = None,
    trc20: Optional[list[str]] = None,
    detailed: Optional[list[dict]] = None,
) -> dict[str, Any]:
    """Address registry response as served by the main server."""
    btc = [BTC_A, BTC_B] if btc is None else btc
    bep20 = [BEP20_ADDR] if bep20 is None else bep20
    trc20 = [TRC20_ADDR] if trc20 is None else trc20

    if detailed is None:
        detailed = [
            {"userId": "user-1", "addresses": {"btc": BTC_A, "bep20": BEP20_ADDR, "trc20": TRC20_ADDR}},
            {"userId": "user-2", "addresses": {"btc": BTC_B, "bep20": "", "trc20": ""}},
        ]

    return {
        "success": True,
        "data": {
            "grouped": {"btcAddresses": btc, "bep20Addresses": bep20, "trc20Addresses": trc20},
            "detailed": detailed,
        },
    }


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    """HTTP client whose requests are answered by ``handler``."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def make_deposit(
    network: Network = Network.BTC,
    tx_hash: str = "tx-1",
    amount: str = "1",
    user_id: str = "user-1",
) -> Deposit:
    return Deposit(
        user_id=user_id,
        asset="btc" if network == Network.BTC else "usdt",
        network=network,
        amount=Decimal(amount),
        tx_hash=tx_hash,
        to_address="addr",
        timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
        confirmations=1,
    )


class Registry:
    """Mutable fake of the main server's address registry."""

    def __init__(self, payload: Optional[dict] = None):
        self.payload = payload or registry_payload()
        self.fail = False
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail:
            raise httpx.ConnectError("main server unreachable", request=request)
        return httpx.Response(200, json=self.payload)


@pytest.fixture
def registry() -> Registry:
    return Registry()


@pytest_asyncio.fixture
async def directory(registry: Registry):
    """Address directory loaded from the fake registry."""
    directory = AddressDirectory(MAIN_URL, "test-secret", client=mock_client(registry))
    assert await directory.refresh() is True
    yield directory
    await directory.close()


class FakeWebSocket:
    """Stand-in for a websockets client connection."""

    def __init__(self, frames=(), error: Optional[Exception] = None, hold: bool = False):
        self.frames = list(frames)
        self.error = error
        self.hold = hold
        self.sent: list[dict] = []

    async def send(self, data: str) -> None:
        self.sent.append(json.loads(data))

    def __aiter__(self):
        return self._messages()

    async def _messages(self):
        for frame in self.frames:
            yield frame if isinstance(frame, (str, bytes)) else json.dumps(frame)
        if self.hold:
            await asyncio.Event().wait()
        if self.error is not None:
            raise self.error


class _Connection:
    def __init__(self, ws: FakeWebSocket):
        self.ws = ws

    async def __aenter__(self) -> FakeWebSocket:
        return self.ws

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False


class FakeConnect:
    """Connection factory handing out prepared sockets, then idle ones."""

    def __init__(self, *sockets: FakeWebSocket):
        self.sockets = list(sockets)
        self.opened: list[FakeWebSocket] = []

    @property
    def calls(self) -> int:
        return len(self.opened)

    def __call__(self, url: str, **kwargs) -> _Connection:
        ws = self.sockets.pop(0) if self.sockets else FakeWebSocket(hold=True)
        self.opened.append(ws)
        return _Connection(ws)


async def wait_for(condition: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the loop until ``condition`` holds."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not condition():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


class LedgerServer:
    """Fake of the main server's deposit processing endpoint."""

    def __init__(self, status: int = 200, body: Optional[dict] = None):
        self.status = status
        self.body = body
        self.requests: list[httpx.Request] = []

    @property
    def batches(self) -> list[dict]:
        return [json.loads(request.content) for request in self.requests]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.body is not None:
            return httpx.Response(self.status, json=self.body)
        processed = len(json.loads(request.content)["deposits"])
        return httpx.Response(self.status, json={"success": True, "processed": processed})


class SlowLedgerServer(LedgerServer):
    """Ledger endpoint that holds every request until ``release`` is set."""

    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()
        self.answered = 0

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        await self.release.wait()
        self.answered += 1
        processed = len(json.loads(request.content)["deposits"])
        return httpx.Response(200, json={"success": True, "processed": processed})
