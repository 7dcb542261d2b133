"""Tests for the control API."""

import httpx
import pytest
import pytest_asyncio

from conftest import BTC_A, MAIN_URL, TRC20_ADDR, LedgerServer, mock_client, registry_payload
from deposit_monitor.api.app import create_app
from deposit_monitor.config import Settings
from deposit_monitor.scanner.blockcypher import BTCWatcher
from deposit_monitor.scanner.trongrid import TRC20Watcher
from deposit_monitor.services.delivery import LedgerClient
from deposit_monitor.services.dispatcher import DepositDispatcher


def blockcypher(request: httpx.Request) -> httpx.Response:
    address = request.url.path.split("/")[-2]
    txs = []
    if address == BTC_A:
        txs.append({
            "hash": "api-t1",
            "confirmations": 6,
            "received": "2024-03-01T00:00:00Z",
            "inputs": [],
            "outputs": [{"addresses": [BTC_A], "value": 150000000}],
        })
    return httpx.Response(200, json={"txs": txs})


def trongrid(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"success": True, "data": []})


@pytest_asyncio.fixture
async def setup(directory):
    server = LedgerServer()
    watchers = [
        TRC20Watcher(directory, request_delay=0, client=mock_client(trongrid)),
        BTCWatcher(directory, request_delay=0, client=mock_client(blockcypher)),
    ]
    ledger = LedgerClient(MAIN_URL, "test-secret", client=mock_client(server))
    dispatcher = DepositDispatcher(
        directory, watchers, ledger, check_interval=60, address_refresh_interval=60
    )
    settings = Settings(monitor_secret_key="super-secret", bscscan_api_key="bsc-key")
    app = create_app(dispatcher, settings=settings)

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client, dispatcher, server

    await dispatcher.stop()


@pytest.mark.asyncio
async def test_health(setup):
    client, _, _ = setup

    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "service": "deposit-monitor"}


@pytest.mark.asyncio
async def test_detailed_health_redacts_secrets(setup):
    client, _, _ = setup

    response = await client.get("/health/detailed")

    body = response.json()
    assert body["monitoring"] is False
    assert body["config"]["monitor_secret_key"] == "***"
    assert body["config"]["chains"]["bep20"]["api_key"] == "***"
    assert "super-secret" not in response.text
    assert "bsc-key" not in response.text


@pytest.mark.asyncio
async def test_status(setup):
    client, _, _ = setup

    response = await client.get("/api/status")

    body = response.json()
    assert body["success"] is True
    assert body["status"]["monitoring"] is False
    assert body["status"]["addresses"]["btc"] == 2
    assert body["status"]["processed_transactions"]["total"] == 0


@pytest.mark.asyncio
async def test_check_network_address_delivers(setup):
    client, _, server = setup

    response = await client.get(f"/api/check-btc/{BTC_A}")

    body = response.json()
    assert response.status_code == 200
    assert body["count"] == 1
    assert body["network"] == "btc"
    assert body["deposits"][0]["txHash"] == "api-t1"
    assert body["deposits"][0]["amount"] == "1.5"
    assert [d["txHash"] for d in server.batches[0]["deposits"]] == ["api-t1"]

    # the forced check does not report it again
    again = await client.get("/api/check")
    assert again.json()["count"] == 0
    assert len(server.requests) == 1


@pytest.mark.asyncio
async def test_check_address_with_query_network(setup):
    client, _, _ = setup

    response = await client.get(f"/api/check-address/{TRC20_ADDR}", params={"network": "trc20"})

    assert response.status_code == 200
    assert response.json()["count"] == 0


@pytest.mark.asyncio
async def test_check_address_unknown_network(setup):
    client, _, _ = setup

    response = await client.get(f"/api/check-address/{BTC_A}", params={"network": "eth"})

    assert response.status_code == 400
    assert response.json()["success"] is False


@pytest.mark.asyncio
async def test_check_address_defaults_to_bep20(setup):
    client, _, _ = setup

    # no BEP20 watcher is configured in this app
    response = await client.get(f"/api/check-address/{BTC_A}")

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_check_unknown_network_route(setup):
    client, _, _ = setup

    response = await client.get(f"/api/check-doge/{BTC_A}")

    assert response.status_code == 404
    assert response.json()["success"] is False


@pytest.mark.asyncio
async def test_forced_check_delivers_batch(setup):
    client, _, server = setup

    response = await client.get("/api/check")

    body = response.json()
    assert body["success"] is True
    assert body["count"] == 1
    assert len(server.requests) == 1

    again = await client.get("/api/check")
    assert again.json()["count"] == 0
    assert len(server.requests) == 1


@pytest.mark.asyncio
async def test_refresh_reports_counts(setup, registry):
    client, _, _ = setup
    registry.payload = registry_payload(btc=[BTC_A])

    response = await client.get("/api/refresh")

    assert response.json() == {
        "success": True,
        "addresses": {"btc": 1, "bep20": 1, "trc20": 1},
    }


@pytest.mark.asyncio
async def test_refresh_failure_keeps_addresses(setup, registry):
    client, _, _ = setup
    registry.fail = True

    response = await client.get("/api/refresh")

    assert response.json() == {
        "success": False,
        "addresses": {"btc": 2, "bep20": 1, "trc20": 1},
    }


@pytest.mark.asyncio
async def test_start_and_stop(setup):
    client, dispatcher, _ = setup

    started = await client.post("/api/start")
    assert started.json()["success"] is True
    assert dispatcher.monitoring is True

    stopped = await client.post("/api/stop")
    assert stopped.json()["success"] is True
    assert dispatcher.monitoring is False
