"""Monitoring control endpoints.

Every route is a pass-through to the dispatcher or one watcher.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from deposit_monitor.errors import UnsupportedNetworkError
from deposit_monitor.models import Deposit
from deposit_monitor.services.dispatcher import DepositDispatcher

logger = logging.getLogger(__name__)

router = APIRouter()


def get_dispatcher(request: Request) -> DepositDispatcher:
    return request.app.state.dispatcher


def _error(status_code: int, error: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": str(error)})


def _deposits_body(network: str, address: str, deposits: list[Deposit]) -> dict[str, Any]:
    return {
        "success": True,
        "network": network,
        "address": address,
        "count": len(deposits),
        "deposits": [deposit.to_payload() for deposit in deposits],
    }


@router.get("/status")
async def get_status(dispatcher: DepositDispatcher = Depends(get_dispatcher)):
    """Monitoring state, address counts and processed totals."""
    return {"success": True, "status": dispatcher.status()}


@router.get("/check")
async def force_check(dispatcher: DepositDispatcher = Depends(get_dispatcher)):
    """Refresh addresses, then check every chain now."""
    try:
        await dispatcher.refresh_addresses()
        deposits = await dispatcher.check_all_chains()
    except Exception as e:
        logger.error(f"Forced check failed: {e}")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, e)

    return {
        "success": True,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "count": len(deposits),
        "deposits": [deposit.to_payload() for deposit in deposits],
    }


@router.get("/check-address/{address}")
async def check_any_address(
    address: str,
    network: str = "bep20",
    dispatcher: DepositDispatcher = Depends(get_dispatcher),
):
    """Check one address on the network given as query parameter; new deposits are delivered."""
    try:
        deposits = await dispatcher.check_address(network, address)
    except UnsupportedNetworkError as e:
        return _error(status.HTTP_400_BAD_REQUEST, e)
    except Exception as e:
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, e)

    return _deposits_body(network, address, deposits)


@router.get("/check-{network}/{address}")
async def check_network_address(
    network: str,
    address: str,
    dispatcher: DepositDispatcher = Depends(get_dispatcher),
):
    """Check one address on one network (check-btc, check-bep20, check-trc20).

    New deposits are delivered to the ledger like a scheduled check would.
    """
    try:
        deposits = await dispatcher.check_address(network, address)
    except UnsupportedNetworkError as e:
        return _error(status.HTTP_404_NOT_FOUND, e)
    except Exception as e:
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, e)

    return _deposits_body(network, address, deposits)


@router.get("/refresh")
async def refresh_addresses(dispatcher: DepositDispatcher = Depends(get_dispatcher)):
    """Reload the address directory from the main server."""
    try:
        success = await dispatcher.refresh_addresses()
    except Exception as e:
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, e)

    addresses = dispatcher.directory.all_addresses()
    return {
        "success": success,
        "addresses": {network.value: len(values) for network, values in addresses.items()},
    }


@router.post("/start")
async def start_monitoring(dispatcher: DepositDispatcher = Depends(get_dispatcher)):
    dispatcher.start()
    return {"success": True, "message": "Monitoring started"}


@router.post("/stop")
async def stop_monitoring(dispatcher: DepositDispatcher = Depends(get_dispatcher)):
    await dispatcher.stop()
    return {"success": True, "message": "Monitoring stopped"}
