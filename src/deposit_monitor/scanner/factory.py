"""Factory for creating chain watchers.

Supported watchers:
- BEP20 USDT: BscScan API (+ optional BSC websocket logs)
- TRC20 USDT: TronGrid API (+ quick polling with an API key)
- BTC: BlockCypher API (+ blockchain.info websocket)
"""

from typing import Optional

from deposit_monitor.config import Settings
from deposit_monitor.models import Network
from deposit_monitor.scanner.base import ChainWatcher
from deposit_monitor.scanner.blockcypher import BTCWatcher
from deposit_monitor.scanner.bscscan import BEP20Watcher
from deposit_monitor.scanner.trongrid import TRC20Watcher
from deposit_monitor.services.address_directory import AddressDirectory
from deposit_monitor.services.pricing import PriceOracle

# Order in which chains are checked and their deposits concatenated
WATCH_ORDER = (Network.BEP20, Network.TRC20, Network.BTC)


def get_watcher(
    network: Network,
    settings: Settings,
    directory: AddressDirectory,
    price_oracle: Optional[PriceOracle] = None,
) -> ChainWatcher:
    """Create the watcher for one network.

    Args:
        network: Network to watch
        settings: Application settings
        directory: Shared address directory
        price_oracle: USD price source for BTC deposits
    """
    common = {
        "request_delay": settings.request_delay,
        "timeout": settings.http_timeout,
        "dedup_max_entries": settings.dedup_max_entries,
    }

    if network == Network.BTC:
        return BTCWatcher(
            directory,
            price_oracle=price_oracle,
            api_key=settings.blockcypher_api_key or None,
            push_url=settings.btc_ws_url if settings.btc_push_enabled else None,
            reconnect_delay=settings.ws_reconnect_delay,
            min_confirmations=settings.btc_min_confirmations,
            **common,
        )

    if network == Network.BEP20:
        return BEP20Watcher(
            directory,
            api_key=settings.bscscan_api_key or None,
            contract=settings.bep20_usdt_contract,
            push_url=settings.bsc_ws_url if settings.bep20_push_enabled else None,
            reconnect_delay=settings.ws_reconnect_delay,
            min_confirmations=settings.bep20_min_confirmations,
            **common,
        )

    if network == Network.TRC20:
        return TRC20Watcher(
            directory,
            api_key=settings.trongrid_api_key or None,
            contract=settings.trc20_usdt_contract,
            quick_poll_interval=(
                settings.trc20_quick_poll_interval if settings.trc20_quick_poll_enabled else None
            ),
            min_confirmations=settings.trc20_min_confirmations,
            **common,
        )

    raise ValueError(f"No watcher for network: {network}")


def build_watchers(
    settings: Settings,
    directory: AddressDirectory,
    price_oracle: Optional[PriceOracle] = None,
) -> list[ChainWatcher]:
    """Create one watcher per supported network, in check order."""
    return [get_watcher(network, settings, directory, price_oracle) for network in WATCH_ORDER]
