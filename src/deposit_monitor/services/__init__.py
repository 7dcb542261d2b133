"""Services shared by the watchers: address directory, delivery, pricing."""

from deposit_monitor.services.address_directory import AddressDirectory, DirectorySnapshot
from deposit_monitor.services.delivery import DeliveryResult, LedgerClient
from deposit_monitor.services.pricing import PriceOracle

__all__ = [
    "AddressDirectory",
    "DirectorySnapshot",
    "DeliveryResult",
    "LedgerClient",
    "PriceOracle",
]
