"""Chain watchers detecting deposits to watched addresses."""

from deposit_monitor.scanner.base import ChainWatcher, TransactionInfo
from deposit_monitor.scanner.factory import build_watchers, get_watcher

__all__ = ["ChainWatcher", "TransactionInfo", "build_watchers", "get_watcher"]
