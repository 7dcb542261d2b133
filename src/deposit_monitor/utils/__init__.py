"""Utility modules for the deposit monitor."""

from deposit_monitor.utils.dedup import DedupRecord

__all__ = ["DedupRecord"]
