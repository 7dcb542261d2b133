"""Per-watcher memory of transaction hashes already turned into deposits."""

import logging
from collections import OrderedDict

logger = logging.getLogger(__name__)


class DedupRecord:
    """Set of processed transaction hashes for one watcher.

    ``claim`` is the only way in: it checks and inserts in one step and never
    awaits, so within a single event loop no two detections of the same hash
    can both succeed. Callers must not await between deciding a transaction
    is new and claiming it.

    Example:
        if dedup.claim(tx_hash):
            deposits.append(build_deposit(...))
    """

    def __init__(self, max_entries: int = 0, name: str = "dedup"):
        """Initialize the record.

        Args:
            max_entries: Evict the oldest hashes beyond this size (0 = never evict)
            name: Label used in log messages
        """
        self.max_entries = max_entries
        self.name = name
        self._hashes: OrderedDict[str, None] = OrderedDict()

    def claim(self, tx_hash: str) -> bool:
        """Mark a hash as processed.

        Returns:
            True if the hash was new, False if it had already been claimed
        """
        if tx_hash in self._hashes:
            return False

        self._hashes[tx_hash] = None

        if self.max_entries and len(self._hashes) > self.max_entries:
            evicted, _ = self._hashes.popitem(last=False)
            logger.debug(f"{self.name}: evicted oldest hash {evicted}")

        return True

    def seen(self, tx_hash: str) -> bool:
        """Check if a hash has been processed."""
        return tx_hash in self._hashes

    def __len__(self) -> int:
        return len(self._hashes)

    def __contains__(self, tx_hash: object) -> bool:
        return tx_hash in self._hashes
