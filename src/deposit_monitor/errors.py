"""Exceptions raised inside the deposit monitor."""


class MonitorError(Exception):
    """Base class for deposit monitor errors."""


class ProviderError(MonitorError):
    """A chain history provider returned an error or an unusable payload."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class DirectoryError(MonitorError):
    """The identity authority could not be queried or answered badly."""


class UnsupportedNetworkError(MonitorError):
    """No watcher is registered for the requested network."""

    def __init__(self, network: str):
        self.network = network
        super().__init__(f"Unsupported network: {network}")
