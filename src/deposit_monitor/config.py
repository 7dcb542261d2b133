"""Application configuration using pydantic-settings.

All intervals and delays are in seconds.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Main server (identity authority + ledger)
    # ======================
    main_server_url: str = Field(
        default="http://localhost:4001", description="Base URL of the main wallet server"
    )
    monitor_secret_key: str = Field(
        default="", description="Bearer token shared with the main server"
    )
    delivery_source: str = Field(default="monitor", description="Source tag sent with deposit batches")

    # ======================
    # API
    # ======================
    api_host: str = Field(default="0.0.0.0", description="Control API host")
    api_port: int = Field(default=4000, description="Control API port")

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=False, description="Enable debug logging")

    # ======================
    # Scheduling
    # ======================
    check_interval: float = Field(default=30, description="Seconds between full deposit checks")
    address_refresh_interval: float = Field(
        default=300, description="Seconds between address directory refreshes"
    )
    request_delay: float = Field(
        default=0.2, description="Delay between per-address provider requests"
    )
    trc20_quick_poll_interval: float = Field(
        default=15, description="TRC20 quick poll interval (active only with a TronGrid key)"
    )

    # ======================
    # Timeouts
    # ======================
    http_timeout: float = Field(default=30.0, description="Timeout for provider and server calls")
    price_timeout: float = Field(default=5.0, description="Timeout for fiat price lookups")
    price_cache_ttl: float = Field(default=60, description="Seconds a fetched price stays fresh")

    # ======================
    # Push channels
    # ======================
    ws_reconnect_delay: float = Field(default=5.0, description="Delay before reconnecting a push channel")
    btc_push_enabled: bool = Field(default=True, description="Enable BTC websocket notifications")
    btc_ws_url: str = Field(
        default="wss://ws.blockchain.info/inv", description="BTC push notification endpoint"
    )
    bsc_ws_url: str = Field(
        default="", description="BSC JSON-RPC websocket URL (enables BEP20 push when set)"
    )

    # ======================
    # Provider API keys
    # ======================
    blockcypher_api_key: str = Field(default="", description="BlockCypher API token")
    bscscan_api_key: str = Field(default="", description="BscScan API key")
    trongrid_api_key: str = Field(default="", description="TronGrid API key")

    # ======================
    # Confirmations
    # ======================
    btc_min_confirmations: int = Field(default=1, ge=0, description="Minimum BTC confirmations")
    bep20_min_confirmations: int = Field(default=1, ge=0, description="Minimum BEP20 confirmations")
    trc20_min_confirmations: int = Field(default=1, ge=0, description="Minimum TRC20 confirmations")

    # ======================
    # Token contracts
    # ======================
    bep20_usdt_contract: str = Field(
        default="0x55d398326f99059ff775485246999027b3197955",
        description="USDT contract on BSC",
    )
    trc20_usdt_contract: str = Field(
        default="TR7NHqjeKQxGTCi8q8ZY4pL8otSzgjLj6t",
        description="USDT contract on TRON",
    )

    # ======================
    # Dedup
    # ======================
    dedup_max_entries: int = Field(
        default=0, ge=0, description="Cap on remembered tx hashes per watcher (0 = unbounded)"
    )

    @property
    def bep20_push_enabled(self) -> bool:
        return bool(self.bsc_ws_url)

    @property
    def trc20_quick_poll_enabled(self) -> bool:
        return bool(self.trongrid_api_key) and self.trc20_quick_poll_interval > 0

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "main_server_url": self.main_server_url,
            "monitor_secret_key": "***" if self.monitor_secret_key else "(not set)",
            "api_host": self.api_host,
            "api_port": self.api_port,
            "intervals": {
                "check": self.check_interval,
                "address_refresh": self.address_refresh_interval,
                "request_delay": self.request_delay,
                "trc20_quick_poll": self.trc20_quick_poll_interval,
                "ws_reconnect": self.ws_reconnect_delay,
            },
            "chains": {
                "btc": {
                    "provider": "BlockCypher",
                    "api_key": "***" if self.blockcypher_api_key else "(not set)",
                    "push": self.btc_ws_url if self.btc_push_enabled else "(disabled)",
                    "min_confirmations": self.btc_min_confirmations,
                },
                "bep20": {
                    "provider": "BscScan",
                    "api_key": "***" if self.bscscan_api_key else "(not set)",
                    "push": "***" if self.bsc_ws_url else "(not set)",
                    "contract": self.bep20_usdt_contract,
                    "min_confirmations": self.bep20_min_confirmations,
                },
                "trc20": {
                    "provider": "TronGrid",
                    "api_key": "***" if self.trongrid_api_key else "(not set)",
                    "contract": self.trc20_usdt_contract,
                    "min_confirmations": self.trc20_min_confirmations,
                },
            },
            "dedup_max_entries": self.dedup_max_entries,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
