"""Canonical deposit record shared by every watcher."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class Network(str, Enum):
    """Network tags, as used by the main server."""

    BTC = "btc"
    BEP20 = "bep20"
    TRC20 = "trc20"


class Deposit(BaseModel):
    """A detected incoming transfer to a watched address.

    Amounts are in human units (BTC, USDT), never in satoshi/wei.
    Serialized with camelCase aliases for the ledger endpoint.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    user_id: Union[str, int] = Field(..., alias="userId")
    type: Literal["deposit"] = "deposit"
    asset: str = Field(..., description="Asset symbol, lowercase (btc, usdt)")
    network: Network
    amount: Decimal = Field(..., ge=0)
    amount_usd: Optional[Decimal] = Field(
        None, alias="amountUsd", description="Fiat value at detection time, if known"
    )
    tx_hash: str = Field(..., alias="txHash")
    from_address: str = Field(default="unknown", alias="from")
    to_address: str = Field(..., alias="to")
    timestamp: datetime
    confirmations: int = Field(..., ge=0)

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready dict in the ledger's wire format."""
        return self.model_dump(mode="json", by_alias=True)
