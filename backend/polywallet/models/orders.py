"""
Order-side data model: requests, credentials, balances, receipts
"""
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from py_clob_client.clob_types import OrderType


class OrderSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


@dataclass(frozen=True)
class OrderRequest:
    """A limit order as entered by the user; never mutated once built"""

    token_id: str
    price: float
    size: float
    side: OrderSide
    tick_size: str = "0.01"
    neg_risk: bool = False

    def __post_init__(self):
        object.__setattr__(self, "side", OrderSide(self.side))

    @property
    def notional(self) -> Decimal:
        # USDC required for a BUY at this price
        return Decimal(str(self.price)) * Decimal(str(self.size))


CredentialScope = Tuple[str, str]


@dataclass(frozen=True)
class TradingCredentials:
    """Trading-API key triple scoped to one (signer, funder) pair"""

    api_key: str
    secret: str
    passphrase: str
    signer_address: str
    funder_address: Optional[str] = None

    @property
    def scope(self) -> CredentialScope:
        return credential_scope(self.signer_address, self.funder_address)

    @property
    def key_tail(self) -> str:
        return self.api_key[-6:]

    @classmethod
    def from_response(
        cls,
        data: Dict[str, Any],
        signer_address: str,
        funder_address: Optional[str] = None,
    ) -> Optional["TradingCredentials"]:
        api_key = data.get("apiKey") or data.get("api_key")
        secret = data.get("secret")
        passphrase = data.get("passphrase")
        if not api_key or not secret or not passphrase:
            return None
        return cls(
            api_key=api_key,
            secret=secret,
            passphrase=passphrase,
            signer_address=signer_address.lower(),
            funder_address=funder_address.lower() if funder_address else None,
        )

    def to_dict(self) -> Dict[str, Optional[str]]:
        # The secret half is never echoed back
        return {
            "apiKey": self.api_key,
            "signerAddress": self.signer_address,
            "funderAddress": self.funder_address,
        }

    def __repr__(self) -> str:
        return (
            f"TradingCredentials(api_key=…{self.key_tail}, signer={self.signer_address}, "
            f"funder={self.funder_address})"
        )


def credential_scope(signer_address: str, funder_address: Optional[str]) -> CredentialScope:
    signer = signer_address.lower()
    return signer, (funder_address or signer_address).lower()


@dataclass(frozen=True)
class BalanceSnapshot:
    """Settlement-asset balances in USDC (decimal, not minor units)"""

    wallet: Decimal
    exchange: Decimal

    @property
    def available(self) -> Decimal:
        return self.wallet + self.exchange


@dataclass(frozen=True)
class SignedOrder:
    order: Dict[str, Any]
    order_type: str = OrderType.GTC

    def payload(self, owner: str) -> Dict[str, Any]:
        return {"order": self.order, "owner": owner, "orderType": self.order_type}


@dataclass(frozen=True)
class OrderReceipt:
    order_id: Optional[str]
    status: Optional[str] = None
    attempts: int = 1
    credentials_reset: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "orderID": self.order_id,
            "status": self.status,
            "attempts": self.attempts,
            "credentialsReset": self.credentials_reset,
        }
