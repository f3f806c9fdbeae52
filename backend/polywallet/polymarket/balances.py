"""
Settlement-asset balances for the order preflight
"""
import logging
from decimal import Decimal, InvalidOperation
from typing import Optional, Protocol

from py_order_utils.model import EOA, POLY_GNOSIS_SAFE

from polywallet.models.orders import BalanceSnapshot, TradingCredentials
from polywallet.polymarket.clob_client import ClobApiError, ClobClient
from polywallet.polymarket.contracts import USDC_DECIMALS, PolymarketContracts
from polywallet.polymarket.rpc import ResilientReader

logger = logging.getLogger(__name__)


def from_minor_units(amount, decimals: int = USDC_DECIMALS) -> Decimal:
    """Integer minor units to a decimal amount; anything unparseable counts as 0"""
    try:
        value = Decimal(str(amount or 0))
    except InvalidOperation:
        logger.warning("[Balances] Unparseable balance %r, counting as 0", amount)
        return Decimal(0)
    if not value.is_finite():
        logger.warning("[Balances] Non-finite balance %r, counting as 0", amount)
        return Decimal(0)
    return value / (Decimal(10) ** decimals)


class BalanceProvider(Protocol):
    async def get_balances(
        self,
        funder_address: str,
        credentials: Optional[TradingCredentials] = None,
    ) -> BalanceSnapshot: ...


class ChainAndExchangeBalances:
    """
    Wallet balance from chain (via the resilient reader) plus the balance
    the exchange reports for the funder
    """

    def __init__(self, reader: ResilientReader, clob: ClobClient, contracts: PolymarketContracts):
        self.reader = reader
        self.clob = clob
        self.contracts = contracts

    async def _exchange_balance(self, funder_address: str, credentials: TradingCredentials) -> Decimal:
        signature_type = (
            POLY_GNOSIS_SAFE
            if funder_address.lower() != credentials.signer_address.lower()
            else EOA
        )
        try:
            data = await self.clob.get_balance_allowance(
                credentials, credentials.signer_address, signature_type=signature_type
            )
        except ClobApiError as e:
            logger.warning("[Balances] Exchange balance unavailable for %s: %s", funder_address, e)
            return Decimal(0)
        return from_minor_units(data.get("balance") if isinstance(data, dict) else 0)

    async def get_balances(
        self,
        funder_address: str,
        credentials: Optional[TradingCredentials] = None,
    ) -> BalanceSnapshot:
        """
        Raises:
            RpcExhausted: the on-chain balance could not be read from any endpoint
        """
        raw = await self.reader.balance_of(self.contracts.collateral, funder_address)
        wallet = from_minor_units(raw)
        exchange = await self._exchange_balance(funder_address, credentials) if credentials else Decimal(0)
        logger.info("[Balances] %s wallet=%s exchange=%s", funder_address, wallet, exchange)
        return BalanceSnapshot(wallet=wallet, exchange=exchange)
