"""Shared test fixtures."""

from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest

from polywallet.models.orders import BalanceSnapshot, TradingCredentials
from polywallet.polymarket.contracts import PolymarketContracts
from polywallet.polymarket.signers import LocalSigner
from polywallet.session import SessionState, static_token

# Throwaway keys; never funded
TEST_PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
OTHER_PRIVATE_KEY = "0x8da4ef21b864d2cc526dbdb2a120bd2874c36c9d0a1fb7f8c63d7f7a8b41de8f"

CLOB_HOST = "https://clob.test"


class FakeReader:
    """In-memory BlockchainReader; unknown grants read as zero / not approved"""

    def __init__(
        self,
        name: str = "fake",
        allowances: Optional[Dict[str, int]] = None,
        operators: Optional[Dict[str, bool]] = None,
        balance: int = 0,
    ):
        self.name = name
        self.allowances = {k.lower(): v for k, v in (allowances or {}).items()}
        self.operators = {k.lower(): v for k, v in (operators or {}).items()}
        self.balance = balance
        self.calls: List[str] = []

    async def allowance(self, token: str, owner: str, spender: str) -> int:
        self.calls.append("allowance")
        return self.allowances.get(spender.lower(), 0)

    async def is_approved_for_all(self, token: str, owner: str, operator: str) -> bool:
        self.calls.append("isApprovedForAll")
        return self.operators.get(operator.lower(), False)

    async def balance_of(self, token: str, owner: str) -> int:
        self.calls.append("balanceOf")
        return self.balance


class FailingReader:
    def __init__(self, name: str = "down", error: Optional[Exception] = None):
        self.name = name
        self.error = error or ConnectionError(f"{name} unreachable")
        self.calls = 0

    async def allowance(self, token, owner, spender):
        self.calls += 1
        raise self.error

    async def is_approved_for_all(self, token, owner, operator):
        self.calls += 1
        raise self.error

    async def balance_of(self, token, owner):
        self.calls += 1
        raise self.error


class CountingSigner(LocalSigner):
    def __init__(self, private_key: str = TEST_PRIVATE_KEY):
        super().__init__(private_key)
        self.typed_data_requests: List[Dict[str, Any]] = []
        self.digest_requests: List[str] = []
        self.hash_requests: List[str] = []

    @property
    def sign_count(self) -> int:
        return len(self.typed_data_requests) + len(self.digest_requests) + len(self.hash_requests)

    async def sign_typed_data(self, typed_data):
        self.typed_data_requests.append(typed_data)
        return await super().sign_typed_data(typed_data)

    async def sign_digest(self, digest):
        self.digest_requests.append(digest)
        return await super().sign_digest(digest)

    async def sign_hash(self, digest):
        self.hash_requests.append(digest)
        return await super().sign_hash(digest)


class FakeBalances:
    def __init__(self, wallet: str = "0", exchange: str = "0"):
        self.snapshot = BalanceSnapshot(wallet=Decimal(wallet), exchange=Decimal(exchange))
        self.calls = 0

    async def get_balances(self, funder_address, credentials=None):
        self.calls += 1
        return self.snapshot


@pytest.fixture
def contracts():
    return PolymarketContracts(137)


@pytest.fixture
def signer():
    return CountingSigner()


@pytest.fixture
def session(signer):
    return SessionState(signer, static_token("access-token-abc"))


@pytest.fixture
def trading_credentials(signer):
    return TradingCredentials(
        api_key="key-old-000001",
        # url-safe base64 secret, as issued by the CLOB
        secret="c2VjcmV0LXNlY3JldC1zZWNyZXQtc2VjcmV0IQ==",
        passphrase="pass-old",
        signer_address=signer.address.lower(),
        funder_address=signer.address.lower(),
    )
