"""Tests for endpoint failover."""

import pytest

from polywallet.models.errors import RpcExhausted
from polywallet.polymarket.rpc import ResilientReader

from conftest import FailingReader, FakeReader

TOKEN = "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174"
OWNER = "0x1111111111111111111111111111111111111111"


class TestResilientReader:
    @pytest.mark.asyncio
    async def test_first_healthy_endpoint_answers(self):
        a = FakeReader("A", balance=7)
        b = FakeReader("B", balance=9)
        assert await ResilientReader([a, b]).balance_of(TOKEN, OWNER) == 7
        assert b.calls == []

    @pytest.mark.asyncio
    async def test_one_attempt_per_endpoint_then_next(self):
        a = FailingReader("A")
        b = FakeReader("B", balance=42)
        assert await ResilientReader([a, b]).balance_of(TOKEN, OWNER) == 42
        assert a.calls == 1
        assert b.calls == ["balanceOf"]

    @pytest.mark.asyncio
    async def test_exhaustion_carries_last_error(self):
        a = FailingReader("A", ValueError("bad decode"))
        b = FailingReader("B", TimeoutError("timed out"))
        with pytest.raises(RpcExhausted) as exc_info:
            await ResilientReader([a, b]).allowance(TOKEN, OWNER, OWNER)

        err = exc_info.value
        assert err.attempts == 2
        assert isinstance(err.last_error, TimeoutError)
        assert err.retryable is True
        assert "timed out" in err.message
        assert a.calls == 1 and b.calls == 1

    @pytest.mark.asyncio
    async def test_no_endpoints_is_exhausted(self):
        with pytest.raises(RpcExhausted, match="no endpoints configured"):
            await ResilientReader([]).balance_of(TOKEN, OWNER)
