"""Tests for the HTTP surface."""

import pytest
from fastapi.testclient import TestClient

from polywallet.api.deps import SessionRegistry, get_engine, get_registry, get_signer_factory
from polywallet.engine import TradingEngine
from polywallet.main import app
from polywallet.polymarket.clob_client import ClobClient
from polywallet.polymarket.rpc import ResilientReader
from polywallet.polymarket.safe import derive_safe_address
from polywallet.polymarket.signers import LocalSigner

from conftest import CLOB_HOST, TEST_PRIVATE_KEY, FakeReader

ALL_APPROVED = {
    "usdcToCTF": True,
    "usdcToExchange": True,
    "usdcToNegRiskExchange": True,
    "ctfToExchange": True,
    "ctfToNegRiskExchange": True,
    "ctfToNegRiskAdapter": True,
}


class NoSafeRelayerClient:
    """Reports no deployed Safe and refuses any write"""

    async def is_deployed(self, safe_address):
        return False

    async def submit(self, request, access_token):
        raise AssertionError("relayer should not be written to")


@pytest.fixture
def local_signer():
    return LocalSigner(TEST_PRIVATE_KEY)


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def client(contracts, local_signer, registry):
    engine = TradingEngine(
        reader=ResilientReader([FakeReader()]),
        clob=ClobClient(CLOB_HOST),
        relayer_client=NoSafeRelayerClient(),
        contracts=contracts,
    )
    app.dependency_overrides[get_engine] = lambda: engine
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_signer_factory] = lambda: lambda address, wallet_id, user_did: local_signer
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def headers(local_signer):
    return {"Authorization": "Bearer privy-token", "X-Wallet-Address": local_signer.address}


class TestHealth:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}


class TestAuth:
    def test_missing_bearer_is_refused(self, client, local_signer):
        response = client.get("/api/wallet/approvals", headers={"X-Wallet-Address": local_signer.address})
        assert response.status_code in (401, 403)

    def test_invalid_wallet_address(self, client):
        response = client.get(
            "/api/wallet/approvals",
            headers={"Authorization": "Bearer privy-token", "X-Wallet-Address": "not-an-address"},
        )
        assert response.status_code == 400

    def test_session_is_reused(self, client, headers, registry):
        client.get("/api/wallet/approvals", headers=headers)
        client.get("/api/wallet/approvals", headers=headers)
        assert len(registry) == 1


class TestWalletRoutes:
    def test_get_approvals(self, client, headers, local_signer):
        response = client.get("/api/wallet/approvals", headers=headers)
        assert response.status_code == 200
        data = response.json()
        assert data["proxyAddress"] == derive_safe_address(local_signer.address)
        assert data["success"] is True
        assert data["value"]["allApproved"] is False

    def test_approve_all_with_known_status_skips_relayer(self, client, headers):
        response = client.post("/api/wallet/approvals", headers=headers, json={"current_status": ALL_APPROVED})
        data = response.json()
        assert data["result"]["success"] is True
        assert data["result"]["value"]["calls"] == 0
        assert data["events"][-1]["step"] == "done"


class TestTradingRoutes:
    def test_out_of_range_price_is_a_validation_error(self, client, headers):
        response = client.post(
            "/api/trading/orders",
            headers=headers,
            json={"token_id": "123", "price": 1.5, "size": 10, "side": "BUY"},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["result"]["success"] is False
        assert data["result"]["error"]["code"] == "VALIDATION_ERROR"
        assert data["result"]["error"]["field"] == "price"
        assert [e["step"] for e in data["events"]] == ["failed"]

    def test_unknown_side_is_rejected_by_schema(self, client, headers):
        response = client.post(
            "/api/trading/orders",
            headers=headers,
            json={"token_id": "123", "price": 0.5, "size": 10, "side": "HOLD"},
        )
        assert response.status_code == 422

    def test_order_without_credentials(self, client, headers):
        response = client.post(
            "/api/trading/orders",
            headers=headers,
            json={"token_id": "123", "price": 0.5, "size": 10, "side": "SELL"},
        )
        assert response.json()["result"]["error"]["code"] == "CREDENTIALS_MISSING"
