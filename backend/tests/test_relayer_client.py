"""Tests for the relayer HTTP client and remote builder signer."""

import json

import httpx
import pytest
import respx

from polywallet.engine import TradingEngine
from polywallet.polymarket.builder_headers import (
    RemoteBuilderSigner,
    RemoteSignerError,
    filter_builder_headers,
)
from polywallet.polymarket.clob_client import ClobClient
from polywallet.polymarket.relayer_client import RelayerApiError, RelayerClient
from polywallet.polymarket.rpc import ResilientReader

from conftest import CLOB_HOST, FakeReader

RELAYER = "https://relayer.test"
SIGNER_URL = "https://signer.test/sign"
BUILDER_HEADERS = {
    "POLY_BUILDER_API_KEY": "builder-key",
    "POLY_BUILDER_SIGNATURE": "sig",
    "POLY_BUILDER_TIMESTAMP": "1700000000",
    "POLY_BUILDER_PASSPHRASE": "pp",
}


def relayer():
    return RelayerClient(RELAYER, RemoteBuilderSigner(SIGNER_URL))


class TestFilterBuilderHeaders:
    def test_drops_everything_but_builder_headers(self):
        mixed = dict(BUILDER_HEADERS, POLY_API_KEY="user-key", Authorization="Bearer x")
        assert filter_builder_headers(mixed) == BUILDER_HEADERS


class TestRemoteBuilderSigner:
    @respx.mock
    @pytest.mark.asyncio
    async def test_signs_exact_request(self):
        route = respx.post(SIGNER_URL).mock(return_value=httpx.Response(200, json=BUILDER_HEADERS))

        headers = await RemoteBuilderSigner(SIGNER_URL).headers("tok", "POST", "/submit", '{"a":1}')

        assert headers == BUILDER_HEADERS
        request = route.calls.last.request
        assert request.headers["Authorization"] == "Bearer tok"
        assert json.loads(request.content) == {
            "method": "POST",
            "path": "/submit",
            "requestPath": "/submit",
            "body": '{"a":1}',
        }

    @respx.mock
    @pytest.mark.asyncio
    async def test_refusal_raises(self):
        respx.post(SIGNER_URL).mock(return_value=httpx.Response(401, text="bad token"))
        with pytest.raises(RemoteSignerError) as exc_info:
            await RemoteBuilderSigner(SIGNER_URL).headers("tok", "POST", "/order")
        assert exc_info.value.status_code == 401

    @respx.mock
    @pytest.mark.asyncio
    async def test_non_json_answer_raises(self):
        respx.post(SIGNER_URL).mock(return_value=httpx.Response(200, text="<html>maintenance</html>"))
        with pytest.raises(RemoteSignerError):
            await RemoteBuilderSigner(SIGNER_URL).headers("tok", "POST", "/order")

    @respx.mock
    @pytest.mark.asyncio
    async def test_empty_answer_raises(self):
        respx.post(SIGNER_URL).mock(return_value=httpx.Response(200, json={"other": "x"}))
        with pytest.raises(RemoteSignerError):
            await RemoteBuilderSigner(SIGNER_URL).headers("tok", "POST", "/order")


class TestRelayerClient:
    @respx.mock
    @pytest.mark.asyncio
    async def test_reads_are_unsigned(self):
        signer_route = respx.post(SIGNER_URL)
        nonce = respx.get(f"{RELAYER}/nonce").mock(return_value=httpx.Response(200, json={"nonce": "7"}))
        respx.get(f"{RELAYER}/deployed").mock(return_value=httpx.Response(200, json={"deployed": True}))

        client = relayer()
        assert await client.get_nonce("0xabc") == 7
        assert await client.is_deployed("0xsafe") is True
        assert nonce.calls.last.request.url.params["type"] == "SAFE"
        assert not signer_route.called

    @respx.mock
    @pytest.mark.asyncio
    async def test_submit_carries_builder_headers_over_sent_body(self):
        signer_route = respx.post(SIGNER_URL).mock(return_value=httpx.Response(200, json=BUILDER_HEADERS))
        submit = respx.post(f"{RELAYER}/submit").mock(
            return_value=httpx.Response(200, json={"transactionID": "tx-1", "state": "STATE_NEW"})
        )

        data = await relayer().submit({"type": "SAFE", "nonce": "1"}, "tok")

        assert data["transactionID"] == "tx-1"
        sent = submit.calls.last.request
        assert sent.headers["POLY_BUILDER_API_KEY"] == "builder-key"
        signed_body = json.loads(signer_route.calls.last.request.content)["body"]
        assert signed_body == sent.content.decode()

    @respx.mock
    @pytest.mark.asyncio
    async def test_submit_without_transaction_id_raises(self):
        respx.post(SIGNER_URL).mock(return_value=httpx.Response(200, json=BUILDER_HEADERS))
        respx.post(f"{RELAYER}/submit").mock(return_value=httpx.Response(200, json={"state": "STATE_NEW"}))
        with pytest.raises(RelayerApiError):
            await relayer().submit({"type": "SAFE"}, "tok")

    @respx.mock
    @pytest.mark.asyncio
    async def test_submit_refusal_keeps_status(self):
        respx.post(SIGNER_URL).mock(return_value=httpx.Response(200, json=BUILDER_HEADERS))
        respx.post(f"{RELAYER}/submit").mock(return_value=httpx.Response(400, text="invalid signature"))
        with pytest.raises(RelayerApiError) as exc_info:
            await relayer().submit({"type": "SAFE"}, "tok")
        assert exc_info.value.status_code == 400

    @respx.mock
    @pytest.mark.asyncio
    async def test_transaction_list_answer(self):
        respx.get(f"{RELAYER}/transaction").mock(
            return_value=httpx.Response(200, json=[{"transactionID": "tx-1", "state": "STATE_MINED"}])
        )
        assert (await relayer().get_transaction("tx-1"))["state"] == "STATE_MINED"

    @respx.mock
    @pytest.mark.asyncio
    async def test_unknown_transaction_is_empty(self):
        respx.get(f"{RELAYER}/transaction").mock(return_value=httpx.Response(200, json=[]))
        assert await relayer().get_transaction("tx-404") == {}

    @respx.mock
    @pytest.mark.asyncio
    async def test_non_json_submit_answer_raises(self):
        respx.post(SIGNER_URL).mock(return_value=httpx.Response(200, json=BUILDER_HEADERS))
        respx.post(f"{RELAYER}/submit").mock(return_value=httpx.Response(200, text="<html>bad gateway</html>"))
        with pytest.raises(RelayerApiError) as exc_info:
            await relayer().submit({"type": "SAFE"}, "tok")
        assert exc_info.value.status_code == 200

    @respx.mock
    @pytest.mark.asyncio
    async def test_unexpected_shapes_raise(self):
        respx.get(f"{RELAYER}/nonce").mock(return_value=httpx.Response(200, json={"nonce": "n/a"}))
        respx.get(f"{RELAYER}/deployed").mock(return_value=httpx.Response(200, json=["yes"]))
        respx.get(f"{RELAYER}/transaction").mock(return_value=httpx.Response(200, json="pending"))

        client = relayer()
        with pytest.raises(RelayerApiError):
            await client.get_nonce("0xabc")
        with pytest.raises(RelayerApiError):
            await client.is_deployed("0xsafe")
        with pytest.raises(RelayerApiError):
            await client.get_transaction("tx-1")


def approving_engine(contracts, attempts=3):
    return TradingEngine(
        reader=ResilientReader([FakeReader()]),
        clob=ClobClient(CLOB_HOST),
        relayer_client=relayer(),
        contracts=contracts,
        poll_max_attempts=attempts,
        poll_interval_ms=0,
    )


def mock_submission(answer=None):
    respx.post(SIGNER_URL).mock(return_value=httpx.Response(200, json=BUILDER_HEADERS))
    respx.get(f"{RELAYER}/nonce").mock(return_value=httpx.Response(200, json={"nonce": "0"}))
    accepted = httpx.Response(200, json={"transactionID": "tx-1", "state": "STATE_NEW"})
    return respx.post(f"{RELAYER}/submit").mock(return_value=answer if answer is not None else accepted)


class TestMalformedRelayerAnswersThroughEngine:
    @respx.mock
    @pytest.mark.asyncio
    async def test_non_json_submit_is_a_failed_result(self, session, contracts):
        mock_submission(httpx.Response(200, text="<html>bad gateway</html>"))
        poll = respx.get(f"{RELAYER}/transaction")

        result = await approving_engine(contracts).approve_all(session)

        assert not result.success
        assert result.error.code == "RELAYER_FAILED"
        assert not poll.called

    @respx.mock
    @pytest.mark.asyncio
    async def test_non_json_poll_counts_as_an_attempt(self, session, contracts):
        mock_submission()
        poll = respx.get(f"{RELAYER}/transaction").mock(
            side_effect=[
                httpx.Response(200, text="upstream timeout"),
                httpx.Response(200, json=[{"transactionID": "tx-1", "state": "STATE_MINED", "transactionHash": "0xabc"}]),
            ]
        )

        result = await approving_engine(contracts).approve_all(session)

        assert result.success
        assert result.value.transaction_hash == "0xabc"
        assert poll.call_count == 2

    @respx.mock
    @pytest.mark.asyncio
    async def test_only_non_json_polls_time_out(self, session, contracts):
        mock_submission()
        poll = respx.get(f"{RELAYER}/transaction").mock(return_value=httpx.Response(200, text="upstream timeout"))

        result = await approving_engine(contracts, attempts=3).approve_all(session)

        assert not result.success
        assert result.error.code == "RELAYER_TIMEOUT"
        assert poll.call_count == 3
