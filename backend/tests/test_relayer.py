"""Tests for relayer execution and smart-wallet deployment."""

import asyncio

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from polywallet.models.errors import RelayerFailed, RelayerTimeout, SigningRejected
from polywallet.models.results import collect_result
from polywallet.models.wallet import (
    MetaTransaction,
    MetaTransactionBatch,
    PollOutcome,
    RelayerJob,
    RelayerState,
)
from polywallet.polymarket.contracts import SAFE_FACTORY, SAFE_MULTISEND, encode_approve
from polywallet.polymarket.relayer import RelayerExecutor, stream_deploy_smart_wallet
from polywallet.polymarket.relayer_client import RelayerApiError
from polywallet.polymarket.safe import derive_safe_address

USDC = "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174"
SPENDER = "0x4bFb41d5B3570DeFd03C39a9A4D8dE6Bd8B8982E"


class FakeRelayerClient:
    def __init__(self, states=None, deployed=False, submit_error=None, nonce=3):
        self.states = list(states or ["STATE_NEW"])
        self.deployed = deployed
        self.submit_error = submit_error
        self.nonce = nonce
        self.submitted = []
        self.polls = 0
        self.deployed_checks = 0

    async def get_nonce(self, signer_address, wallet_type="SAFE"):
        return self.nonce

    async def is_deployed(self, safe_address):
        self.deployed_checks += 1
        return self.deployed

    async def submit(self, request, access_token):
        if self.submit_error:
            raise self.submit_error
        self.submitted.append((request, access_token))
        return {"transactionID": f"tx-{len(self.submitted)}", "state": "STATE_NEW"}

    async def get_transaction(self, transaction_id):
        self.polls += 1
        state = self.states[min(self.polls, len(self.states)) - 1]
        tx_hash = "0xabc" if state in ("STATE_MINED", "STATE_CONFIRMED") else None
        return {"transactionID": transaction_id, "state": state, "transactionHash": tx_hash}


class RejectingSigner:
    address = "0x1111111111111111111111111111111111111111"

    async def sign_typed_data(self, typed_data):
        raise SigningRejected("User rejected the request")

    async def sign_hash(self, digest):
        raise SigningRejected("User rejected the request")


def approve_batch(n=1):
    calls = tuple(MetaTransaction(USDC, encode_approve(SPENDER)) for _ in range(n))
    return MetaTransactionBatch(calls=calls, labels=tuple(f"call-{i}" for i in range(n)))


def executor(client, signer, attempts=5):
    return RelayerExecutor(client, signer, 137, poll_max_attempts=attempts, poll_interval_ms=0)


class TestPollUntilState:
    @pytest.mark.asyncio
    async def test_times_out_after_exactly_max_attempts(self, signer):
        client = FakeRelayerClient(states=["STATE_PENDING"])
        result = await executor(client, signer).poll_until_state("tx-1", max_attempts=7)
        assert result.outcome is PollOutcome.TIMEOUT
        assert result.attempts == 7
        assert client.polls == 7

    @pytest.mark.asyncio
    async def test_settles_on_mined(self, signer):
        client = FakeRelayerClient(states=["STATE_NEW", "STATE_EXECUTED", "STATE_MINED"])
        result = await executor(client, signer).poll_until_state("tx-1")
        assert result.settled
        assert result.state is RelayerState.MINED
        assert result.transaction_hash == "0xabc"
        assert client.polls == 3

    @pytest.mark.asyncio
    async def test_failure_state_stops_immediately(self, signer):
        client = FakeRelayerClient(states=["STATE_FAILED", "STATE_CONFIRMED"])
        result = await executor(client, signer).poll_until_state("tx-1")
        assert result.outcome is PollOutcome.FAILED
        assert client.polls == 1

    @pytest.mark.asyncio
    async def test_poll_errors_count_as_attempts(self, signer):
        class FlakyClient(FakeRelayerClient):
            async def get_transaction(self, transaction_id):
                self.polls += 1
                if self.polls == 1:
                    raise RelayerApiError("502", 502)
                return {"state": "STATE_CONFIRMED", "transactionHash": "0xdef"}

        client = FlakyClient()
        result = await executor(client, signer).poll_until_state("tx-1")
        assert result.settled
        assert result.attempts == 2

    @pytest.mark.asyncio
    async def test_cancellation_stops_polling(self, signer):
        client = FakeRelayerClient(states=["STATE_PENDING"])
        slow = RelayerExecutor(client, signer, 137, poll_max_attempts=30, poll_interval_ms=60_000)
        task = asyncio.create_task(slow.poll_until_state("tx-1"))
        while client.polls == 0:
            await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0)
        assert client.polls == 1

    @pytest.mark.asyncio
    async def test_wait_for_settlement_raises_timeout(self, signer):
        client = FakeRelayerClient(states=["STATE_NEW"])
        with pytest.raises(RelayerTimeout) as exc_info:
            await executor(client, signer, attempts=3).wait_for_settlement(RelayerJob("tx-9"))
        assert exc_info.value.attempts == 3
        assert exc_info.value.transaction_id == "tx-9"

    @pytest.mark.asyncio
    async def test_wait_for_settlement_raises_failed(self, signer):
        client = FakeRelayerClient(states=["STATE_FAILED"])
        with pytest.raises(RelayerFailed) as exc_info:
            await executor(client, signer).wait_for_settlement(RelayerJob("tx-9"))
        assert exc_info.value.state == "STATE_FAILED"


class TestExecute:
    @pytest.mark.asyncio
    async def test_single_call_is_sent_as_plain_call(self, signer):
        client = FakeRelayerClient()
        job = await executor(client, signer).execute(approve_batch(1), "Set approvals", access_token="tok")

        assert job.transaction_id == "tx-1"
        request, token = client.submitted[0]
        assert token == "tok"
        assert request["type"] == "SAFE"
        assert request["to"] == USDC
        assert request["signatureParams"]["operation"] == "0"
        assert request["nonce"] == "3"
        assert request["metadata"] == "Set approvals"
        assert request["proxyWallet"] == derive_safe_address(signer.address)

    @pytest.mark.asyncio
    async def test_several_calls_go_through_multisend(self, signer):
        client = FakeRelayerClient()
        await executor(client, signer).execute(approve_batch(3), "batch", access_token="tok")
        request, _ = client.submitted[0]
        assert request["to"] == Web3.to_checksum_address(SAFE_MULTISEND)
        assert request["signatureParams"]["operation"] == "1"
        assert request["data"].startswith("0x8d80ff0a")

    @pytest.mark.asyncio
    async def test_signature_is_safe_eth_sign_over_tx_hash(self, signer):
        client = FakeRelayerClient()
        await executor(client, signer).execute(approve_batch(2), "batch", access_token="tok")
        request, _ = client.submitted[0]

        raw = Web3.to_bytes(hexstr=request["signature"])
        assert raw[64] in (31, 32)
        original = raw[:64] + bytes([raw[64] - 4])
        digest = signer.hash_requests[0]
        recovered = Account.recover_message(encode_defunct(hexstr=digest), signature=original)
        assert recovered == signer.address

    @pytest.mark.asyncio
    async def test_empty_batch_is_refused(self, signer):
        with pytest.raises(ValueError):
            await executor(FakeRelayerClient(), signer).execute(MetaTransactionBatch(), "nothing")

    @pytest.mark.asyncio
    async def test_relayer_rejection_is_not_retried(self, signer):
        client = FakeRelayerClient(submit_error=RelayerApiError("bad request", 400))
        with pytest.raises(RelayerFailed) as exc_info:
            await executor(client, signer).execute(approve_batch(1), "x", access_token="tok")
        assert exc_info.value.status_code == 400
        assert client.submitted == []

    @pytest.mark.asyncio
    async def test_declined_signature_submits_nothing(self):
        client = FakeRelayerClient()
        with pytest.raises(SigningRejected):
            await executor(client, RejectingSigner()).execute(approve_batch(1), "x", access_token="tok")
        assert client.submitted == []


class TestDeploySmartWallet:
    @pytest.mark.asyncio
    async def test_already_deployed_is_a_no_op(self, signer):
        client = FakeRelayerClient(deployed=True)
        result = await collect_result(stream_deploy_smart_wallet(executor(client, signer), "tok"))
        assert result.success
        assert result.value.already_deployed
        assert result.value.proxy_address == derive_safe_address(signer.address)
        assert client.submitted == []

    @pytest.mark.asyncio
    async def test_deploys_and_waits(self, signer):
        client = FakeRelayerClient(states=["STATE_NEW", "STATE_CONFIRMED"])
        result = await collect_result(stream_deploy_smart_wallet(executor(client, signer), "tok"))
        assert result.success
        assert result.value.transaction_hash == "0xabc"
        request, _ = client.submitted[0]
        assert request["type"] == "SAFE-CREATE"
        assert request["to"] == SAFE_FACTORY
        assert signer.typed_data_requests[0]["primaryType"] == "CreateProxy"

    @pytest.mark.asyncio
    async def test_failure_rechecks_deployment(self, signer):
        class DeployedMeanwhile(FakeRelayerClient):
            async def is_deployed(self, safe_address):
                self.deployed_checks += 1
                return self.deployed_checks > 1

        client = DeployedMeanwhile(submit_error=RelayerApiError("already pending", 409))
        result = await collect_result(stream_deploy_smart_wallet(executor(client, signer), "tok"))
        assert result.success
        assert client.deployed_checks == 2

    @pytest.mark.asyncio
    async def test_failure_is_reported_when_still_undeployed(self, signer):
        client = FakeRelayerClient(states=["STATE_FAILED"])
        result = await collect_result(stream_deploy_smart_wallet(executor(client, signer), "tok"))
        assert not result.success
        assert result.error.code == "RELAYER_FAILED"
