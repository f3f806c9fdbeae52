"""
Relayer execution: sponsored Safe transactions and their settlement

Lifecycle of a job: submitted -> pending -> mined/confirmed, or failed, or
timed out after a fixed number of polls. Submission failures are reported
as-is; nothing in here retries a submission.
"""
import asyncio
import logging
from typing import AsyncIterator, Collection, Dict, Optional

from polywallet.models.errors import RelayerFailed, RelayerTimeout, TradingError
from polywallet.models.results import OperationResult, ProgressEvent
from polywallet.models.wallet import (
    SETTLED_STATES,
    ExecutionReceipt,
    MetaTransactionBatch,
    PollOutcome,
    RelayerJob,
    RelayerState,
    SmartWalletDeployment,
    TerminalResult,
)
from polywallet.polymarket.builder_headers import RemoteSignerError
from polywallet.polymarket.contracts import SAFE_FACTORY, ZERO_ADDRESS
from polywallet.polymarket.relayer_client import RelayerApiError, RelayerClient
from polywallet.polymarket.safe import (
    aggregate_calls,
    create_proxy_typed_data,
    derive_safe_address,
    pack_safe_signature,
    safe_tx_hash,
)
from polywallet.polymarket.signers import Signer

logger = logging.getLogger(__name__)

DEFAULT_POLL_MAX_ATTEMPTS = 30
DEFAULT_POLL_INTERVAL_MS = 2000


class RelayerExecutor:
    """Submits batches for one signer's Safe and tracks them to a terminal state"""

    def __init__(
        self,
        client: RelayerClient,
        signer: Signer,
        chain_id: int,
        poll_max_attempts: int = DEFAULT_POLL_MAX_ATTEMPTS,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
    ):
        self.client = client
        self.signer = signer
        self.chain_id = chain_id
        self.poll_max_attempts = poll_max_attempts
        self.poll_interval_ms = poll_interval_ms

    @property
    def safe_address(self) -> str:
        return derive_safe_address(self.signer.address)

    async def _submit(self, request: Dict[str, object], access_token: str) -> RelayerJob:
        try:
            data = await self.client.submit(request, access_token)
        except RelayerApiError as e:
            raise RelayerFailed(f"Relayer rejected transaction: {e}", status_code=e.status_code) from e
        except RemoteSignerError as e:
            raise RelayerFailed(f"Builder signing failed: {e}", status_code=e.status_code) from e

        job = RelayerJob(
            transaction_id=data["transactionID"],
            state=RelayerState.parse(data.get("state")),
            transaction_hash=data.get("transactionHash"),
        )
        logger.info("[Relayer] Submitted %s (%s)", job.transaction_id, job.state.value)
        return job

    async def execute(
        self,
        batch: MetaTransactionBatch,
        description: str,
        safe_address: Optional[str] = None,
        access_token: str = "",
    ) -> RelayerJob:
        """
        Sign `batch` as one Safe transaction and hand it to the relayer

        Guarantees relayer acceptance only; use poll_until_state (or
        wait_for_settlement) for on-chain inclusion.

        Raises:
            SigningRejected: the signer declined the Safe transaction hash
            RelayerFailed: the relayer (or builder signer) refused the request
        """
        if batch.is_empty:
            raise ValueError("Refusing to submit an empty batch")

        safe_address = safe_address or self.safe_address
        tx = aggregate_calls(batch.calls)
        try:
            nonce = await self.client.get_nonce(self.signer.address)
        except RelayerApiError as e:
            raise RelayerFailed(f"Could not fetch Safe nonce: {e}", status_code=e.status_code) from e

        digest = safe_tx_hash(safe_address, tx, nonce, self.chain_id)
        signature = pack_safe_signature(await self.signer.sign_hash(digest))

        request = {
            "from": self.signer.address,
            "to": tx.to,
            "proxyWallet": safe_address,
            "data": tx.data,
            "nonce": str(nonce),
            "signature": signature,
            "signatureParams": {
                "gasPrice": "0",
                "operation": str(int(tx.operation)),
                "safeTxnGas": "0",
                "baseGas": "0",
                "gasToken": ZERO_ADDRESS,
                "refundReceiver": ZERO_ADDRESS,
            },
            "type": "SAFE",
            "metadata": description,
        }
        logger.info("[Relayer] Executing %d call(s) for %s: %s", len(batch), safe_address, description)
        return await self._submit(request, access_token)

    async def deploy_safe(self, access_token: str) -> RelayerJob:
        """Ask the relayer to deploy this signer's Safe through the proxy factory"""
        signature = await self.signer.sign_typed_data(create_proxy_typed_data(self.chain_id))
        request = {
            "from": self.signer.address,
            "to": SAFE_FACTORY,
            "proxyWallet": self.safe_address,
            "data": "0x",
            "signature": signature,
            "signatureParams": {
                "paymentToken": ZERO_ADDRESS,
                "payment": "0",
                "paymentReceiver": ZERO_ADDRESS,
            },
            "type": "SAFE-CREATE",
        }
        logger.info("[Relayer] Deploying Safe %s for %s", self.safe_address, self.signer.address)
        return await self._submit(request, access_token)

    async def is_deployed(self, safe_address: Optional[str] = None) -> bool:
        try:
            return await self.client.is_deployed(safe_address or self.safe_address)
        except RelayerApiError as e:
            raise RelayerFailed(f"Could not check deployment: {e}", status_code=e.status_code) from e

    async def poll_until_state(
        self,
        transaction_id: str,
        success_states: Collection[RelayerState] = SETTLED_STATES,
        failure_state: RelayerState = RelayerState.FAILED,
        max_attempts: Optional[int] = None,
        interval_ms: Optional[int] = None,
    ) -> TerminalResult:
        """
        Poll the relayer at a fixed interval until a terminal state

        A failed status read counts as a non-terminal attempt. INVALID is
        terminal like `failure_state`. Cancelling the awaiting task stops
        the loop at its next suspension point.
        """
        max_attempts = max_attempts if max_attempts is not None else self.poll_max_attempts
        interval_ms = interval_ms if interval_ms is not None else self.poll_interval_ms

        for attempt in range(1, max_attempts + 1):
            try:
                data = await self.client.get_transaction(transaction_id)
            except RelayerApiError as e:
                logger.warning("[Relayer] Poll %d/%d for %s failed: %s", attempt, max_attempts, transaction_id, e)
                data = {}

            state = RelayerState.parse(data.get("state"))
            tx_hash = data.get("transactionHash")
            if state in success_states:
                logger.info("[Relayer] %s reached %s after %d poll(s)", transaction_id, state.value, attempt)
                return TerminalResult(transaction_id, PollOutcome.SETTLED, attempt, state, tx_hash)
            if state is failure_state or state is RelayerState.INVALID:
                logger.error("[Relayer] %s reached %s", transaction_id, state.value)
                return TerminalResult(transaction_id, PollOutcome.FAILED, attempt, state, tx_hash)

            if attempt < max_attempts:
                await asyncio.sleep(interval_ms / 1000)

        logger.error("[Relayer] %s not terminal after %d polls", transaction_id, max_attempts)
        return TerminalResult(transaction_id, PollOutcome.TIMEOUT, max_attempts)

    async def wait_for_settlement(self, job: RelayerJob, calls: int = 0, message: str = "") -> ExecutionReceipt:
        """
        Raises:
            RelayerFailed: the job reached a failure state
            RelayerTimeout: the job never reached a terminal state
        """
        result = await self.poll_until_state(job.transaction_id)
        if result.outcome is PollOutcome.SETTLED:
            return ExecutionReceipt(
                transaction_id=job.transaction_id,
                transaction_hash=result.transaction_hash,
                calls=calls,
                message=message,
            )
        if result.outcome is PollOutcome.FAILED:
            raise RelayerFailed(
                f"Relayer transaction {job.transaction_id} failed ({result.state.value})",
                transaction_id=job.transaction_id,
                state=result.state.value,
            )
        raise RelayerTimeout(job.transaction_id, result.attempts)


async def stream_deploy_smart_wallet(
    executor: RelayerExecutor,
    access_token: str,
) -> AsyncIterator[ProgressEvent]:
    """
    Deploy the signer's Safe, as a no-op when it already exists

    If submission or polling fails, deployment is re-checked before
    reporting the failure; another tab may have deployed it.
    """
    safe_address = executor.safe_address
    try:
        yield ProgressEvent("check", f"Checking smart wallet {safe_address}", {"proxyAddress": safe_address})
        if await executor.is_deployed(safe_address):
            logger.info("[DeploySafe] %s already deployed", safe_address)
            deployment = SmartWalletDeployment(safe_address, already_deployed=True)
            yield ProgressEvent("done", "Smart wallet already deployed", result=OperationResult.ok(deployment))
            return

        yield ProgressEvent("submit", "Deploying smart wallet via Relayer")
        job = await executor.deploy_safe(access_token)

        yield ProgressEvent("poll", f"Waiting for deployment {job.transaction_id}", {"transactionID": job.transaction_id})
        receipt = await executor.wait_for_settlement(job, message="Smart wallet deployed")
        deployment = SmartWalletDeployment(safe_address, transaction_hash=receipt.transaction_hash)
        yield ProgressEvent("done", receipt.message, result=OperationResult.ok(deployment))
    except TradingError as e:
        logger.warning("[DeploySafe] Deployment error, re-checking: %s", e.message)
        try:
            deployed = await executor.is_deployed(safe_address)
        except RelayerFailed:
            deployed = False
        if deployed:
            deployment = SmartWalletDeployment(safe_address, already_deployed=True)
            yield ProgressEvent("done", "Smart wallet deployed", result=OperationResult.ok(deployment))
        else:
            yield ProgressEvent("failed", e.message, result=OperationResult.fail(e))
