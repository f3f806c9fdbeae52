"""
Trading engine: the operations UI collaborators call

Every operation returns an OperationResult (or a stream of ProgressEvents
ending in one) and never raises a TradingError past this boundary.
"""
import logging
from typing import AsyncIterator, Optional

from polywallet.core.config import Settings, settings
from polywallet.models.errors import TradingError
from polywallet.models.orders import OrderReceipt, OrderRequest, TradingCredentials
from polywallet.models.results import OperationResult, ProgressEvent, collect_result
from polywallet.models.wallet import ApprovalRecord, ExecutionReceipt, SmartWalletDeployment
from polywallet.polymarket import approvals, credentials
from polywallet.polymarket.balances import BalanceProvider, ChainAndExchangeBalances
from polywallet.polymarket.builder_headers import RemoteBuilderSigner
from polywallet.polymarket.clob_client import ClobClient
from polywallet.polymarket.contracts import PolymarketContracts
from polywallet.polymarket.orders import OrderSubmitter, stream_submit_order
from polywallet.polymarket.relayer import RelayerExecutor, stream_deploy_smart_wallet
from polywallet.polymarket.relayer_client import RelayerClient
from polywallet.polymarket.rpc import ResilientReader
from polywallet.polymarket.safe import derive_safe_address
from polywallet.session import SessionState

logger = logging.getLogger(__name__)


class TradingEngine:
    def __init__(
        self,
        reader: ResilientReader,
        clob: ClobClient,
        relayer_client: RelayerClient,
        contracts: PolymarketContracts,
        builder_signer: Optional[RemoteBuilderSigner] = None,
        balances: Optional[BalanceProvider] = None,
        min_allowance: int = approvals.DEFAULT_MIN_ALLOWANCE,
        poll_max_attempts: int = 30,
        poll_interval_ms: int = 2000,
    ):
        self.reader = reader
        self.clob = clob
        self.relayer_client = relayer_client
        self.contracts = contracts
        self.builder_signer = builder_signer
        self.balances = balances or ChainAndExchangeBalances(reader, clob, contracts)
        self.submitter = OrderSubmitter(clob, builder_signer)
        self.min_allowance = min_allowance
        self.poll_max_attempts = poll_max_attempts
        self.poll_interval_ms = poll_interval_ms

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "TradingEngine":
        builder_signer = RemoteBuilderSigner(config.POLY_REMOTE_SIGNER_URL, timeout=config.HTTP_TIMEOUT)
        return cls(
            reader=ResilientReader.from_urls(config.POLY_RPC_URLS, timeout=config.POLY_RPC_TIMEOUT),
            clob=ClobClient(config.POLY_CLOB_HOST, timeout=config.HTTP_TIMEOUT),
            relayer_client=RelayerClient(config.POLY_RELAYER_URL, builder_signer, timeout=config.HTTP_TIMEOUT),
            contracts=PolymarketContracts(config.POLY_CHAIN_ID),
            builder_signer=builder_signer,
            min_allowance=config.MIN_ALLOWANCE_THRESHOLD,
            poll_max_attempts=config.RELAYER_POLL_MAX_ATTEMPTS,
            poll_interval_ms=config.RELAYER_POLL_INTERVAL_MS,
        )

    def executor_for(self, session: SessionState) -> RelayerExecutor:
        return RelayerExecutor(
            self.relayer_client,
            session.signer,
            self.contracts.chain_id,
            poll_max_attempts=self.poll_max_attempts,
            poll_interval_ms=self.poll_interval_ms,
        )

    def smart_wallet_address(self, session: SessionState) -> str:
        """The session's Safe, deployed or not"""
        return session.smart_wallet_address or derive_safe_address(session.signer_address)

    async def resolve_funder(self, session: SessionState) -> str:
        """
        The maker for the session's orders and credentials

        A session that does not know its Safe yet asks the relayer once; a
        deployed Safe becomes the funder, otherwise the EOA stays it.

        Raises:
            RelayerFailed: the deployment status could not be read
        """
        if not session.smart_wallet_checked:
            safe_address = derive_safe_address(session.signer_address)
            deployed = await self.executor_for(session).is_deployed(safe_address)
            session.smart_wallet_checked = True
            if deployed:
                session.smart_wallet_address = safe_address
                logger.info("[Engine] Found deployed smart wallet %s for %s", safe_address, session.signer_address)
        return session.funder_address

    async def check_approvals(
        self,
        session: SessionState,
        wallet_address: Optional[str] = None,
    ) -> OperationResult[ApprovalRecord]:
        wallet_address = wallet_address or self.smart_wallet_address(session)
        try:
            record = await approvals.check_approvals(self.reader, wallet_address, self.contracts, self.min_allowance)
        except TradingError as e:
            return OperationResult.fail(e)
        return OperationResult.ok(record)

    async def approve_all_stream(
        self,
        session: SessionState,
        current_status: Optional[ApprovalRecord] = None,
    ) -> AsyncIterator[ProgressEvent]:
        try:
            access_token = await session.access_token()
        except TradingError as e:
            yield ProgressEvent("failed", e.message, result=OperationResult.fail(e))
            return

        stream = approvals.stream_approve_all(
            self.executor_for(session),
            self.reader,
            self.contracts,
            self.smart_wallet_address(session),
            access_token,
            current_status=current_status,
            min_allowance=self.min_allowance,
        )
        async for event in stream:
            yield event

    async def approve_all(
        self,
        session: SessionState,
        current_status: Optional[ApprovalRecord] = None,
    ) -> OperationResult[ExecutionReceipt]:
        return await collect_result(self.approve_all_stream(session, current_status))

    async def derive_credentials(self, session: SessionState) -> OperationResult[TradingCredentials]:
        """Cached credentials for the session's current funder, derived on first use"""
        try:
            funder = await self.resolve_funder(session)
            creds = await session.ensure_credentials(
                lambda: credentials.derive_credentials(
                    session.signer,
                    session.signer_address,
                    self.clob.base_url,
                    funder_address=funder,
                    clob=self.clob,
                    chain_id=self.contracts.chain_id,
                ),
                funder_address=funder,
            )
        except TradingError as e:
            return OperationResult.fail(e)
        return OperationResult.ok(creds)

    async def reset_credentials(self, session: SessionState) -> OperationResult[TradingCredentials]:
        try:
            funder = await self.resolve_funder(session)
            creds = await session.replace_credentials(
                lambda: credentials.reset_credentials(
                    session.signer,
                    session.signer_address,
                    self.clob.base_url,
                    funder_address=funder,
                    clob=self.clob,
                    chain_id=self.contracts.chain_id,
                )
            )
        except TradingError as e:
            return OperationResult.fail(e)
        return OperationResult.ok(creds)

    async def deploy_smart_wallet_stream(self, session: SessionState) -> AsyncIterator[ProgressEvent]:
        try:
            access_token = await session.access_token()
        except TradingError as e:
            yield ProgressEvent("failed", e.message, result=OperationResult.fail(e))
            return

        async for event in stream_deploy_smart_wallet(self.executor_for(session), access_token):
            if event.is_final and event.result.success:
                deployment = event.result.value
                session.smart_wallet_address = deployment.proxy_address
                session.smart_wallet_checked = True
                logger.info("[Engine] Smart wallet for %s: %s", session.signer_address, deployment.proxy_address)
            yield event

    async def deploy_smart_wallet(self, session: SessionState) -> OperationResult[SmartWalletDeployment]:
        return await collect_result(self.deploy_smart_wallet_stream(session))

    async def submit_order_stream(self, session: SessionState, request: OrderRequest) -> AsyncIterator[ProgressEvent]:
        try:
            await self.resolve_funder(session)
        except TradingError as e:
            yield ProgressEvent("failed", e.message, e.context(), result=OperationResult.fail(e))
            return

        stream = stream_submit_order(
            session,
            request,
            self.submitter,
            self.balances,
            self.contracts,
            self.clob.base_url,
        )
        async for event in stream:
            yield event

    async def submit_order(self, session: SessionState, request: OrderRequest) -> OperationResult[OrderReceipt]:
        return await collect_result(self.submit_order_stream(session, request))
