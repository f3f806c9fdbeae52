"""
Token approval engine

Reads the six permission grants a Polymarket trading wallet needs and
builds the minimal relayer batch that fixes the missing ones.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, List, Optional

from web3 import Web3

from polywallet.models.errors import TradingError, ValidationError
from polywallet.models.results import OperationResult, ProgressEvent
from polywallet.models.wallet import (
    ApprovalRecord,
    ExecutionReceipt,
    MetaTransaction,
    MetaTransactionBatch,
)
from polywallet.polymarket.contracts import (
    MAX_UINT256,
    PolymarketContracts,
    encode_approve,
    encode_set_approval_for_all,
)
from polywallet.polymarket.rpc import BlockchainReader, ResilientReader

logger = logging.getLogger(__name__)

DEFAULT_MIN_ALLOWANCE = 10**12  # > 1M USDC
APPROVAL_DESCRIPTION = "Set token approvals for Polymarket trading"


class GrantKind(str, Enum):
    ERC20_ALLOWANCE = "erc20"
    ERC1155_OPERATOR = "erc1155"


@dataclass(frozen=True)
class ApprovalGrant:
    flag: str  # ApprovalRecord field
    kind: GrantKind
    token: str
    target: str  # spender or operator
    label: str

    def call(self) -> MetaTransaction:
        if self.kind is GrantKind.ERC20_ALLOWANCE:
            data = encode_approve(self.target, MAX_UINT256)
        else:
            data = encode_set_approval_for_all(self.target, True)
        return MetaTransaction(to=self.token, data=data, value="0")


def approval_grants(contracts: PolymarketContracts) -> List[ApprovalGrant]:
    """Canonical grant order: ERC-20 allowances first, then ERC-1155 operators"""
    usdc, ctf = contracts.collateral, contracts.conditional_tokens
    return [
        ApprovalGrant("usdc_to_ctf", GrantKind.ERC20_ALLOWANCE, usdc, ctf, "USDC→CTF"),
        ApprovalGrant("usdc_to_exchange", GrantKind.ERC20_ALLOWANCE, usdc, contracts.exchange, "USDC→Exchange"),
        ApprovalGrant(
            "usdc_to_neg_risk_exchange", GrantKind.ERC20_ALLOWANCE, usdc, contracts.neg_risk_exchange, "USDC→NegRisk"
        ),
        ApprovalGrant("ctf_to_exchange", GrantKind.ERC1155_OPERATOR, ctf, contracts.exchange, "CTF→Exchange"),
        ApprovalGrant(
            "ctf_to_neg_risk_exchange", GrantKind.ERC1155_OPERATOR, ctf, contracts.neg_risk_exchange, "CTF→NegRisk"
        ),
        ApprovalGrant(
            "ctf_to_neg_risk_adapter", GrantKind.ERC1155_OPERATOR, ctf, contracts.neg_risk_adapter, "CTF→Adapter"
        ),
    ]


async def check_approvals(
    reader: ResilientReader,
    wallet_address: str,
    contracts: PolymarketContracts,
    min_allowance: int = DEFAULT_MIN_ALLOWANCE,
) -> ApprovalRecord:
    """
    Read all six grants for `wallet_address`

    Side-effect free; safe to call as often as needed.

    Raises:
        ValidationError: `wallet_address` is not an address
        RpcExhausted: no endpoint could answer
    """
    if not Web3.is_address(wallet_address or ""):
        raise ValidationError(f"Invalid wallet address: {wallet_address}", field="wallet_address")
    grants = approval_grants(contracts)

    async def read_all(endpoint: BlockchainReader) -> ApprovalRecord:
        async def read(grant: ApprovalGrant) -> bool:
            if grant.kind is GrantKind.ERC20_ALLOWANCE:
                allowance = await endpoint.allowance(grant.token, wallet_address, grant.target)
                return int(allowance) > min_allowance
            return bool(await endpoint.is_approved_for_all(grant.token, wallet_address, grant.target))

        flags = await asyncio.gather(*(read(grant) for grant in grants), return_exceptions=True)
        for flag in flags:
            if isinstance(flag, BaseException):
                raise flag
        return ApprovalRecord(**{grant.flag: flag for grant, flag in zip(grants, flags)})

    record = await reader.run(read_all, f"approval check for {wallet_address}")
    logger.info("[TokenApprovals] Status for %s: %s", wallet_address, record.to_dict())
    return record


def plan_approvals(record: ApprovalRecord, contracts: PolymarketContracts) -> MetaTransactionBatch:
    """One approve / setApprovalForAll call per missing grant, in canonical order"""
    calls = []
    labels = []
    for grant in approval_grants(contracts):
        if getattr(record, grant.flag):
            continue
        logger.debug("[TokenApprovals] Adding %s approval: %s", grant.kind.value, grant.label)
        calls.append(grant.call())
        labels.append(grant.label)
    return MetaTransactionBatch(calls=tuple(calls), labels=tuple(labels))


async def stream_approve_all(
    executor,
    reader: ResilientReader,
    contracts: PolymarketContracts,
    wallet_address: str,
    access_token: str,
    current_status: Optional[ApprovalRecord] = None,
    min_allowance: int = DEFAULT_MIN_ALLOWANCE,
) -> AsyncIterator[ProgressEvent]:
    """
    Grant every missing approval through the relayer

    A caller-supplied `current_status` is trusted as-is (no re-read);
    without one the grants are read fresh. Nothing is submitted when all
    six are already set.
    """
    try:
        if current_status is None:
            yield ProgressEvent("check", f"Checking approvals for {wallet_address}")
            current_status = await check_approvals(reader, wallet_address, contracts, min_allowance)

        batch = plan_approvals(current_status, contracts)
        if batch.is_empty:
            logger.info("[TokenApprovals] All approvals already set!")
            receipt = ExecutionReceipt(calls=0, message="All approvals already set")
            yield ProgressEvent("done", receipt.message, result=OperationResult.ok(receipt))
            return

        yield ProgressEvent(
            "submit",
            f"Submitting {len(batch)} approval txs via Relayer",
            {"labels": list(batch.labels)},
        )
        job = await executor.execute(batch, APPROVAL_DESCRIPTION, safe_address=wallet_address,
                                     access_token=access_token)

        yield ProgressEvent("poll", f"Waiting for confirmation of {job.transaction_id}",
                            {"transactionID": job.transaction_id})
        receipt = await executor.wait_for_settlement(job, calls=len(batch), message="Approvals confirmed")
        yield ProgressEvent("done", receipt.message, {"transactionHash": receipt.transaction_hash},
                            result=OperationResult.ok(receipt))
    except TradingError as e:
        logger.error("[TokenApprovals] Error: %s", e.message)
        yield ProgressEvent("failed", e.message, result=OperationResult.fail(e))
