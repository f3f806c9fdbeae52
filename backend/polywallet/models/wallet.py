"""
Smart-wallet side data model: approvals, meta-transaction batches, relayer jobs
"""
from dataclasses import dataclass, fields
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple


@dataclass(frozen=True)
class ApprovalRecord:
    """The six on-chain permission grants a trading wallet needs

    Derived from chain reads on demand, never stored.
    """

    # ERC-20 USDC allowances
    usdc_to_ctf: bool
    usdc_to_exchange: bool
    usdc_to_neg_risk_exchange: bool
    # ERC-1155 CTF operator approvals
    ctf_to_exchange: bool
    ctf_to_neg_risk_exchange: bool
    ctf_to_neg_risk_adapter: bool

    @property
    def all_approved(self) -> bool:
        return all(getattr(self, f.name) for f in fields(self))

    @property
    def missing(self) -> List[str]:
        return [f.name for f in fields(self) if not getattr(self, f.name)]

    def to_dict(self) -> Dict[str, bool]:
        return {
            "usdcToCTF": self.usdc_to_ctf,
            "usdcToExchange": self.usdc_to_exchange,
            "usdcToNegRiskExchange": self.usdc_to_neg_risk_exchange,
            "ctfToExchange": self.ctf_to_exchange,
            "ctfToNegRiskExchange": self.ctf_to_neg_risk_exchange,
            "ctfToNegRiskAdapter": self.ctf_to_neg_risk_adapter,
            "allApproved": self.all_approved,
        }


@dataclass(frozen=True)
class MetaTransaction:
    to: str
    data: str
    value: str = "0"

    def to_dict(self) -> Dict[str, str]:
        return {"to": self.to, "data": self.data, "value": self.value}


@dataclass(frozen=True)
class MetaTransactionBatch:
    """Calls executed atomically and gaslessly on behalf of the smart wallet"""

    calls: Tuple[MetaTransaction, ...] = ()
    labels: Tuple[str, ...] = ()

    def __len__(self) -> int:
        return len(self.calls)

    @property
    def is_empty(self) -> bool:
        return not self.calls

    def to_dict(self) -> Dict[str, object]:
        return {
            "calls": [call.to_dict() for call in self.calls],
            "labels": list(self.labels),
        }


class RelayerState(str, Enum):
    NEW = "STATE_NEW"
    EXECUTED = "STATE_EXECUTED"
    MINED = "STATE_MINED"
    CONFIRMED = "STATE_CONFIRMED"
    FAILED = "STATE_FAILED"
    INVALID = "STATE_INVALID"

    @property
    def is_pending(self) -> bool:
        return self in (RelayerState.NEW, RelayerState.EXECUTED)

    @classmethod
    def parse(cls, raw: Optional[str]) -> "RelayerState":
        if not raw:
            return cls.NEW
        value = raw.upper()
        if not value.startswith("STATE_"):
            value = f"STATE_{value}"
        try:
            return cls(value)
        except ValueError:
            # PENDING and any unknown in-flight state
            return cls.NEW


SETTLED_STATES: FrozenSet[RelayerState] = frozenset({RelayerState.MINED, RelayerState.CONFIRMED})


@dataclass(frozen=True)
class RelayerJob:
    """Relayer's tracking handle for a submitted batch"""

    transaction_id: str
    state: RelayerState = RelayerState.NEW
    transaction_hash: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "transactionID": self.transaction_id,
            "state": self.state.value,
            "transactionHash": self.transaction_hash,
        }


class PollOutcome(str, Enum):
    SETTLED = "settled"
    FAILED = "failed"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class TerminalResult:
    transaction_id: str
    outcome: PollOutcome
    attempts: int
    state: Optional[RelayerState] = None
    transaction_hash: Optional[str] = None

    @property
    def settled(self) -> bool:
        return self.outcome is PollOutcome.SETTLED


@dataclass(frozen=True)
class ExecutionReceipt:
    """Successful outcome of a relayer-backed operation"""

    transaction_id: Optional[str] = None
    transaction_hash: Optional[str] = None
    calls: int = 0
    message: str = ""

    def to_dict(self) -> Dict[str, object]:
        return {
            "transactionID": self.transaction_id,
            "transactionHash": self.transaction_hash,
            "calls": self.calls,
            "message": self.message,
        }


@dataclass(frozen=True)
class SmartWalletDeployment:
    proxy_address: str
    already_deployed: bool = False
    transaction_hash: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "proxyAddress": self.proxy_address,
            "alreadyDeployed": self.already_deployed,
            "transactionHash": self.transaction_hash,
        }
