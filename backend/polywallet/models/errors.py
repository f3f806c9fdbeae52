"""
Error taxonomy for wallet onboarding and order execution

Components raise these internally; the engine boundary converts them into
OperationResult failures so callers never see them as exceptions.
"""
from decimal import Decimal
from typing import Any, Dict, Optional


class TradingError(Exception):
    """Base class for every failure surfaced to UI collaborators"""

    code = "TRADING_ERROR"
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def context(self) -> Dict[str, Any]:
        return {}

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        data.update(self.context())
        return data


class RpcExhausted(TradingError):
    """Every read endpoint failed for the same query"""

    code = "RPC_EXHAUSTED"
    retryable = True

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None):
        detail = f"{type(last_error).__name__}: {last_error}" if last_error else "no endpoints configured"
        super().__init__(f"All {attempts} RPC endpoints failed (last error: {detail})")
        self.attempts = attempts
        self.last_error = last_error

    def context(self) -> Dict[str, Any]:
        return {
            "attempts": self.attempts,
            "last_error": str(self.last_error) if self.last_error else None,
        }


class ValidationError(TradingError):
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field

    def context(self) -> Dict[str, Any]:
        return {"field": self.field}


class InsufficientBalance(TradingError):
    code = "INSUFFICIENT_BALANCE"

    def __init__(self, available: Decimal, required: Decimal):
        super().__init__(
            f"Insufficient balance: {available:.2f} USDC available, need {required:.2f} USDC"
        )
        self.available = available
        self.required = required

    def context(self) -> Dict[str, Any]:
        return {"available": str(self.available), "required": str(self.required)}


class SigningRejected(TradingError):
    """The signer declined (or failed) to produce a signature"""

    code = "SIGNING_REJECTED"


class RelayerFailed(TradingError):
    """The relayer refused the batch or reported it as failed"""

    code = "RELAYER_FAILED"

    def __init__(
        self,
        message: str,
        transaction_id: Optional[str] = None,
        state: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.transaction_id = transaction_id
        self.state = state
        self.status_code = status_code

    def context(self) -> Dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "state": self.state,
            "status_code": self.status_code,
        }


class RelayerTimeout(TradingError):
    code = "RELAYER_TIMEOUT"
    retryable = True

    def __init__(self, transaction_id: str, attempts: int):
        super().__init__(
            f"Relayer transaction {transaction_id} did not settle after {attempts} polls"
        )
        self.transaction_id = transaction_id
        self.attempts = attempts

    def context(self) -> Dict[str, Any]:
        return {"transaction_id": self.transaction_id, "attempts": self.attempts}


class CredentialExpired(TradingError):
    """The order book rejected the trading-API credential (HTTP 401)"""

    code = "CREDENTIAL_EXPIRED"

    def __init__(self, message: str, attempts: int = 1):
        super().__init__(message)
        self.attempts = attempts

    def context(self) -> Dict[str, Any]:
        return {"attempts": self.attempts, "status_code": 401}


class CredentialsMissing(TradingError):
    code = "CREDENTIALS_MISSING"

    def __init__(self, signer_address: str, funder_address: Optional[str]):
        super().__init__(
            f"No trading credentials for signer {signer_address} "
            f"(funder {funder_address or signer_address}). Derive credentials first."
        )
        self.signer_address = signer_address
        self.funder_address = funder_address


class CredentialDerivationFailed(TradingError):
    code = "CREDENTIAL_DERIVATION_FAILED"
    retryable = True

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    def context(self) -> Dict[str, Any]:
        return {"status_code": self.status_code}


class SessionExpired(TradingError):
    code = "SESSION_EXPIRED"

    def __init__(self, message: str = "Session expired. Please login again."):
        super().__init__(message)


class OrderRejected(TradingError):
    """The order book refused the order for a reason other than authentication"""

    code = "ORDER_REJECTED"

    def __init__(self, message: str, status_code: Optional[int] = None, attempts: int = 1):
        super().__init__(message)
        self.status_code = status_code
        self.attempts = attempts

    def context(self) -> Dict[str, Any]:
        return {"status_code": self.status_code, "attempts": self.attempts}
