"""
Limit-order construction, signing and submission
Based on: https://github.com/Polymarket/py-clob-client (order_builder)

Submission retries at most once: when the order book rejects the API key
(HTTP 401) the credentials are reset, the order is rebuilt and re-signed
with the new key, and sent one more time.
"""
import json
import logging
import re
from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum
from typing import Any, AsyncIterator, Dict, Optional, Tuple

from py_clob_client.order_builder.builder import ROUNDING_CONFIG, OrderBuilder as ClobOrderBuilder
from py_order_utils.builders import OrderBuilder as UtilsOrderBuilder
from py_order_utils.model import BUY, EOA, POLY_GNOSIS_SAFE, SELL, OrderData, SignedOrder as UtilsSignedOrder
from web3 import Web3

from polywallet.models.errors import (
    CredentialExpired,
    CredentialsMissing,
    InsufficientBalance,
    OrderRejected,
    TradingError,
    ValidationError,
)
from polywallet.models.orders import (
    OrderReceipt,
    OrderRequest,
    OrderSide,
    SignedOrder,
    TradingCredentials,
)
from polywallet.models.results import OperationResult, ProgressEvent
from polywallet.polymarket.balances import BalanceProvider
from polywallet.polymarket.builder_headers import RemoteBuilderSigner, RemoteSignerError
from polywallet.polymarket.clob_client import ClobApiError, ClobClient, build_l2_headers
from polywallet.polymarket.contracts import ZERO_ADDRESS, PolymarketContracts
from polywallet.polymarket.credentials import reset_credentials
from polywallet.polymarket.signers import Signer
from polywallet.session import SessionState

logger = logging.getLogger(__name__)

MIN_PRICE = Decimal("0.001")
MAX_PRICE = Decimal("0.999")
ORDER_PATH = "/order"


def validate_order(request: OrderRequest) -> None:
    """
    Check order parameters; performs no I/O

    Raises:
        ValidationError: price outside (0.001, 0.999), non-positive size,
            non-numeric token id or unknown tick size
    """
    try:
        price = Decimal(str(request.price))
        size = Decimal(str(request.size))
    except (ArithmeticError, ValueError) as e:
        raise ValidationError(f"Price and size must be numbers: {e}") from e

    if not price.is_finite() or not (MIN_PRICE < price < MAX_PRICE):
        raise ValidationError(f"Price must be between {MIN_PRICE} and {MAX_PRICE}", field="price")
    if not size.is_finite() or size <= 0:
        raise ValidationError("Size must be greater than 0", field="size")
    if not str(request.token_id).isdigit():
        raise ValidationError("Token ID must be a decimal integer", field="token_id")
    if request.tick_size not in ROUNDING_CONFIG:
        raise ValidationError(f"Unsupported tick size {request.tick_size}", field="tick_size")


class SignerIdentity:
    """
    The signer's address and chain as the py_clob_client builders expect them

    Key material stays with the session signer; the builders only compare
    addresses, and the digest they produce is signed separately.
    """

    def __init__(self, address: str, chain_id: int):
        self._address = Web3.to_checksum_address(address)
        self._chain_id = chain_id

    def address(self) -> str:
        return self._address

    def get_chain_id(self) -> int:
        return self._chain_id


def order_amounts(side: OrderSide, size: float, price: float, tick_size: str) -> Tuple[int, int]:
    """
    (makerAmount, takerAmount) in 6-decimal units

    BUY pays USDC (maker) for shares (taker); SELL is the reverse. Rounding
    follows the order book's per-tick table.
    """
    # Amount rounding never reads the signer or funder
    builder = ClobOrderBuilder(None, sig_type=EOA, funder=ZERO_ADDRESS)
    _, maker_amount, taker_amount = builder.get_order_amounts(
        side.value, float(size), float(price), ROUNDING_CONFIG[tick_size]
    )
    return int(maker_amount), int(taker_amount)


def order_digest(builder: UtilsOrderBuilder, order: Any) -> str:
    """EIP-712 digest of an order under the builder's exchange domain"""
    return Web3.to_hex(Web3.keccak(order.signable_bytes(domain=builder.domain_separator)))


async def build_signed_order(
    signer: Signer,
    request: OrderRequest,
    funder_address: str,
    contracts: PolymarketContracts,
) -> SignedOrder:
    """
    Build and sign a fresh order value

    The signer's EOA signs; the funder is the maker. A funder other than the
    signer means the Safe signature type.
    """
    identity = SignerIdentity(signer.address, contracts.chain_id)
    signer_address = identity.address()
    maker = Web3.to_checksum_address(funder_address)
    signature_type = POLY_GNOSIS_SAFE if maker != signer_address else EOA
    maker_amount, taker_amount = order_amounts(request.side, request.size, request.price, request.tick_size)

    data = OrderData(
        maker=maker,
        taker=ZERO_ADDRESS,
        tokenId=str(request.token_id),
        makerAmount=str(maker_amount),
        takerAmount=str(taker_amount),
        side=BUY if request.side is OrderSide.BUY else SELL,
        feeRateBps="0",
        nonce="0",
        signer=signer_address,
        expiration="0",
        signatureType=signature_type,
    )
    builder = UtilsOrderBuilder(contracts.exchange_for(request.neg_risk), contracts.chain_id, identity)
    order = builder.build_order(data)
    signature = await signer.sign_digest(order_digest(builder, order))
    logger.info(
        "[SubmitOrder] Signed %s %s @ %s (negRisk=%s, sigType=%d, maker=%s)",
        request.side.value, request.size, request.price, request.neg_risk, signature_type, maker,
    )
    return SignedOrder(order=UtilsSignedOrder(order, signature).dict())


class OrderSubmitter:
    """Posts signed orders with L2 auth and best-effort builder attribution"""

    def __init__(self, clob: ClobClient, builder_signer: Optional[RemoteBuilderSigner] = None):
        self.clob = clob
        self.builder_signer = builder_signer

    async def _builder_headers(self, access_token: str, body: str) -> Dict[str, str]:
        if self.builder_signer is None:
            return {}
        try:
            return await self.builder_signer.headers(access_token, "POST", ORDER_PATH, body)
        except RemoteSignerError as e:
            logger.warning("[SubmitOrder] Builder attribution failed: %s", e)
            return {}

    async def post(
        self,
        signed: SignedOrder,
        credentials: TradingCredentials,
        signer_address: str,
        funder_address: str,
        access_token: str,
    ) -> Dict[str, Any]:
        """
        Raises:
            ClobApiError: the order book answered with a non-2xx status
        """
        # Serialized once: the HMAC covers exactly the bytes that are sent
        body = json.dumps(signed.payload(credentials.api_key), separators=(",", ":"))

        headers = await self._builder_headers(access_token, body)
        headers.update(build_l2_headers(credentials, signer_address, "POST", ORDER_PATH, body))
        if funder_address.lower() != signer_address.lower():
            headers["POLY_PROXY_ADDRESS"] = funder_address

        logger.info(
            "[SubmitOrder] path=%s bodyLen=%d apiKey=…%s headers=%s",
            ORDER_PATH, len(body), credentials.key_tail, ",".join(sorted(headers)),
        )
        return await self.clob.post_order(headers, body)


class SubmissionPhase(Enum):
    INITIAL = "initial"
    RETRIED = "retried"


@dataclass(frozen=True)
class SubmissionState:
    """Attempt bookkeeping; a credential reset moves INITIAL -> RETRIED and never back"""

    phase: SubmissionPhase = SubmissionPhase.INITIAL
    attempts: int = 0

    @property
    def can_reset(self) -> bool:
        return self.phase is SubmissionPhase.INITIAL

    def attempted(self) -> "SubmissionState":
        return replace(self, attempts=self.attempts + 1)

    def reset_used(self) -> "SubmissionState":
        if not self.can_reset:
            raise RuntimeError("Credential reset already used for this submission")
        return replace(self, phase=SubmissionPhase.RETRIED)


_STATUS_401 = re.compile(r"(?<![\w.])401(?![\w.])")  # not inside 0.401 or 4010


def is_auth_rejection(status_code: Optional[int], message: str = "") -> bool:
    """
    The order book signals a dead API key with 401

    A known status is authoritative. Only a rejection without one (a 200
    body with success=false) is judged by its message.
    """
    if status_code is not None:
        return status_code == 401
    return bool(_STATUS_401.search(message or "")) or "unauthorized" in (message or "").lower()


def _required_balance(request: OrderRequest) -> Decimal:
    return request.notional.quantize(Decimal("0.000001"))


async def stream_submit_order(
    session: SessionState,
    request: OrderRequest,
    submitter: OrderSubmitter,
    balances: BalanceProvider,
    contracts: PolymarketContracts,
    api_base_url: str,
) -> AsyncIterator[ProgressEvent]:
    """
    Validate, preflight, sign and submit one limit order

    Steps run strictly in order; validation and the balance preflight both
    happen before anything is signed.
    """
    try:
        validate_order(request)

        funder = session.funder_address
        credentials = await session.get_credentials(funder)
        if credentials is None:
            raise CredentialsMissing(session.signer_address, funder)

        yield ProgressEvent("preflight", "Checking balance")
        snapshot = await balances.get_balances(funder, credentials)
        required = _required_balance(request)
        if snapshot.available < required:
            raise InsufficientBalance(available=snapshot.available, required=required)
        logger.info("[SubmitOrder] Preflight OK, balance: %s needed: %s", snapshot.available, required)

        state = SubmissionState()
        while True:
            access_token = await session.access_token()
            yield ProgressEvent("sign", "Signing order", {"attempt": state.attempts + 1})
            signed = await build_signed_order(session.signer, request, funder, contracts)

            state = state.attempted()
            yield ProgressEvent("submit", "Submitting order", {"attempt": state.attempts})
            try:
                data = await submitter.post(signed, credentials, session.signer_address, funder, access_token)
                status_code, error_message = None, ""
                if isinstance(data, dict) and data.get("success") is False:
                    error_message = str(data.get("errorMsg") or data.get("error") or "Order failed")
            except ClobApiError as e:
                data = None
                status_code, error_message = e.status_code, str(e)

            if not error_message:
                data = data if isinstance(data, dict) else {}
                receipt = OrderReceipt(
                    order_id=data.get("orderID") or data.get("orderId"),
                    status=data.get("status"),
                    attempts=state.attempts,
                    credentials_reset=state.phase is SubmissionPhase.RETRIED,
                )
                logger.info("[SubmitOrder] Order placed: %s", receipt.order_id)
                yield ProgressEvent("done", f"{request.side.value} order placed", result=OperationResult.ok(receipt))
                return

            if not is_auth_rejection(status_code, error_message):
                raise OrderRejected(f"Order failed: {error_message}", status_code, attempts=state.attempts)
            if not state.can_reset:
                raise CredentialExpired(
                    f"Order rejected after credential reset: {error_message}", attempts=state.attempts
                )

            logger.warning("[SubmitOrder] Credentials rejected (apiKey=…%s), resetting", credentials.key_tail)
            yield ProgressEvent("reset", "Credentials rejected, resetting API key")
            credentials = await session.replace_credentials(
                lambda: reset_credentials(
                    session.signer,
                    session.signer_address,
                    api_base_url,
                    funder_address=funder,
                    clob=submitter.clob,
                    chain_id=contracts.chain_id,
                )
            )
            state = state.reset_used()
    except TradingError as e:
        logger.error("[SubmitOrder] %s", e.message)
        yield ProgressEvent("failed", e.message, e.context(), result=OperationResult.fail(e))
