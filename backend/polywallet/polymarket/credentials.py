"""
Trading-API credential derivation and reset (L1 auth)
Based on: https://docs.polymarket.com/developers/CLOB/authentication

The credential triple is bound to a ClobAuth EIP-712 signature by the
signer EOA. Derivation with nonce 0 is deterministic; a reset revokes the
current key and issues a new one under a fresh random nonce.
"""
import logging
import secrets
from typing import Any, Dict, Optional

from py_clob_client.signing.eip712 import MSG_TO_SIGN, get_clob_auth_domain
from py_clob_client.signing.model import ClobAuth
from web3 import Web3

from polywallet.core.config import settings
from polywallet.models.errors import CredentialDerivationFailed
from polywallet.models.orders import TradingCredentials
from polywallet.polymarket.clob_client import ClobApiError, ClobClient, build_l1_headers
from polywallet.polymarket.signers import Signer

logger = logging.getLogger(__name__)

DERIVE_FALLBACK_STATUSES = (400, 401, 409)
MAX_RESET_NONCE = 1_000_000


def clob_auth_digest(address: str, timestamp: int, nonce: int, chain_id: int) -> str:
    """EIP-712 digest of the ClobAuth attestation the L1 headers carry"""
    clob_auth_msg = ClobAuth(
        address=Web3.to_checksum_address(address),
        timestamp=str(timestamp),
        nonce=nonce,
        message=MSG_TO_SIGN,
    )
    return Web3.to_hex(Web3.keccak(clob_auth_msg.signable_bytes(get_clob_auth_domain(chain_id))))


async def _signed_l1_headers(
    signer: Signer,
    signer_address: str,
    clob: ClobClient,
    nonce: int,
    chain_id: int,
) -> Dict[str, str]:
    timestamp = await clob.get_server_time()
    signature = await signer.sign_digest(clob_auth_digest(signer_address, timestamp, nonce, chain_id))
    return build_l1_headers(signer_address, signature, timestamp, nonce)


def _create_payload(l1_headers: Dict[str, str]) -> Dict[str, str]:
    return {
        "address": l1_headers["POLY_ADDRESS"],
        "timestamp": l1_headers["POLY_TIMESTAMP"],
        "nonce": l1_headers["POLY_NONCE"],
        "signature": l1_headers["POLY_SIGNATURE"],
    }


def _to_credentials(
    data: Any,
    signer_address: str,
    funder_address: Optional[str],
) -> TradingCredentials:
    if isinstance(data, dict) and data.get("error"):
        raise CredentialDerivationFailed(f"CLOB auth error: {data['error']}")
    creds = TradingCredentials.from_response(data if isinstance(data, dict) else {}, signer_address, funder_address)
    if creds is None:
        raise CredentialDerivationFailed("CLOB auth response missing credentials")
    return creds


async def derive_credentials(
    signer: Signer,
    signer_address: str,
    api_base_url: str,
    funder_address: Optional[str] = None,
    clob: Optional[ClobClient] = None,
    chain_id: Optional[int] = None,
) -> TradingCredentials:
    """
    Create or derive the credential triple for (signer, funder)

    Creation is tried first; if the key already exists (or the server
    refuses creation) the existing one is derived with the same signature.

    Raises:
        SigningRejected: the signer declined the ClobAuth prompt
        CredentialDerivationFailed: the trading API refused both paths
    """
    clob = clob or ClobClient(api_base_url, timeout=settings.HTTP_TIMEOUT)
    chain_id = chain_id or settings.POLY_CHAIN_ID
    logger.info("[Credentials] Deriving creds for signer=%s funder=%s via %s",
                signer_address, funder_address or signer_address, clob.base_url)

    l1_headers = await _signed_l1_headers(signer, signer_address, clob, 0, chain_id)
    try:
        try:
            data = await clob.create_api_key(l1_headers, _create_payload(l1_headers))
        except ClobApiError as e:
            if e.status_code not in DERIVE_FALLBACK_STATUSES:
                raise
            logger.info("[Credentials] Create failed (%s), trying derive...", e.status_code)
            data = await clob.derive_api_key(l1_headers)
    except ClobApiError as e:
        raise CredentialDerivationFailed(f"CLOB auth failed: {e}", e.status_code) from e

    creds = _to_credentials(data, signer_address, funder_address)
    logger.info("[Credentials] signer=%s apiKey=…%s", signer_address, creds.key_tail)
    return creds


async def reset_credentials(
    signer: Signer,
    signer_address: str,
    api_base_url: str,
    funder_address: Optional[str] = None,
    clob: Optional[ClobClient] = None,
    chain_id: Optional[int] = None,
) -> TradingCredentials:
    """
    Revoke the current key and issue a new one

    Not idempotent: every call invalidates the key issued before it. The
    revocation is best-effort; the new key is what matters.

    Raises:
        SigningRejected: the signer declined one of the ClobAuth prompts
        CredentialDerivationFailed: the trading API refused the new key
    """
    clob = clob or ClobClient(api_base_url, timeout=settings.HTTP_TIMEOUT)
    chain_id = chain_id or settings.POLY_CHAIN_ID
    logger.info("[Credentials] Resetting creds for signer=%s", signer_address)

    try:
        delete_headers = await _signed_l1_headers(signer, signer_address, clob, 0, chain_id)
        await clob.delete_api_key(delete_headers)
        logger.info("[Credentials] DELETE old key: ok")
    except ClobApiError as e:
        logger.warning("[Credentials] DELETE failed (non-fatal): %s", e)

    # Nonce 0 is the derivation nonce; a reset always moves off it
    nonce = 1 + secrets.randbelow(MAX_RESET_NONCE - 1)
    l1_headers = await _signed_l1_headers(signer, signer_address, clob, nonce, chain_id)
    try:
        data = await clob.create_api_key(l1_headers, _create_payload(l1_headers))
    except ClobApiError as e:
        raise CredentialDerivationFailed(f"CLOB reset failed: {e}", e.status_code) from e

    creds = _to_credentials(data, signer_address, funder_address)
    logger.info("[Credentials] NEW creds: signer=%s apiKey=…%s", signer_address, creds.key_tail)
    return creds
