"""
Signers for the user's EOA
Based on: https://docs.privy.io/api-reference/wallets/ethereum/eth-signtypeddata-v4

Orders and ClobAuth are signed as raw EIP-712 digests; Safe transactions
as EIP-191 signatures over a 32-byte digest.
"""
import base64
import logging
from typing import Any, Dict, Optional, Protocol

import httpx
from eth_account import Account
from eth_account.messages import encode_defunct, encode_typed_data
from py_order_utils.signer import Signer as DigestSigner
from web3 import Web3

from polywallet.core.config import settings
from polywallet.models.errors import SigningRejected

logger = logging.getLogger(__name__)


class Signer(Protocol):
    address: str

    async def sign_typed_data(self, typed_data: Dict[str, Any]) -> str: ...

    async def sign_digest(self, digest: str) -> str: ...

    async def sign_hash(self, digest: str) -> str: ...


class LocalSigner:
    """Signer holding a private key in-process (development and tests)"""

    def __init__(self, private_key: str):
        self._account = Account.from_key(private_key)
        self._digest_signer = DigestSigner(private_key)
        self.address = self._account.address

    @classmethod
    def create(cls) -> "LocalSigner":
        return cls(Web3.to_hex(Account.create().key))

    async def sign_typed_data(self, typed_data: Dict[str, Any]) -> str:
        signable = encode_typed_data(full_message=typed_data)
        return Web3.to_hex(self._account.sign_message(signable).signature)

    async def sign_digest(self, digest: str) -> str:
        signature = self._digest_signer.sign(digest)
        return signature if signature.startswith("0x") else f"0x{signature}"

    async def sign_hash(self, digest: str) -> str:
        signable = encode_defunct(hexstr=digest)
        return Web3.to_hex(self._account.sign_message(signable).signature)


class PrivyApiError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class PrivySigner:
    """
    Signer for Privy embedded wallets

    Privy keeps the key server-side; signing goes through the wallet RPC
    endpoint authenticated with the app id/secret (Basic auth).
    """

    def __init__(
        self,
        wallet_address: str,
        wallet_id: Optional[str] = None,
        user_did: Optional[str] = None,
        app_id: Optional[str] = None,
        app_secret: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: float = 10.0,
    ):
        self.address = Web3.to_checksum_address(wallet_address)
        self.wallet_id = wallet_id
        self.user_did = user_did
        self.privy_app_id = app_id or settings.PRIVY_APP_ID
        self.privy_app_secret = app_secret or settings.PRIVY_APP_SECRET
        self.privy_api_url = (api_url or settings.PRIVY_API_URL).rstrip("/")
        self.timeout = timeout

        if not self.privy_app_id or not self.privy_app_secret:
            raise PrivyApiError("Privy credentials not configured")
        if not self.wallet_id and not self.user_did:
            raise PrivyApiError("PrivySigner needs a wallet id or a user DID to resolve it")

    def _headers(self) -> Dict[str, str]:
        # Privy API uses Basic auth: base64(app_id:app_secret)
        auth_string = f"{self.privy_app_id}:{self.privy_app_secret}"
        auth_b64 = base64.b64encode(auth_string.encode("utf-8")).decode("utf-8")
        return {
            "Authorization": f"Basic {auth_b64}",
            "privy-app-id": self.privy_app_id,
            "Content-Type": "application/json",
        }

    async def _resolve_wallet_id(self, client: httpx.AsyncClient) -> str:
        if self.wallet_id:
            return self.wallet_id

        response = await client.get(f"{self.privy_api_url}/users/{self.user_did}", headers=self._headers())
        if response.status_code != 200:
            raise PrivyApiError(
                f"Failed to get user from Privy: {response.status_code} - {response.text[:200]}",
                response.status_code,
            )

        try:
            user = response.json()
        except ValueError as e:
            raise PrivyApiError(f"Privy user lookup returned non-JSON: {response.text[:200]}") from e
        if not isinstance(user, dict):
            user = {}
        accounts = user.get("linked_accounts") or user.get("wallets") or []
        wallet = next(
            (w for w in accounts if (w.get("address") or "").lower() == self.address.lower()),
            None,
        )
        if not wallet or not (wallet.get("id") or wallet.get("walletId")):
            raise PrivyApiError(f"Wallet {self.address} not found for user {self.user_did}")

        self.wallet_id = wallet.get("id") or wallet.get("walletId")
        logger.info("[PrivySigner] Resolved wallet id for %s", self.address)
        return self.wallet_id

    async def _rpc(self, method: str, params: Dict[str, Any]) -> str:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                wallet_id = await self._resolve_wallet_id(client)
                response = await client.post(
                    f"{self.privy_api_url}/wallets/{wallet_id}/rpc",
                    headers=self._headers(),
                    json={"method": method, "params": params},
                )
        except httpx.RequestError as e:
            raise SigningRejected(f"Privy API request error: {e}") from e
        except PrivyApiError as e:
            raise SigningRejected(str(e)) from e

        if response.status_code != 200:
            logger.warning("[PrivySigner] %s refused: %s - %s", method, response.status_code, response.text[:200])
            raise SigningRejected(f"Privy sign API error: {response.status_code} - {response.text[:200]}")

        try:
            data = response.json().get("data") or {}
        except (ValueError, AttributeError) as e:
            raise SigningRejected(f"Privy sign API returned malformed response: {response.text[:200]}") from e
        signature = data.get("signature") if isinstance(data, dict) else None
        if not signature:
            raise SigningRejected("Privy API response doesn't contain signature")
        return signature if signature.startswith("0x") else f"0x{signature}"

    async def sign_typed_data(self, typed_data: Dict[str, Any]) -> str:
        payload = {
            "types": typed_data["types"],
            "domain": typed_data["domain"],
            "message": typed_data["message"],
            "primary_type": typed_data["primaryType"],
        }
        return await self._rpc("eth_signTypedData_v4", {"typed_data": payload})

    async def sign_digest(self, digest: str) -> str:
        return await self._rpc("secp256k1_sign", {"hash": digest if digest.startswith("0x") else f"0x{digest}"})

    async def sign_hash(self, digest: str) -> str:
        message = digest[2:] if digest.startswith("0x") else digest
        return await self._rpc("personal_sign", {"message": f"0x{message}", "encoding": "hex"})
