"""
Per-user session state shared by the wallet and trading operations
"""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

from polywallet.models.errors import SessionExpired
from polywallet.models.orders import CredentialScope, TradingCredentials, credential_scope
from polywallet.polymarket.signers import Signer

logger = logging.getLogger(__name__)

AccessTokenProvider = Callable[[], Awaitable[Optional[str]]]
CredentialFactory = Callable[[], Awaitable[TradingCredentials]]


def static_token(token: Optional[str]) -> AccessTokenProvider:
    async def provide() -> Optional[str]:
        return token

    return provide


class SessionState:
    """
    Identity, smart wallet and cached trading credentials for one user

    Credentials are the only mutable state shared across operations. Every
    read and every write goes through one lock, so a reader waits for an
    in-flight derive or reset and never observes a half-replaced value.
    """

    def __init__(
        self,
        signer: Signer,
        access_token_provider: AccessTokenProvider,
        smart_wallet_address: Optional[str] = None,
    ):
        self.signer = signer
        self._access_token_provider = access_token_provider
        self.smart_wallet_address = smart_wallet_address
        # Whether the relayer was asked about this signer's Safe
        self.smart_wallet_checked = smart_wallet_address is not None
        self._credentials: Dict[CredentialScope, TradingCredentials] = {}
        self._lock = asyncio.Lock()

    @property
    def signer_address(self) -> str:
        return self.signer.address

    @property
    def funder_address(self) -> str:
        """Maker of all orders: the smart wallet once known, else the EOA"""
        return self.smart_wallet_address or self.signer_address

    def use_access_token_provider(self, provider: AccessTokenProvider) -> None:
        self._access_token_provider = provider

    async def access_token(self) -> str:
        """Fresh bearer token from the auth collaborator"""
        token = await self._access_token_provider()
        if not token:
            raise SessionExpired()
        return token

    def _scope(self, funder_address: Optional[str]) -> CredentialScope:
        return credential_scope(self.signer_address, funder_address or self.funder_address)

    async def get_credentials(self, funder_address: Optional[str] = None) -> Optional[TradingCredentials]:
        async with self._lock:
            return self._credentials.get(self._scope(funder_address))

    async def ensure_credentials(self, derive: CredentialFactory, funder_address: Optional[str] = None) -> TradingCredentials:
        """Return cached credentials for the scope, deriving them once if absent"""
        scope = self._scope(funder_address)
        async with self._lock:
            creds = self._credentials.get(scope)
            if creds is None:
                creds = await derive()
                self._credentials[creds.scope] = creds
                logger.info("[Session] Stored creds apiKey=…%s for %s", creds.key_tail, creds.scope)
            return creds

    async def replace_credentials(self, issue: CredentialFactory) -> TradingCredentials:
        """Issue new credentials (derive or reset) and swap them in under the lock"""
        async with self._lock:
            creds = await issue()
            previous = self._credentials.get(creds.scope)
            self._credentials[creds.scope] = creds
            logger.info(
                "[Session] Replaced creds for %s: …%s -> …%s",
                creds.scope, previous.key_tail if previous else "none", creds.key_tail,
            )
            return creds
