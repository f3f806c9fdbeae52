"""
Request dependencies: engine, signer and per-user session lookup
"""
import logging
from functools import lru_cache
from typing import Callable, Dict, Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from web3 import Web3

from polywallet.engine import TradingEngine
from polywallet.polymarket.signers import PrivyApiError, PrivySigner, Signer
from polywallet.session import SessionState, static_token

logger = logging.getLogger(__name__)

security = HTTPBearer()

SignerFactory = Callable[[str, Optional[str], Optional[str]], Signer]


class SessionRegistry:
    """In-memory sessions keyed by signer address"""

    def __init__(self):
        self._sessions: Dict[str, SessionState] = {}

    def get_or_create(self, address: str, create: Callable[[], SessionState]) -> SessionState:
        key = address.lower()
        session = self._sessions.get(key)
        if session is None:
            session = create()
            self._sessions[key] = session
            logger.info("[Sessions] New session for %s", key)
        return session

    def __len__(self) -> int:
        return len(self._sessions)


@lru_cache()
def get_engine() -> TradingEngine:
    return TradingEngine.from_settings()


@lru_cache()
def get_registry() -> SessionRegistry:
    return SessionRegistry()


def privy_signer(wallet_address: str, wallet_id: Optional[str], user_did: Optional[str]) -> Signer:
    return PrivySigner(wallet_address, wallet_id=wallet_id, user_did=user_did)


def get_signer_factory() -> SignerFactory:
    return privy_signer


def get_session(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    x_wallet_address: str = Header(..., description="User's EOA (embedded wallet) address"),
    x_privy_wallet_id: Optional[str] = Header(None),
    x_privy_user_id: Optional[str] = Header(None),
    registry: SessionRegistry = Depends(get_registry),
    signer_factory: SignerFactory = Depends(get_signer_factory),
) -> SessionState:
    """
    Session for the wallet named in X-Wallet-Address

    The bearer token is passed through to the remote signer; it is
    refreshed on every request.
    """
    if not Web3.is_address(x_wallet_address):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid wallet address")

    def create() -> SessionState:
        try:
            signer = signer_factory(x_wallet_address, x_privy_wallet_id, x_privy_user_id)
        except PrivyApiError as e:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e)) from e
        return SessionState(signer, static_token(credentials.credentials))

    session = registry.get_or_create(x_wallet_address, create)
    session.use_access_token_provider(static_token(credentials.credentials))
    return session
