from pydantic_settings import BaseSettings
from typing import List, Optional

class Settings(BaseSettings):
    # Polymarket settings
    POLY_CLOB_HOST: str = "https://clob.polymarket.com"
    POLY_CHAIN_ID: int = 137
    POLY_RELAYER_URL: str = "https://relayer-v2.polymarket.com"
    POLY_REMOTE_SIGNER_URL: str = "https://sign.elizabao.xyz/sign"

    # Read-only RPC endpoints, tried in order
    POLY_RPC_URLS: List[str] = [
        "https://polygon-rpc.com",
        "https://rpc.ankr.com/polygon",
        "https://polygon.llamarpc.com",
    ]
    POLY_RPC_TIMEOUT: float = 10.0

    # Allowance (USDC minor units) above which an ERC-20 grant counts as approved
    MIN_ALLOWANCE_THRESHOLD: int = 10**12

    # Relayer polling
    RELAYER_POLL_MAX_ATTEMPTS: int = 30
    RELAYER_POLL_INTERVAL_MS: int = 2000

    # Privy settings
    PRIVY_APP_ID: Optional[str] = None
    PRIVY_APP_SECRET: Optional[str] = None
    PRIVY_API_URL: str = "https://api.privy.io/v1"

    HTTP_TIMEOUT: float = 10.0
    LOG_LEVEL: str = "INFO"

    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:3001",
    ]

    class Config:
        env_file = ".env"
        case_sensitive = True

settings = Settings()
