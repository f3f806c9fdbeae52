import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from polywallet.api import trading, wallet
from polywallet.core.config import settings

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

app = FastAPI(
    title="Polywallet API",
    description="Gasless wallet onboarding and order execution for Polymarket",
    version="1.0.0"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(wallet.router, prefix="/api/wallet", tags=["wallet"])
app.include_router(trading.router, prefix="/api/trading", tags=["trading"])

@app.get("/")
async def root():
    return {"message": "Polywallet API"}

@app.get("/health")
async def health():
    return {"status": "ok"}
