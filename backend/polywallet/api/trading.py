from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from polywallet.api.deps import get_engine, get_session
from polywallet.api.wallet import drain
from polywallet.engine import TradingEngine
from polywallet.models.orders import OrderRequest
from polywallet.session import SessionState

router = APIRouter()


class OrderCreateRequest(BaseModel):
    token_id: str
    price: float
    size: float
    side: Literal["BUY", "SELL"]
    tick_size: str = "0.01"
    neg_risk: bool = False

    def to_request(self) -> OrderRequest:
        return OrderRequest(
            token_id=self.token_id,
            price=self.price,
            size=self.size,
            side=self.side,
            tick_size=self.tick_size,
            neg_risk=self.neg_risk,
        )


@router.post("/credentials/derive")
async def derive_credentials(
    session: SessionState = Depends(get_session),
    engine: TradingEngine = Depends(get_engine),
):
    """Trading-API credentials for the current (signer, funder) pair"""
    result = await engine.derive_credentials(session)
    return result.to_dict()


@router.post("/credentials/reset")
async def reset_credentials(
    session: SessionState = Depends(get_session),
    engine: TradingEngine = Depends(get_engine),
):
    """Revoke the current API key and issue a new one"""
    result = await engine.reset_credentials(session)
    return result.to_dict()


@router.post("/orders")
async def submit_order(
    body: OrderCreateRequest,
    session: SessionState = Depends(get_session),
    engine: TradingEngine = Depends(get_engine),
):
    return await drain(engine.submit_order_stream(session, body.to_request()))
