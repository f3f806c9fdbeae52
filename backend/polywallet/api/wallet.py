from typing import Any, AsyncIterator, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from polywallet.api.deps import get_engine, get_session
from polywallet.engine import TradingEngine
from polywallet.models.results import ProgressEvent
from polywallet.models.wallet import ApprovalRecord
from polywallet.session import SessionState

router = APIRouter()


class ApprovalStatus(BaseModel):
    usdcToCTF: bool
    usdcToExchange: bool
    usdcToNegRiskExchange: bool
    ctfToExchange: bool
    ctfToNegRiskExchange: bool
    ctfToNegRiskAdapter: bool

    def to_record(self) -> ApprovalRecord:
        return ApprovalRecord(
            usdc_to_ctf=self.usdcToCTF,
            usdc_to_exchange=self.usdcToExchange,
            usdc_to_neg_risk_exchange=self.usdcToNegRiskExchange,
            ctf_to_exchange=self.ctfToExchange,
            ctf_to_neg_risk_exchange=self.ctfToNegRiskExchange,
            ctf_to_neg_risk_adapter=self.ctfToNegRiskAdapter,
        )


class ApproveAllRequest(BaseModel):
    current_status: Optional[ApprovalStatus] = None


async def drain(stream: AsyncIterator[ProgressEvent]) -> Dict[str, Any]:
    """Progress events in order plus the final result, as JSON"""
    events = []
    result = None
    async for event in stream:
        events.append(event.to_dict())
        if event.is_final:
            result = event.result.to_dict()
    return {"events": events, "result": result}


@router.get("/approvals")
async def get_approvals(
    session: SessionState = Depends(get_session),
    engine: TradingEngine = Depends(get_engine),
):
    """Approval status of the user's smart wallet"""
    result = await engine.check_approvals(session)
    return {
        "proxyAddress": engine.smart_wallet_address(session),
        **result.to_dict(),
    }


@router.post("/approvals")
async def approve_all(
    body: Optional[ApproveAllRequest] = None,
    session: SessionState = Depends(get_session),
    engine: TradingEngine = Depends(get_engine),
):
    """
    Grant every missing approval in one sponsored batch

    A status already shown to the user can be passed back to skip re-reading it.
    """
    current_status = body.current_status.to_record() if body and body.current_status else None
    return await drain(engine.approve_all_stream(session, current_status))


@router.post("/deploy")
async def deploy_smart_wallet(
    session: SessionState = Depends(get_session),
    engine: TradingEngine = Depends(get_engine),
):
    return await drain(engine.deploy_smart_wallet_stream(session))
