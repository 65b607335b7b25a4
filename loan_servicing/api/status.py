"""
Automated status endpoints
"""

from fastapi import APIRouter, Depends, HTTPException

from .dependencies import ServicingSystem, get_servicing_system
from .schemas import StatusPassRequest
from ..exceptions import NotFoundError, ServicingError


router = APIRouter()


@router.post("/pass")
async def run_status_pass(
    request: StatusPassRequest,
    system: ServicingSystem = Depends(get_servicing_system)
):
    """Recompute automated statuses and sync balances from the ledger"""
    try:
        result = system.status_engine.run_pass(
            thresholds=request.thresholds,
            filters=request.filter
        )
        return result.to_dict()

    except ServicingError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/preview/{loan_cycle_no}")
async def preview_status(
    loan_cycle_no: str,
    system: ServicingSystem = Depends(get_servicing_system)
):
    """Status the next pass would assign, without writing"""
    try:
        return system.status_engine.preview(loan_cycle_no)

    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ServicingError as e:
        raise HTTPException(status_code=400, detail=str(e))
