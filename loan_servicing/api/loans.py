"""
Loan cycle endpoints
"""

from typing import Any, Dict
from fastapi import APIRouter, Body, Depends, HTTPException, status

from .dependencies import ServicingSystem, get_servicing_system
from .schemas import CreateLoanCycleRequest
from ..exceptions import NotFoundError, ServicingError
from ..sync import normalize_keys


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_loan_cycle(
    request: CreateLoanCycleRequest,
    system: ServicingSystem = Depends(get_servicing_system)
):
    """Register an approved loan cycle"""
    try:
        cycle = system.loan_manager.create_cycle(
            request.loan_cycle_no,
            request.account_id,
            request.client_no,
            **normalize_keys(request.attributes)
        )
        return cycle.to_dict()

    except ServicingError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{loan_cycle_no}")
async def get_loan_cycle(
    loan_cycle_no: str,
    system: ServicingSystem = Depends(get_servicing_system)
):
    """Get loan cycle details"""
    cycle = system.loan_manager.get_cycle(loan_cycle_no)
    if not cycle:
        raise HTTPException(status_code=404, detail="Loan cycle not found")
    return cycle.to_dict()


@router.put("/{loan_cycle_no}")
async def edit_loan_cycle(
    loan_cycle_no: str,
    payload: Dict[str, Any] = Body(...),
    system: ServicingSystem = Depends(get_servicing_system)
):
    """Manual edit; blank fields leave stored values untouched"""
    try:
        return system.sync_writer.apply_cycle_edit(loan_cycle_no, payload).to_dict()

    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ServicingError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/{loan_cycle_no}")
async def delete_loan_cycle(
    loan_cycle_no: str,
    system: ServicingSystem = Depends(get_servicing_system)
):
    """Hard delete of a loan cycle; its ledger entries are kept"""
    try:
        deleted = system.loan_manager.delete_cycle(loan_cycle_no)
        return {"loan_cycle_no": loan_cycle_no, "deleted": deleted}

    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
