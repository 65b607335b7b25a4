"""
Collection import endpoints (reconciled import and staged upload commit)
"""

from fastapi import APIRouter, Depends, HTTPException

from .dependencies import ServicingSystem, get_servicing_system
from .schemas import ReconcileRequest, StageCollectionsRequest
from ..exceptions import NotFoundError, ServicingError
from ..ledger import EntrySource


router = APIRouter()


@router.post("/reconcile")
async def reconcile_collections(
    request: ReconcileRequest,
    system: ServicingSystem = Depends(get_servicing_system)
):
    """Import collection rows into a loan cycle's ledger, skipping duplicates"""
    try:
        if request.rows is None:
            result = system.reconciler.reconcile_from_source(
                request.loan_cycle_no,
                client_no=request.client_no,
                start_date=request.start_date,
                end_date=request.end_date
            )
        else:
            result = system.reconciler.reconcile(
                request.loan_cycle_no,
                request.rows,
                client_no=request.client_no,
                start_date=request.start_date,
                end_date=request.end_date,
                source=EntrySource(request.source)
            )
        return result.to_dict()

    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (ServicingError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/{loan_no}/stage")
async def stage_collections(
    loan_no: str,
    request: StageCollectionsRequest,
    system: ServicingSystem = Depends(get_servicing_system)
):
    """Save parsed rows for review before commit"""
    try:
        staged = system.staged_imports.stage(loan_no, request.data)
        return {
            "success": True,
            "staged": len(staged),
            "message": "Saved to metadata"
        }

    except ServicingError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{loan_no}/pending")
async def list_pending_collections(
    loan_no: str,
    system: ServicingSystem = Depends(get_servicing_system)
):
    """Staged rows not yet committed"""
    pending = system.staged_imports.pending(loan_no)
    return {
        "loan_no": loan_no,
        "pending": [entry.to_dict() for entry in pending]
    }


@router.post("/{loan_no}/commit")
async def commit_collections(
    loan_no: str,
    system: ServicingSystem = Depends(get_servicing_system)
):
    """Move staged rows into the ledger"""
    try:
        return system.staged_imports.commit(loan_no).to_dict()

    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ServicingError as e:
        raise HTTPException(status_code=400, detail=str(e))
