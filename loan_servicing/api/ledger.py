"""
Collection ledger endpoints
"""

from typing import Any, Dict, Optional
from fastapi import APIRouter, Body, Depends, HTTPException, Query, status

from .dependencies import ServicingSystem, get_servicing_system
from .schemas import AddLedgerEntryRequest, DedupeRequest
from ..exceptions import NotFoundError, ServicingError
from ..ledger import EntrySource
from ..reconciler import resolve_date_range
from ..sync import normalize_keys


router = APIRouter()


@router.post("/dedupe")
async def dedupe_ledger(
    request: DedupeRequest,
    system: ServicingSystem = Depends(get_servicing_system)
):
    """Delete duplicate ledger entries, keeping the newest of each group"""
    report = system.deduplicator.dedupe(
        loan_cycle_no=request.loan_cycle_no,
        dry_run=request.dry_run
    )
    return report.to_dict()


@router.put("/entries/{entry_id}")
async def correct_ledger_entry(
    entry_id: str,
    corrections: Dict[str, Any] = Body(...),
    system: ServicingSystem = Depends(get_servicing_system)
):
    """Administrative correction of a single entry"""
    try:
        entry = system.ledger_manager.correct_entry(entry_id, normalize_keys(corrections))
        return entry.to_dict()

    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ServicingError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/entries/{entry_id}")
async def delete_ledger_entry(
    entry_id: str,
    system: ServicingSystem = Depends(get_servicing_system)
):
    try:
        return {"entry_id": entry_id, "deleted": system.ledger_manager.delete_entry(entry_id)}
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/{loan_cycle_no}/entries", status_code=status.HTTP_201_CREATED)
async def add_ledger_entry(
    loan_cycle_no: str,
    request: AddLedgerEntryRequest,
    system: ServicingSystem = Depends(get_servicing_system)
):
    """Record one collection against a loan cycle"""
    try:
        entry = system.ledger_manager.add_entry(
            loan_cycle_no, request.row, source=EntrySource(request.source)
        )
        return entry.to_dict()

    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (ServicingError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{loan_cycle_no}")
async def get_ledger(
    loan_cycle_no: str,
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    system: ServicingSystem = Depends(get_servicing_system)
):
    """Ledger of a loan cycle ordered by payment date"""
    try:
        cycle = system.loan_manager.require_cycle(loan_cycle_no)
        start, end = resolve_date_range(start_date, end_date)
        entries = system.ledger_manager.get_entries_for_cycle(cycle, start=start, end=end)

        return {
            "loan_cycle_no": cycle.loan_cycle_no,
            "count": len(entries),
            "entries": [entry.to_dict() for entry in entries]
        }

    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ServicingError as e:
        raise HTTPException(status_code=400, detail=str(e))
