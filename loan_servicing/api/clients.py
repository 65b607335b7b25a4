"""
Client profile endpoints
"""

from typing import Any, Dict
from fastapi import APIRouter, Body, Depends, HTTPException, status

from .dependencies import ServicingSystem, get_servicing_system
from .schemas import CreateClientRequest
from ..exceptions import NotFoundError, ServicingError
from ..sync import normalize_keys


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_client(
    request: CreateClientRequest,
    system: ServicingSystem = Depends(get_servicing_system)
):
    """Create a client profile"""
    try:
        client = system.client_manager.create_client(
            request.client_no,
            request.account_id,
            **normalize_keys(request.attributes)
        )
        return client.to_dict()

    except ServicingError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{client_no}")
async def get_client(
    client_no: str,
    system: ServicingSystem = Depends(get_servicing_system)
):
    """Get client profile"""
    client = system.client_manager.get_client(client_no)
    if not client:
        raise HTTPException(status_code=404, detail="Client not found")
    return client.to_dict()


@router.put("/{client_no}")
async def update_client(
    client_no: str,
    payload: Dict[str, Any] = Body(...),
    system: ServicingSystem = Depends(get_servicing_system)
):
    """Merge a profile form submission; blank fields never erase stored data"""
    try:
        result = system.sync_writer.apply_client_update(client_no, payload)
        return result.to_dict()

    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ServicingError as e:
        raise HTTPException(status_code=400, detail=str(e))
