"""
Admin endpoints (maintenance mode, audit integrity)
"""

from typing import Any, Dict
from fastapi import APIRouter, Depends

from .dependencies import ServicingSystem, get_servicing_system
from .schemas import MaintenanceRequest
from ..audit import AuditEventType
from ..logging_config import get_logger, log_action


router = APIRouter()
logger = get_logger("loan_servicing.api.admin")


@router.get("/maintenance")
async def get_maintenance(system: ServicingSystem = Depends(get_servicing_system)) -> Dict[str, Any]:
    """Current runtime flags"""
    return system.flags.to_dict()


@router.post("/maintenance")
async def set_maintenance(
    request: MaintenanceRequest,
    system: ServicingSystem = Depends(get_servicing_system)
) -> Dict[str, Any]:
    """Toggle maintenance mode (not persisted across restarts)"""
    previous = system.flags.maintenance
    system.flags.maintenance = request.maintenance

    if previous != request.maintenance:
        system.audit_trail.log_event(
            event_type=AuditEventType.MAINTENANCE_TOGGLED,
            entity_type="system",
            entity_id="maintenance",
            metadata={"maintenance": request.maintenance}
        )
        log_action(
            logger, "warning",
            f"Maintenance mode {'enabled' if request.maintenance else 'disabled'}",
            action="toggle_maintenance", resource="system:maintenance"
        )
    return system.flags.to_dict()


@router.get("/audit/verify")
async def verify_audit_trail(system: ServicingSystem = Depends(get_servicing_system)) -> Dict[str, Any]:
    """Check the audit hash chain"""
    return system.audit_trail.verify_integrity()
