"""
Pydantic schemas for API requests

Request bodies accept the camelCase keys sent by the web client as well as
snake_case field names.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class RequestModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# Status schemas
class StatusPassRequest(RequestModel):
    thresholds: Optional[Dict[str, Any]] = Field(None, description="Partial threshold override (days)")
    filter: Optional[Dict[str, Any]] = Field(None, description="Equality filters on loan cycle fields")


# Import schemas
class ReconcileRequest(RequestModel):
    loan_cycle_no: str = Field(..., alias="loanCycleNo")
    client_no: Optional[str] = Field(None, alias="clientNo")
    start_date: Optional[str] = Field(None, alias="startDate", description="Inclusive, ISO date")
    end_date: Optional[str] = Field(None, alias="endDate", description="Inclusive, ISO date")
    rows: Optional[List[Dict[str, Any]]] = Field(
        None, description="Candidate rows; read from the legacy store when omitted"
    )
    source: str = Field("database-import", description="database-import or upload")


class StageCollectionsRequest(RequestModel):
    data: List[Dict[str, Any]] = Field(..., description="Parsed collection rows")


# Ledger schemas
class DedupeRequest(RequestModel):
    loan_cycle_no: Optional[str] = Field(None, alias="loanCycleNo")
    dry_run: bool = Field(False, alias="dryRun")


class AddLedgerEntryRequest(RequestModel):
    row: Dict[str, Any] = Field(..., description="Collection row, camelCase or snake_case keys")
    source: str = Field("manual", description="manual, upload or database-import")


# Loan cycle / client schemas
class CreateLoanCycleRequest(RequestModel):
    loan_cycle_no: str = Field(..., alias="loanCycleNo")
    account_id: str = Field(..., alias="accountId")
    client_no: str = Field(..., alias="clientNo")
    attributes: Dict[str, Any] = Field(default_factory=dict)


class CreateClientRequest(RequestModel):
    client_no: str = Field(..., alias="clientNo")
    account_id: str = Field(..., alias="accountId")
    attributes: Dict[str, Any] = Field(default_factory=dict)


# Admin schemas
class MaintenanceRequest(RequestModel):
    maintenance: bool
