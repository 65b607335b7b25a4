"""
Loan Cycle Module

A loan cycle is one origination of credit for a client, identified by a
globally unique cycle number. Holds the status sum type used by the automated
status pass, payment mode parsing and the loan cycle manager (create, lookup,
scoped scans, admin delete).
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, fields
from typing import Any, Dict, List, Optional, Union
from enum import Enum
import re

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .exceptions import InvalidInputError, NotFoundError
from .money import normalize_amount
from .dates import parse_datetime
from .logging_config import get_logger, log_action


class LoanStatus(Enum):
    """Closed set of system-recognized loan statuses"""
    UPDATED = "UPDATED"
    ARREARS = "ARREARS"
    PAST_DUE = "PAST DUE"
    LITIGATION = "LITIGATION"
    DORMANT = "DORMANT"
    CLOSED = "CLOSED"  # Set by a person, never by the status pass

    @property
    def is_automated(self) -> bool:
        return self is not LoanStatus.CLOSED


@dataclass(frozen=True)
class ManualStatus:
    """Free-text status typed by staff (e.g. "APPROVED", "For review")"""
    text: str


StatusValue = Union[LoanStatus, ManualStatus]


def parse_status(raw: Any) -> Optional[StatusValue]:
    """Map a persisted status string onto the status sum type"""
    if raw is None:
        return None
    if isinstance(raw, (LoanStatus, ManualStatus)):
        return raw

    text = str(raw).strip()
    if not text:
        return None

    normalized = " ".join(text.upper().replace("_", " ").replace("-", " ").split())
    for status in LoanStatus:
        if status.value == normalized:
            return status
    return ManualStatus(text)


def status_text(value: Optional[StatusValue]) -> Optional[str]:
    """Persisted string form of a status"""
    if value is None:
        return None
    if isinstance(value, LoanStatus):
        return value.value
    return value.text


class PaymentMode(Enum):
    """Collection frequency agreed for a loan"""
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    SEMI_MONTHLY = "SEMI-MONTHLY"
    MONTHLY = "MONTHLY"

    @classmethod
    def parse(cls, raw: Any) -> Optional['PaymentMode']:
        """Tolerant parse; returns None for unrecognized modes"""
        if raw is None:
            return None
        if isinstance(raw, PaymentMode):
            return raw
        text = re.sub(r"[\s_]+", "-", str(raw).strip().upper())
        # Legacy spellings found in imported data
        if text in ("SEMI-MOTHLY", "SEMIMONTHLY"):
            text = "SEMI-MONTHLY"
        for mode in cls:
            if mode.value == text:
                return mode
        return None


class ProcessStatus(Enum):
    """Back-office processing stage of a loan"""
    APPROVED = "Approved"
    UPDATED = "Updated"
    RELEASED = "Released"
    PENDING = "Pending"
    LOAN_RELEASED = "Loan Released"

    @classmethod
    def parse(cls, raw: Any) -> Optional['ProcessStatus']:
        if raw is None or raw == "":
            return None
        if isinstance(raw, ProcessStatus):
            return raw
        for status in cls:
            if status.value.lower() == str(raw).strip().lower():
                return status
        raise InvalidInputError(f"Unknown process status: {raw}")


MONEY_FIELDS = (
    'loan_amount', 'principal_amount', 'loan_balance',
    'loan_amortization', 'loan_interest', 'penalty',
)
DATE_FIELDS = ('maturity_date', 'start_payment_date', 'date_encoded', 'date_modified')


@dataclass
class LoanCycle(StorageRecord):
    """One loan cycle; the storage id is the loan cycle number"""
    loan_cycle_no: str
    account_id: str
    client_no: str
    loan_type: Optional[str] = None
    loan_status: Optional[str] = None
    automated_reason: Optional[str] = None
    loan_term: Optional[str] = None
    payment_mode: Optional[str] = None
    loan_amount: Optional[Decimal] = None
    principal_amount: Optional[Decimal] = None
    loan_balance: Optional[Decimal] = None
    loan_amortization: Optional[Decimal] = None
    loan_interest: Optional[Decimal] = None
    penalty: Optional[Decimal] = None
    maturity_date: Optional[datetime] = None
    start_payment_date: Optional[datetime] = None
    collector_name: Optional[str] = None
    process_status: Optional[ProcessStatus] = None
    remarks: Optional[str] = None
    date_encoded: Optional[datetime] = None
    date_modified: Optional[datetime] = None

    def __post_init__(self):
        for name in MONEY_FIELDS:
            value = getattr(self, name)
            if value is not None and not isinstance(value, Decimal):
                setattr(self, name, normalize_amount(value))
        for name in DATE_FIELDS:
            value = getattr(self, name)
            if value is not None and not isinstance(value, datetime):
                setattr(self, name, parse_datetime(value))
        self.process_status = ProcessStatus.parse(self.process_status)

    @property
    def status(self) -> Optional[StatusValue]:
        return parse_status(self.loan_status)

    @property
    def is_closed(self) -> bool:
        return self.status is LoanStatus.CLOSED

    @property
    def mode(self) -> Optional[PaymentMode]:
        return PaymentMode.parse(self.payment_mode)

    @classmethod
    def field_names(cls) -> List[str]:
        return [f.name for f in fields(cls)]


class LoanCycleManager:
    """Manager for loan cycle records"""

    IDENTITY_FIELDS = ('id', 'loan_cycle_no', 'account_id', 'client_no', 'created_at', 'updated_at')

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail):
        self.storage = storage
        self.audit_trail = audit_trail
        self.table_name = "loan_cycles"
        self.logger = get_logger("loan_servicing.loans")

    def create_cycle(
        self,
        loan_cycle_no: str,
        account_id: str,
        client_no: str,
        performed_by: Optional[str] = None,
        **attributes: Any
    ) -> LoanCycle:
        """
        Create a loan cycle on approval

        Args:
            loan_cycle_no: Globally unique cycle number
            account_id: Client account identifier
            client_no: Client number
            performed_by: User creating the record
            **attributes: Any other LoanCycle field

        Returns:
            Created LoanCycle
        """
        if not loan_cycle_no or not account_id or not client_no:
            raise InvalidInputError("loan_cycle_no, account_id and client_no are required")

        unknown = set(attributes) - set(LoanCycle.field_names())
        if unknown:
            raise InvalidInputError(f"Unknown loan cycle fields: {', '.join(sorted(unknown))}")

        now = datetime.now(timezone.utc)
        cycle = LoanCycle(
            id=loan_cycle_no,
            created_at=now,
            updated_at=now,
            loan_cycle_no=loan_cycle_no,
            account_id=account_id,
            client_no=client_no,
            **attributes
        )
        if cycle.date_encoded is None:
            cycle.date_encoded = now

        # Raises DuplicateRecordError when the cycle number is taken
        self.storage.insert(self.table_name, cycle.id, cycle.to_dict())

        self.audit_trail.log_event(
            event_type=AuditEventType.LOAN_CYCLE_CREATED,
            entity_type="loan_cycle",
            entity_id=cycle.loan_cycle_no,
            metadata={"account_id": account_id, "client_no": client_no},
            user_id=performed_by
        )
        log_action(
            self.logger, "info", f"Loan cycle created: {loan_cycle_no}",
            user_id=performed_by, action="create_loan_cycle",
            resource=f"loan_cycle:{loan_cycle_no}"
        )
        return cycle

    def get_cycle(self, loan_cycle_no: str) -> Optional[LoanCycle]:
        """Lookup by unique cycle number"""
        if not loan_cycle_no:
            return None
        data = self.storage.load(self.table_name, loan_cycle_no)
        if data:
            return self._cycle_from_dict(data)
        return None

    def require_cycle(self, loan_cycle_no: str) -> LoanCycle:
        """Lookup that raises NotFoundError when the cycle does not exist"""
        if not loan_cycle_no or not str(loan_cycle_no).strip():
            raise InvalidInputError("Loan cycle number is required")
        cycle = self.get_cycle(loan_cycle_no)
        if cycle is None:
            raise NotFoundError(f"Loan cycle {loan_cycle_no} not found")
        return cycle

    def find_cycles(self, filters: Optional[Dict[str, Any]] = None) -> List[LoanCycle]:
        """Scan loan cycles matching equality filters on stored fields"""
        filters = filters or {}
        unknown = set(filters) - set(LoanCycle.field_names())
        if unknown:
            raise InvalidInputError(f"Unknown loan cycle filter fields: {', '.join(sorted(unknown))}")

        cycles = [self._cycle_from_dict(data) for data in self.storage.find(self.table_name, filters)]
        cycles.sort(key=lambda c: c.loan_cycle_no)
        return cycles

    def save_cycle(self, cycle: LoanCycle) -> None:
        self.storage.save(self.table_name, cycle.id, cycle.to_dict())

    def delete_cycle(self, loan_cycle_no: str, performed_by: Optional[str] = None) -> bool:
        """Hard delete; an explicit admin action only"""
        cycle = self.require_cycle(loan_cycle_no)
        deleted = self.storage.delete(self.table_name, cycle.id)

        if deleted:
            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_CYCLE_DELETED,
                entity_type="loan_cycle",
                entity_id=loan_cycle_no,
                metadata={"loan_status": cycle.loan_status, "loan_balance": cycle.loan_balance},
                user_id=performed_by
            )
            log_action(
                self.logger, "warning", f"Loan cycle deleted: {loan_cycle_no}",
                user_id=performed_by, action="delete_loan_cycle",
                resource=f"loan_cycle:{loan_cycle_no}"
            )
        return deleted

    def _cycle_from_dict(self, data: Dict[str, Any]) -> LoanCycle:
        """Convert stored dictionary to LoanCycle"""
        known = set(LoanCycle.field_names())
        return LoanCycle.from_dict({k: v for k, v in data.items() if k in known})
