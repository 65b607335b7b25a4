"""
Staged Import Module

Two-phase import of parsed collection rows: rows extracted from an uploaded
document are staged for review, then committed into the ledger as a batch.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, fields
from typing import Any, Dict, List, Mapping, Optional, Sequence
import uuid

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .exceptions import InvalidInputError
from .ledger import EntrySource, LedgerEntry, LedgerManager, clean_text, pick
from .loans import LoanCycleManager
from .money import normalize_amount
from .dates import parse_datetime
from .logging_config import get_logger, log_action


STAGED_MONEY_FIELDS = ('collection_payment', 'running_balance', 'penalty', 'amortization')


@dataclass
class StagedLedgerEntry(StorageRecord):
    """A parsed row awaiting commit"""
    loan_no: str
    payment_date: Optional[datetime] = None
    collection_reference_no: Optional[str] = None
    collection_payment: Optional[Decimal] = None
    running_balance: Optional[Decimal] = None
    penalty: Optional[Decimal] = None
    amortization: Optional[Decimal] = None
    raw_line: Optional[str] = None
    imported: bool = False

    def __post_init__(self):
        for name in STAGED_MONEY_FIELDS:
            value = getattr(self, name)
            if value is not None and not isinstance(value, Decimal):
                setattr(self, name, normalize_amount(value))
        if self.payment_date is not None and not isinstance(self.payment_date, datetime):
            self.payment_date = parse_datetime(self.payment_date)
        self.imported = bool(self.imported)

    def as_row(self) -> Dict[str, Any]:
        """Shape accepted by LedgerEntry.from_row"""
        row = {name: getattr(self, name) for name in STAGED_MONEY_FIELDS}
        row['payment_date'] = self.payment_date
        row['collection_reference_no'] = self.collection_reference_no
        return row

    @classmethod
    def field_names(cls) -> List[str]:
        return [f.name for f in fields(cls)]


@dataclass
class CommitResult:
    success: bool
    message: str
    imported: int = 0
    failed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "imported": self.imported,
            "failed": self.failed,
        }


class StagedImportManager:
    """Stage parsed rows per loan number and commit them into the ledger"""

    def __init__(self, storage: StorageInterface, loan_manager: LoanCycleManager,
                 ledger_manager: LedgerManager, audit_trail: AuditTrail):
        self.storage = storage
        self.loan_manager = loan_manager
        self.ledger_manager = ledger_manager
        self.audit_trail = audit_trail
        self.table_name = "staged_collections"
        self.logger = get_logger("loan_servicing.staging")

    def stage(
        self,
        loan_no: str,
        rows: Sequence[Mapping[str, Any]],
        performed_by: Optional[str] = None
    ) -> List[StagedLedgerEntry]:
        """
        Persist parsed rows with imported=False.

        Args:
            loan_no: Loan number the document belongs to
            rows: Parser output (PaymentDate, CollectionReferenceNo, ...)
            performed_by: User uploading the document

        Returns:
            The staged entries
        """
        loan_no = str(loan_no or "").strip()
        if not loan_no:
            raise InvalidInputError("Loan number is required")
        if not rows:
            raise InvalidInputError("No rows to stage")

        now = datetime.now(timezone.utc)
        staged = []
        for row in rows:
            entry = StagedLedgerEntry(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                loan_no=loan_no,
                payment_date=parse_datetime(pick(row, 'payment_date')),
                collection_reference_no=clean_text(pick(row, 'collection_reference_no')),
                collection_payment=normalize_amount(pick(row, 'collection_payment')),
                running_balance=normalize_amount(pick(row, 'running_balance')),
                penalty=normalize_amount(pick(row, 'penalty')),
                amortization=normalize_amount(pick(row, 'amortization')),
                raw_line=pick(row, 'raw_line'),
                imported=False
            )
            self.storage.insert(self.table_name, entry.id, entry.to_dict())
            staged.append(entry)

        self.audit_trail.log_event(
            event_type=AuditEventType.COLLECTIONS_STAGED,
            entity_type="loan_cycle",
            entity_id=loan_no,
            metadata={"rows": len(staged)},
            user_id=performed_by
        )
        log_action(
            self.logger, "info", f"Staged {len(staged)} collections for {loan_no}",
            user_id=performed_by, action="stage_collections", resource=f"loan_cycle:{loan_no}"
        )
        return staged

    def pending(self, loan_no: str) -> List[StagedLedgerEntry]:
        """Staged rows not yet committed, in staging order"""
        data = self.storage.find(self.table_name, {"loan_no": loan_no, "imported": False})
        entries = [StagedLedgerEntry.from_dict(d) for d in data]
        entries.sort(key=lambda e: e.created_at)
        return entries

    def commit(self, loan_no: str, performed_by: Optional[str] = None) -> CommitResult:
        """
        Move pending staged rows into the ledger tagged as imported.

        Rows are not deduplicated against the ledger. After the insert every
        staged row for the loan number is flagged imported.

        Raises:
            InvalidInputError: Missing loan number
            NotFoundError: No loan cycle with that number
        """
        cycle = self.loan_manager.require_cycle(str(loan_no or "").strip())

        pending = self.pending(cycle.loan_cycle_no)
        if not pending:
            return CommitResult(success=False, message="No pending collections to import")

        now = datetime.now(timezone.utc)
        entries = [LedgerEntry.from_row(p.as_row(), cycle, EntrySource.IMPORTED, now=now)
                   for p in pending]
        write = self.ledger_manager.insert_entries(entries)

        staged_ids = [d['id'] for d in self.storage.find(self.table_name, {"loan_no": cycle.loan_cycle_no})]
        self.storage.update_many(self.table_name, {
            staged_id: {"imported": True, "updated_at": now.isoformat()} for staged_id in staged_ids
        })

        self.audit_trail.log_event(
            event_type=AuditEventType.COLLECTIONS_COMMITTED,
            entity_type="loan_cycle",
            entity_id=cycle.loan_cycle_no,
            metadata={"imported": write.written_count, "failed": write.failed_count},
            user_id=performed_by
        )
        log_action(
            self.logger, "warning" if write.has_errors else "info",
            f"Committed {write.written_count} collections for {cycle.loan_cycle_no}",
            user_id=performed_by, action="commit_collections",
            resource=f"loan_cycle:{cycle.loan_cycle_no}",
            extra={"failed": write.failed_count}
        )
        return CommitResult(
            success=True,
            message=f"Imported {write.written_count} collections successfully",
            imported=write.written_count,
            failed=write.failed_count
        )
